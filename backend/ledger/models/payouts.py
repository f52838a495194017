from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from ledger.core.db import Base
from ledger.models.enums import BatchStatusEnum, PayoutReasonEnum, enum_values
from ledger.models.mixins import TimestampMixin


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class PayoutBatch(TimestampMixin, Base):
    __tablename__ = "payout_batches"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_payout_batches_idempotency_key"),
        Index("ix_payout_batches_creator_scheduled", "creator_id", "scheduled_date"),
        Index("ix_payout_batches_status_next_attempt", "status", "next_attempt_at"),
        Index("ix_payout_batches_external_payout", "external_payout_id"),
        CheckConstraint(
            f"status IN ({enum_values(BatchStatusEnum)})",
            name="ck_payout_batches_status",
        ),
        CheckConstraint(
            f"reason IN ({enum_values(PayoutReasonEnum)})",
            name="ck_payout_batches_reason",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("creators.id", ondelete="RESTRICT"), nullable=False, index=True)
    scheduled_date = Column(Date, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    idempotency_key = Column(String, nullable=False)
    reason = Column(String, nullable=False)
    # Snapshot of the claimed earnings; survives a release for audit.
    earning_ids_json = Column(JSON_TYPE, nullable=False, default=list)
    earnings_amount = Column(Numeric(12, 2), nullable=False, default=0)
    bonus_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    # Award for this batch's period; carried-over awards point back via payout_batch_id.
    bonus_award_id = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default=BatchStatusEnum.OPEN.value)
    external_payout_id = Column(String, nullable=True)
    dispatched_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    creator = relationship("Creator", lazy="joined")

    @property
    def earning_ids(self) -> set[int]:
        return {int(value) for value in (self.earning_ids_json or [])}
