from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ledger.core.db import Base
from ledger.models.enums import EarningStatusEnum, enum_values
from ledger.models.mixins import TimestampMixin


class EarningRecord(TimestampMixin, Base):
    __tablename__ = "earning_records"
    __table_args__ = (
        UniqueConstraint("source_transaction_id", name="uq_earning_records_source_transaction"),
        Index("ix_earning_records_creator_status", "creator_id", "status"),
        Index("ix_earning_records_status_locked_until", "status", "locked_until"),
        Index("ix_earning_records_payout_batch", "payout_batch_id"),
        CheckConstraint(
            f"status IN ({enum_values(EarningStatusEnum)})",
            name="ck_earning_records_status",
        ),
        CheckConstraint(
            "commission_rate >= 0 AND commission_rate <= 100",
            name="ck_earning_records_commission_rate",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("creators.id", ondelete="RESTRICT"), nullable=False, index=True)
    source_transaction_id = Column(String, nullable=False)
    gross_amount = Column(Numeric(12, 2), nullable=False)
    # Percentage frozen at ingestion; never recomputed.
    commission_rate = Column(Numeric(5, 2), nullable=False)
    net_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    earned_at = Column(DateTime, nullable=False)
    locked_until = Column(DateTime, nullable=False)
    hard_deadline = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=EarningStatusEnum.LOCKED.value)
    payout_batch_id = Column(Integer, ForeignKey("payout_batches.id", ondelete="RESTRICT"), nullable=True)
    reverses_earning_id = Column(Integer, ForeignKey("earning_records.id", ondelete="RESTRICT"), nullable=True)
    cancel_reason = Column(Text, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    creator = relationship("Creator", back_populates="earnings", lazy="noload")


class CommissionRateOverride(TimestampMixin, Base):
    __tablename__ = "commission_rate_overrides"
    __table_args__ = (
        Index("ix_commission_rate_overrides_creator_effective", "creator_id", "effective_from"),
        CheckConstraint("rate >= 0 AND rate <= 100", name="ck_commission_rate_overrides_rate"),
    )

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("creators.id", ondelete="RESTRICT"), nullable=False)
    rate = Column(Numeric(5, 2), nullable=False)
    effective_from = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=True)
    set_by = Column(String, nullable=True)

    creator = relationship("Creator", back_populates="commission_overrides", lazy="noload")
