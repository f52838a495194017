from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from ledger.core.db import Base
from ledger.models.enums import BonusAwardStatusEnum, enum_values
from ledger.models.mixins import TimestampMixin


class BonusAward(TimestampMixin, Base):
    __tablename__ = "bonus_awards"
    __table_args__ = (
        UniqueConstraint(
            "creator_id",
            "period_start",
            "period_end",
            name="uq_bonus_awards_creator_period",
        ),
        Index("ix_bonus_awards_creator_status", "creator_id", "status"),
        CheckConstraint(
            f"status IN ({enum_values(BonusAwardStatusEnum)})",
            name="ck_bonus_awards_status",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    creator_id = Column(Integer, ForeignKey("creators.id", ondelete="RESTRICT"), nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    tier = Column(Integer, nullable=False)
    bonus_amount = Column(Numeric(12, 2), nullable=False)
    sales_volume = Column(Numeric(14, 2), nullable=False)
    awarded_at = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=BonusAwardStatusEnum.EARNED.value)
    payout_batch_id = Column(Integer, ForeignKey("payout_batches.id", ondelete="SET NULL"), nullable=True)
    paid_at = Column(DateTime, nullable=True)
