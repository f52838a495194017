from sqlalchemy import CheckConstraint, Column, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from ledger.core.db import Base
from ledger.models.enums import (
    CreatorStatusEnum,
    PayeeStatusEnum,
    PaymentMethodEnum,
    enum_values,
)
from ledger.models.mixins import TimestampMixin


class Creator(TimestampMixin, Base):
    __tablename__ = "creators"
    __table_args__ = (
        UniqueConstraint("email", name="uq_creators_email"),
        UniqueConstraint("payee_id", name="uq_creators_payee_id"),
        Index("ix_creators_status", "status"),
        CheckConstraint(f"status IN ({enum_values(CreatorStatusEnum)})", name="ck_creators_status"),
        CheckConstraint(
            f"payee_status IN ({enum_values(PayeeStatusEnum)})",
            name="ck_creators_payee_status",
        ),
        CheckConstraint(
            f"payment_method IN ({enum_values(PaymentMethodEnum)})",
            name="ck_creators_payment_method",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    status = Column(String, nullable=False, default=CreatorStatusEnum.ACTIVE.value)
    payee_id = Column(String, nullable=True)
    payee_status = Column(String, nullable=False, default=PayeeStatusEnum.NOT_REGISTERED.value)
    payment_method = Column(String, nullable=False, default=PaymentMethodEnum.BANK_TRANSFER.value)
    # Overrides settings.MINIMUM_PAYOUT when set.
    minimum_payout = Column(Numeric(12, 2), nullable=True)

    earnings = relationship("EarningRecord", back_populates="creator", lazy="noload")
    commission_overrides = relationship("CommissionRateOverride", back_populates="creator", lazy="noload")
