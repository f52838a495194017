from enum import Enum

# Stored as strings with DB check constraints (native enums disabled for easier evolution).


class CreatorStatusEnum(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"


class PayeeStatusEnum(str, Enum):
    NOT_REGISTERED = "not_registered"
    PENDING = "pending"
    ONBOARDED = "onboarded"


class PaymentMethodEnum(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    WIRE_TRANSFER = "WIRE_TRANSFER"
    PAYPAL = "PAYPAL"
    PAYONEER = "PAYONEER"
    PREPAID_CARD = "PREPAID_CARD"
    CHECK = "CHECK"


class EarningStatusEnum(str, Enum):
    LOCKED = "LOCKED"
    ELIGIBLE = "ELIGIBLE"
    PENDING_PAYOUT = "PENDING_PAYOUT"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class BatchStatusEnum(str, Enum):
    OPEN = "OPEN"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class PayoutReasonEnum(str, Enum):
    MINIMUM_THRESHOLD = "MINIMUM_THRESHOLD"
    FORCED_45_DAY = "FORCED_45_DAY"
    MANUAL_ADMIN = "MANUAL_ADMIN"


class BonusAwardStatusEnum(str, Enum):
    EARNED = "EARNED"
    PAID = "PAID"


def enum_values(enum_cls) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)
