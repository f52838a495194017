from .creators import Creator
from .earnings import EarningRecord, CommissionRateOverride
from .payouts import PayoutBatch
from .bonuses import BonusAward

__all__ = [
    "Creator",
    "EarningRecord",
    "CommissionRateOverride",
    "PayoutBatch",
    "BonusAward",
]
