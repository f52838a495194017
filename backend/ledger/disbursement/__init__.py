from .base import PayoutDisbursementAdapter, PayoutInstruction, SubmissionResult
from .retry import RetryPolicy

__all__ = [
    "PayoutDisbursementAdapter",
    "PayoutInstruction",
    "SubmissionResult",
    "RetryPolicy",
]
