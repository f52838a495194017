"""
Ledger error taxonomy.

Every error carries a stable ``code`` and an HTTP ``status_code`` so the API
layer can render it without knowing which component raised it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class LedgerError(Exception):
    code: str
    message: str
    status_code: int

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(LedgerError):
    """Malformed input, rejected before anything is written."""

    def __init__(self, message: str):
        super().__init__(code="validation_error", message=message, status_code=422)


class UnknownCreatorError(LedgerError):
    def __init__(self, creator_id: int):
        self.creator_id = creator_id
        super().__init__(
            code="unknown_creator",
            message=f"Creator {creator_id} does not exist",
            status_code=404,
        )


class ConcurrencyConflictError(LedgerError):
    """A versioned compare-and-swap lost its race."""

    def __init__(self, message: str):
        super().__init__(code="concurrency_conflict", message=message, status_code=409)


class DuplicateTransactionError(LedgerError):
    def __init__(self, source_transaction_id: str):
        self.source_transaction_id = source_transaction_id
        super().__init__(
            code="duplicate_transaction",
            message=f"Transaction {source_transaction_id} already recorded",
            status_code=200,
        )


class InvariantViolationError(LedgerError):
    def __init__(self, message: str):
        super().__init__(code="invariant_violation", message=message, status_code=500)


class ExternalProviderError(LedgerError):
    def __init__(self, message: str, *, retryable: bool, provider_status: int | None = None):
        self.retryable = retryable
        self.provider_status = provider_status
        super().__init__(code="external_provider_error", message=message, status_code=502)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["retryable"] = self.retryable
        if self.provider_status is not None:
            payload["provider_status"] = self.provider_status
        return payload
