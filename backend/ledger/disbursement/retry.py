from __future__ import annotations

from dataclasses import dataclass

import requests

from ledger.core.config import settings
from ledger.core.errors import ExternalProviderError

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_seconds: int = 300
    max_delay_seconds: int = 21600

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.PAYOUT_RETRY_MAX_ATTEMPTS,
            base_delay_seconds=settings.PAYOUT_RETRY_BASE_DELAY_SECONDS,
            max_delay_seconds=settings.PAYOUT_RETRY_MAX_DELAY_SECONDS,
        )

    def backoff_seconds(self, attempt: int) -> int:
        exponent = max(attempt - 1, 0)
        delay = self.base_delay_seconds * (2 ** exponent)
        return min(delay, self.max_delay_seconds)

    def is_retryable_status(self, status_code: int | None) -> bool:
        if status_code is None:
            return True
        return status_code in RETRYABLE_STATUS_CODES or status_code >= 500

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, ExternalProviderError):
            return exc.retryable
        if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
            return True
        if isinstance(exc, requests.HTTPError):
            response = exc.response
            return self.is_retryable_status(response.status_code if response is not None else None)
        return False

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        return attempt < self.max_attempts and self.is_retryable(exc)
