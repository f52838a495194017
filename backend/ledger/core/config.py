# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Payout rules (lock period, minimum, schedule, bonus tiers) live here
# so finance can tune them per deployment without code changes.

import json
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


DEFAULT_BONUS_TIERS = [
    {"tier": 1, "threshold": 5000, "bonus_amount": 50},
    {"tier": 2, "threshold": 10000, "bonus_amount": 100},
    {"tier": 3, "threshold": 20000, "bonus_amount": 200},
    {"tier": 4, "threshold": 30000, "bonus_amount": 300},
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Core DB connection string, like sqlite:///./ledger.db or a Postgres URL.
    DATABASE_URL: str

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    # Commission percentage applied when a creator has no override.
    DEFAULT_COMMISSION_RATE: float = Field(default=70, ge=0, le=100)

    # Earnings unlock after the lock period; the hard deadline forces
    # inclusion in the next run even under the minimum payout.
    LOCK_PERIOD_DAYS: int = Field(default=15, gt=0)
    HARD_DEADLINE_DAYS: int = Field(default=45, gt=0)
    MINIMUM_PAYOUT: float = Field(default=25.00, ge=0)

    # Scheduled payout days of the month. 30 falls back to the last day
    # of shorter months.
    PAYOUT_DAYS: List[int] = Field(default_factory=lambda: [15, 30])
    PAYOUT_CURRENCY: str = "USD"
    ALLOWED_CURRENCIES: List[str] = Field(default_factory=lambda: ["USD"])

    # Non-cumulative bonus ladder, ascending by threshold.
    BONUS_TIERS: List[dict] = Field(default_factory=lambda: [dict(t) for t in DEFAULT_BONUS_TIERS])

    # Disbursement provider connection.
    PAYOUT_PROVIDER_BASE_URL: str = "https://ui2.sandbox.tipalti.com"
    PAYOUT_PROVIDER_API_KEY: Optional[str] = None
    PAYOUT_PAYER_ENTITY_ID: Optional[str] = None
    PAYOUT_PROVIDER_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    PAYOUT_WEBHOOK_SECRET: Optional[str] = None
    PAYOUT_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Retry policy for retryable submission failures (exponential backoff).
    PAYOUT_RETRY_MAX_ATTEMPTS: int = Field(default=5, gt=0)
    PAYOUT_RETRY_BASE_DELAY_SECONDS: int = Field(default=300, gt=0)
    PAYOUT_RETRY_MAX_DELAY_SECONDS: int = Field(default=21600, gt=0)

    # Worker loop cadence.
    WORKER_POLL_INTERVAL_SECONDS: float = 60.0

    @field_validator("PAYOUT_DAYS", mode="before")
    @classmethod
    def _parse_payout_days(cls, value):
        if isinstance(value, str):
            return [int(p.strip()) for p in value.split(",") if p.strip()]
        return value

    @field_validator("ALLOWED_CURRENCIES", mode="before")
    @classmethod
    def _parse_list_values(cls, value):
        if isinstance(value, str):
            return [p.strip().upper() for p in value.split(",") if p.strip()]
        return value

    @field_validator("BONUS_TIERS")
    @classmethod
    def _sort_bonus_tiers(cls, value):
        return sorted(value, key=lambda row: float(row["threshold"]))


# Instantiate a single settings object for app-wide import.
# Any module can just `from ledger.core.config import settings`.
settings = Settings()
