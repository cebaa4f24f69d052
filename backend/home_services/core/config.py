# backend/home_services/core/config.py
import logging
import os
from decimal import Decimal
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Deployment environment name",
    )

    # Ledger store
    database_url: str = Field(
        default="sqlite+pysqlite:///./home_services.db",
        description="SQLAlchemy URL of the ledger store",
    )
    db_statement_timeout_ms: int = Field(
        default=15000,
        description="Per-transaction statement timeout; aborts the unit of work when exceeded",
    )

    # Settlement
    platform_commission_rate: Decimal = Field(
        default=Decimal("0.15"),
        description="Platform share of booking revenue deducted before payout",
    )
    payout_default_period_days: int = Field(
        default=30,
        description="Settlement period used when no explicit start/end is supplied",
    )
    payout_claim_max_attempts: int = Field(
        default=3,
        description="Retry budget when a payout claim loses a race",
    )

    # Booking lifecycle
    reschedule_min_notice_hours: int = Field(
        default=2,
        description="Hours of notice required before the current scheduled time to reschedule",
    )

    # Reviews
    review_edit_window_hours: int = Field(
        default=48,
        description="Hours after creation during which a customer may edit a review",
    )

    # Background work
    celery_broker_url: str = Field(
        default="redis://localhost:6379/0",
        description="Celery broker used for notifications and scheduled settlement",
    )
    notifications_enabled: bool = Field(
        default=True,
        description="When false, the dispatcher drops notifications instead of enqueueing them",
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("platform_commission_rate")
    @classmethod
    def _validate_commission_rate(cls, value: Decimal) -> Decimal:
        if value < 0 or value >= 1:
            raise ValueError("platform_commission_rate must be within [0, 1)")
        return value

    @field_validator("payout_claim_max_attempts", "payout_default_period_days")
    @classmethod
    def _validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be at least 1")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.lower().startswith("sqlite")


settings = Settings()
logger.debug(
    "[CONFIG] environment=%s commission_rate=%s notifications_enabled=%s",
    settings.environment,
    settings.platform_commission_rate,
    settings.notifications_enabled,
)
