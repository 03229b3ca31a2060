# backend/tutorspool/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")
    log_level: str = Field(default="INFO", description="Root log level for the API process")

    # Database
    database_url: str = Field(
        default="sqlite:///./tutorspool.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = False

    # Stripe
    stripe_secret_key: Optional[SecretStr] = Field(
        default=None, description="Stripe secret API key"
    )
    stripe_webhook_secret: Optional[SecretStr] = Field(
        default=None, description="Signing secret for the Stripe webhook endpoint"
    )
    default_currency: str = Field(default="USD", description="Currency used when none is given")

    # Meeting provider (online sessions)
    meeting_provider_enabled: bool = Field(
        default=False,
        description="Use the real meeting provider API; otherwise an in-memory fake is used",
    )
    meeting_provider_base_url: str = Field(default="https://api.meetings.example.com/v1")
    meeting_provider_access_key: str = Field(default="")
    meeting_provider_app_secret: SecretStr = Field(default=SecretStr(""))
    meeting_provider_timeout_seconds: float = Field(default=10.0, gt=0)
    meeting_provisioning_mode: Literal["inline", "queued"] = Field(
        default="inline",
        description=(
            "inline: provision the meeting inside the webhook request; "
            "queued: hand off to a Celery task that retries independently"
        ),
    )
    meeting_provisioning_max_retries: int = Field(default=5, ge=0)

    # Booking rules
    booking_conflict_scope: Literal["pair", "tutor"] = Field(
        default="pair",
        description=(
            "pair: only bookings between the same student and tutor conflict; "
            "tutor: any CONFIRMED booking of the tutor conflicts"
        ),
    )
    availability_enforce_block_end: bool = Field(
        default=False,
        description="Also require the session end to fall inside the matching availability block",
    )

    # Background work
    redis_url: str = Field(default="redis://localhost:6379/0")

    is_testing: bool = False

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        cleaned = (value or "").strip().upper()
        if len(cleaned) != 3:
            raise ValueError("default_currency must be a 3-letter ISO code")
        return cleaned

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key and self.stripe_secret_key.get_secret_value())


settings = Settings()
