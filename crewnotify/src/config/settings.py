"""
Application settings configuration for Crew Notify.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache
from typing import Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        VAPID_PUBLIC_KEY: Web Push VAPID public key (Base64url-encoded)
        VAPID_PRIVATE_KEY: Web Push VAPID private key (Base64url-encoded)
        VAPID_SUBJECT: VAPID subject identifier (default: "mailto:admin@example.com")
        EXPO_PUSH_URL: Mobile push gateway endpoint
        EXPO_ACCESS_TOKEN: Optional bearer token for the mobile push gateway
        PUSH_TIMEOUT_SECONDS: Outbound channel call timeout (default: 10)
        DISPATCH_BATCH_SIZE: Max records per scheduled sweep (default: 100)
        DISPATCH_INTERVAL_SECONDS: Scheduled sweep cadence (default: 60)
        RETRY_BASE_SECONDS: First retry delay after a failed attempt (default: 60)
        RETRY_MAX_SECONDS: Retry delay cap (default: 3600)
        MAX_DELIVERY_ATTEMPTS: Attempts before a record is abandoned (default: 12)
        LOW_STOCK_THRESHOLD: Quantity at or below which stock is "low" (default: 5)
        DEADLINE_CHECK_INTERVAL_SECONDS: Deadline sweeps cadence (default: 3600)
        TODO_CHECK_INTERVAL_SECONDS: Todo reminder sweep cadence (default: 900)
        SUMMARY_CHECK_INTERVAL_SECONDS: Daily summary sweep cadence (default: 60)
        EXCEEDED_CHECK_INTERVAL_SECONDS: Contract/inventory sweeps cadence (default: 43200)
        TIMER_ENABLED: Start the periodic sweeps with the application (default: True)
    """

    # VAPID settings for Web Push notifications
    vapid_public_key: str = Field(
        default="",
        validation_alias="VAPID_PUBLIC_KEY",
        description="Base64url-encoded VAPID public key for Web Push subscriptions"
    )

    vapid_private_key: str = Field(
        default="",
        validation_alias="VAPID_PRIVATE_KEY",
        description="Base64url-encoded VAPID private key for signing push messages"
    )

    vapid_subject: str = Field(
        default="mailto:admin@example.com",
        validation_alias="VAPID_SUBJECT",
        description="VAPID subject (mailto: or https: URL identifying the push sender)"
    )

    # Mobile push gateway
    expo_push_url: str = Field(
        default="https://exp.host/--/api/v2/push/send",
        validation_alias="EXPO_PUSH_URL",
    )

    expo_access_token: str = Field(
        default="",
        validation_alias="EXPO_ACCESS_TOKEN",
    )

    push_timeout_seconds: float = Field(
        default=10.0,
        validation_alias="PUSH_TIMEOUT_SECONDS",
        gt=0,
    )

    # Scheduled dispatcher
    dispatch_batch_size: int = Field(
        default=100,
        validation_alias="DISPATCH_BATCH_SIZE",
        ge=1,
        le=1000,
    )

    dispatch_interval_seconds: int = Field(
        default=60,
        validation_alias="DISPATCH_INTERVAL_SECONDS",
        ge=1,
    )

    # Retry policy for records that no channel acknowledged
    retry_base_seconds: int = Field(
        default=60,
        validation_alias="RETRY_BASE_SECONDS",
        ge=1,
    )

    retry_max_seconds: int = Field(
        default=3600,
        validation_alias="RETRY_MAX_SECONDS",
        ge=1,
    )

    max_delivery_attempts: int = Field(
        default=12,
        validation_alias="MAX_DELIVERY_ATTEMPTS",
        ge=1,
    )

    # Inventory triggers
    low_stock_threshold: int = Field(
        default=5,
        validation_alias="LOW_STOCK_THRESHOLD",
        ge=0,
    )

    # Trigger sweep cadences
    deadline_check_interval_seconds: int = Field(
        default=3600,
        validation_alias="DEADLINE_CHECK_INTERVAL_SECONDS",
        ge=1,
    )

    todo_check_interval_seconds: int = Field(
        default=900,
        validation_alias="TODO_CHECK_INTERVAL_SECONDS",
        ge=1,
    )

    summary_check_interval_seconds: int = Field(
        default=60,
        validation_alias="SUMMARY_CHECK_INTERVAL_SECONDS",
        ge=1,
    )

    exceeded_check_interval_seconds: int = Field(
        default=43200,
        validation_alias="EXCEEDED_CHECK_INTERVAL_SECONDS",
        ge=1,
    )

    timer_enabled: bool = Field(
        default=True,
        validation_alias="TIMER_ENABLED",
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("vapid_subject")
    @classmethod
    def validate_vapid_subject(cls, v: str) -> str:
        """VAPID subject must be a mailto: or https: URL."""
        if v and not (v.startswith("mailto:") or v.startswith("https://")):
            raise ValueError("VAPID_SUBJECT must start with 'mailto:' or 'https://'")
        return v

    @property
    def vapid_configured(self) -> bool:
        """Check if VAPID keys are properly configured for Web Push."""
        return bool(self.vapid_public_key and self.vapid_private_key and self.vapid_subject)

    @property
    def vapid_claims(self) -> Dict[str, str]:
        """VAPID claims dict passed to pywebpush."""
        return {"sub": self.vapid_subject} if self.vapid_subject else {}


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
