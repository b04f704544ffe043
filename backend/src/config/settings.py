"""
Application settings configuration for the Am Lich notification backend.

Centralized settings loaded from environment variables.
"""

import re
from functools import lru_cache
from typing import Dict, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


DEFAULT_VAPID_SUBJECT = "mailto:admin@am-lich.app"

_MATCH_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        VAPID_PUBLIC_KEY: Web Push VAPID public key (Base64url-encoded)
        VAPID_PRIVATE_KEY: Web Push VAPID private key (Base64url-encoded)
        VAPID_SUBJECT: VAPID subject identifier (mailto: or https: URL)
        CRON_SECRET: Bearer token the external scheduler presents to the cron endpoint
        CRON_MATCH_TIME: Pin the matched "HH:MM" for cron triggers (default: "" = wall clock)
            Useful when the scheduler only guarantees hourly precision and may
            fire anywhere inside the hour.
        DISPATCH_MAX_WORKERS: Parallel per-user workers in one run (default: 8)
        DISPATCH_DEADLINE_SECONDS: Wall-clock budget for one run (default: 270)
        PUSH_TIMEOUT_SECONDS: Timeout for a single push service request (default: 10)
        PUSH_TTL_SECONDS: How long the push service may hold an undelivered message (default: 86400)
        EVENT_LOOKAHEAD_DAYS: Days after today still considered upcoming (default: 0 = today only)
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
        default=DEFAULT_VAPID_SUBJECT,
        validation_alias="VAPID_SUBJECT",
        description="VAPID subject (mailto: or https: URL identifying the push sender)"
    )

    # Cron trigger
    cron_secret: str = Field(
        default="",
        validation_alias="CRON_SECRET",
        description="Shared secret expected as 'Authorization: Bearer <secret>' on cron endpoints"
    )

    cron_match_time: str = Field(
        default="",
        validation_alias="CRON_MATCH_TIME",
        description="Fixed HH:MM used as the match time for cron triggers. Empty = use current time."
    )

    # Dispatch run limits
    dispatch_max_workers: int = Field(
        default=8,
        validation_alias="DISPATCH_MAX_WORKERS",
        ge=1,
        le=32,
    )

    dispatch_deadline_seconds: float = Field(
        default=270.0,
        validation_alias="DISPATCH_DEADLINE_SECONDS",
        gt=0,
        description="Stop starting new per-user work after this many seconds"
    )

    push_timeout_seconds: float = Field(
        default=10.0,
        validation_alias="PUSH_TIMEOUT_SECONDS",
        gt=0,
    )

    push_ttl_seconds: int = Field(
        default=86400,
        validation_alias="PUSH_TTL_SECONDS",
        ge=0,
    )

    # Event selection
    event_lookahead_days: int = Field(
        default=0,
        validation_alias="EVENT_LOOKAHEAD_DAYS",
        ge=0,
        le=30,
        description="0 = only events occurring today"
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("vapid_subject")
    @classmethod
    def normalize_vapid_subject(cls, v: str) -> str:
        """Fall back to the default subject and add mailto: to bare email addresses."""
        v = (v or "").strip()
        if not v:
            return DEFAULT_VAPID_SUBJECT
        if "@" in v and not v.startswith("mailto:") and not v.startswith("http"):
            return f"mailto:{v}"
        return v

    @field_validator("cron_match_time")
    @classmethod
    def validate_cron_match_time(cls, v: str) -> str:
        """Validate that the pinned match time is HH:MM (24h)."""
        v = (v or "").strip()
        if v and not _MATCH_TIME_RE.match(v):
            raise ValueError("CRON_MATCH_TIME must use HH:MM (00:00-23:59)")
        return v

    @property
    def vapid_configured(self) -> bool:
        """Check if VAPID keys are properly configured for Web Push."""
        return bool(self.vapid_public_key and self.vapid_private_key and self.vapid_subject)

    @property
    def cron_configured(self) -> bool:
        """Check if the cron endpoint secret is set."""
        return bool(self.cron_secret)

    @property
    def vapid_claims(self) -> Dict[str, str]:
        """VAPID claims passed to pywebpush."""
        return {"sub": self.vapid_subject}

    @property
    def pinned_match_time(self) -> Optional[Tuple[int, int]]:
        """
        Get the pinned (hour, minute) for cron triggers.

        Returns:
            Tuple of (hour, minute), or None when the wall clock should be used
        """
        if not self.cron_match_time:
            return None
        hour, minute = self.cron_match_time.split(":")
        return int(hour), int(minute)


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
