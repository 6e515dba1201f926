"""
Channel sync configuration models.
"""

import json
import os
from typing import Optional, List

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()


DEFAULT_REDACT_KEYS = ["token", "authorization", "email", "phone", "secret"]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_redact_keys(raw: Optional[str]) -> List[str]:
    """LOG_REDACT_KEYS is a JSON list; fall back to defaults on bad input."""
    if not raw:
        return list(DEFAULT_REDACT_KEYS)
    try:
        keys = json.loads(raw)
    except json.JSONDecodeError:
        return list(DEFAULT_REDACT_KEYS)
    if not isinstance(keys, list):
        return list(DEFAULT_REDACT_KEYS)
    return [str(k).lower() for k in keys]


class ChannelConfig(BaseModel):
    """
    Runtime configuration for the channel sync engine.

    Built from environment variables by from_env(); tests construct it directly.
    """

    # Provider
    provider: str = Field(default="beds24", description="Provider key used in mappings/audit")
    base_url: str = Field(default="https://api.beds24.com/v2", description="Provider API base URL")
    http_timeout: float = Field(default=30.0, description="Provider HTTP timeout in seconds")

    # Tokens
    token_key: Optional[str] = Field(default=None, description="Fernet key for tokens at rest")
    refresh_secret_ref: str = Field(
        default="BEDS24_REFRESH_TOKEN", description="Env var holding the refresh token when no connection is bound"
    )
    refresh_buffer_seconds: int = Field(
        default=300, description="Tokens this close to expiry are treated as expired"
    )

    # Bootstrap
    calendar_days: int = Field(default=90, description="Calendar window imported by bootstrap")

    # Pull
    pull_lookback_days: int = Field(default=30, description="Default pull window start (days back)")
    pull_allow_overbooking: bool = Field(
        default=True, description="Import provider bookings even when local capacity is exhausted"
    )
    room_type_fallback: bool = Field(
        default=True, description="Use the hotel's first room type when a room is unmapped"
    )

    # Push
    push_batch_size: int = Field(default=50, description="Calendar lines per provider request")
    push_batch_delay: float = Field(default=0.5, description="Pause between push batches (seconds)")

    # API
    automation_secret: Optional[str] = Field(
        default=None, description="Shared secret accepted by recurring sync endpoints"
    )

    # Audit
    redact_keys: List[str] = Field(default_factory=lambda: list(DEFAULT_REDACT_KEYS))

    @field_validator("base_url")
    @classmethod
    def base_url_must_be_https(cls, v):
        if not v.startswith("https://") and not v.startswith("http://localhost"):
            raise ValueError("base_url must be a valid HTTPS URL")
        return v.rstrip("/")

    @field_validator("push_batch_size", "calendar_days")
    @classmethod
    def must_be_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @classmethod
    def from_env(cls) -> "ChannelConfig":
        """Load configuration from environment (.env is loaded on import)."""
        return cls(
            provider=os.getenv("CHANNEL_PROVIDER", "beds24"),
            base_url=os.getenv("BEDS24_BASE_URL", "https://api.beds24.com/v2"),
            http_timeout=float(os.getenv("BEDS24_TIMEOUT", "30")),
            token_key=os.getenv("CHANNEL_TOKEN_KEY") or None,
            refresh_secret_ref=os.getenv("CHANNEL_REFRESH_SECRET_REF", "BEDS24_REFRESH_TOKEN"),
            refresh_buffer_seconds=int(os.getenv("CHANNEL_REFRESH_BUFFER_SECONDS", "300")),
            calendar_days=int(os.getenv("CHANNEL_CALENDAR_DAYS", "90")),
            pull_lookback_days=int(os.getenv("CHANNEL_PULL_LOOKBACK_DAYS", "30")),
            pull_allow_overbooking=_env_bool("CHANNEL_PULL_ALLOW_OVERBOOKING", True),
            room_type_fallback=_env_bool("CHANNEL_ROOM_TYPE_FALLBACK", True),
            push_batch_size=int(os.getenv("CHANNEL_PUSH_BATCH_SIZE", "50")),
            push_batch_delay=float(os.getenv("CHANNEL_PUSH_BATCH_DELAY", "0.5")),
            automation_secret=os.getenv("CHANNEL_AUTOMATION_SECRET") or None,
            redact_keys=_parse_redact_keys(os.getenv("LOG_REDACT_KEYS")),
        )
