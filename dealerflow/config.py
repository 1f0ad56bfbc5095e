"""Runtime settings loaded from the environment."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


@dataclasses.dataclass(frozen=True)
class Settings:
    """Service configuration. Secrets default to ``None`` so local runs work."""

    database_url: str | None = None
    redis_url: str = "redis://localhost:6379/0"

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 20.0
    system_prompt: str | None = None

    history_limit: int = 200
    reply_window: int = 10
    reply_max_attempts: int = 3
    hot_lead_threshold: int = 60
    high_score_threshold: int = 80
    default_timezone: str = "America/New_York"
    stale_conversation_days: int = 90

    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_phone_number: str | None = None
    sendgrid_api_key: str | None = None
    sendgrid_from_email: str | None = None
    email_reply_subject: str = "Re: Your vehicle inquiry"
    delivery_timeout_seconds: float = 10.0

    ghl_api_key: str | None = None
    ghl_location_id: str | None = None
    ghl_calendar_id: str | None = None

    chat_rate_limit: str = "30/minute"
    chat_max_message_length: int = 5000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment with development defaults."""

    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_timeout_seconds=_env_float("OPENAI_TIMEOUT_SECONDS", 20.0),
        system_prompt=os.getenv("SYSTEM_PROMPT") or None,
        history_limit=_env_int("HISTORY_LIMIT", 200),
        reply_window=_env_int("REPLY_WINDOW", 10),
        reply_max_attempts=_env_int("REPLY_MAX_ATTEMPTS", 3),
        hot_lead_threshold=_env_int("HOT_LEAD_THRESHOLD", 60),
        high_score_threshold=_env_int("HIGH_SCORE_THRESHOLD", 80),
        default_timezone=os.getenv("DEFAULT_TIMEZONE", "America/New_York"),
        stale_conversation_days=_env_int("STALE_CONVERSATION_DAYS", 90),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
        twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
        twilio_phone_number=os.getenv("TWILIO_PHONE_NUMBER"),
        sendgrid_api_key=os.getenv("SENDGRID_API_KEY"),
        sendgrid_from_email=os.getenv("SENDGRID_FROM_EMAIL"),
        email_reply_subject=os.getenv("EMAIL_REPLY_SUBJECT", "Re: Your vehicle inquiry"),
        delivery_timeout_seconds=_env_float("DELIVERY_TIMEOUT_SECONDS", 10.0),
        ghl_api_key=os.getenv("GHL_API_KEY"),
        ghl_location_id=os.getenv("GHL_LOCATION_ID"),
        ghl_calendar_id=os.getenv("GHL_CALENDAR_ID"),
        chat_rate_limit=os.getenv("CHAT_RATE_LIMIT", "30/minute"),
        chat_max_message_length=_env_int("CHAT_MAX_MESSAGE_LENGTH", 5000),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()
