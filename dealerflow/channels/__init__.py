"""Channel adapter registry for SMS, email and web chat."""

from __future__ import annotations

import requests

from ..config import Settings
from .base import ChannelAdapter, DeliveryError
from .email import EmailAdapter
from .sms import SmsAdapter
from .web import WebChatAdapter

_REGISTRY: dict[str, type[ChannelAdapter]] = {}


def register_adapter(adapter: type[ChannelAdapter]) -> None:
    """Register a channel adapter class in the global registry."""
    _REGISTRY[adapter.channel_name] = adapter


def get_adapter(name: str) -> type[ChannelAdapter]:
    """Retrieve an adapter class for ``name`` or raise ``KeyError``."""
    normalized = name.lower()
    if normalized not in _REGISTRY:
        raise KeyError(f"Channel '{name}' is not configured")
    return _REGISTRY[normalized]


def build_adapters(
    settings: Settings, session: requests.Session | None = None
) -> dict[str, ChannelAdapter]:
    """Instantiate every registered adapter with credentials from ``settings``."""

    session = session or requests.Session()
    timeout = settings.delivery_timeout_seconds
    return {
        SmsAdapter.channel_name: SmsAdapter(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_phone_number,
            session=session,
            timeout=timeout,
        ),
        EmailAdapter.channel_name: EmailAdapter(
            api_key=settings.sendgrid_api_key,
            from_email=settings.sendgrid_from_email,
            default_subject=settings.email_reply_subject,
            session=session,
            timeout=timeout,
        ),
        WebChatAdapter.channel_name: WebChatAdapter(session=session, timeout=timeout),
    }


# Pre-register built-in adapters
register_adapter(SmsAdapter)
register_adapter(EmailAdapter)
register_adapter(WebChatAdapter)

__all__ = [
    "ChannelAdapter",
    "DeliveryError",
    "build_adapters",
    "get_adapter",
    "register_adapter",
]
