"""Email channel: SendGrid inbound parse in, SendGrid v3 mail API out."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import requests

from ..conversations.models import InboundMessage
from ..conversations.schemas import Channel
from .base import ChannelAdapter, DeliveryError

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
MAX_EMAIL_BODY = 5000

_ADDRESS = re.compile(r"^\s*(?:\"?([^\"<]*?)\"?\s*)?<([^>]+)>\s*$")


def parse_address(raw: str) -> tuple[str | None, str]:
    """Split ``Name <addr@example.com>`` into ``(name, address)``."""

    match = _ADDRESS.match(raw or "")
    if match:
        name = (match.group(1) or "").strip() or None
        return name, match.group(2).strip().lower()
    return None, (raw or "").strip().lower()


class EmailAdapter(ChannelAdapter):
    channel_name = Channel.EMAIL.value

    def __init__(
        self,
        *,
        api_key: str | None = None,
        from_email: str | None = None,
        default_subject: str = "Re: Your vehicle inquiry",
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.api_key = api_key
        self.from_email = from_email
        self.default_subject = default_subject

    def parse_incoming(self, payload: Mapping[str, Any]) -> InboundMessage | None:
        name, address = parse_address(payload.get("from") or "")
        text = (payload.get("text") or "").strip()
        if not address or not text:
            return None
        _, recipient = parse_address(payload.get("to") or "")
        return InboundMessage(
            customer_handle=address,
            text=text[:MAX_EMAIL_BODY],
            channel=Channel.EMAIL,
            recipient=recipient or None,
            sender_name=name,
            subject=payload.get("subject") or None,
        )

    def send(self, destination: str, text: str, **options: Any) -> None:
        if not (self.api_key and self.from_email):
            raise DeliveryError(self.channel_name, "SendGrid credentials are not configured")
        self._post(
            SENDGRID_SEND_URL,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "personalizations": [{"to": [{"email": destination}]}],
                "from": {"email": self.from_email},
                "subject": options.get("subject") or self.default_subject,
                "content": [{"type": "text/plain", "value": text}],
            },
        )
