"""SMS channel backed by the Twilio Messages REST API."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import requests

from ..conversations.models import InboundMessage
from ..conversations.schemas import Channel
from .base import ChannelAdapter, DeliveryError

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


class SmsAdapter(ChannelAdapter):
    channel_name = Channel.SMS.value

    def __init__(
        self,
        *,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    def parse_incoming(self, payload: Mapping[str, Any]) -> InboundMessage | None:
        sender = (payload.get("From") or "").strip()
        body = (payload.get("Body") or "").strip()
        if not sender or not body:
            return None
        return InboundMessage(
            customer_handle=sender,
            text=body,
            channel=Channel.SMS,
            recipient=(payload.get("To") or "").strip() or None,
            metadata={
                "message_sid": payload.get("MessageSid"),
                "num_media": payload.get("NumMedia"),
            },
        )

    def send(self, destination: str, text: str, **options: Any) -> None:
        if not (self.account_sid and self.auth_token and self.from_number):
            raise DeliveryError(self.channel_name, "Twilio credentials are not configured")
        self._post(
            f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json",
            auth=(self.account_sid, self.auth_token),
            data={
                "From": options.get("from_number") or self.from_number,
                "To": destination,
                "Body": text,
            },
        )
