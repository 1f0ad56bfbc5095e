"""Web chat channel. Replies travel back in the HTTP response."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from ..conversations.models import InboundMessage
from ..conversations.schemas import Channel
from .base import ChannelAdapter


class WebChatAdapter(ChannelAdapter):
    channel_name = Channel.WEB.value

    def parse_incoming(self, payload: Mapping[str, Any]) -> InboundMessage | None:
        handle = str(payload.get("customer_handle") or "").strip()
        text = str(payload.get("message") or "").strip()
        if not handle or not text:
            return None
        dealership_id = payload.get("dealership_id")
        return InboundMessage(
            customer_handle=handle,
            text=text,
            channel=Channel.WEB,
            dealership_id=UUID(str(dealership_id)) if dealership_id else None,
        )

    def send(self, destination: str, text: str, **options: Any) -> None:
        return None
