"""Domain models used by the message orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from .schemas import Channel, HandleAction


@dataclass
class InboundMessage:
    """Uniform representation of a customer message from any channel."""

    customer_handle: str
    text: str
    channel: Channel
    dealership_id: UUID | None = None
    # Number or address the customer wrote to; used to pick the dealership.
    recipient: str | None = None
    sender_name: str | None = None
    subject: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class HandleMessageResult:
    conversation_id: UUID
    reply_text: str
    action: HandleAction
    qualification_score: int | None = None
    enqueued_jobs: list[str] = field(default_factory=list)
