"""Staff-facing conversation operations: inspection, handoff and manual replies."""

from __future__ import annotations

import logging
from uuid import UUID

from ..channels.delivery import ReplyDelivery
from . import schemas
from .repository import ConversationStore
from .schemas import Channel, ConversationStatus, MessageRole

logger = logging.getLogger(__name__)


class ConversationNotFoundError(RuntimeError):
    pass


class DealershipNotFoundError(RuntimeError):
    pass


class ConversationService:
    """Coordinates what dealership staff can do with a conversation."""

    def __init__(self, store: ConversationStore, delivery: ReplyDelivery) -> None:
        self._store = store
        self._delivery = delivery

    def _require(self, conversation_id: UUID) -> schemas.Conversation:
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    # ------------------------------------------------------------------
    # Read

    def get_conversation_detail(
        self, conversation_id: UUID, limit: int = 200
    ) -> schemas.ConversationDetail:
        conversation = self._require(conversation_id)
        return schemas.ConversationDetail(
            conversation=conversation,
            messages=self._store.list_messages(conversation_id, limit),
            context=self._store.list_context(conversation_id),
        )

    def resolve_dealership(self, recipient: str | None) -> schemas.Dealership:
        """Find the dealership a customer wrote to, falling back to the default one."""

        dealership = self._store.get_dealership_by_phone(recipient) if recipient else None
        if dealership is None:
            dealership = self._store.get_default_dealership()
        if dealership is None:
            raise DealershipNotFoundError("No dealership configured")
        return dealership

    # ------------------------------------------------------------------
    # Human handoff

    def start_handoff(self, conversation_id: UUID, user_id: UUID) -> schemas.Conversation:
        self._require(conversation_id)
        self._store.set_status(conversation_id, ConversationStatus.HUMAN_ACTIVE)
        self._store.assign_user(conversation_id, user_id)
        self._store.log_interaction(
            conversation_id, "human_handoff_start", True, {"user_id": str(user_id)}
        )
        logger.info("Human handoff started", extra={"conversation_id": str(conversation_id)})
        return self._require(conversation_id)

    def end_handoff(self, conversation_id: UUID) -> schemas.Conversation:
        self._require(conversation_id)
        self._store.set_status(conversation_id, ConversationStatus.ACTIVE)
        self._store.log_interaction(conversation_id, "human_handoff_end", True, {})
        logger.info("Human handoff ended", extra={"conversation_id": str(conversation_id)})
        return self._require(conversation_id)

    def send_human_reply(
        self, conversation_id: UUID, content: str, channel: Channel = Channel.SMS
    ) -> schemas.Message:
        conversation = self._require(conversation_id)
        message = self._store.append_message(
            conversation_id, MessageRole.HUMAN, content, {"channel": channel.value}
        )
        if channel != Channel.WEB:
            self._delivery.send(channel.value, conversation.customer_handle, content)
        return message
