"""Pick a dealership staff member to take over an escalated conversation."""

from __future__ import annotations

import logging
from uuid import UUID

from . import schemas
from .repository import ConversationStore

logger = logging.getLogger(__name__)


class AgentRouter:
    """Assign the first active staff member of the dealership."""

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    def assign(
        self, dealership_id: UUID, conversation_id: UUID
    ) -> schemas.DealershipUser | None:
        users = self._store.list_dealership_users(dealership_id, active_only=True)
        if not users:
            logger.info("No active staff to assign for dealership %s", dealership_id)
            return None
        user = users[0]
        self._store.assign_user(conversation_id, user.id)
        self._store.log_interaction(
            conversation_id, "agent_assigned", True, {"user_id": str(user.id)}
        )
        return user


def staff_recipient(user: schemas.DealershipUser | None) -> str | None:
    if user is None:
        return None
    return user.email or user.phone


def dealership_recipient(dealership: schemas.Dealership | None) -> str | None:
    if dealership is None:
        return None
    return dealership.notification_email or dealership.notification_phone or dealership.email
