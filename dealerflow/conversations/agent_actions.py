"""Operations an integrating system can trigger on a conversation directly.

These mirror what the message pipeline does on its own (scoring, booking,
escalation) for callers that drive the agent from outside a customer turn,
plus lookup of a customer's latest conversation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from uuid import UUID
from zoneinfo import ZoneInfo

from ..config import Settings, get_settings
from ..jobs.queues import (
    BOOKING_QUEUE,
    NOTIFICATIONS_QUEUE,
    BookingJob,
    JobDispatcher,
    NotificationJob,
    dispatch_best_effort,
)
from ..leads.dates import parse_datetime
from ..leads.scoring import QualificationScorer
from . import schemas
from .repository import ConversationStore
from .routing import AgentRouter, dealership_recipient, staff_recipient
from .schemas import ConversationStatus
from .service import ConversationNotFoundError

logger = logging.getLogger(__name__)

_NAMED_SLOTS = {"today", "this_week"}


class InvalidPreferredDateError(ValueError):
    pass


class AgentActions:
    def __init__(
        self,
        store: ConversationStore,
        dispatcher: JobDispatcher,
        *,
        settings: Settings | None = None,
        scorer: QualificationScorer | None = None,
        router: AgentRouter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._settings = settings or get_settings()
        self._scorer = scorer or QualificationScorer()
        self._router = router or AgentRouter(store)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _require(self, conversation_id: UUID) -> schemas.Conversation:
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    # ------------------------------------------------------------------
    # Lookup

    def find_customer_conversation(
        self, customer_handle: str, dealership_id: UUID, limit: int = 200
    ) -> schemas.ConversationDetail:
        conversation = self._store.find_latest_conversation(customer_handle, dealership_id)
        if conversation is None:
            raise ConversationNotFoundError(f"No conversation for {customer_handle}")
        return schemas.ConversationDetail(
            conversation=conversation,
            messages=self._store.list_messages(conversation.id, limit),
            context=self._store.list_context(conversation.id),
        )

    # ------------------------------------------------------------------
    # Qualification

    def qualify(self, conversation_id: UUID) -> schemas.QualifyResponse:
        """Rescore the whole history and store the result."""

        self._require(conversation_id)
        messages = self._store.list_messages(conversation_id)
        factors = self._scorer.factors(messages)
        score = factors.total if factors else 0
        self._store.set_qualification_score(conversation_id, score)
        self._store.log_interaction(
            conversation_id, "qualification_scored", True, {"score": score, "source": "api"}
        )
        return schemas.QualifyResponse(
            conversation_id=conversation_id,
            qualification_score=score,
            factors=factors.as_dict() if factors else None,
        )

    # ------------------------------------------------------------------
    # Test drives

    def request_test_drive(
        self, request: schemas.BookTestDriveRequest
    ) -> schemas.BookTestDriveResponse:
        conversation = self._require(request.conversation_id)
        existing = self._store.find_open_booking(conversation.id)
        if existing is not None:
            return schemas.BookTestDriveResponse(
                conversation_id=conversation.id, status="already_booked", booking=existing
            )

        preferred = self._normalise_preferred(request.preferred_date, conversation.dealership_id)
        vehicle = next(
            (
                r.value
                for r in self._store.list_context(conversation.id)
                if r.category == "vehicle_interest"
            ),
            {},
        )
        job = BookingJob(
            conversation_id=conversation.id,
            dealership_id=conversation.dealership_id,
            customer_handle=conversation.customer_handle,
            preferred_date=preferred,
            channel=request.channel.value,
            vehicle_interest=dict(vehicle),
        )
        self._dispatcher.enqueue(BOOKING_QUEUE, job.as_payload())
        self._store.log_interaction(
            conversation.id, "booking_requested", True, {"preferred_date": preferred}
        )
        return schemas.BookTestDriveResponse(conversation_id=conversation.id, status="queued")

    def _normalise_preferred(self, preferred: str, dealership_id: UUID) -> str:
        value = preferred.strip()
        if value.lower() in _NAMED_SLOTS:
            return value.lower()
        try:
            return datetime.fromisoformat(value).isoformat()
        except ValueError:
            pass
        dealership = self._store.get_dealership(dealership_id)
        tz = ZoneInfo(
            (dealership.timezone if dealership else None) or self._settings.default_timezone
        )
        parsed = parse_datetime(value, self._clock().astimezone(tz))
        if parsed is None:
            raise InvalidPreferredDateError(f"Could not read a date from '{preferred}'")
        return parsed.value.isoformat()

    # ------------------------------------------------------------------
    # Escalation

    def escalate(
        self, conversation_id: UUID, reason: str | None = None
    ) -> schemas.EscalateResponse:
        """Hand the conversation to staff; an assigned user takes it over at once."""

        conversation = self._require(conversation_id)
        reason = reason or "manual"
        self._store.set_status(conversation_id, ConversationStatus.ESCALATED)
        self._store.log_interaction(
            conversation_id, "escalation", True, {"reason": reason, "source": "api"}
        )
        assignee = self._router.assign(conversation.dealership_id, conversation_id)
        if assignee is not None:
            self._store.set_status(conversation_id, ConversationStatus.HUMAN_ACTIVE)
            self._store.log_interaction(
                conversation_id, "human_handoff_start", True, {"user_id": str(assignee.id)}
            )

        dealership = self._store.get_dealership(conversation.dealership_id)
        recipient = staff_recipient(assignee) or dealership_recipient(dealership)
        if recipient:
            job = NotificationJob(
                type="escalation",
                conversation_id=conversation_id,
                dealership_id=conversation.dealership_id,
                recipient=recipient,
                metadata={
                    "customer_handle": conversation.customer_handle,
                    "reason": reason,
                    "assigned_user_id": str(assignee.id) if assignee else None,
                },
            )
            dispatch_best_effort(self._dispatcher, NOTIFICATIONS_QUEUE, job.as_payload())
        else:
            logger.warning("No recipient for escalation notice on %s", conversation_id)

        logger.info(
            "Conversation escalated by request",
            extra={"conversation_id": str(conversation_id), "reason": reason},
        )
        return schemas.EscalateResponse(
            conversation=self._require(conversation_id), assigned_user=assignee
        )
