"""Per-message orchestration of the lead qualification pipeline.

For every inbound customer message the orchestrator:

1. resolves (or opens) the conversation and stops early when a human has
   taken it over;
2. stores the message and checks whether it must be escalated, in which case
   no model call is made;
3. short-circuits explicit test-drive requests that name a date and time;
4. otherwise extracts context, composes the system prompt, generates and
   delivers a reply, rescores the lead and enqueues follow-up jobs.

Collaborators are injected; :func:`create_orchestrator` wires the defaults.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from ..agents.prompts import DealershipProfile, PromptComposer, PromptContext
from ..agents.providers import CompletionProvider
from ..agents.replies import ReplyGenerator
from ..channels.delivery import ReplyDelivery
from ..config import Settings, get_settings
from ..jobs.queues import (
    BOOKING_QUEUE,
    CRM_SYNC_QUEUE,
    NOTIFICATIONS_QUEUE,
    BookingJob,
    CRMSyncJob,
    JobDispatcher,
    NotificationJob,
    default_dispatcher,
    dispatch_best_effort,
)
from ..jobs.scheduling import format_slot
from ..leads.booking import BookingIntent, BookingIntentDetector
from ..leads.context import ContextExtractor, ExtractedContext, Urgency
from ..leads.escalation import EscalationEvaluator, EscalationResult
from ..leads.scoring import QualificationScorer
from . import schemas
from .models import HandleMessageResult, InboundMessage
from .repository import ConversationStore
from .routing import AgentRouter, dealership_recipient, staff_recipient
from .schemas import Channel, ConversationStatus, HandleAction, MessageRole

logger = logging.getLogger(__name__)

ESCALATION_REPLY = (
    "I understand your concern. Let me connect you with one of our team members "
    "who can help you directly. Someone will reach out to you shortly!"
)

_BOOKING_URGENCY = {
    Urgency.IMMEDIATE: "today",
    Urgency.THIS_WEEK: "this_week",
}

# Statuses where staff own the next reply.
_AWAITING_STAFF = {
    ConversationStatus.HUMAN_ACTIVE: HandleAction.HUMAN_ACTIVE,
    ConversationStatus.ESCALATED: HandleAction.ESCALATED,
}


def booking_acknowledgement(intent: BookingIntent) -> str:
    return (
        f"Great! I've noted your test drive request for {format_slot(intent.requested_at)}. "
        "Our team will confirm your appointment shortly."
    )


def dealership_profile(dealership: schemas.Dealership | None) -> DealershipProfile | None:
    if dealership is None:
        return None
    return DealershipProfile(
        name=dealership.name,
        hours=dealership.hours,
        personality=dealership.personality,
        phone=dealership.phone,
    )


class MessageOrchestrator:
    """Run one inbound message through escalation, booking, reply and scoring."""

    def __init__(
        self,
        store: ConversationStore,
        delivery: ReplyDelivery,
        dispatcher: JobDispatcher,
        reply_generator: ReplyGenerator,
        *,
        settings: Settings | None = None,
        composer: PromptComposer | None = None,
        extractor: ContextExtractor | None = None,
        evaluator: EscalationEvaluator | None = None,
        detector: BookingIntentDetector | None = None,
        scorer: QualificationScorer | None = None,
        router: AgentRouter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._delivery = delivery
        self._dispatcher = dispatcher
        self._replies = reply_generator
        self._settings = settings or get_settings()
        self._composer = composer or PromptComposer(
            custom_prefix=self._settings.system_prompt,
            hot_lead_score=self._settings.hot_lead_threshold,
        )
        self._extractor = extractor or ContextExtractor()
        self._evaluator = evaluator or EscalationEvaluator()
        self._detector = detector or BookingIntentDetector(self._settings.default_timezone)
        self._scorer = scorer or QualificationScorer()
        self._router = router or AgentRouter(store)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def delivery(self) -> ReplyDelivery:
        return self._delivery

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def handle_inbound(self, inbound: InboundMessage) -> HandleMessageResult:
        if inbound.dealership_id is None:
            raise ValueError("Inbound message has no dealership")
        return self.handle_message(
            inbound.customer_handle, inbound.dealership_id, inbound.text, inbound.channel
        )

    def handle_message(
        self,
        customer_handle: str,
        dealership_id: UUID,
        text: str,
        channel: Channel | str,
    ) -> HandleMessageResult:
        channel = Channel(channel)
        conversation, is_new = self._store.resolve_conversation(customer_handle, dealership_id)
        inbound_meta = {"channel": channel.value}

        if conversation.status in _AWAITING_STAFF:
            self._store.append_message(conversation.id, MessageRole.CUSTOMER, text, inbound_meta)
            logger.info(
                "Conversation %s is %s, skipping automation",
                conversation.id,
                conversation.status.value,
            )
            return HandleMessageResult(
                conversation_id=conversation.id,
                reply_text="",
                action=_AWAITING_STAFF[conversation.status],
                qualification_score=conversation.qualification_score,
            )

        self._store.append_message(conversation.id, MessageRole.CUSTOMER, text, inbound_meta)
        messages = self._store.list_messages(conversation.id, self._settings.history_limit)
        dealership = self._store.get_dealership(dealership_id)

        escalation = self._evaluator.evaluate(messages)
        if escalation.should_escalate:
            return self._escalate(conversation, dealership, channel, escalation)

        intent = self._detector.detect(text, now=self._local_now(dealership))
        if intent is not None:
            return self._acknowledge_booking(conversation, dealership_id, channel, intent)

        context = self._extractor.extract(messages)
        for category, data in context.categories():
            self._store.upsert_context(conversation.id, category, data.as_dict(), data.confidence)

        prompt = self._composer.compose(
            dealership_profile(dealership),
            PromptContext(qualification_score=conversation.qualification_score, extracted=context),
        )
        reply = self._replies.generate(messages, prompt)
        agent_message = self._send_reply(conversation, channel, reply.content, reply.as_metadata())

        score = self._scorer.score([*messages, agent_message])
        self._store.set_qualification_score(conversation.id, score)

        enqueued = self._dispatch_follow_ups(
            conversation, dealership, channel, is_new, score, context
        )
        self._store.log_interaction(
            conversation.id,
            "message_sent",
            True,
            {"channel": channel.value, "score": score, "fallback": reply.used_fallback},
        )
        logger.info(
            "Message handled",
            extra={
                "conversation_id": str(conversation.id),
                "action": HandleAction.RESPONDED.value,
                "score": score,
            },
        )
        return HandleMessageResult(
            conversation_id=conversation.id,
            reply_text=reply.content,
            action=HandleAction.RESPONDED,
            qualification_score=score,
            enqueued_jobs=enqueued,
        )

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------
    def _escalate(
        self,
        conversation: schemas.Conversation,
        dealership: schemas.Dealership | None,
        channel: Channel,
        escalation: EscalationResult,
    ) -> HandleMessageResult:
        self._store.set_status(conversation.id, ConversationStatus.ESCALATED)
        self._store.log_interaction(
            conversation.id,
            "escalation",
            True,
            {"reason": escalation.reason, "confidence": escalation.confidence},
        )
        assignee = self._router.assign(conversation.dealership_id, conversation.id)
        self._send_reply(conversation, channel, ESCALATION_REPLY, {"escalation": True})

        enqueued: list[str] = []
        recipient = staff_recipient(assignee) or dealership_recipient(dealership)
        if recipient:
            job = NotificationJob(
                type="escalation",
                conversation_id=conversation.id,
                dealership_id=conversation.dealership_id,
                recipient=recipient,
                metadata={
                    "customer_handle": conversation.customer_handle,
                    "reason": escalation.reason,
                    "confidence": escalation.confidence,
                    "assigned_user_id": str(assignee.id) if assignee else None,
                },
            )
            if dispatch_best_effort(self._dispatcher, NOTIFICATIONS_QUEUE, job.as_payload()):
                enqueued.append(NOTIFICATIONS_QUEUE)
        else:
            logger.warning("No recipient for escalation notice on %s", conversation.id)

        logger.info(
            "Conversation escalated",
            extra={"conversation_id": str(conversation.id), "reason": escalation.reason},
        )
        return HandleMessageResult(
            conversation_id=conversation.id,
            reply_text=ESCALATION_REPLY,
            action=HandleAction.ESCALATED,
            qualification_score=conversation.qualification_score,
            enqueued_jobs=enqueued,
        )

    def _acknowledge_booking(
        self,
        conversation: schemas.Conversation,
        dealership_id: UUID,
        channel: Channel,
        intent: BookingIntent,
    ) -> HandleMessageResult:
        vehicle = next(
            (r.value for r in self._store.list_context(conversation.id) if r.category == "vehicle_interest"),
            {},
        )
        job = BookingJob(
            conversation_id=conversation.id,
            dealership_id=dealership_id,
            customer_handle=conversation.customer_handle,
            preferred_date=intent.requested_at.isoformat(),
            channel=channel.value,
            vehicle_interest=dict(vehicle),
        )
        enqueued: list[str] = []
        if dispatch_best_effort(self._dispatcher, BOOKING_QUEUE, job.as_payload()):
            enqueued.append(BOOKING_QUEUE)

        reply = booking_acknowledgement(intent)
        self._send_reply(conversation, channel, reply, {"booking_intent": intent.as_payload()})
        self._store.log_interaction(
            conversation.id, "booking_intent_detected", True, intent.as_payload()
        )
        return HandleMessageResult(
            conversation_id=conversation.id,
            reply_text=reply,
            action=HandleAction.BOOKING_SCHEDULED,
            qualification_score=conversation.qualification_score,
            enqueued_jobs=enqueued,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _send_reply(
        self,
        conversation: schemas.Conversation,
        channel: Channel,
        text: str,
        metadata: dict[str, Any],
    ) -> schemas.Message:
        message = self._store.append_message(
            conversation.id,
            MessageRole.AGENT,
            text,
            {"channel": channel.value, **metadata},
        )
        if channel != Channel.WEB:
            self._delivery.deliver(channel.value, conversation.customer_handle, text)
        return message

    def _dispatch_follow_ups(
        self,
        conversation: schemas.Conversation,
        dealership: schemas.Dealership | None,
        channel: Channel,
        is_new: bool,
        score: int,
        context: ExtractedContext,
    ) -> list[str]:
        enqueued: list[str] = []
        context_payload = context.as_dict()
        vehicle = context_payload.get("vehicle_interest", {})

        if score >= self._settings.hot_lead_threshold:
            job = CRMSyncJob(
                conversation_id=conversation.id,
                dealership_id=conversation.dealership_id,
                customer_handle=conversation.customer_handle,
                action="create" if is_new else "update",
                qualification_score=score,
                context=context_payload,
            )
            if dispatch_best_effort(self._dispatcher, CRM_SYNC_QUEUE, job.as_payload()):
                enqueued.append(CRM_SYNC_QUEUE)

        preferred = _BOOKING_URGENCY.get(context.urgency) if context.urgency else None
        if preferred:
            job = BookingJob(
                conversation_id=conversation.id,
                dealership_id=conversation.dealership_id,
                customer_handle=conversation.customer_handle,
                preferred_date=preferred,
                channel=channel.value,
                vehicle_interest=vehicle,
            )
            if dispatch_best_effort(self._dispatcher, BOOKING_QUEUE, job.as_payload()):
                enqueued.append(BOOKING_QUEUE)

        if score >= self._settings.high_score_threshold:
            recipient = dealership_recipient(dealership)
            if recipient:
                job = NotificationJob(
                    type="high_score_lead",
                    conversation_id=conversation.id,
                    dealership_id=conversation.dealership_id,
                    recipient=recipient,
                    metadata={
                        "customer_handle": conversation.customer_handle,
                        "qualification_score": score,
                        "vehicle_interest": vehicle,
                    },
                )
                if dispatch_best_effort(self._dispatcher, NOTIFICATIONS_QUEUE, job.as_payload()):
                    enqueued.append(NOTIFICATIONS_QUEUE)
            else:
                logger.warning("No recipient for high score notice on %s", conversation.id)
        return enqueued

    def _local_now(self, dealership: schemas.Dealership | None) -> datetime:
        tz_name = dealership.timezone if dealership and dealership.timezone else self._settings.default_timezone
        return self._clock().astimezone(ZoneInfo(tz_name))


def create_orchestrator(
    store: ConversationStore,
    settings: Settings | None = None,
    *,
    delivery: ReplyDelivery | None = None,
    dispatcher: JobDispatcher | None = None,
    provider: CompletionProvider | None = None,
    reply_generator: ReplyGenerator | None = None,
) -> MessageOrchestrator:
    """Build an orchestrator with production collaborators for anything not given."""

    settings = settings or get_settings()
    if delivery is None:
        from ..channels import build_adapters
        from ..channels.delivery import ChannelReplyDelivery

        delivery = ChannelReplyDelivery(build_adapters(settings))
    if dispatcher is None:
        dispatcher = default_dispatcher()
    if reply_generator is None:
        reply_generator = ReplyGenerator(
            provider or _default_provider(settings),
            window=settings.reply_window,
            max_attempts=settings.reply_max_attempts,
        )
    return MessageOrchestrator(
        store, delivery, dispatcher, reply_generator, settings=settings
    )


def _default_provider(settings: Settings):
    from ..agents.providers import OpenAICompletionProvider, ProviderRegistry

    credentials = ProviderRegistry(
        {"openai": {"api_key": settings.openai_api_key}} if settings.openai_api_key else None
    ).get_credentials("openai")
    if not credentials.api_key:
        logger.warning("OPENAI_API_KEY not set; replies will use the fallback responses")
        return None
    return OpenAICompletionProvider(
        model=settings.openai_model,
        api_key=credentials.api_key,
        timeout=settings.openai_timeout_seconds,
    )


__all__ = [
    "ESCALATION_REPLY",
    "MessageOrchestrator",
    "create_orchestrator",
]
