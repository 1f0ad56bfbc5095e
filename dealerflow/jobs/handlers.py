"""Background job handlers.

Handlers are plain functions taking a :class:`JobContext`, so they can run in
a Celery worker (see :mod:`dealerflow.jobs.tasks`) or directly in tests.
Errors propagate so the job system can retry; only side effects that must
not block a booking (CRM appointment, customer confirmation) are soft.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from ..channels.delivery import ReplyDelivery
from ..config import Settings
from ..conversations.repository import ConversationStore
from ..conversations.schemas import Dealership, MessageRole
from ..crm.base import (
    AppointmentData,
    ContactData,
    CRMAdapter,
    CRMError,
    CRMNote,
    create_crm_adapter,
)
from .queues import NOTIFICATIONS_QUEUE, JobDispatcher, NotificationJob, dispatch_best_effort
from .scheduling import APPOINTMENT_MINUTES, BusinessHours, format_slot, resolve_preferred_slot

logger = logging.getLogger(__name__)

CRMFactory = Callable[[str, Mapping[str, Any]], CRMAdapter]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobContext:
    store: ConversationStore
    delivery: ReplyDelivery
    dispatcher: JobDispatcher
    settings: Settings
    crm_factory: CRMFactory = create_crm_adapter
    clock: Callable[[], datetime] = field(default=_utcnow)

    def crm_for(self, dealership: Dealership) -> CRMAdapter | None:
        if not dealership.crm_type:
            return None
        config = {
            "api_key": self.settings.ghl_api_key,
            "location_id": self.settings.ghl_location_id,
            "calendar_id": self.settings.ghl_calendar_id,
        }
        config.update({k: v for k, v in (dealership.crm_config or {}).items() if v})
        return self.crm_factory(dealership.crm_type, config)

    def require_crm(self, dealership: Dealership) -> CRMAdapter:
        crm = self.crm_for(dealership)
        if crm is None:
            raise CRMError(f"No CRM adapter for dealership {dealership.id}")
        return crm


def notification_recipient(dealership: Dealership) -> str | None:
    return dealership.notification_email or dealership.notification_phone


def _require_dealership(ctx: JobContext, dealership_id: Any) -> Dealership | None:
    dealership = ctx.store.get_dealership(UUID(str(dealership_id)))
    if dealership is None:
        logger.warning("Dealership %s not found, skipping job", dealership_id)
    return dealership


# ---------------------------------------------------------------------------
# CRM sync
# ---------------------------------------------------------------------------
def handle_crm_sync(ctx: JobContext, payload: Mapping[str, Any]) -> dict[str, Any]:
    conversation_id = UUID(str(payload["conversation_id"]))
    dealership = _require_dealership(ctx, payload["dealership_id"])
    if dealership is None or not dealership.crm_type:
        logger.info("CRM sync skipped: no CRM configured", extra={"dealership_id": str(payload["dealership_id"])})
        return {"skipped": True}

    handle = payload["customer_handle"]
    score = payload.get("qualification_score")
    context = payload.get("context") or {}
    try:
        crm = ctx.require_crm(dealership)
        contact_id = crm.find_contact(handle)
        if contact_id is None:
            contact_id = crm.create_contact(
                ContactData(
                    phone=handle,
                    metadata={"source": "DealerFlow", "conversation_id": str(conversation_id)},
                )
            )
        else:
            crm.update_contact(contact_id, {"tags": ["dealerflow-lead"]})
        crm.log_interaction(
            contact_id,
            CRMNote(
                type="crm_sync",
                content=_crm_summary(score, context),
                timestamp=ctx.clock().isoformat(),
                metadata={"action": payload.get("action")},
            ),
        )
    except Exception as exc:
        ctx.store.log_interaction(
            conversation_id,
            "crm_contact_synced",
            False,
            {"crm_type": dealership.crm_type},
            str(exc),
        )
        logger.error("CRM sync failed for %s: %s", conversation_id, exc)
        raise

    ctx.store.log_interaction(
        conversation_id,
        "crm_contact_synced",
        True,
        {"crm_type": dealership.crm_type, "crm_contact_id": contact_id, "action": payload.get("action")},
    )
    logger.info("CRM sync completed", extra={"conversation_id": str(conversation_id)})
    return {"crm_contact_id": contact_id}


def _crm_summary(score: Any, context: Mapping[str, Any]) -> str:
    lines = [f"Lead qualified by AI assistant. Score: {score}/100."]
    vehicle = context.get("vehicle_interest") or {}
    described = " ".join(str(vehicle[k]) for k in ("year", "make", "model", "type") if vehicle.get(k))
    if described:
        lines.append(f"Vehicle interest: {described}.")
    budget = context.get("budget") or {}
    if budget.get("total"):
        lines.append(f"Budget: ${budget['total']:,}.")
    timeline = context.get("timeline") or {}
    if timeline.get("urgency"):
        lines.append(f"Timeline: {timeline['urgency']}.")
    if context.get("trade_in"):
        lines.append("Has a trade-in.")
    return " ".join(lines)


# ---------------------------------------------------------------------------
# Test-drive booking
# ---------------------------------------------------------------------------
def handle_booking(ctx: JobContext, payload: Mapping[str, Any]) -> dict[str, Any]:
    conversation_id = UUID(str(payload["conversation_id"]))
    dealership = _require_dealership(ctx, payload["dealership_id"])
    if dealership is None:
        return {"skipped": True}

    existing = ctx.store.find_open_booking(conversation_id)
    if existing is not None:
        logger.info(
            "Test drive already booked for %s, skipping",
            conversation_id,
            extra={"booking_id": str(existing.id)},
        )
        return {
            "booking_id": str(existing.id),
            "scheduled_at": existing.scheduled_at.isoformat(),
            "skipped": True,
        }

    tz = ZoneInfo(dealership.timezone or ctx.settings.default_timezone)
    now = ctx.clock().astimezone(tz)
    hours = BusinessHours.from_config(dealership.business_hours)
    slot = resolve_preferred_slot(str(payload["preferred_date"]), now, hours)
    handle = payload["customer_handle"]
    vehicle = dict(payload.get("vehicle_interest") or {})

    booking = ctx.store.create_booking(conversation_id, dealership.id, handle, slot, vehicle)
    ctx.store.log_interaction(
        conversation_id,
        "test_drive_booked",
        True,
        {"booking_id": str(booking.id), "scheduled_at": slot.isoformat()},
    )

    crm_appointment_id = _book_in_crm(ctx, dealership, handle, vehicle, slot, tz)
    if crm_appointment_id:
        ctx.store.set_booking_crm_id(booking.id, crm_appointment_id)

    channel = payload.get("channel") or "sms"
    confirmation = (
        f"You're all set for a test drive at {dealership.name} on "
        f"{format_slot(slot)}. Reply here if you need to change it."
    )
    ctx.store.append_message(
        conversation_id,
        MessageRole.AGENT,
        confirmation,
        {"channel": channel, "booking_id": str(booking.id)},
    )
    ctx.delivery.deliver(channel, handle, confirmation)

    recipient = notification_recipient(dealership)
    if recipient:
        dispatch_best_effort(
            ctx.dispatcher,
            NOTIFICATIONS_QUEUE,
            NotificationJob(
                type="booking_confirmed",
                conversation_id=conversation_id,
                dealership_id=dealership.id,
                recipient=recipient,
                metadata={
                    "customer_handle": handle,
                    "scheduled_at": slot.isoformat(),
                    "vehicle_interest": vehicle,
                },
            ).as_payload(),
        )
    logger.info("Test drive booked", extra={"booking_id": str(booking.id)})
    return {"booking_id": str(booking.id), "scheduled_at": slot.isoformat(), "crm_appointment_id": crm_appointment_id}


def _book_in_crm(
    ctx: JobContext,
    dealership: Dealership,
    handle: str,
    vehicle: Mapping[str, Any],
    slot: datetime,
    tz: ZoneInfo,
) -> str | None:
    if not dealership.crm_type:
        return None
    try:
        crm = ctx.require_crm(dealership)
        contact_id = crm.find_contact(handle) or crm.create_contact(ContactData(phone=handle))
        described = " ".join(str(vehicle[k]) for k in ("make", "model") if vehicle.get(k))
        return crm.book_appointment(
            contact_id,
            AppointmentData(
                customer_name="Customer",
                phone=handle,
                vehicle=described or "TBD",
                start=slot.isoformat(),
                end=(slot + timedelta(minutes=APPOINTMENT_MINUTES)).isoformat(),
                timezone=str(tz),
            ),
        )
    except Exception as exc:
        logger.warning("CRM booking failed, local booking still created: %s", exc)
        return None


# ---------------------------------------------------------------------------
# Staff notifications
# ---------------------------------------------------------------------------
NOTIFICATION_SUBJECTS = {
    "escalation": "Customer needs a human",
    "booking_confirmed": "Test drive booked",
    "high_score_lead": "Hot lead",
}


def render_notification(kind: str, payload: Mapping[str, Any]) -> str:
    meta = payload.get("metadata") or {}
    handle = meta.get("customer_handle", "unknown customer")
    if kind == "escalation":
        return (
            f"Conversation with {handle} needs a human. "
            f"Reason: {meta.get('reason') or 'not given'}."
        )
    if kind == "booking_confirmed":
        return f"Test drive booked for {handle} at {meta.get('scheduled_at')}."
    if kind == "high_score_lead":
        vehicle = meta.get("vehicle_interest") or {}
        described = " ".join(str(vehicle[k]) for k in ("make", "model") if vehicle.get(k))
        text = f"Hot lead ({meta.get('qualification_score')}/100): {handle}."
        if described:
            text += f" Interested in {described}."
        return text
    raise ValueError(f"Unknown notification type '{kind}'")


def handle_notification(ctx: JobContext, payload: Mapping[str, Any]) -> dict[str, Any]:
    kind = payload["type"]
    recipient = payload["recipient"]
    conversation_id = UUID(str(payload["conversation_id"]))
    text = render_notification(kind, payload)
    channel = "email" if "@" in recipient else "sms"
    ctx.delivery.send(channel, recipient, text, subject=NOTIFICATION_SUBJECTS.get(kind))
    ctx.store.log_interaction(
        conversation_id, f"notification_{kind}", True, {"to": recipient, "channel": channel}
    )
    logger.info("Notification sent", extra={"type": kind, "channel": channel})
    return {"channel": channel}


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
def close_stale_conversations(ctx: JobContext, max_age_days: int | None = None) -> int:
    days = max_age_days if max_age_days is not None else ctx.settings.stale_conversation_days
    closed = ctx.store.close_stale_conversations(ctx.clock() - timedelta(days=days))
    logger.info("Closed %s stale conversations", closed)
    return closed
