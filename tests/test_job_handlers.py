from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from conftest import FIXED_NOW

from dealerflow.channels.base import DeliveryError
from dealerflow.conversations.schemas import ConversationStatus, MessageRole
from dealerflow.crm.base import CRMError
from dealerflow.jobs import handlers
from dealerflow.jobs.queues import NOTIFICATIONS_QUEUE, BookingJob, CRMSyncJob, NotificationJob

NY = ZoneInfo("America/New_York")


class FakeCRM:
    def __init__(self, existing=None, fail_on=None):
        self.existing = existing
        self.fail_on = fail_on
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name, args))
        if name == self.fail_on:
            raise CRMError(f"{name} failed")

    def find_contact(self, phone):
        self._record("find_contact", phone)
        return self.existing

    def create_contact(self, contact):
        self._record("create_contact", contact)
        return "contact-new"

    def update_contact(self, contact_id, updates):
        self._record("update_contact", contact_id, updates)

    def log_interaction(self, contact_id, note):
        self._record("log_interaction", contact_id, note)

    def book_appointment(self, contact_id, appointment):
        self._record("book_appointment", contact_id, appointment)
        return "appt-1"

    def names(self):
        return [name for name, _ in self.calls]


@pytest.fixture
def crm():
    return FakeCRM()


@pytest.fixture
def ctx(store, delivery, dispatcher, settings, crm):
    configs = []

    def factory(crm_type, config):
        configs.append((crm_type, dict(config)))
        return crm

    context = handlers.JobContext(
        store=store,
        delivery=delivery,
        dispatcher=dispatcher,
        settings=settings,
        crm_factory=factory,
        clock=lambda: FIXED_NOW,
    )
    context.crm_configs = configs
    return context


@pytest.fixture
def crm_dealership(store):
    return store.add_dealership(
        "Lakeside Auto",
        notification_email="leads@lakeside.example",
        crm_type="gohighlevel",
        crm_config={"location_id": "loc-9"},
    )


def _crm_job(conversation, action="create"):
    return CRMSyncJob(
        conversation_id=conversation.id,
        dealership_id=conversation.dealership_id,
        customer_handle=conversation.customer_handle,
        action=action,
        qualification_score=72,
        context={
            "vehicle_interest": {"make": "Toyota", "model": "Camry"},
            "budget": {"total": 30000},
            "timeline": {"urgency": "this_week", "keyword": "this week"},
        },
    ).as_payload()


def test_crm_sync_creates_contact_and_logs_note(ctx, store, crm, crm_dealership):
    conversation = store.create_conversation("+15551230000", crm_dealership.id)

    result = handlers.handle_crm_sync(ctx, _crm_job(conversation))

    assert result == {"crm_contact_id": "contact-new"}
    assert crm.names() == ["find_contact", "create_contact", "log_interaction"]
    note = crm.calls[-1][1][1]
    assert note.content == (
        "Lead qualified by AI assistant. Score: 72/100. Vehicle interest: Toyota Camry. "
        "Budget: $30,000. Timeline: this_week."
    )
    assert note.timestamp == FIXED_NOW.isoformat()
    assert store.interaction_types(conversation.id) == ["crm_contact_synced"]
    assert ctx.crm_configs[0] == (
        "gohighlevel",
        {"api_key": None, "location_id": "loc-9", "calendar_id": None},
    )


def test_crm_sync_updates_existing_contact(ctx, store, crm, crm_dealership):
    crm.existing = "contact-7"
    conversation = store.create_conversation("+15551230000", crm_dealership.id)

    result = handlers.handle_crm_sync(ctx, _crm_job(conversation, action="update"))

    assert result == {"crm_contact_id": "contact-7"}
    assert crm.names() == ["find_contact", "update_contact", "log_interaction"]


def test_crm_sync_skipped_without_crm(ctx, store, dealership, crm):
    conversation = store.create_conversation("+15551230000", dealership.id)

    assert handlers.handle_crm_sync(ctx, _crm_job(conversation)) == {"skipped": True}
    assert crm.calls == []


def test_crm_sync_failure_is_logged_and_raised(ctx, store, crm, crm_dealership):
    crm.fail_on = "create_contact"
    conversation = store.create_conversation("+15551230000", crm_dealership.id)

    with pytest.raises(CRMError):
        handlers.handle_crm_sync(ctx, _crm_job(conversation))

    log = store.interactions[-1]
    assert log.type == "crm_contact_synced"
    assert log.success is False
    assert "create_contact failed" in log.error


def _booking_job(conversation, preferred="this_week"):
    return BookingJob(
        conversation_id=conversation.id,
        dealership_id=conversation.dealership_id,
        customer_handle=conversation.customer_handle,
        preferred_date=preferred,
        vehicle_interest={"make": "Toyota", "model": "Camry"},
    ).as_payload()


def test_booking_creates_record_and_confirms(ctx, store, delivery, dispatcher, dealership):
    conversation = store.create_conversation("+15551230000", dealership.id)

    result = handlers.handle_booking(ctx, _booking_job(conversation))

    expected_slot = datetime(2025, 3, 13, 10, 0, tzinfo=NY)
    assert result["scheduled_at"] == expected_slot.isoformat()
    assert result["crm_appointment_id"] is None
    booking = next(iter(store.bookings.values()))
    assert booking.scheduled_at == expected_slot
    assert booking.vehicle_interest == {"make": "Toyota", "model": "Camry"}

    confirmation = (
        "You're all set for a test drive at Sunrise Motors on Thursday, March 13 at 10:00 AM. "
        "Reply here if you need to change it."
    )
    assert delivery.sent == [("sms", "+15551230000", confirmation, {})]
    last = store.list_messages(conversation.id)[-1]
    assert last.role == MessageRole.AGENT
    assert last.metadata["booking_id"] == str(booking.id)

    assert dispatcher.queues() == [NOTIFICATIONS_QUEUE]
    notification = dispatcher.payloads(NOTIFICATIONS_QUEUE)[0]
    assert notification["type"] == "booking_confirmed"
    assert notification["recipient"] == "sales@sunrise.example"
    assert store.interaction_types(conversation.id) == ["test_drive_booked"]


def test_booking_records_crm_appointment(ctx, store, crm, crm_dealership):
    conversation = store.create_conversation("+15551230000", crm_dealership.id)

    result = handlers.handle_booking(ctx, _booking_job(conversation, "2025-03-14T14:00:00-04:00"))

    assert result["crm_appointment_id"] == "appt-1"
    appointment = crm.calls[-1][1][1]
    assert appointment.vehicle == "Toyota Camry"
    assert appointment.start == "2025-03-14T14:00:00-04:00"
    assert appointment.end == "2025-03-14T14:30:00-04:00"
    assert appointment.timezone == "America/New_York"
    booking = next(iter(store.bookings.values()))
    assert booking.crm_appointment_id == "appt-1"


def test_booking_survives_crm_and_delivery_failures(ctx, store, crm, delivery, crm_dealership):
    crm.fail_on = "book_appointment"
    delivery.fail = True
    conversation = store.create_conversation("+15551230000", crm_dealership.id)

    result = handlers.handle_booking(ctx, _booking_job(conversation, "today"))

    assert result["crm_appointment_id"] is None
    assert result["scheduled_at"] == datetime(2025, 3, 12, 11, 0, tzinfo=NY).isoformat()
    assert len(store.bookings) == 1


def _notification(conversation, kind, recipient, **metadata):
    return NotificationJob(
        type=kind,
        conversation_id=conversation.id,
        dealership_id=conversation.dealership_id,
        recipient=recipient,
        metadata={"customer_handle": conversation.customer_handle, **metadata},
    ).as_payload()


def test_notification_by_email(ctx, store, delivery, dealership):
    conversation = store.create_conversation("+15551230000", dealership.id)
    payload = _notification(conversation, "escalation", "sales@sunrise.example", reason="wants a manager")

    assert handlers.handle_notification(ctx, payload) == {"channel": "email"}

    channel, destination, text, options = delivery.sent[0]
    assert (channel, destination) == ("email", "sales@sunrise.example")
    assert text == "Conversation with +15551230000 needs a human. Reason: wants a manager."
    assert options == {"subject": "Customer needs a human"}
    assert store.interaction_types(conversation.id) == ["notification_escalation"]


def test_notification_by_sms(ctx, store, delivery, dealership):
    conversation = store.create_conversation("+15551230000", dealership.id)
    payload = _notification(
        conversation,
        "high_score_lead",
        "+15559990000",
        qualification_score=85,
        vehicle_interest={"make": "Honda", "model": "Civic"},
    )

    handlers.handle_notification(ctx, payload)

    channel, _, text, _ = delivery.sent[0]
    assert channel == "sms"
    assert text == "Hot lead (85/100): +15551230000. Interested in Honda Civic."


def test_notification_delivery_failure_propagates(ctx, store, delivery, dealership):
    delivery.fail = True
    conversation = store.create_conversation("+15551230000", dealership.id)

    with pytest.raises(DeliveryError):
        handlers.handle_notification(ctx, _notification(conversation, "escalation", "a@b.example"))

    assert store.interaction_types(conversation.id) == []


def test_unknown_notification_type():
    with pytest.raises(ValueError):
        handlers.render_notification("birthday", {})


def test_close_stale_conversations(ctx, store, dealership):
    stale = store.create_conversation("+15551230000", dealership.id)
    already_closed = store.create_conversation("+15551230001", dealership.id)
    store.set_status(already_closed.id, ConversationStatus.CLOSED)
    ctx.clock = lambda: datetime.now(timezone.utc) + timedelta(days=91)

    assert handlers.close_stale_conversations(ctx) == 1
    assert store.get_conversation(stale.id).status == ConversationStatus.CLOSED
    assert handlers.close_stale_conversations(ctx, max_age_days=365) == 0


def test_booking_is_not_repeated_for_a_booked_conversation(ctx, store, delivery, dispatcher, dealership):
    conversation = store.create_conversation("+15551230000", dealership.id)
    payload = _booking_job(conversation)

    first = handlers.handle_booking(ctx, payload)
    second = handlers.handle_booking(ctx, payload)

    assert second == {
        "booking_id": first["booking_id"],
        "scheduled_at": first["scheduled_at"],
        "skipped": True,
    }
    assert len(store.bookings) == 1
    assert len(delivery.sent) == 1
    assert dispatcher.queues() == [NOTIFICATIONS_QUEUE]
    assert store.interaction_types(conversation.id) == ["test_drive_booked"]


def test_cancelled_booking_allows_a_new_one(ctx, store, dealership):
    conversation = store.create_conversation("+15551230000", dealership.id)
    first = handlers.handle_booking(ctx, _booking_job(conversation))
    booking = next(iter(store.bookings.values()))
    store.bookings[booking.id] = booking.model_copy(update={"status": "cancelled"})

    second = handlers.handle_booking(ctx, _booking_job(conversation, "today"))

    assert "skipped" not in second
    assert second["booking_id"] != first["booking_id"]
    assert len(store.bookings) == 2


def test_crm_sync_without_adapter_is_an_error(store, delivery, dispatcher, settings, crm_dealership):
    ctx = handlers.JobContext(
        store=store,
        delivery=delivery,
        dispatcher=dispatcher,
        settings=settings,
        crm_factory=lambda crm_type, config: None,
        clock=lambda: FIXED_NOW,
    )
    conversation = store.create_conversation("+15551230000", crm_dealership.id)

    with pytest.raises(CRMError):
        handlers.handle_crm_sync(ctx, _crm_job(conversation))

    assert store.interactions[-1].success is False
