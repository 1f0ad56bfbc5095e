from uuid import uuid4

import pytest

from conftest import RecordingDispatcher

from dealerflow.jobs.queues import (
    BOOKING_QUEUE,
    CRM_SYNC_QUEUE,
    NOTIFICATIONS_QUEUE,
    BookingJob,
    CeleryJobDispatcher,
    DeferredJobDispatcher,
    JobOptions,
    NotificationJob,
    dispatch_best_effort,
)


class FakeCeleryApp:
    def __init__(self):
        self.sent = []

    def send_task(self, name, **kwargs):
        self.sent.append((name, kwargs))


def test_celery_dispatcher_routes_by_queue():
    app = FakeCeleryApp()

    CeleryJobDispatcher(app).enqueue(CRM_SYNC_QUEUE, {"conversation_id": "c1"})

    name, kwargs = app.sent[0]
    assert name == "dealerflow.crm_sync"
    assert kwargs["queue"] == CRM_SYNC_QUEUE
    assert kwargs["kwargs"] == {
        "payload": {"conversation_id": "c1"},
        "max_attempts": 3,
        "backoff_seconds": 2.0,
    }
    assert kwargs["task_id"] is None


def test_explicit_options_win():
    app = FakeCeleryApp()

    CeleryJobDispatcher(app).enqueue(
        NOTIFICATIONS_QUEUE, {}, JobOptions(attempts=5, backoff_seconds=0.5, job_id="n-1")
    )

    _, kwargs = app.sent[0]
    assert kwargs["kwargs"]["max_attempts"] == 5
    assert kwargs["kwargs"]["backoff_seconds"] == 0.5
    assert kwargs["task_id"] == "n-1"


def test_unknown_queue_is_rejected():
    with pytest.raises(ValueError):
        CeleryJobDispatcher(FakeCeleryApp()).enqueue("nope", {})


def test_best_effort_reports_failure():
    assert dispatch_best_effort(RecordingDispatcher(fail=True), BOOKING_QUEUE, {}) is False

    dispatcher = RecordingDispatcher()
    assert dispatch_best_effort(dispatcher, BOOKING_QUEUE, {"a": 1}) is True
    assert dispatcher.jobs == [(BOOKING_QUEUE, {"a": 1})]


def test_payloads_are_json_safe():
    conversation_id, dealership_id = uuid4(), uuid4()

    booking = BookingJob(
        conversation_id=conversation_id,
        dealership_id=dealership_id,
        customer_handle="+15551234567",
        preferred_date="today",
    ).as_payload()
    notification = NotificationJob(
        type="escalation",
        conversation_id=conversation_id,
        dealership_id=dealership_id,
        recipient="sales@example.com",
        metadata={"assigned_user_id": dealership_id},
    ).as_payload()

    assert booking["conversation_id"] == str(conversation_id)
    assert booking["channel"] == "sms"
    assert booking["vehicle_interest"] == {}
    assert notification["metadata"] == {"assigned_user_id": str(dealership_id)}


def test_deferred_dispatcher_holds_jobs_until_flushed():
    inner = RecordingDispatcher()
    jobs = DeferredJobDispatcher(inner)

    jobs.enqueue(CRM_SYNC_QUEUE, {"conversation_id": "c1"})
    jobs.enqueue(BOOKING_QUEUE, {"conversation_id": "c1"}, JobOptions(attempts=2))

    assert inner.jobs == []
    assert jobs.pending == [CRM_SYNC_QUEUE, BOOKING_QUEUE]
    assert jobs.flush() == [CRM_SYNC_QUEUE, BOOKING_QUEUE]
    assert inner.payloads(BOOKING_QUEUE) == [{"conversation_id": "c1"}]
    assert jobs.pending == []
    assert jobs.flush() == []


def test_deferred_dispatcher_discard_drops_jobs():
    inner = RecordingDispatcher()
    jobs = DeferredJobDispatcher(inner)
    jobs.enqueue(NOTIFICATIONS_QUEUE, {"type": "escalation"})

    jobs.discard()

    assert jobs.flush() == []
    assert inner.jobs == []


def test_deferred_dispatcher_flush_survives_broker_failure():
    jobs = DeferredJobDispatcher(RecordingDispatcher(fail=True))
    jobs.enqueue(CRM_SYNC_QUEUE, {})

    assert jobs.flush() == []


def test_deferred_dispatcher_rejects_unknown_queue():
    with pytest.raises(ValueError):
        DeferredJobDispatcher(RecordingDispatcher()).enqueue("nope", {})
