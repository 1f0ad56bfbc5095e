from datetime import datetime
from uuid import uuid4

import pytest

from dealerflow.conversations.schemas import ConversationStatus, MessageRole
from dealerflow.jobs.queues import BOOKING_QUEUE, NOTIFICATIONS_QUEUE

HOT_MESSAGE = "I want a Toyota Camry, budget around $30k, need it this week"


@pytest.fixture
def conversation(store, dealership):
    conversation = store.create_conversation("+15557654321", dealership.id)
    store.append_message(conversation.id, MessageRole.CUSTOMER, HOT_MESSAGE, {"channel": "sms"})
    store.upsert_context(conversation.id, "vehicle_interest", {"make": "Toyota", "model": "Camry"}, 0.7)
    return conversation


def test_qualify_rescores_and_stores(api_client, store, conversation):
    resp = api_client.post("/api/agent/qualify", json={"conversation_id": str(conversation.id)})

    assert resp.status_code == 200
    data = resp.json()
    assert data["qualification_score"] == sum(data["factors"].values())
    assert data["factors"]["engagement"] == 2
    assert store.get_conversation(conversation.id).qualification_score == data["qualification_score"]
    assert store.interaction_types(conversation.id) == ["qualification_scored"]
    assert api_client.conn.events == ["commit", "close"]


def test_qualify_unknown_conversation(api_client, dealership):
    resp = api_client.post("/api/agent/qualify", json={"conversation_id": str(uuid4())})

    assert resp.status_code == 404
    assert api_client.conn.events == ["rollback", "close"]


def test_book_test_drive_queues_job(api_client, store, conversation, dispatcher):
    resp = api_client.post(
        "/api/agent/book-test-drive",
        json={"conversation_id": str(conversation.id), "preferred_date": "Today"},
    )

    assert resp.status_code == 202
    assert resp.json()["status"] == "queued"
    [payload] = dispatcher.payloads(BOOKING_QUEUE)
    assert payload["preferred_date"] == "today"
    assert payload["vehicle_interest"] == {"make": "Toyota", "model": "Camry"}
    assert payload["customer_handle"] == "+15557654321"
    assert store.interaction_types(conversation.id) == ["booking_requested"]


def test_book_test_drive_reads_natural_dates(api_client, conversation, dispatcher):
    resp = api_client.post(
        "/api/agent/book-test-drive",
        json={"conversation_id": str(conversation.id), "preferred_date": "friday at 3pm"},
    )

    assert resp.status_code == 202
    [payload] = dispatcher.payloads(BOOKING_QUEUE)
    requested = datetime.fromisoformat(payload["preferred_date"])
    assert requested.strftime("%A %H:%M") == "Friday 15:00"


def test_book_test_drive_rejects_unreadable_date(api_client, conversation, dispatcher):
    resp = api_client.post(
        "/api/agent/book-test-drive",
        json={"conversation_id": str(conversation.id), "preferred_date": "whenever works"},
    )

    assert resp.status_code == 400
    assert dispatcher.jobs == []
    assert api_client.conn.events == ["rollback", "close"]


def test_book_test_drive_returns_existing_booking(api_client, store, conversation, dealership, dispatcher):
    booking = store.create_booking(
        conversation.id, dealership.id, conversation.customer_handle, datetime.fromisoformat("2025-03-14T15:00:00-04:00")
    )

    resp = api_client.post(
        "/api/agent/book-test-drive",
        json={"conversation_id": str(conversation.id), "preferred_date": "today"},
    )

    assert resp.status_code == 202
    assert resp.json()["status"] == "already_booked"
    assert resp.json()["booking"]["id"] == str(booking.id)
    assert dispatcher.jobs == []


def test_escalate_assigns_staff_and_hands_off(api_client, store, conversation, dealership, dispatcher):
    staff = store.add_dealership_user(dealership.id, "Dana", email="dana@sunrise.example")

    resp = api_client.post(
        "/api/agent/escalate",
        json={"conversation_id": str(conversation.id), "reason": "asked for the manager"},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["conversation"]["status"] == "human_active"
    assert data["assigned_user"]["id"] == str(staff.id)
    [notice] = dispatcher.payloads(NOTIFICATIONS_QUEUE)
    assert notice["recipient"] == "dana@sunrise.example"
    assert notice["metadata"]["reason"] == "asked for the manager"
    assert store.interaction_types(conversation.id) == ["escalation", "agent_assigned", "human_handoff_start"]


def test_escalate_without_staff_notifies_dealership(api_client, store, conversation, dispatcher):
    resp = api_client.post("/api/agent/escalate", json={"conversation_id": str(conversation.id)})

    assert resp.status_code == 200
    assert resp.json()["assigned_user"] is None
    assert store.get_conversation(conversation.id).status == ConversationStatus.ESCALATED
    [notice] = dispatcher.payloads(NOTIFICATIONS_QUEUE)
    assert notice["recipient"] == "sales@sunrise.example"
    assert notice["metadata"]["reason"] == "manual"


def test_lookup_by_customer_returns_latest_conversation(api_client, store, conversation, dealership):
    store.set_status(conversation.id, ConversationStatus.CLOSED)
    newer = store.create_conversation("+15557654321", dealership.id)
    store.append_message(newer.id, MessageRole.CUSTOMER, "back again", {"channel": "sms"})

    resp = api_client.get(
        "/api/agent/conversations",
        params={"customer_handle": "+15557654321", "dealership_id": str(dealership.id)},
    )

    assert resp.status_code == 200
    assert resp.json()["conversation"]["id"] == str(newer.id)
    assert [m["content"] for m in resp.json()["messages"]] == ["back again"]


def test_lookup_by_customer_not_found(api_client, dealership):
    resp = api_client.get(
        "/api/agent/conversations",
        params={"customer_handle": "+15550000000", "dealership_id": str(dealership.id)},
    )

    assert resp.status_code == 404


def test_lookup_requires_dealership(api_client):
    resp = api_client.get("/api/agent/conversations", params={"customer_handle": "+15557654321"})

    assert resp.status_code == 422
