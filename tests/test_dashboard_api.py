from datetime import datetime, timezone
from uuid import uuid4

from dealerflow.conversations.schemas import ConversationStatus, MessageRole


def test_dashboard_totals(api_client, store, dealership):
    first = store.create_conversation("+15551110000", dealership.id)
    second = store.create_conversation("+15552220000", dealership.id)
    store.set_status(second.id, ConversationStatus.ESCALATED)
    store.set_qualification_score(first.id, 80)
    store.set_qualification_score(second.id, 45)
    for text in ("hi", "camry?", "thanks"):
        store.append_message(first.id, MessageRole.CUSTOMER, text, {"channel": "sms"})
    store.log_interaction(first.id, "message_sent", True, {})
    store.log_interaction(first.id, "message_sent", True, {})
    store.log_interaction(second.id, "crm_contact_synced", False, {}, "CRM down")
    store.create_booking(first.id, dealership.id, "+15551110000", datetime(2025, 3, 14, 19, tzinfo=timezone.utc))

    other = store.add_dealership("Elsewhere Cars")
    store.create_conversation("+15553330000", other.id)

    resp = api_client.get(f"/api/dealerships/{dealership.id}/dashboard")

    assert resp.status_code == 200
    data = resp.json()
    assert data["total_conversations"] == 2
    assert data["active_conversations"] == 1
    assert data["conversations_by_status"] == {"active": 1, "escalated": 1}
    assert data["avg_qualification_score"] == 62.5
    assert data["total_messages"] == 3
    assert data["bookings_scheduled"] == 1
    assert data["interactions"] == [
        {"type": "crm_contact_synced", "count": 1, "successful": 0},
        {"type": "message_sent", "count": 2, "successful": 2},
    ]
    assert api_client.conn.events == ["close"]


def test_dashboard_for_empty_dealership(api_client, dealership):
    data = api_client.get(f"/api/dealerships/{dealership.id}/dashboard").json()

    assert data["total_conversations"] == 0
    assert data["avg_qualification_score"] == 0.0
    assert data["interactions"] == []


def test_dashboard_unknown_dealership(api_client, dealership):
    resp = api_client.get(f"/api/dealerships/{uuid4()}/dashboard")

    assert resp.status_code == 404
