from dealerflow.channels.sms import EMPTY_TWIML
from dealerflow.jobs.queues import BOOKING_QUEUE, CRM_SYNC_QUEUE

HOT_MESSAGE = "I want a Toyota Camry, budget around $30k, need it this week"


def test_sms_webhook_replies_through_the_channel(api_client, store, dealership, delivery, dispatcher):
    resp = api_client.post(
        "/api/webhooks/sms",
        data={"From": "+15557654321", "To": "+15550001111", "Body": HOT_MESSAGE, "MessageSid": "SM1"},
    )

    assert resp.status_code == 200
    assert resp.text == EMPTY_TWIML
    assert resp.headers["content-type"].startswith("application/xml")
    assert delivery.sent == [("sms", "+15557654321", "Happy to help! Which model?", {})]
    assert dispatcher.queues() == [CRM_SYNC_QUEUE, BOOKING_QUEUE]

    conversation = next(iter(store.conversations.values()))
    assert conversation.dealership_id == dealership.id
    assert conversation.qualification_score == 70
    assert api_client.conn.events == ["commit", "close"]


def test_sms_webhook_ignores_empty_body(api_client, store, dealership, delivery):
    resp = api_client.post("/api/webhooks/sms", data={"From": "+15557654321", "Body": ""})

    assert resp.status_code == 200
    assert resp.text == EMPTY_TWIML
    assert store.conversations == {}
    assert delivery.sent == []


def test_sms_webhook_without_dealership_is_not_found(api_client, store):
    resp = api_client.post(
        "/api/webhooks/sms", data={"From": "+15557654321", "To": "+15550009999", "Body": "hi"}
    )

    assert resp.status_code == 404
    assert api_client.conn.events == ["rollback", "close"]


def test_email_webhook_uses_default_dealership(api_client, store, dealership, delivery):
    resp = api_client.post(
        "/api/webhooks/email",
        data={
            "from": "Jane Doe <jane@example.com>",
            "to": "inbox@parse.sunrise.example",
            "subject": "Camry",
            "text": "Is the Camry still available?",
        },
    )

    assert resp.status_code == 200
    conversation = next(iter(store.conversations.values()))
    assert conversation.customer_handle == "jane@example.com"
    assert conversation.dealership_id == dealership.id
    assert delivery.sent[0][:2] == ("email", "jane@example.com")


def test_email_webhook_without_text_is_accepted_and_ignored(api_client, store, dealership):
    resp = api_client.post("/api/webhooks/email", data={"from": "jane@example.com"})

    assert resp.status_code == 202
    assert store.conversations == {}


def test_jobs_are_published_after_commit(api_client, monkeypatch, store, dealership):
    from dealerflow.routers import webhooks

    published = []

    class SnapshotDispatcher:
        def enqueue(self, queue_name, payload, options=None):
            published.append((queue_name, list(api_client.conn.events)))

    monkeypatch.setattr(webhooks, "default_dispatcher", SnapshotDispatcher)

    resp = api_client.post(
        "/api/webhooks/sms",
        data={"From": "+15557654321", "To": "+15550001111", "Body": HOT_MESSAGE},
    )

    assert resp.status_code == 200
    assert published == [(CRM_SYNC_QUEUE, ["commit", "close"]), (BOOKING_QUEUE, ["commit", "close"])]


def test_rolled_back_message_publishes_no_jobs(api_client, monkeypatch, store, dealership, dispatcher):
    def broken_log(*args, **kwargs):
        raise RuntimeError("interaction log unavailable")

    monkeypatch.setattr(store, "log_interaction", broken_log)

    resp = api_client.post(
        "/api/webhooks/sms",
        data={"From": "+15557654321", "To": "+15550001111", "Body": HOT_MESSAGE},
    )

    assert resp.status_code == 500
    assert dispatcher.jobs == []
    assert api_client.conn.events == ["rollback", "close"]
