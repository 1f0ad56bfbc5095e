import json

import pytest
import requests

from dealerflow.crm.base import AppointmentData, ContactData, CRMError, CRMNote, create_crm_adapter
from dealerflow.crm.ghl import GoHighLevelAdapter

CONFIG = {"api_key": "ghl-key", "location_id": "loc-1", "calendar_id": "cal-1"}


class FakeResponse:
    def __init__(self, data=None, status_code=200):
        self._data = data
        self.status_code = status_code
        self.content = json.dumps(data).encode() if data is not None else b""

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._data


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        return self.responses.pop(0)


def _adapter(*responses, config=CONFIG):
    session = FakeSession(*responses)
    return GoHighLevelAdapter(config, session=session), session


def test_factory_selects_gohighlevel():
    assert isinstance(create_crm_adapter("GHL", CONFIG, session=FakeSession()), GoHighLevelAdapter)
    with pytest.raises(ValueError):
        create_crm_adapter("salesforce", CONFIG)


def test_credentials_are_required():
    with pytest.raises(CRMError):
        GoHighLevelAdapter({"api_key": "k"})


def test_camel_case_config_keys():
    adapter = GoHighLevelAdapter({"apiKey": "k", "locationId": "l"}, session=FakeSession())

    assert adapter.api_key == "k"
    assert adapter.location_id == "l"


def test_find_contact():
    adapter, session = _adapter(FakeResponse({"contact": {"id": "c-1"}}))

    assert adapter.find_contact("+15551234567") == "c-1"

    method, url, kwargs = session.requests[0]
    assert method == "GET"
    assert url == "https://services.leadconnectorhq.com/contacts/search/duplicate"
    assert kwargs["params"] == {"locationId": "loc-1", "number": "+15551234567"}
    assert kwargs["headers"]["Authorization"] == "Bearer ghl-key"
    assert kwargs["headers"]["Version"] == "2021-07-28"


def test_find_contact_missing():
    adapter, _ = _adapter(FakeResponse({"contact": None}))

    assert adapter.find_contact("+15551234567") is None


def test_create_contact():
    adapter, session = _adapter(FakeResponse({"contact": {"id": "c-2"}}))

    contact_id = adapter.create_contact(
        ContactData(phone="+15551234567", first_name="Jane", metadata={"source": "DealerFlow"})
    )

    assert contact_id == "c-2"
    assert session.requests[0][2]["json"] == {
        "locationId": "loc-1",
        "phone": "+15551234567",
        "firstName": "Jane",
        "source": "DealerFlow",
    }


def test_create_contact_without_id_fails():
    adapter, _ = _adapter(FakeResponse({}))

    with pytest.raises(CRMError):
        adapter.create_contact(ContactData(phone="+1"))


def test_log_interaction_posts_note():
    adapter, session = _adapter(FakeResponse())

    adapter.log_interaction("c-1", CRMNote(type="crm_sync", content="Hot lead", timestamp="t"))

    method, url, kwargs = session.requests[0]
    assert (method, url) == ("POST", "https://services.leadconnectorhq.com/contacts/c-1/notes")
    assert kwargs["json"] == {"body": "[crm_sync] Hot lead"}


def test_book_appointment():
    adapter, session = _adapter(FakeResponse({"id": "appt-9"}))
    appointment = AppointmentData(
        customer_name="Customer",
        phone="+1",
        vehicle="Toyota Camry",
        start="2025-03-14T14:00:00-04:00",
        end="2025-03-14T14:30:00-04:00",
        timezone="America/New_York",
    )

    assert adapter.book_appointment("c-1", appointment) == "appt-9"
    body = session.requests[0][2]["json"]
    assert body["calendarId"] == "cal-1"
    assert body["contactId"] == "c-1"
    assert body["title"] == "Test drive: Toyota Camry"


def test_book_appointment_needs_calendar():
    adapter, _ = _adapter(config={"api_key": "k", "location_id": "l"})

    with pytest.raises(CRMError):
        adapter.book_appointment(
            "c-1", AppointmentData("C", "+1", "Car", "s", "e", "America/New_York")
        )


def test_http_errors_raise_crm_error():
    adapter, _ = _adapter(FakeResponse({"message": "nope"}, status_code=401))

    with pytest.raises(CRMError):
        adapter.update_contact("c-1", {"tags": ["lead"]})
