"""GoHighLevel (LeadConnector) CRM adapter."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import requests

from .base import AppointmentData, ContactData, CRMError, CRMNote

logger = logging.getLogger(__name__)

GHL_API_BASE = "https://services.leadconnectorhq.com"
GHL_API_VERSION = "2021-07-28"


class GoHighLevelAdapter:
    """Thin REST client for the handful of GHL endpoints the jobs need.

    ``config`` carries ``api_key``, ``location_id`` and ``calendar_id``.
    """

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
        base_url: str = GHL_API_BASE,
    ) -> None:
        self.api_key = config.get("api_key") or config.get("apiKey")
        self.location_id = config.get("location_id") or config.get("locationId")
        self.calendar_id = config.get("calendar_id") or config.get("calendarId")
        if not self.api_key or not self.location_id:
            raise CRMError("GoHighLevel requires api_key and location_id")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")

    # ------------------------------------------------------------------
    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Version": GHL_API_VERSION,
            "Accept": "application/json",
        }
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise CRMError(f"GoHighLevel {method} {path} failed: {exc}") from exc
        if not response.content:
            return {}
        return response.json()

    # ------------------------------------------------------------------
    def find_contact(self, phone: str) -> str | None:
        data = self._request(
            "GET",
            "/contacts/search/duplicate",
            params={"locationId": self.location_id, "number": phone},
        )
        contact = data.get("contact") or {}
        return contact.get("id")

    def create_contact(self, contact: ContactData) -> str:
        payload: dict[str, Any] = {"locationId": self.location_id, "phone": contact.phone}
        if contact.first_name:
            payload["firstName"] = contact.first_name
        if contact.last_name:
            payload["lastName"] = contact.last_name
        if contact.email:
            payload["email"] = contact.email
        source = contact.metadata.get("source")
        if source:
            payload["source"] = source
        data = self._request("POST", "/contacts/", json=payload)
        contact_id = (data.get("contact") or {}).get("id")
        if not contact_id:
            raise CRMError("GoHighLevel did not return a contact id")
        logger.info("GoHighLevel contact created", extra={"crm_contact_id": contact_id})
        return contact_id

    def update_contact(self, contact_id: str, updates: Mapping[str, Any]) -> None:
        self._request("PUT", f"/contacts/{contact_id}", json=dict(updates))

    def log_interaction(self, contact_id: str, note: CRMNote) -> None:
        body = f"[{note.type}] {note.content}"
        self._request("POST", f"/contacts/{contact_id}/notes", json={"body": body})

    def book_appointment(self, contact_id: str, appointment: AppointmentData) -> str:
        if not self.calendar_id:
            raise CRMError("GoHighLevel calendar_id is not configured")
        data = self._request(
            "POST",
            "/calendars/events/appointments",
            json={
                "calendarId": self.calendar_id,
                "locationId": self.location_id,
                "contactId": contact_id,
                "startTime": appointment.start,
                "endTime": appointment.end,
                "title": f"Test drive: {appointment.vehicle}",
                "appointmentStatus": "confirmed",
            },
        )
        appointment_id = data.get("id") or (data.get("appointment") or {}).get("id")
        if not appointment_id:
            raise CRMError("GoHighLevel did not return an appointment id")
        return appointment_id
