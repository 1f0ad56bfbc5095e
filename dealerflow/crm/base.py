"""CRM adapter contract and factory."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests


class CRMError(RuntimeError):
    """A CRM call failed."""


@dataclass
class ContactData:
    phone: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CRMNote:
    type: str
    content: str
    timestamp: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AppointmentData:
    customer_name: str
    phone: str
    vehicle: str
    start: str
    end: str
    timezone: str
    customer_email: str | None = None


class CRMAdapter(Protocol):
    def find_contact(self, phone: str) -> str | None: ...

    def create_contact(self, contact: ContactData) -> str: ...

    def update_contact(self, contact_id: str, updates: Mapping[str, Any]) -> None: ...

    def log_interaction(self, contact_id: str, note: CRMNote) -> None: ...

    def book_appointment(self, contact_id: str, appointment: AppointmentData) -> str: ...


def create_crm_adapter(
    crm_type: str,
    config: Mapping[str, Any],
    *,
    session: requests.Session | None = None,
    timeout: float = 10.0,
) -> CRMAdapter:
    """Return the adapter for ``crm_type`` or raise ``ValueError``."""

    normalized = (crm_type or "").lower()
    if normalized in {"gohighlevel", "ghl"}:
        from .ghl import GoHighLevelAdapter

        return GoHighLevelAdapter(config, session=session, timeout=timeout)
    raise ValueError(f"Unsupported CRM type: {crm_type}")
