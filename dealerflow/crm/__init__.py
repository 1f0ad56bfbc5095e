"""CRM integrations used by background jobs."""

from .base import AppointmentData, ContactData, CRMAdapter, CRMError, CRMNote, create_crm_adapter

__all__ = [
    "AppointmentData",
    "CRMAdapter",
    "CRMError",
    "CRMNote",
    "ContactData",
    "create_crm_adapter",
]
