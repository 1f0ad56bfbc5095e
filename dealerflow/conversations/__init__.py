"""Conversation persistence, orchestration and staff services."""

from . import schemas
from .models import HandleMessageResult, InboundMessage

__all__ = ["HandleMessageResult", "InboundMessage", "schemas"]
