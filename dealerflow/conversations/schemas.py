"""Pydantic schemas for conversations, dealerships and the messaging APIs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    CLOSED = "closed"
    HUMAN_ACTIVE = "human_active"


OPEN_STATUSES = (
    ConversationStatus.ACTIVE,
    ConversationStatus.ESCALATED,
    ConversationStatus.HUMAN_ACTIVE,
)


class MessageRole(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    HUMAN = "human"


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    WEB = "web"


class HandleAction(str, Enum):
    RESPONDED = "responded"
    ESCALATED = "escalated"
    BOOKING_SCHEDULED = "booking_scheduled"
    HUMAN_ACTIVE = "human_active"


# Stored records ------------------------------------------------------------
class Dealership(BaseModel):
    id: UUID
    name: str
    phone: str | None = None
    email: str | None = None
    hours: str | None = None
    personality: str | None = None
    timezone: str = "America/New_York"
    notification_email: str | None = None
    notification_phone: str | None = None
    crm_type: str | None = None
    crm_config: dict[str, Any] = Field(default_factory=dict)
    business_hours: dict[str, Any] | None = None
    created_at: datetime | None = None


class DealershipUser(BaseModel):
    id: UUID
    dealership_id: UUID
    name: str
    email: str | None = None
    phone: str | None = None
    role: str = "sales"
    is_active: bool = True


class Conversation(BaseModel):
    id: UUID
    customer_handle: str
    dealership_id: UUID
    status: ConversationStatus = ConversationStatus.ACTIVE
    qualification_score: int | None = None
    assigned_user_id: UUID | None = None
    last_message_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class Message(BaseModel):
    id: UUID
    conversation_id: UUID
    role: MessageRole
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class CustomerContextRecord(BaseModel):
    conversation_id: UUID
    category: str
    value: dict[str, Any] = Field(default_factory=dict)
    confidence: float
    updated_at: datetime


class InteractionLog(BaseModel):
    id: UUID
    conversation_id: UUID
    type: str
    success: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    created_at: datetime


class Booking(BaseModel):
    id: UUID
    conversation_id: UUID
    dealership_id: UUID
    customer_handle: str
    scheduled_at: datetime
    vehicle_interest: dict[str, Any] = Field(default_factory=dict)
    status: str = "scheduled"
    crm_appointment_id: str | None = None
    created_at: datetime


# API payloads ---------------------------------------------------------------
class ChatMessageRequest(BaseModel):
    customer_handle: str = Field(min_length=1, max_length=255)
    dealership_id: UUID
    message: str = Field(min_length=1, max_length=5000)


class HandleMessageResponse(BaseModel):
    conversation_id: UUID
    reply: str
    action: HandleAction
    qualification_score: int | None = None


class ConversationDetail(BaseModel):
    conversation: Conversation
    messages: list[Message] = Field(default_factory=list)
    context: list[CustomerContextRecord] = Field(default_factory=list)


class HandoffRequest(BaseModel):
    user_id: UUID


class HumanReplyRequest(BaseModel):
    content: str = Field(min_length=1, max_length=5000)
    channel: Channel = Channel.SMS


# Dashboard ------------------------------------------------------------------
class InteractionCount(BaseModel):
    type: str
    count: int
    successful: int


class DashboardMetrics(BaseModel):
    dealership_id: UUID
    total_conversations: int = 0
    conversations_by_status: dict[str, int] = Field(default_factory=dict)
    active_conversations: int = 0
    avg_qualification_score: float = 0.0
    total_messages: int = 0
    bookings_scheduled: int = 0
    interactions: list[InteractionCount] = Field(default_factory=list)


# Agent operations -----------------------------------------------------------
class QualifyRequest(BaseModel):
    conversation_id: UUID


class QualifyResponse(BaseModel):
    conversation_id: UUID
    qualification_score: int
    factors: dict[str, int] | None = None


class BookTestDriveRequest(BaseModel):
    conversation_id: UUID
    preferred_date: str = Field(min_length=1, max_length=64)
    channel: Channel = Channel.SMS


class BookTestDriveResponse(BaseModel):
    conversation_id: UUID
    status: Literal["queued", "already_booked"]
    booking: Booking | None = None


class EscalateRequest(BaseModel):
    conversation_id: UUID
    reason: str | None = Field(default=None, max_length=500)


class EscalateResponse(BaseModel):
    conversation: Conversation
    assigned_user: DealershipUser | None = None
