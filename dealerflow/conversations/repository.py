"""Persistence for conversations, messages, extracted context and dealerships."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from . import schemas
from .schemas import ConversationStatus, MessageRole

_OPEN_STATUS_VALUES = tuple(s.value for s in schemas.OPEN_STATUSES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStore(Protocol):
    """Abstraction for persisting conversation artefacts."""

    # Dealerships
    def get_dealership(self, dealership_id: UUID) -> Optional[schemas.Dealership]: ...

    def get_dealership_by_phone(self, phone: str) -> Optional[schemas.Dealership]: ...

    def get_default_dealership(self) -> Optional[schemas.Dealership]: ...

    def list_dealership_users(
        self, dealership_id: UUID, *, active_only: bool = True
    ) -> List[schemas.DealershipUser]: ...

    # Conversations
    def find_active_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> Optional[schemas.Conversation]: ...

    def find_latest_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> Optional[schemas.Conversation]: ...

    def create_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> schemas.Conversation: ...

    def resolve_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> Tuple[schemas.Conversation, bool]: ...

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]: ...

    def set_status(self, conversation_id: UUID, status: ConversationStatus) -> None: ...

    def set_qualification_score(self, conversation_id: UUID, score: int) -> None: ...

    def assign_user(self, conversation_id: UUID, user_id: Optional[UUID]) -> None: ...

    def close_stale_conversations(self, inactive_since: datetime) -> int: ...

    # Messages
    def append_message(
        self,
        conversation_id: UUID,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.Message: ...

    def list_messages(self, conversation_id: UUID, limit: int = 200) -> List[schemas.Message]: ...

    # Context and audit
    def upsert_context(
        self, conversation_id: UUID, category: str, value: Dict[str, Any], confidence: float
    ) -> None: ...

    def list_context(self, conversation_id: UUID) -> List[schemas.CustomerContextRecord]: ...

    def log_interaction(
        self,
        conversation_id: UUID,
        type: str,
        success: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None: ...

    # Bookings
    def create_booking(
        self,
        conversation_id: UUID,
        dealership_id: UUID,
        customer_handle: str,
        scheduled_at: datetime,
        vehicle_interest: Optional[Dict[str, Any]] = None,
    ) -> schemas.Booking: ...

    def find_open_booking(self, conversation_id: UUID) -> Optional[schemas.Booking]: ...

    def set_booking_crm_id(self, booking_id: UUID, crm_appointment_id: str) -> None: ...

    # Reporting
    def dashboard_metrics(self, dealership_id: UUID) -> schemas.DashboardMetrics: ...


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationStore`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    # Dealership operations ---------------------------------------------------
    def get_dealership(self, dealership_id: UUID) -> Optional[schemas.Dealership]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM dealerships WHERE id = %s", (dealership_id,))
            row = cur.fetchone()
        return schemas.Dealership(**row) if row else None

    def get_dealership_by_phone(self, phone: str) -> Optional[schemas.Dealership]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM dealerships WHERE phone = %s LIMIT 1", (phone,))
            row = cur.fetchone()
        return schemas.Dealership(**row) if row else None

    def get_default_dealership(self) -> Optional[schemas.Dealership]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM dealerships ORDER BY created_at ASC LIMIT 1")
            row = cur.fetchone()
        return schemas.Dealership(**row) if row else None

    def list_dealership_users(
        self, dealership_id: UUID, *, active_only: bool = True
    ) -> List[schemas.DealershipUser]:
        query = "SELECT * FROM dealership_users WHERE dealership_id = %s"
        if active_only:
            query += " AND is_active"
        query += " ORDER BY created_at ASC"
        with self._cursor() as cur:
            cur.execute(query, (dealership_id,))
            rows = cur.fetchall()
        return [schemas.DealershipUser(**row) for row in rows]

    # Conversation operations --------------------------------------------------
    def find_active_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM conversations
                WHERE customer_handle = %s AND dealership_id = %s AND status = ANY(%s)
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (customer_handle, dealership_id, list(_OPEN_STATUS_VALUES)),
            )
            row = cur.fetchone()
        return schemas.Conversation(**row) if row else None

    def find_latest_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM conversations
                WHERE customer_handle = %s AND dealership_id = %s
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (customer_handle, dealership_id),
            )
            row = cur.fetchone()
        return schemas.Conversation(**row) if row else None

    def create_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> schemas.Conversation:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversations (customer_handle, dealership_id, status)
                VALUES (%s, %s, 'active')
                RETURNING *
                """,
                (customer_handle, dealership_id),
            )
            row = cur.fetchone()
        if row is None:
            raise RuntimeError("Conversation insert returned no row")
        return schemas.Conversation(**row)

    def resolve_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> Tuple[schemas.Conversation, bool]:
        """Find the open conversation or create it.

        ``conversations_one_open_per_customer`` makes a concurrent insert a
        no-op, in which case the winner's row is selected instead.
        """

        existing = self.find_active_conversation(customer_handle, dealership_id)
        if existing:
            return existing, False
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversations (customer_handle, dealership_id, status)
                VALUES (%s, %s, 'active')
                ON CONFLICT (customer_handle, dealership_id) WHERE status <> 'closed'
                DO NOTHING
                RETURNING *
                """,
                (customer_handle, dealership_id),
            )
            row = cur.fetchone()
        if row:
            return schemas.Conversation(**row), True
        winner = self.find_active_conversation(customer_handle, dealership_id)
        if winner is None:  # pragma: no cover - closed between insert and select
            return self.create_conversation(customer_handle, dealership_id), True
        return winner, False

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM conversations WHERE id = %s", (conversation_id,))
            row = cur.fetchone()
        return schemas.Conversation(**row) if row else None

    def set_status(self, conversation_id: UUID, status: ConversationStatus) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE conversations SET status = %s, updated_at = NOW() WHERE id = %s",
                (ConversationStatus(status).value, conversation_id),
            )

    def set_qualification_score(self, conversation_id: UUID, score: int) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations SET qualification_score = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (score, conversation_id),
            )

    def assign_user(self, conversation_id: UUID, user_id: Optional[UUID]) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE conversations SET assigned_user_id = %s, updated_at = NOW() WHERE id = %s",
                (user_id, conversation_id),
            )

    def close_stale_conversations(self, inactive_since: datetime) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations SET status = 'closed', updated_at = NOW()
                WHERE status = ANY(%s)
                  AND COALESCE(last_message_at, created_at) < %s
                """,
                (list(_OPEN_STATUS_VALUES), inactive_since),
            )
            return cur.rowcount or 0

    # Message operations -------------------------------------------------------
    def append_message(
        self,
        conversation_id: UUID,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.Message:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO messages (conversation_id, role, content, metadata)
                VALUES (%s, %s, %s, %s)
                RETURNING *
                """,
                (conversation_id, MessageRole(role).value, content, Jsonb(metadata or {})),
            )
            row = cur.fetchone()
            cur.execute(
                """
                UPDATE conversations SET last_message_at = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (row["created_at"], conversation_id),
            )
        return schemas.Message(**row)

    def list_messages(self, conversation_id: UUID, limit: int = 200) -> List[schemas.Message]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM (
                    SELECT * FROM messages
                    WHERE conversation_id = %s
                    ORDER BY created_at DESC, seq DESC
                    LIMIT %s
                ) recent
                ORDER BY created_at ASC, seq ASC
                """,
                (conversation_id, limit),
            )
            rows = cur.fetchall()
        return [schemas.Message(**row) for row in rows]

    # Context and audit --------------------------------------------------------
    def upsert_context(
        self, conversation_id: UUID, category: str, value: Dict[str, Any], confidence: float
    ) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO customer_context (conversation_id, category, value, confidence)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (conversation_id, category)
                DO UPDATE SET value = EXCLUDED.value,
                              confidence = EXCLUDED.confidence,
                              updated_at = NOW()
                """,
                (conversation_id, category, Jsonb(value), confidence),
            )

    def list_context(self, conversation_id: UUID) -> List[schemas.CustomerContextRecord]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM customer_context WHERE conversation_id = %s ORDER BY category",
                (conversation_id,),
            )
            rows = cur.fetchall()
        return [schemas.CustomerContextRecord(**row) for row in rows]

    def log_interaction(
        self,
        conversation_id: UUID,
        type: str,
        success: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO interaction_logs (conversation_id, type, success, metadata, error)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (conversation_id, type, success, Jsonb(metadata or {}), error),
            )

    # Booking operations -------------------------------------------------------
    def create_booking(
        self,
        conversation_id: UUID,
        dealership_id: UUID,
        customer_handle: str,
        scheduled_at: datetime,
        vehicle_interest: Optional[Dict[str, Any]] = None,
    ) -> schemas.Booking:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO bookings (conversation_id, dealership_id, customer_handle, scheduled_at, vehicle_interest)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    conversation_id,
                    dealership_id,
                    customer_handle,
                    scheduled_at,
                    Jsonb(vehicle_interest or {}),
                ),
            )
            row = cur.fetchone()
        if row is None:
            raise RuntimeError("Booking insert returned no row")
        return schemas.Booking(**row)

    def find_open_booking(self, conversation_id: UUID) -> Optional[schemas.Booking]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM bookings
                WHERE conversation_id = %s AND status = 'scheduled'
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (conversation_id,),
            )
            row = cur.fetchone()
        return schemas.Booking(**row) if row else None

    def set_booking_crm_id(self, booking_id: UUID, crm_appointment_id: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE bookings SET crm_appointment_id = %s WHERE id = %s",
                (crm_appointment_id, booking_id),
            )

    # Reporting ----------------------------------------------------------------
    def dashboard_metrics(self, dealership_id: UUID) -> schemas.DashboardMetrics:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT status, COUNT(*) AS total, AVG(qualification_score) AS avg_score,
                       COUNT(qualification_score) AS scored
                FROM conversations
                WHERE dealership_id = %s
                GROUP BY status
                """,
                (dealership_id,),
            )
            status_rows = cur.fetchall()
            cur.execute(
                """
                SELECT COUNT(*) AS total FROM messages m
                JOIN conversations c ON m.conversation_id = c.id
                WHERE c.dealership_id = %s
                """,
                (dealership_id,),
            )
            message_row = cur.fetchone()
            cur.execute(
                """
                SELECT COUNT(*) AS total FROM bookings
                WHERE dealership_id = %s AND status = 'scheduled'
                """,
                (dealership_id,),
            )
            booking_row = cur.fetchone()
            cur.execute(
                """
                SELECT i.type, COUNT(*) AS count, COUNT(*) FILTER (WHERE i.success) AS successful
                FROM interaction_logs i
                JOIN conversations c ON i.conversation_id = c.id
                WHERE c.dealership_id = %s
                GROUP BY i.type
                ORDER BY i.type
                """,
                (dealership_id,),
            )
            interaction_rows = cur.fetchall()

        by_status = {row["status"]: int(row["total"]) for row in status_rows}
        scored = sum(int(row["scored"]) for row in status_rows)
        score_sum = sum(float(row["avg_score"] or 0) * int(row["scored"]) for row in status_rows)
        return schemas.DashboardMetrics(
            dealership_id=dealership_id,
            total_conversations=sum(by_status.values()),
            conversations_by_status=by_status,
            active_conversations=by_status.get(ConversationStatus.ACTIVE.value, 0),
            avg_qualification_score=round(score_sum / scored, 1) if scored else 0.0,
            total_messages=int(message_row["total"]) if message_row else 0,
            bookings_scheduled=int(booking_row["total"]) if booking_row else 0,
            interactions=[
                schemas.InteractionCount(
                    type=row["type"], count=int(row["count"]), successful=int(row["successful"])
                )
                for row in interaction_rows
            ],
        )


class InMemoryConversationRepository:
    """In-memory repository used by tests and local development."""

    def __init__(self) -> None:
        self.dealerships: Dict[UUID, schemas.Dealership] = {}
        self.users: Dict[UUID, schemas.DealershipUser] = {}
        self.conversations: Dict[UUID, schemas.Conversation] = {}
        self.messages: Dict[UUID, List[schemas.Message]] = {}
        self.context: Dict[Tuple[UUID, str], schemas.CustomerContextRecord] = {}
        self.interactions: List[schemas.InteractionLog] = []
        self.bookings: Dict[UUID, schemas.Booking] = {}
        self._lock = threading.Lock()

    # Seeding helpers -----------------------------------------------------------
    def add_dealership(self, name: str, **fields: Any) -> schemas.Dealership:
        dealership = schemas.Dealership(
            id=fields.pop("id", None) or uuid4(), name=name, created_at=_utcnow(), **fields
        )
        self.dealerships[dealership.id] = dealership
        return dealership

    def add_dealership_user(
        self, dealership_id: UUID, name: str, **fields: Any
    ) -> schemas.DealershipUser:
        user = schemas.DealershipUser(
            id=fields.pop("id", None) or uuid4(),
            dealership_id=dealership_id,
            name=name,
            **fields,
        )
        self.users[user.id] = user
        return user

    # Dealership operations -----------------------------------------------------
    def get_dealership(self, dealership_id: UUID) -> Optional[schemas.Dealership]:
        return self.dealerships.get(dealership_id)

    def get_dealership_by_phone(self, phone: str) -> Optional[schemas.Dealership]:
        return next((d for d in self.dealerships.values() if d.phone == phone), None)

    def get_default_dealership(self) -> Optional[schemas.Dealership]:
        return next(iter(self.dealerships.values()), None)

    def list_dealership_users(
        self, dealership_id: UUID, *, active_only: bool = True
    ) -> List[schemas.DealershipUser]:
        return [
            u
            for u in self.users.values()
            if u.dealership_id == dealership_id and (u.is_active or not active_only)
        ]

    # Conversation operations ---------------------------------------------------
    def find_active_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> Optional[schemas.Conversation]:
        for conversation in self.conversations.values():
            if (
                conversation.customer_handle == customer_handle
                and conversation.dealership_id == dealership_id
                and conversation.status in schemas.OPEN_STATUSES
            ):
                return conversation
        return None

    def find_latest_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> Optional[schemas.Conversation]:
        matches = [
            c
            for c in self.conversations.values()
            if c.customer_handle == customer_handle and c.dealership_id == dealership_id
        ]
        return matches[-1] if matches else None

    def create_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> schemas.Conversation:
        now = _utcnow()
        conversation = schemas.Conversation(
            id=uuid4(),
            customer_handle=customer_handle,
            dealership_id=dealership_id,
            created_at=now,
            updated_at=now,
        )
        self.conversations[conversation.id] = conversation
        self.messages[conversation.id] = []
        return conversation

    def resolve_conversation(
        self, customer_handle: str, dealership_id: UUID
    ) -> Tuple[schemas.Conversation, bool]:
        with self._lock:
            existing = self.find_active_conversation(customer_handle, dealership_id)
            if existing:
                return existing, False
            return self.create_conversation(customer_handle, dealership_id), True

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        return self.conversations.get(conversation_id)

    def _update(self, conversation_id: UUID, **changes: Any) -> None:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            raise KeyError(f"Conversation {conversation_id} not found")
        changes.setdefault("updated_at", _utcnow())
        self.conversations[conversation_id] = conversation.model_copy(update=changes)

    def set_status(self, conversation_id: UUID, status: ConversationStatus) -> None:
        self._update(conversation_id, status=ConversationStatus(status))

    def set_qualification_score(self, conversation_id: UUID, score: int) -> None:
        self._update(conversation_id, qualification_score=score)

    def assign_user(self, conversation_id: UUID, user_id: Optional[UUID]) -> None:
        self._update(conversation_id, assigned_user_id=user_id)

    def close_stale_conversations(self, inactive_since: datetime) -> int:
        closed = 0
        for conversation in list(self.conversations.values()):
            last_activity = conversation.last_message_at or conversation.created_at
            if conversation.status in schemas.OPEN_STATUSES and last_activity < inactive_since:
                self._update(conversation.id, status=ConversationStatus.CLOSED)
                closed += 1
        return closed

    # Message operations ---------------------------------------------------------
    def append_message(
        self,
        conversation_id: UUID,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.Message:
        if conversation_id not in self.conversations:
            raise KeyError(f"Conversation {conversation_id} not found")
        message = schemas.Message(
            id=uuid4(),
            conversation_id=conversation_id,
            role=MessageRole(role),
            content=content,
            metadata=dict(metadata or {}),
            created_at=_utcnow(),
        )
        self.messages.setdefault(conversation_id, []).append(message)
        self._update(conversation_id, last_message_at=message.created_at)
        return message

    def list_messages(self, conversation_id: UUID, limit: int = 200) -> List[schemas.Message]:
        return list(self.messages.get(conversation_id, []))[-limit:]

    # Context and audit ------------------------------------------------------------
    def upsert_context(
        self, conversation_id: UUID, category: str, value: Dict[str, Any], confidence: float
    ) -> None:
        self.context[(conversation_id, category)] = schemas.CustomerContextRecord(
            conversation_id=conversation_id,
            category=category,
            value=dict(value),
            confidence=confidence,
            updated_at=_utcnow(),
        )

    def list_context(self, conversation_id: UUID) -> List[schemas.CustomerContextRecord]:
        records = [r for (cid, _), r in self.context.items() if cid == conversation_id]
        return sorted(records, key=lambda r: r.category)

    def log_interaction(
        self,
        conversation_id: UUID,
        type: str,
        success: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        self.interactions.append(
            schemas.InteractionLog(
                id=uuid4(),
                conversation_id=conversation_id,
                type=type,
                success=success,
                metadata=dict(metadata or {}),
                error=error,
                created_at=_utcnow(),
            )
        )

    def interaction_types(self, conversation_id: UUID) -> List[str]:
        return [i.type for i in self.interactions if i.conversation_id == conversation_id]

    # Booking operations --------------------------------------------------------------
    def create_booking(
        self,
        conversation_id: UUID,
        dealership_id: UUID,
        customer_handle: str,
        scheduled_at: datetime,
        vehicle_interest: Optional[Dict[str, Any]] = None,
    ) -> schemas.Booking:
        booking = schemas.Booking(
            id=uuid4(),
            conversation_id=conversation_id,
            dealership_id=dealership_id,
            customer_handle=customer_handle,
            scheduled_at=scheduled_at,
            vehicle_interest=dict(vehicle_interest or {}),
            created_at=_utcnow(),
        )
        self.bookings[booking.id] = booking
        return booking

    def find_open_booking(self, conversation_id: UUID) -> Optional[schemas.Booking]:
        scheduled = [
            b
            for b in self.bookings.values()
            if b.conversation_id == conversation_id and b.status == "scheduled"
        ]
        return max(scheduled, key=lambda b: b.created_at, default=None)

    def set_booking_crm_id(self, booking_id: UUID, crm_appointment_id: str) -> None:
        booking = self.bookings[booking_id]
        self.bookings[booking_id] = booking.model_copy(
            update={"crm_appointment_id": crm_appointment_id}
        )

    # Reporting ----------------------------------------------------------------
    def dashboard_metrics(self, dealership_id: UUID) -> schemas.DashboardMetrics:
        conversations = [
            c for c in self.conversations.values() if c.dealership_id == dealership_id
        ]
        ids = {c.id for c in conversations}
        by_status: Dict[str, int] = {}
        for conversation in conversations:
            by_status[conversation.status.value] = by_status.get(conversation.status.value, 0) + 1
        scores = [c.qualification_score for c in conversations if c.qualification_score is not None]
        counts: Dict[str, List[int]] = {}
        for log in self.interactions:
            if log.conversation_id in ids:
                total_successful = counts.setdefault(log.type, [0, 0])
                total_successful[0] += 1
                total_successful[1] += int(log.success)
        return schemas.DashboardMetrics(
            dealership_id=dealership_id,
            total_conversations=len(conversations),
            conversations_by_status=by_status,
            active_conversations=by_status.get(ConversationStatus.ACTIVE.value, 0),
            avg_qualification_score=round(sum(scores) / len(scores), 1) if scores else 0.0,
            total_messages=sum(len(self.messages.get(i, [])) for i in ids),
            bookings_scheduled=sum(
                1
                for b in self.bookings.values()
                if b.dealership_id == dealership_id and b.status == "scheduled"
            ),
            interactions=[
                schemas.InteractionCount(type=name, count=total, successful=successful)
                for name, (total, successful) in sorted(counts.items())
            ],
        )
