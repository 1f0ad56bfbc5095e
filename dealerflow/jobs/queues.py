"""Queue names, job payloads and dispatchers for background work."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)

CRM_SYNC_QUEUE = "crm-sync"
BOOKING_QUEUE = "test-drive-booking"
NOTIFICATIONS_QUEUE = "notifications"
MAINTENANCE_QUEUE = "maintenance"

TASK_NAMES: Mapping[str, str] = {
    CRM_SYNC_QUEUE: "dealerflow.crm_sync",
    BOOKING_QUEUE: "dealerflow.book_test_drive",
    NOTIFICATIONS_QUEUE: "dealerflow.send_notification",
    MAINTENANCE_QUEUE: "dealerflow.close_stale_conversations",
}


@dataclass(frozen=True)
class JobOptions:
    attempts: int = 3
    backoff_seconds: float = 2.0
    job_id: str | None = None


DEFAULT_JOB_OPTIONS: Mapping[str, JobOptions] = {
    CRM_SYNC_QUEUE: JobOptions(attempts=3, backoff_seconds=2.0),
    BOOKING_QUEUE: JobOptions(attempts=3, backoff_seconds=2.0),
    NOTIFICATIONS_QUEUE: JobOptions(attempts=3, backoff_seconds=1.0),
    MAINTENANCE_QUEUE: JobOptions(attempts=1, backoff_seconds=0.0),
}


def _json_safe(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Mapping):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


class _Payload:
    def as_payload(self) -> dict[str, Any]:
        return _json_safe(asdict(self))  # type: ignore[call-overload]


@dataclass(frozen=True)
class CRMSyncJob(_Payload):
    conversation_id: UUID
    dealership_id: UUID
    customer_handle: str
    action: str  # "create" | "update"
    qualification_score: int
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BookingJob(_Payload):
    conversation_id: UUID
    dealership_id: UUID
    customer_handle: str
    # "today", "this_week" or an ISO-8601 datetime.
    preferred_date: str
    channel: str = "sms"
    vehicle_interest: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationJob(_Payload):
    type: str  # "escalation" | "booking_confirmed" | "high_score_lead"
    conversation_id: UUID
    dealership_id: UUID
    recipient: str
    metadata: dict[str, Any] = field(default_factory=dict)


class JobDispatcher(Protocol):
    def enqueue(
        self,
        queue_name: str,
        payload: Mapping[str, Any],
        options: JobOptions | None = None,
    ) -> None: ...


class CeleryJobDispatcher:
    """Publish jobs as Celery tasks routed to the queue of the same name."""

    def __init__(self, app: Any) -> None:
        self._app = app

    def enqueue(
        self,
        queue_name: str,
        payload: Mapping[str, Any],
        options: JobOptions | None = None,
    ) -> None:
        opts = options or DEFAULT_JOB_OPTIONS.get(queue_name, JobOptions())
        try:
            task_name = TASK_NAMES[queue_name]
        except KeyError as exc:
            raise ValueError(f"Unknown queue '{queue_name}'") from exc
        self._app.send_task(
            task_name,
            kwargs={
                "payload": dict(payload),
                "max_attempts": opts.attempts,
                "backoff_seconds": opts.backoff_seconds,
            },
            queue=queue_name,
            task_id=opts.job_id,
        )
        logger.debug("Job enqueued", extra={"queue": queue_name, "task": task_name})


def dispatch_best_effort(
    dispatcher: JobDispatcher,
    queue_name: str,
    payload: Mapping[str, Any],
    options: JobOptions | None = None,
) -> bool:
    """Enqueue a job, logging instead of raising when the transport fails."""

    try:
        dispatcher.enqueue(
            queue_name, payload, options or DEFAULT_JOB_OPTIONS.get(queue_name)
        )
    except Exception as exc:
        logger.warning("Failed to enqueue %s job: %s", queue_name, exc)
        return False
    return True


class DeferredJobDispatcher:
    """Hold jobs until the request's transaction has committed.

    Workers read the rows a job refers to, so nothing is published while the
    transaction that wrote them could still roll back.
    """

    def __init__(self, dispatcher: JobDispatcher) -> None:
        self._dispatcher = dispatcher
        self._pending: list[tuple[str, dict[str, Any], JobOptions | None]] = []

    @property
    def pending(self) -> list[str]:
        return [queue_name for queue_name, _, _ in self._pending]

    def enqueue(
        self,
        queue_name: str,
        payload: Mapping[str, Any],
        options: JobOptions | None = None,
    ) -> None:
        if queue_name not in TASK_NAMES:
            raise ValueError(f"Unknown queue '{queue_name}'")
        self._pending.append((queue_name, dict(payload), options))

    def flush(self) -> list[str]:
        """Publish held jobs in order; returns the queues that accepted one."""

        pending, self._pending = self._pending, []
        sent = []
        for queue_name, payload, options in pending:
            if dispatch_best_effort(self._dispatcher, queue_name, payload, options):
                sent.append(queue_name)
        return sent

    def discard(self) -> None:
        if self._pending:
            logger.info("Dropping %d job(s) after rollback", len(self._pending))
        self._pending = []


def default_dispatcher() -> JobDispatcher:
    from .celery_app import celery_app

    return CeleryJobDispatcher(celery_app)
