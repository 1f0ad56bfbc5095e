"""Celery task wrappers around :mod:`dealerflow.jobs.handlers`."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from celery.exceptions import SoftTimeLimitExceeded

from ..channels import build_adapters
from ..channels.delivery import ChannelReplyDelivery
from ..config import get_settings
from ..conversations.repository import PostgresConversationRepository
from ..core.db import get_conn
from . import handlers
from .celery_app import celery_app
from .queues import (
    BOOKING_QUEUE,
    CRM_SYNC_QUEUE,
    MAINTENANCE_QUEUE,
    NOTIFICATIONS_QUEUE,
    TASK_NAMES,
    CeleryJobDispatcher,
)

logger = logging.getLogger(__name__)


@contextmanager
def _job_context() -> Iterator[handlers.JobContext]:
    settings = get_settings()
    conn = get_conn()
    ctx = handlers.JobContext(
        store=PostgresConversationRepository(conn),
        delivery=ChannelReplyDelivery(build_adapters(settings)),
        dispatcher=CeleryJobDispatcher(celery_app),
        settings=settings,
    )
    try:
        yield ctx
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _retry(task: Any, exc: Exception, max_attempts: int, backoff_seconds: float):
    """Retry with exponential backoff, or give up after ``max_attempts``."""

    attempt = task.request.retries + 1
    if attempt >= max_attempts:
        logger.error("%s gave up after %s attempts: %s", task.name, attempt, exc)
        raise exc
    countdown = backoff_seconds * 2 ** task.request.retries
    logger.warning("%s failed (attempt %s), retrying in %ss: %s", task.name, attempt, countdown, exc)
    raise task.retry(exc=exc, countdown=countdown, max_retries=max_attempts - 1)


def _run(task: Any, handler, payload: dict[str, Any], max_attempts: int, backoff_seconds: float):
    try:
        with _job_context() as ctx:
            return handler(ctx, payload)
    except SoftTimeLimitExceeded:
        logger.warning("Soft time limit exceeded for %s", task.name)
        raise
    except Exception as exc:
        _retry(task, exc, max_attempts, backoff_seconds)


@celery_app.task(name=TASK_NAMES[CRM_SYNC_QUEUE], bind=True)
def crm_sync_task(self, payload: dict[str, Any], max_attempts: int = 3, backoff_seconds: float = 2.0):
    return _run(self, handlers.handle_crm_sync, payload, max_attempts, backoff_seconds)


@celery_app.task(name=TASK_NAMES[BOOKING_QUEUE], bind=True)
def booking_task(self, payload: dict[str, Any], max_attempts: int = 3, backoff_seconds: float = 2.0):
    return _run(self, handlers.handle_booking, payload, max_attempts, backoff_seconds)


@celery_app.task(name=TASK_NAMES[NOTIFICATIONS_QUEUE], bind=True)
def notification_task(self, payload: dict[str, Any], max_attempts: int = 3, backoff_seconds: float = 1.0):
    return _run(self, handlers.handle_notification, payload, max_attempts, backoff_seconds)


@celery_app.task(name=TASK_NAMES[MAINTENANCE_QUEUE], bind=True)
def close_stale_conversations_task(self, max_age_days: int | None = None, **_: Any):
    with _job_context() as ctx:
        closed = handlers.close_stale_conversations(ctx, max_age_days)
    return {"closed_conversations": closed}
