"""Celery application for background jobs (CRM sync, bookings, notifications)."""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun

from ..config import get_settings
from .queues import (
    BOOKING_QUEUE,
    CRM_SYNC_QUEUE,
    MAINTENANCE_QUEUE,
    NOTIFICATIONS_QUEUE,
    TASK_NAMES,
)

logger = logging.getLogger(__name__)

_settings = get_settings()

celery_app = Celery(
    "dealerflow",
    broker=_settings.redis_url,
    backend=_settings.redis_url,
    include=["dealerflow.jobs.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=120,
    task_soft_time_limit=90,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_routes={
        TASK_NAMES[CRM_SYNC_QUEUE]: {"queue": CRM_SYNC_QUEUE},
        TASK_NAMES[BOOKING_QUEUE]: {"queue": BOOKING_QUEUE},
        TASK_NAMES[NOTIFICATIONS_QUEUE]: {"queue": NOTIFICATIONS_QUEUE},
        TASK_NAMES[MAINTENANCE_QUEUE]: {"queue": MAINTENANCE_QUEUE},
    },
    task_annotations={
        TASK_NAMES[CRM_SYNC_QUEUE]: {"rate_limit": "10/s"},
    },
    beat_schedule={
        "close-stale-conversations-daily": {
            "task": TASK_NAMES[MAINTENANCE_QUEUE],
            "schedule": 86400.0,
            "kwargs": {"max_age_days": _settings.stale_conversation_days},
        },
    },
)


@task_prerun.connect
def task_prerun_handler(sender=None, task_id=None, task=None, **extra):
    logger.info("Task starting: %s (ID: %s)", task.name, task_id)


@task_postrun.connect
def task_postrun_handler(sender=None, task_id=None, task=None, **extra):
    logger.info("Task completed: %s (ID: %s)", task.name, task_id)


@task_failure.connect
def task_failure_handler(sender=None, task_id=None, exception=None, **extra):
    logger.error("Task failed: %s (ID: %s) - %s", sender.name, task_id, exception)
