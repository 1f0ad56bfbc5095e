"""Background jobs: queue definitions, dispatchers and handlers.

The Celery application lives in :mod:`dealerflow.jobs.celery_app` and is not
imported here so the request path does not need a broker to start.
"""

from .queues import (
    BOOKING_QUEUE,
    CRM_SYNC_QUEUE,
    MAINTENANCE_QUEUE,
    NOTIFICATIONS_QUEUE,
    BookingJob,
    CeleryJobDispatcher,
    CRMSyncJob,
    DeferredJobDispatcher,
    JobDispatcher,
    JobOptions,
    NotificationJob,
    default_dispatcher,
    dispatch_best_effort,
)

__all__ = [
    "BOOKING_QUEUE",
    "CRM_SYNC_QUEUE",
    "MAINTENANCE_QUEUE",
    "NOTIFICATIONS_QUEUE",
    "BookingJob",
    "CRMSyncJob",
    "CeleryJobDispatcher",
    "DeferredJobDispatcher",
    "JobDispatcher",
    "JobOptions",
    "NotificationJob",
    "default_dispatcher",
    "dispatch_best_effort",
]
