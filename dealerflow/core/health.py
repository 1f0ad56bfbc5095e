"""Dependency checks behind the health endpoint."""

from __future__ import annotations

import logging
import time
from typing import Any

import redis

from ..config import get_settings
from .db import get_conn

logger = logging.getLogger(__name__)

CHECK_TIMEOUT_SECONDS = 2


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


def check_database() -> dict[str, Any]:
    started = time.perf_counter()
    try:
        conn = get_conn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
        finally:
            conn.close()
    except Exception as exc:
        logger.warning("Database health check failed: %s", exc)
        return {"status": "unhealthy", "error": str(exc)}
    return {"status": "healthy", "latency_ms": _elapsed_ms(started)}


def check_redis() -> dict[str, Any]:
    started = time.perf_counter()
    try:
        client = redis.Redis.from_url(
            get_settings().redis_url,
            socket_connect_timeout=CHECK_TIMEOUT_SECONDS,
            socket_timeout=CHECK_TIMEOUT_SECONDS,
        )
        try:
            client.ping()
        finally:
            client.close()
    except Exception as exc:
        logger.warning("Redis health check failed: %s", exc)
        return {"status": "unhealthy", "error": str(exc)}
    return {"status": "healthy", "latency_ms": _elapsed_ms(started)}


def overall_health() -> tuple[bool, dict[str, Any]]:
    """Return ``(healthy, body)``; Postgres and the job broker are both required."""

    database = check_database()
    broker = check_redis()
    healthy = database["status"] == "healthy" and broker["status"] == "healthy"
    return healthy, {
        "status": "ok" if healthy else "degraded",
        "database": database,
        "redis": broker,
    }
