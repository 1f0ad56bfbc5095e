"""Application and access logging setup.

This module centralizes logging configuration for the DealerFlow API and
workers. It provides:

- A JSON formatter (opt-in via LOG_JSON) that carries the ``extra`` fields
  passed to log calls, or a human-readable formatter.
- Timed rotation of log files for application logs (dealerflow.log) and
  access logs (access.log), honoring retention and timezone options.
- An HTTP middleware that records structured access logs (method, path,
  status, latency, client IP, headers, optional body). Customer phone
  numbers, addresses and message bodies are masked before they are written.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from urllib.parse import parse_qsl
from uuid import uuid4

from fastapi import FastAPI, Request

APP_LOGGER_NAME = "dealerflow"

# Attributes every LogRecord has; anything else came in through ``extra``.
_RESERVED_ATTRS = set(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """JSON log formatter used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        log_record: dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_record[key] = value
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(_scrub(log_record), default=str)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


SENSITIVE_FIELDS = {
    "authorization",
    "cookie",
    "set-cookie",
    "password",
    "token",
    "api_key",
    "x-twilio-signature",
}

# Customer identifiers found in webhook and chat payloads.
PII_FIELDS = {
    "from",
    "to",
    "customer_handle",
    "recipient",
    "email",
    "phone",
    "body",
    "text",
    "message",
    "content",
}


def mask_value(value: object) -> str:
    """Keep the last two characters of an identifier so log lines stay correlatable."""

    raw = str(value)
    if len(raw) <= 4:
        return "***"
    return f"***{raw[-2:]}"


def _scrub(data: object) -> object:
    """Recursively scrub secrets and customer identifiers from dicts and lists."""

    if isinstance(data, dict):
        scrubbed: dict[Any, object] = {}
        for k, v in data.items():
            key = str(k).lower()
            if key in SENSITIVE_FIELDS:
                scrubbed[k] = "***"
            elif key in PII_FIELDS and isinstance(v, (str, int)):
                scrubbed[k] = mask_value(v)
            else:
                scrubbed[k] = _scrub(v)
        return scrubbed
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


def _decode_body(body_bytes: bytes, content_type: str) -> object:
    if "application/x-www-form-urlencoded" in content_type:
        return _scrub(dict(parse_qsl(body_bytes.decode("utf-8", errors="replace"))))
    try:
        return _scrub(json.loads(body_bytes))
    except ValueError:
        return f"<{len(body_bytes)} bytes>"


def _install_access_logging(app: FastAPI) -> None:
    """Install request/response access logging middleware.

    The middleware logs one JSON line per request (excluding health/metrics),
    including a generated X-Request-Id that is also echoed back in the
    response headers for easy correlation.
    """

    log_request_bodies = os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true"
    skip_paths = {"/api/health", "/api/metrics"}
    access_logger = logging.getLogger("uvicorn.access")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in skip_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id

        start = time.time()

        body_content = None
        if log_request_bodies:
            body_bytes = await request.body()

            async def receive() -> dict:  # pragma: no cover - internal
                return {"type": "http.request", "body": body_bytes, "more_body": False}

            request._receive = receive  # type: ignore[attr-defined]

            if body_bytes:
                body_content = _decode_body(
                    body_bytes, request.headers.get("content-type", "")
                )

        response = await call_next(request)

        process_time_ms = (time.time() - start) * 1000
        client = request.client
        client_ip = request.headers.get("X-Forwarded-For")
        if not client_ip and client is not None:
            client_ip = client.host

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round(process_time_ms, 2),
            "client_ip": client_ip,
            "headers": _scrub(dict(request.headers)),
        }

        if body_content is not None:
            log_data["body"] = body_content

        response.headers["X-Request-Id"] = request_id

        access_logger.info(json.dumps(log_data, default=str))
        return response


def _rotating_handler(
    path: str, retention_days: int, rotate_utc: bool, formatter: logging.Formatter
) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        path, when="midnight", backupCount=retention_days, utc=rotate_utc
    )
    handler.setFormatter(formatter)
    return handler


def init_logging(app: FastAPI | None = None, *, access_log: bool = True) -> logging.Logger:
    """Initialise the application logger and, for the API, the access logger.

    Celery workers call this with ``app=None`` and ``access_log=False``.
    """

    log_dir = os.getenv("LOG_DIR", "logs")
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_json = os.getenv("LOG_JSON", "false").lower() == "true"
    retention_days = int(os.getenv("LOG_RETENTION_DAYS", "7"))
    rotate_utc = os.getenv("LOG_ROTATE_UTC", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)

    formatter = _get_formatter(log_json)
    log_level = getattr(logging, log_level_str, logging.INFO)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(
            _rotating_handler(
                os.path.join(log_dir, "dealerflow.log"), retention_days, rotate_utc, formatter
            )
        )
    app_logger.setLevel(log_level)

    if access_log:
        access_logger = logging.getLogger("uvicorn.access")
        access_logger.handlers.clear()
        access_logger.addHandler(
            _rotating_handler(
                os.path.join(log_dir, "access.log"), retention_days, rotate_utc, formatter
            )
        )
        access_logger.setLevel(log_level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)
    return app_logger
