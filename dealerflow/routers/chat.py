"""Web chat endpoint. The reply is returned in the response body."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg
from fastapi import APIRouter, HTTPException, Request

from ..config import get_settings
from ..conversations import schemas
from ..conversations.orchestrator import MessageOrchestrator, create_orchestrator
from ..conversations.repository import PostgresConversationRepository
from ..core.db import get_conn
from ..core.rate_limit import limiter
from ..jobs.queues import DeferredJobDispatcher, default_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def _get_conn() -> psycopg.Connection:
    try:
        return get_conn()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except psycopg.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@contextmanager
def _service_context() -> Iterator[MessageOrchestrator]:
    conn = _get_conn()
    jobs = DeferredJobDispatcher(default_dispatcher())
    orchestrator = create_orchestrator(PostgresConversationRepository(conn), dispatcher=jobs)
    try:
        yield orchestrator
        conn.commit()
    except HTTPException:
        conn.rollback()
        jobs.discard()
        raise
    except Exception as exc:
        conn.rollback()
        jobs.discard()
        logger.exception("Chat message processing failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        conn.close()
    jobs.flush()


@router.post("/api/chat/message", response_model=schemas.HandleMessageResponse)
@limiter.limit(lambda: get_settings().chat_rate_limit)
def post_chat_message(
    request: Request, payload: schemas.ChatMessageRequest
) -> schemas.HandleMessageResponse:
    """Handle one web chat message, rate-limited by client IP."""

    if len(payload.message) > get_settings().chat_max_message_length:
        raise HTTPException(status_code=400, detail="Message too long")
    with _service_context() as orchestrator:
        if orchestrator.store.get_dealership(payload.dealership_id) is None:
            raise HTTPException(status_code=404, detail="Dealership not found")
        result = orchestrator.handle_message(
            payload.customer_handle,
            payload.dealership_id,
            payload.message,
            schemas.Channel.WEB,
        )
    return schemas.HandleMessageResponse(
        conversation_id=result.conversation_id,
        reply=result.reply_text,
        action=result.action,
        qualification_score=result.qualification_score,
    )
