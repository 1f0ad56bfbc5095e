"""Agent operations for integrations: rescoring, booking, escalation and lookup."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

import psycopg
from fastapi import APIRouter, HTTPException, Query

from ..conversations import schemas
from ..conversations.agent_actions import AgentActions, InvalidPreferredDateError
from ..conversations.repository import PostgresConversationRepository
from ..conversations.service import ConversationNotFoundError
from ..core.db import get_conn
from ..jobs.queues import DeferredJobDispatcher, default_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/agent", tags=["agent"])


def _get_conn() -> psycopg.Connection:
    try:
        return get_conn()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except psycopg.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@contextmanager
def _service_context() -> Iterator[AgentActions]:
    conn = _get_conn()
    jobs = DeferredJobDispatcher(default_dispatcher())
    actions = AgentActions(PostgresConversationRepository(conn), jobs)
    try:
        yield actions
        conn.commit()
    except ConversationNotFoundError as exc:
        conn.rollback()
        jobs.discard()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidPreferredDateError as exc:
        conn.rollback()
        jobs.discard()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except HTTPException:
        conn.rollback()
        jobs.discard()
        raise
    except Exception as exc:
        conn.rollback()
        jobs.discard()
        logger.exception("Agent operation failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        conn.close()
    jobs.flush()


@router.get("/conversations", response_model=schemas.ConversationDetail)
def find_customer_conversation(
    customer_handle: str = Query(min_length=1, max_length=255),
    dealership_id: UUID = Query(),
    limit: int = 200,
) -> schemas.ConversationDetail:
    """Latest conversation for a customer at a dealership, with its messages."""

    with _service_context() as actions:
        return actions.find_customer_conversation(customer_handle, dealership_id, limit=limit)


@router.post("/qualify", response_model=schemas.QualifyResponse)
def qualify(payload: schemas.QualifyRequest) -> schemas.QualifyResponse:
    with _service_context() as actions:
        return actions.qualify(payload.conversation_id)


@router.post(
    "/book-test-drive",
    response_model=schemas.BookTestDriveResponse,
    status_code=202,
)
def book_test_drive(payload: schemas.BookTestDriveRequest) -> schemas.BookTestDriveResponse:
    """Queue a booking; the slot is confirmed to the customer by the worker."""

    with _service_context() as actions:
        return actions.request_test_drive(payload)


@router.post("/escalate", response_model=schemas.EscalateResponse)
def escalate(payload: schemas.EscalateRequest) -> schemas.EscalateResponse:
    with _service_context() as actions:
        return actions.escalate(payload.conversation_id, payload.reason)
