"""Inbound webhooks for the SMS (Twilio) and email (SendGrid) channels."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg
from fastapi import APIRouter, HTTPException, Request, Response, status
from starlette.concurrency import run_in_threadpool

from ..channels import get_adapter
from ..channels.sms import EMPTY_TWIML
from ..conversations.models import InboundMessage
from ..conversations.orchestrator import MessageOrchestrator, create_orchestrator
from ..conversations.repository import PostgresConversationRepository
from ..conversations.service import (
    ConversationService,
    DealershipNotFoundError,
)
from ..core.db import get_conn
from ..jobs.queues import DeferredJobDispatcher, default_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


def _get_conn() -> psycopg.Connection:
    try:
        return get_conn()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except psycopg.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@contextmanager
def _service_context() -> Iterator[tuple[MessageOrchestrator, ConversationService]]:
    conn = _get_conn()
    store = PostgresConversationRepository(conn)
    jobs = DeferredJobDispatcher(default_dispatcher())
    orchestrator = create_orchestrator(store, dispatcher=jobs)
    service = ConversationService(store, orchestrator.delivery)
    try:
        yield orchestrator, service
        conn.commit()
    except DealershipNotFoundError as exc:
        conn.rollback()
        jobs.discard()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except HTTPException:
        conn.rollback()
        jobs.discard()
        raise
    except Exception as exc:
        conn.rollback()
        jobs.discard()
        logger.exception("Webhook processing failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        conn.close()
    jobs.flush()


def _process(inbound: InboundMessage) -> None:
    with _service_context() as (orchestrator, conversations):
        dealership = conversations.resolve_dealership(inbound.recipient)
        inbound.dealership_id = dealership.id
        orchestrator.handle_inbound(inbound)


@router.post("/api/webhooks/sms")
async def sms_webhook(request: Request) -> Response:
    """Twilio inbound SMS. Replies go out through the REST API, so TwiML stays empty."""

    form = await request.form()
    inbound = get_adapter("sms")().parse_incoming(dict(form))
    if inbound is None:
        logger.info("Ignoring SMS webhook without sender or body")
    else:
        await run_in_threadpool(_process, inbound)
    return Response(content=EMPTY_TWIML, media_type="application/xml")


@router.post("/api/webhooks/email")
async def email_webhook(request: Request) -> Response:
    """SendGrid inbound parse (multipart form)."""

    form = await request.form()
    payload = {k: v for k, v in form.items() if isinstance(v, str)}
    inbound = get_adapter("email")().parse_incoming(payload)
    if inbound is None:
        logger.info("Ignoring email webhook without sender or text")
        return Response(status_code=status.HTTP_202_ACCEPTED)
    await run_in_threadpool(_process, inbound)
    return Response(status_code=status.HTTP_200_OK)
