"""Staff routes: inspect conversations, take them over and reply manually."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

import psycopg
from fastapi import APIRouter, HTTPException

from ..channels import DeliveryError, build_adapters
from ..channels.delivery import ChannelReplyDelivery
from ..config import get_settings
from ..conversations import schemas
from ..conversations.repository import PostgresConversationRepository
from ..conversations.service import ConversationNotFoundError, ConversationService
from ..core.db import get_conn

router = APIRouter(tags=["conversations"])


def _get_conn() -> psycopg.Connection:
    try:
        return get_conn()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except psycopg.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@contextmanager
def _service_context() -> Iterator[ConversationService]:
    conn = _get_conn()
    service = ConversationService(
        PostgresConversationRepository(conn),
        ChannelReplyDelivery(build_adapters(get_settings())),
    )
    try:
        yield service
        conn.commit()
    except ConversationNotFoundError as exc:
        conn.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DeliveryError as exc:
        conn.rollback()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except HTTPException:
        conn.rollback()
        raise
    except Exception as exc:  # pragma: no cover - defensive
        conn.rollback()
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        conn.close()


@router.get(
    "/api/conversations/{conversation_id}",
    response_model=schemas.ConversationDetail,
)
def get_conversation(conversation_id: UUID, limit: int = 200) -> schemas.ConversationDetail:
    with _service_context() as conversations:
        return conversations.get_conversation_detail(conversation_id, limit=limit)


@router.post(
    "/api/conversations/{conversation_id}/handoff",
    response_model=schemas.Conversation,
)
def start_handoff(
    conversation_id: UUID, payload: schemas.HandoffRequest
) -> schemas.Conversation:
    with _service_context() as conversations:
        return conversations.start_handoff(conversation_id, payload.user_id)


@router.post(
    "/api/conversations/{conversation_id}/handoff/end",
    response_model=schemas.Conversation,
)
def end_handoff(conversation_id: UUID) -> schemas.Conversation:
    with _service_context() as conversations:
        return conversations.end_handoff(conversation_id)


@router.post(
    "/api/conversations/{conversation_id}/messages",
    response_model=schemas.Message,
    status_code=201,
)
def send_human_reply(
    conversation_id: UUID, payload: schemas.HumanReplyRequest
) -> schemas.Message:
    with _service_context() as conversations:
        return conversations.send_human_reply(
            conversation_id, payload.content, payload.channel
        )
