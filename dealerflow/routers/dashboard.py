"""Dealer dashboard metrics."""

from __future__ import annotations

from uuid import UUID

import psycopg
from fastapi import APIRouter, HTTPException

from ..conversations import schemas
from ..conversations.repository import PostgresConversationRepository
from ..core.db import get_conn

router = APIRouter(tags=["dashboard"])


def _get_conn() -> psycopg.Connection:
    try:
        return get_conn()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except psycopg.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get(
    "/api/dealerships/{dealership_id}/dashboard",
    response_model=schemas.DashboardMetrics,
)
def get_dashboard(dealership_id: UUID) -> schemas.DashboardMetrics:
    """Conversation, message, booking and interaction totals for one dealership."""

    conn = _get_conn()
    try:
        store = PostgresConversationRepository(conn)
        if store.get_dealership(dealership_id) is None:
            raise HTTPException(status_code=404, detail="Dealership not found")
        return store.dashboard_metrics(dealership_id)
    finally:
        conn.close()
