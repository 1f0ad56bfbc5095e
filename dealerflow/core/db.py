"""Database helpers for psycopg connections."""

from __future__ import annotations

import logging
from pathlib import Path

import psycopg

from ..config import get_settings

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "schema.sql"


def get_conn(database_url: str | None = None) -> psycopg.Connection:
    """Open a connection to ``database_url`` or the configured ``DATABASE_URL``."""

    url = database_url or get_settings().database_url
    if not url:
        raise RuntimeError("DATABASE_URL not configured")
    return psycopg.connect(url)


def apply_schema(conn: psycopg.Connection, path: Path | str = SCHEMA_PATH) -> None:
    """Execute the SQL schema file; statements are idempotent."""

    sql = Path(path).read_text(encoding="utf-8")
    try:
        with conn.cursor() as cur:
            cur.execute(sql)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.exception("Failed to apply schema from %s", path)
        raise
    logger.info("Database schema applied from %s", path)
