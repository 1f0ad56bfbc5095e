"""Utility script to bootstrap the database with a demo dealership and staff user."""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

import psycopg
from dotenv import load_dotenv

from dealerflow.core.db import apply_schema

logger = logging.getLogger("seed")


@dataclass(slots=True)
class SeedConfig:
    """Configuration derived from the environment for the seed process."""

    db_url: str
    dealership_name: str
    dealership_phone: str | None
    dealership_hours: str | None
    notification_email: str | None
    staff_name: str
    staff_email: str | None


def _safe_url(db_url: str) -> str:
    """Return a version of ``db_url`` with any password redacted."""

    parts = urlsplit(db_url)
    if not parts.password:
        return db_url
    netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
    return urlunsplit(parts._replace(netloc=netloc))


def _build_database_url() -> str:
    """Compute the database URL from ``DATABASE_URL`` or ``PG*`` variables."""

    direct = os.getenv("DATABASE_URL")
    if direct:
        return direct

    host = os.getenv("PGHOST")
    port = os.getenv("PGPORT", "5432")
    database = os.getenv("PGDATABASE")
    user = os.getenv("PGUSER")
    password = os.getenv("PGPASSWORD")

    if not all([host, database, user]):
        raise RuntimeError(
            "DATABASE_URL is not configured and PGHOST/PGDATABASE/PGUSER are missing."
        )

    auth = user
    if password:
        auth = f"{user}:{password}"
    return f"postgresql://{auth}@{host}:{port}/{database}"


def _load_config() -> SeedConfig:
    """Load seed configuration from environment variables."""

    return SeedConfig(
        db_url=_build_database_url(),
        dealership_name=os.getenv("SEED_DEALERSHIP_NAME", "Demo Motors").strip(),
        dealership_phone=os.getenv("SEED_DEALERSHIP_PHONE") or os.getenv("TWILIO_PHONE_NUMBER"),
        dealership_hours=os.getenv("SEED_DEALERSHIP_HOURS", "Mon-Fri 9am-6pm, Sat 9am-5pm"),
        notification_email=os.getenv("SEED_NOTIFICATION_EMAIL") or None,
        staff_name=os.getenv("SEED_STAFF_NAME", "Sales Desk").strip(),
        staff_email=os.getenv("SEED_STAFF_EMAIL") or None,
    )


def wait_for_database(max_attempts: int = 10, delay: float = 3.0) -> None:
    """Attempt to establish a database connection, retrying if necessary."""

    db_url = _build_database_url()
    safe_url = _safe_url(db_url)

    for attempt in range(1, max_attempts + 1):
        try:
            with psycopg.connect(db_url, connect_timeout=5) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
        except psycopg.Error as exc:  # pragma: no cover - depends on external DB
            logger.info(
                "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if attempt >= max_attempts:
                raise RuntimeError("Database did not become ready in time") from exc
            time.sleep(delay)
            continue

        logger.info("Database connection established after %d attempt(s): %s", attempt, safe_url)
        return


def _run_schema(db_url: str) -> None:
    with psycopg.connect(db_url) as conn:
        apply_schema(conn)


def _provision_dealership(config: SeedConfig) -> uuid.UUID:
    """Create or reuse the demo dealership and its first staff member."""

    with psycopg.connect(config.db_url) as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT id FROM dealerships WHERE name = %s LIMIT 1",
                (config.dealership_name,),
            )
            row = cur.fetchone()
            if row:
                dealership_id = row[0]
                logger.info("Dealership %s already exists; reusing.", config.dealership_name)
            else:
                cur.execute(
                    """
                    INSERT INTO dealerships (name, phone, hours, notification_email)
                    VALUES (%s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        config.dealership_name,
                        config.dealership_phone,
                        config.dealership_hours,
                        config.notification_email,
                    ),
                )
                dealership_id = cur.fetchone()[0]
                logger.info("Created dealership %s (%s)", config.dealership_name, dealership_id)

            cur.execute(
                "SELECT 1 FROM dealership_users WHERE dealership_id = %s LIMIT 1",
                (dealership_id,),
            )
            if cur.fetchone() is None:
                cur.execute(
                    """
                    INSERT INTO dealership_users (dealership_id, name, email)
                    VALUES (%s, %s, %s)
                    """,
                    (dealership_id, config.staff_name, config.staff_email),
                )
                logger.info("Created staff user %s", config.staff_name)
        conn.commit()

    if not config.notification_email and not config.staff_email:
        logger.warning("No notification email configured; staff alerts will be skipped.")
    return dealership_id


async def main() -> None:
    """Entrypoint for the seeding workflow."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    wait_for_database()

    config = _load_config()
    logger.info("Starting seed process using %s", _safe_url(config.db_url))

    await asyncio.to_thread(_run_schema, config.db_url)
    dealership_id = await asyncio.to_thread(_provision_dealership, config)

    logger.info("Seed process completed. Dealership ID: %s", dealership_id)


if __name__ == "__main__":
    asyncio.run(main())
