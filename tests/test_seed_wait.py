"""Tests for the seed script's start-up sequence."""

from __future__ import annotations

import asyncio
import logging

import psycopg
import pytest

import seed


class _ReadyConnection:
    """Connection whose cursor records the statements run through it."""

    def __init__(self, executed: list[str]):
        self._executed = executed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return None

    def cursor(self):
        return self

    def execute(self, query: str) -> None:
        self._executed.append(query)


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr(seed.time, "sleep", recorded.append)
    return recorded


def _flaky_connect(failures: int, executed: list[str]):
    calls = {"count": 0}

    def _connect(dsn: str, connect_timeout: int):
        calls["count"] += 1
        if calls["count"] <= failures:
            raise psycopg.OperationalError("the database system is starting up")
        return _ReadyConnection(executed)

    _connect.calls = calls
    return _connect


def test_retries_until_postgres_accepts_connections(monkeypatch, sleeps):
    monkeypatch.setenv("DATABASE_URL", "postgresql://dealerflow@db:5432/dealerflow")
    executed: list[str] = []
    connect = _flaky_connect(2, executed)
    monkeypatch.setattr(psycopg, "connect", connect)

    seed.wait_for_database(max_attempts=5, delay=1.5)

    assert connect.calls["count"] == 3
    assert sleeps == [1.5, 1.5]
    assert executed == ["SELECT 1"]


def test_gives_up_and_keeps_the_driver_error(monkeypatch, sleeps):
    monkeypatch.setenv("DATABASE_URL", "postgresql://dealerflow@db:5432/dealerflow")
    monkeypatch.setattr(psycopg, "connect", _flaky_connect(10, []))

    with pytest.raises(RuntimeError) as excinfo:
        seed.wait_for_database(max_attempts=3, delay=0.5)

    assert isinstance(excinfo.value.__cause__, psycopg.OperationalError)
    assert sleeps == [0.5, 0.5]


def test_pg_variables_are_used_and_password_is_redacted(monkeypatch, sleeps, caplog):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("PGPORT", raising=False)
    monkeypatch.setenv("PGHOST", "db")
    monkeypatch.setenv("PGDATABASE", "dealerflow")
    monkeypatch.setenv("PGUSER", "seeder")
    monkeypatch.setenv("PGPASSWORD", "hunter2")
    dsns: list[str] = []

    def _connect(dsn: str, connect_timeout: int):
        dsns.append(dsn)
        return _ReadyConnection([])

    monkeypatch.setattr(psycopg, "connect", _connect)

    with caplog.at_level(logging.INFO, logger="seed"):
        seed.wait_for_database(max_attempts=1, delay=0.0)

    assert dsns == ["postgresql://seeder:hunter2@db:5432/dealerflow"]
    assert "seeder:***@db:5432" in caplog.text
    assert "hunter2" not in caplog.text


def test_main_provisions_only_after_database_is_ready(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://dealerflow@db:5432/dealerflow")
    monkeypatch.setenv("SEED_DEALERSHIP_NAME", "Harbor Autos")
    steps: list[str] = []

    monkeypatch.setattr(seed, "load_dotenv", lambda: None)
    monkeypatch.setattr(seed, "wait_for_database", lambda: steps.append("wait"))
    monkeypatch.setattr(seed, "_run_schema", lambda url: steps.append(f"schema {url}"))

    def _provision(config: seed.SeedConfig):
        steps.append(f"provision {config.dealership_name}")
        return "d-1"

    monkeypatch.setattr(seed, "_provision_dealership", _provision)

    asyncio.run(seed.main())

    assert steps == [
        "wait",
        "schema postgresql://dealerflow@db:5432/dealerflow",
        "provision Harbor Autos",
    ]
