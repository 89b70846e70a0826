"""Shared fixtures: fake clock, in-memory ledger, item and response builders."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from laser_dispatch.config.pipelines import PipelineConfig, SourceDescriptor
from laser_dispatch.db.database import init_db
from laser_dispatch.models.schemas import Item
from laser_dispatch.services.ledger import KeyValueStore, Ledger


class FakeClock:
    """Deterministic clock: sleep() advances now() and is recorded."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def make_item(item_id: str, source: str = "repo", namespace: str = "github", **kwargs) -> Item:
    kwargs.setdefault("title", f"Item {item_id}")
    kwargs.setdefault("link", f"https://example.com/{item_id}")
    return Item(id=item_id, source=source, namespace=namespace, **kwargs)


def make_source(key: str = "repo", fmt: str = "github", **kwargs) -> SourceDescriptor:
    kwargs.setdefault("name", key)
    kwargs.setdefault("url", f"https://example.com/{key}")
    return SourceDescriptor(key=key, format=fmt, **kwargs)


def make_config(sources, **kwargs) -> PipelineConfig:
    kwargs.setdefault("name", "github")
    kwargs.setdefault("webhook_url", "https://discord.test/api/webhooks/1/abc")
    return PipelineConfig(sources=tuple(sources), **kwargs)


def make_response(status: int, headers: dict | None = None, body=None) -> MagicMock:
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 400
    r.headers = headers or {}
    if body is None:
        r.json.side_effect = ValueError("no json")
    else:
        r.json.return_value = body
    return r


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine, clock) -> KeyValueStore:
    return KeyValueStore(engine, clock)


@pytest.fixture
def ledger(store) -> Ledger:
    return Ledger(store)
