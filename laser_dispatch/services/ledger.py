from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from laser_dispatch.db.database import LedgerUnavailableError
from laser_dispatch.db.models import LedgerEntry
from laser_dispatch.models.schemas import LedgerStatus
from laser_dispatch.tools.clock import Clock

logger = logging.getLogger(__name__)

DELIVERED_TTL_SECONDS = 30 * 24 * 60 * 60
REJECTED_TTL_SECONDS = 24 * 60 * 60  # poison pill
FETCH_STATE_TTL_SECONDS = DELIVERED_TTL_SECONDS

# SQLite caps bound parameters per statement
_LOOKUP_CHUNK = 500


def _naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class KeyValueStore:
    """
    Expiring key-value store on the ledger_entries table.
    Expired rows read as absent; purge_expired() reclaims them.
    """

    def __init__(self, engine: Engine, clock: Clock):
        self.engine = engine
        self.clock = clock

    def _now(self) -> datetime:
        return _naive_utc(self.clock.now())

    def get(self, key: str) -> str | None:
        try:
            with Session(self.engine) as session:
                row = session.get(LedgerEntry, key)
                if row is None or row.expires_at <= self._now():
                    return None
                return row.value
        except SQLAlchemyError as e:
            raise LedgerUnavailableError(f"Ledger read failed for {key}: {e}") from e

    def get_many(self, keys: Iterable[str]) -> dict[str, str]:
        keys = list(dict.fromkeys(keys))
        found: dict[str, str] = {}
        if not keys:
            return found

        now = self._now()
        try:
            with Session(self.engine) as session:
                for i in range(0, len(keys), _LOOKUP_CHUNK):
                    chunk = keys[i : i + _LOOKUP_CHUNK]
                    rows = (
                        session.query(LedgerEntry)
                        .filter(LedgerEntry.key.in_(chunk))
                        .filter(LedgerEntry.expires_at > now)
                        .all()
                    )
                    for r in rows:
                        found[r.key] = r.value
        except SQLAlchemyError as e:
            raise LedgerUnavailableError(f"Ledger batch read failed: {e}") from e
        return found

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._now()
        try:
            with Session(self.engine) as session:
                session.merge(
                    LedgerEntry(
                        key=key,
                        value=value,
                        expires_at=now + timedelta(seconds=ttl_seconds),
                        updated_at=now,
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            raise LedgerUnavailableError(f"Ledger write failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            with Session(self.engine) as session:
                session.execute(delete(LedgerEntry).where(LedgerEntry.key == key))
                session.commit()
        except SQLAlchemyError as e:
            raise LedgerUnavailableError(f"Ledger delete failed for {key}: {e}") from e

    def purge_expired(self) -> int:
        try:
            with Session(self.engine) as session:
                result = session.execute(
                    delete(LedgerEntry).where(LedgerEntry.expires_at <= self._now())
                )
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise LedgerUnavailableError(f"Ledger purge failed: {e}") from e


class Ledger:
    """
    Which items have been delivered or permanently rejected, plus
    per-source last-fetch timestamps for due-scheduling.
    """

    def __init__(
        self,
        store: KeyValueStore,
        delivered_ttl_seconds: int = DELIVERED_TTL_SECONDS,
        rejected_ttl_seconds: int = REJECTED_TTL_SECONDS,
        fetch_state_ttl_seconds: int = FETCH_STATE_TTL_SECONDS,
    ):
        self.store = store
        self.delivered_ttl_seconds = delivered_ttl_seconds
        self.rejected_ttl_seconds = rejected_ttl_seconds
        self.fetch_state_ttl_seconds = fetch_state_ttl_seconds

    @classmethod
    def from_engine(cls, engine: Engine, clock: Clock) -> "Ledger":
        return cls(KeyValueStore(engine, clock))

    # --- delivery ledger ---

    def has_entry(self, key: str) -> bool:
        return self.store.get(key) is not None

    def status(self, key: str) -> LedgerStatus | None:
        value = self.store.get(key)
        if value is None:
            return None
        try:
            return LedgerStatus(value)
        except ValueError:
            # foreign marker (e.g. seeded by hand); still counts as handled
            return LedgerStatus.DELIVERED

    def handled(self, keys: Iterable[str]) -> set[str]:
        return set(self.store.get_many(keys))

    def mark_delivered(self, key: str) -> None:
        self.store.put(key, LedgerStatus.DELIVERED.value, self.delivered_ttl_seconds)

    def mark_rejected(self, key: str) -> None:
        self.store.put(key, LedgerStatus.REJECTED.value, self.rejected_ttl_seconds)

    # --- source fetch state ---

    @staticmethod
    def fetch_state_key(pipeline: str, source: str) -> str:
        return f"lastfetch:{pipeline}:{source}"

    def last_fetched(self, pipeline: str, source: str) -> datetime | None:
        key = self.fetch_state_key(pipeline, source)
        value = self.store.get(key)
        if value is None:
            return None
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            logger.warning("Ignoring unreadable fetch timestamp %r for %s", value, key)
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def mark_fetched(self, pipeline: str, source: str, when: datetime) -> None:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        self.store.put(
            self.fetch_state_key(pipeline, source),
            when.astimezone(timezone.utc).isoformat(timespec="seconds"),
            self.fetch_state_ttl_seconds,
        )

    def purge_expired(self) -> int:
        return self.store.purge_expired()
