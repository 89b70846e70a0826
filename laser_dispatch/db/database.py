from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from laser_dispatch.config.settings import get_settings
from laser_dispatch.db.models import Base

_engine: Engine | None = None


class LedgerUnavailableError(RuntimeError):
    """The ledger store cannot be read or written; no run may proceed."""


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        s = get_settings()
        _ensure_sqlite_dir(s.database_url)
        _engine = create_engine(s.database_url, future=True)
    return _engine


def init_db(engine: Engine | None = None) -> None:
    """
    Create tables (idempotent) and verify connectivity.
    """
    engine = engine or get_engine()

    try:
        Base.metadata.create_all(engine)

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise LedgerUnavailableError(f"Ledger store unavailable: {e}") from e
