from __future__ import annotations

from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    # "{namespace}:{item id}[:{status}]", "lastfetch:{pipeline}:{source}", "runlock:{pipeline}"
    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(String(64), nullable=False)

    # naive UTC; rows past this point read as absent
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
