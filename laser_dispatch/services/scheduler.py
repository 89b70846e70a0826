"""Due-scheduling for pipelines with more sources than one run should poll.

A source is due when it has never been fetched or its last fetch is at
least ``fetch_interval_seconds`` old. When more sources are due than one
run may poll, the ones waiting longest win: never-fetched first, then the
oldest stamp, ties broken by configured order. The chosen sources come
back in configured order. Every selected source is stamped "fetched now"
up front, so a source that keeps failing still waits its turn instead of
eating the budget every run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Sequence

from laser_dispatch.config.pipelines import SourceDescriptor
from laser_dispatch.services.ledger import Ledger

logger = logging.getLogger(__name__)


def is_due(source: SourceDescriptor, last_fetched: datetime | None, now: datetime) -> bool:
    if source.fetch_interval_seconds <= 0 or last_fetched is None:
        return True
    return now - last_fetched >= timedelta(seconds=source.fetch_interval_seconds)


def _waiting_longest(entry: tuple[int, SourceDescriptor, datetime | None]) -> tuple:
    position, _, last = entry
    if last is None:
        return (0, position)
    return (1, last, position)


def select_due_sources(
    pipeline: str,
    sources: Sequence[SourceDescriptor],
    ledger: Ledger,
    now: datetime,
    max_sources: int | None = None,
) -> list[SourceDescriptor]:
    """
    Return the sources eligible for polling this run, in input order.
    Over max_sources, keep the ones whose last fetch is oldest.
    """
    due: list[tuple[int, SourceDescriptor, datetime | None]] = []
    for position, source in enumerate(sources):
        if source.fetch_interval_seconds > 0:
            last = ledger.last_fetched(pipeline, source.key)
        else:
            last = None
        if is_due(source, last, now):
            due.append((position, source, last))
        else:
            logger.debug("%s: %s not due (last fetched %s)", pipeline, source.key, last)

    if max_sources is not None and len(due) > max_sources:
        logger.info(
            "%s: %d sources due, polling %d this run", pipeline, len(due), max_sources
        )
        due = sorted(sorted(due, key=_waiting_longest)[:max_sources], key=lambda e: e[0])

    return [source for _, source, _ in due]


def mark_polled(
    pipeline: str,
    sources: Sequence[SourceDescriptor],
    ledger: Ledger,
    now: datetime,
) -> None:
    for source in sources:
        ledger.mark_fetched(pipeline, source.key, now)
