from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from laser_dispatch.config.pipelines import OrderPolicy
from laser_dispatch.models.schemas import Item
from laser_dispatch.services.fetcher import SourceBatch
from laser_dispatch.services.ledger import Ledger

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    candidates: list[Item] = field(default_factory=list)
    skipped: int = 0  # already delivered or poison-pilled
    stale: int = 0  # undated or older than the age window


def _ordered(batches: Sequence[SourceBatch], policy: OrderPolicy) -> list[Item]:
    if policy == OrderPolicy.SCORE:
        pooled = [it for b in batches for it in b.items]
        # stable: ties keep fetch order; unscored items go last
        return sorted(pooled, key=lambda it: (it.score is not None, it.score or 0), reverse=True)

    # sources list newest first; announce each source chronologically
    ordered: list[Item] = []
    for b in batches:
        ordered.extend(reversed(b.items))
    return ordered


def select_candidates(
    batches: Sequence[SourceBatch],
    ledger: Ledger,
    policy: OrderPolicy = OrderPolicy.OLDEST_FIRST,
    now: datetime | None = None,
    max_age: timedelta | None = None,
) -> DedupResult:
    """
    Items not yet in the ledger, in delivery order.
    """
    result = DedupResult()
    ordered = _ordered(batches, policy)

    fresh: list[Item] = []
    seen: set[str] = set()
    cutoff = now - max_age if (now is not None and max_age is not None) else None

    for it in ordered:
        if cutoff is not None and (it.published_at is None or it.published_at < cutoff):
            result.stale += 1
            continue
        if it.ledger_key in seen:
            continue
        seen.add(it.ledger_key)
        fresh.append(it)

    handled = ledger.handled(it.ledger_key for it in fresh)

    for it in fresh:
        if it.ledger_key in handled:
            result.skipped += 1
            continue
        result.candidates.append(it)

    logger.info(
        "Dedup: %d new, %d already handled, %d stale",
        len(result.candidates),
        result.skipped,
        result.stale,
    )
    return result
