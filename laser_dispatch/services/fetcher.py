from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Sequence

from laser_dispatch.config.pipelines import SourceDescriptor
from laser_dispatch.models.schemas import Item
from laser_dispatch.tools.clock import Clock

logger = logging.getLogger(__name__)

SourceFetcher = Callable[[SourceDescriptor], list[Item]]


@dataclass
class SourceBatch:
    source: SourceDescriptor
    items: list[Item] = field(default_factory=list)  # natural order, newest first


class FetchCoordinator:
    """
    Pull items from the selected sources.

    concurrency == 1: one source at a time, pacing_seconds between fetches
    (sources behind one rate-limited upstream).
    concurrency > 1: independent endpoints in batches, pacing_seconds
    between batches.

    A source that raises or returns garbage contributes no items.
    """

    def __init__(
        self,
        fetch: SourceFetcher,
        clock: Clock,
        pacing_seconds: float = 0.0,
        concurrency: int = 1,
        max_items_per_source: int | None = None,
        max_items_per_run: int | None = None,
    ):
        self.fetch = fetch
        self.clock = clock
        self.pacing_seconds = pacing_seconds
        self.concurrency = max(1, concurrency)
        self.max_items_per_source = max_items_per_source
        self.max_items_per_run = max_items_per_run

    def _safe_fetch(self, source: SourceDescriptor) -> list[Item]:
        try:
            items = self.fetch(source)
        except Exception:
            logger.exception("Fetch failed for %s", source.name)
            return []

        if items is None:
            return []
        if not isinstance(items, (list, tuple)) or not all(isinstance(it, Item) for it in items):
            logger.error("Fetch for %s returned malformed data, ignoring", source.name)
            return []

        items = list(items)
        if self.max_items_per_source is not None:
            items = items[: self.max_items_per_source]
        return items

    def _fetch_sequential(self, sources: Sequence[SourceDescriptor]) -> list[SourceBatch]:
        batches: list[SourceBatch] = []
        for i, source in enumerate(sources):
            if i > 0:
                self.clock.sleep(self.pacing_seconds)
            batches.append(SourceBatch(source=source, items=self._safe_fetch(source)))
        return batches

    def _fetch_concurrent(self, sources: Sequence[SourceDescriptor]) -> list[SourceBatch]:
        batches: list[SourceBatch] = []
        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            for i in range(0, len(sources), self.concurrency):
                if i > 0:
                    self.clock.sleep(self.pacing_seconds)
                group = list(sources[i : i + self.concurrency])
                logger.info("Fetching batch %d: %s", i // self.concurrency + 1, ", ".join(s.name for s in group))
                # map() keeps source order
                for source, items in zip(group, pool.map(self._safe_fetch, group)):
                    batches.append(SourceBatch(source=source, items=items))
        return batches

    def fetch_all(self, sources: Sequence[SourceDescriptor]) -> list[SourceBatch]:
        if self.concurrency > 1:
            batches = self._fetch_concurrent(sources)
        else:
            batches = self._fetch_sequential(sources)

        if self.max_items_per_run is not None:
            budget = self.max_items_per_run
            for b in batches:
                b.items = b.items[: max(0, budget)]
                budget -= len(b.items)

        for b in batches:
            logger.info("%s: fetched %d items", b.source.name, len(b.items))
        return batches
