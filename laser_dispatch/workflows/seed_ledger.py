from __future__ import annotations

import logging

from laser_dispatch.config.pipelines import PipelineConfig
from laser_dispatch.services.fetcher import FetchCoordinator, SourceFetcher
from laser_dispatch.services.ledger import Ledger
from laser_dispatch.services.scheduler import mark_polled
from laser_dispatch.tools.clock import Clock, SystemClock
from laser_dispatch.workflows.run_pipeline import source_fetcher

logger = logging.getLogger(__name__)


def seed_pipeline(
    config: PipelineConfig,
    ledger: Ledger,
    clock: Clock | None = None,
    fetch: SourceFetcher | None = None,
) -> dict:
    """
    Mark everything the sources currently list as delivered, without
    posting, so a first deployment does not flood the sink with backlog.
    Every source is fetched regardless of due-scheduling, and stamped.
    """
    clock = clock or SystemClock()
    now = clock.now()

    coordinator = FetchCoordinator(
        fetch or source_fetcher(config),
        clock,
        pacing_seconds=config.fetch_pacing_seconds,
        concurrency=config.fetch_concurrency,
    )
    batches = coordinator.fetch_all(config.sources)

    seeded = 0
    for b in batches:
        for it in b.items:
            ledger.mark_delivered(it.ledger_key)
            seeded += 1
        logger.info("Seeded %d items from %s", len(b.items), b.source.name)

    mark_polled(config.name, config.sources, ledger, now)

    return {
        "pipeline": config.name,
        "sources": len(config.sources),
        "seeded": seeded,
    }
