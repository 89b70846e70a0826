from __future__ import annotations

import logging
from datetime import timedelta

from laser_dispatch.config.pipelines import PipelineConfig, SourceDescriptor, build_pipeline
from laser_dispatch.config.settings import Settings, get_settings
from laser_dispatch.db.database import get_engine
from laser_dispatch.models.schemas import Item, RunState, RunSummary
from laser_dispatch.services.dedup import select_candidates
from laser_dispatch.services.delivery import DeliveryEngine, Formatter, WebhookSink
from laser_dispatch.services.fetcher import FetchCoordinator, SourceFetcher
from laser_dispatch.services.formatting import format_item
from laser_dispatch.services.github_ingest import fetch_repo_commits
from laser_dispatch.services.ledger import KeyValueStore, Ledger
from laser_dispatch.services.reddit_ingest import fetch_subreddit_top
from laser_dispatch.services.scheduler import mark_polled, select_due_sources
from laser_dispatch.services.status_ingest import fetch_status_feed
from laser_dispatch.tools.clock import Clock, SystemClock
from laser_dispatch.tools.lock import RunLock

logger = logging.getLogger(__name__)

_STATES = list(RunState)


def source_fetcher(config: PipelineConfig) -> SourceFetcher:
    """The fetch collaborator for each source format in this pipeline."""

    def fetch(source: SourceDescriptor) -> list[Item]:
        timeout = config.http_timeout_seconds
        if source.format == "github":
            return fetch_repo_commits(
                source, token=config.github_token or None, timeout=timeout, user_agent=config.user_agent
            )
        if source.format == "reddit":
            return fetch_subreddit_top(source, timeout=timeout, user_agent=config.user_agent)
        return fetch_status_feed(source, timeout=timeout, user_agent=config.user_agent)

    return fetch


class PipelineRun:
    """
    One pass: scheduling -> fetching -> deduping -> delivering -> done.
    Source and delivery failures only cost their own unit; a ledger
    failure (LedgerUnavailableError) aborts the run.
    """

    def __init__(
        self,
        config: PipelineConfig,
        ledger: Ledger,
        clock: Clock,
        fetch: SourceFetcher | None = None,
        sink: WebhookSink | None = None,
        formatter: Formatter | None = None,
    ):
        self.config = config
        self.ledger = ledger
        self.clock = clock
        self.fetch = fetch or source_fetcher(config)
        self.sink = sink or WebhookSink(config.webhook_url, timeout=config.http_timeout_seconds)
        self.formatter = formatter or format_item
        self.summary = RunSummary(pipeline=config.name, sources_total=len(config.sources))

    @property
    def state(self) -> RunState:
        return self.summary.state

    def _advance(self, state: RunState) -> None:
        current = _STATES.index(self.summary.state)
        if _STATES.index(state) != current + 1:
            raise RuntimeError(f"Illegal run transition {self.summary.state.value} -> {state.value}")
        self.summary.state = state

    def execute(self) -> RunSummary:
        c = self.config
        s = self.summary
        now = self.clock.now()

        # 1) Scheduling
        selected = select_due_sources(c.name, c.sources, self.ledger, now, c.max_sources_per_run)
        mark_polled(c.name, selected, self.ledger, now)
        s.sources_selected = len(selected)
        logger.info("%s: processing %d of %d sources", c.name, len(selected), len(c.sources))

        # 2) Fetching
        self._advance(RunState.FETCHING)
        coordinator = FetchCoordinator(
            self.fetch,
            self.clock,
            pacing_seconds=c.fetch_pacing_seconds,
            concurrency=c.fetch_concurrency,
            max_items_per_source=c.max_items_per_source,
            max_items_per_run=c.max_items_per_run,
        )
        batches = coordinator.fetch_all(selected)
        s.items_fetched = sum(len(b.items) for b in batches)

        # 3) Deduping
        self._advance(RunState.DEDUPING)
        max_age = timedelta(seconds=c.max_item_age_seconds) if c.max_item_age_seconds else None
        dedup = select_candidates(batches, self.ledger, c.order_policy, now=now, max_age=max_age)
        s.skipped = dedup.skipped
        s.stale = dedup.stale

        # 4) Delivering
        self._advance(RunState.DELIVERING)
        engine = DeliveryEngine(
            self.sink,
            self.ledger,
            self.clock,
            self.formatter,
            max_attempts=c.delivery_max_attempts,
            backoff_seconds=c.delivery_backoff_seconds,
            pacing_seconds=c.delivery_pacing_seconds,
        )
        stats = engine.deliver_all(
            dedup.candidates,
            {src.key: src for src in c.sources},
            max_deliveries=c.max_deliveries_per_run,
        )
        s.posted = stats.posted
        s.failed_fatal = stats.failed_fatal
        s.failed_transient = stats.failed_transient
        s.deferred = stats.deferred

        self._advance(RunState.DONE)
        logger.info(
            "%s done! Posted: %d, failed: %d (fatal %d, retryable %d), skipped: %d, deferred: %d",
            c.name, s.posted, s.failed, s.failed_fatal, s.failed_transient, s.skipped, s.deferred,
        )
        return s


def run_once(
    config: PipelineConfig,
    ledger: Ledger,
    clock: Clock | None = None,
    *,
    fetch: SourceFetcher | None = None,
    sink: WebhookSink | None = None,
    formatter: Formatter | None = None,
) -> RunSummary:
    """Run one pipeline pass. Holds no state between calls."""
    return PipelineRun(config, ledger, clock or SystemClock(), fetch=fetch, sink=sink, formatter=formatter).execute()


def run_configured(name: str, s: Settings | None = None) -> RunSummary:
    """Build the named pipeline from settings and run it against the configured ledger."""
    s = s or get_settings()
    config = build_pipeline(name, s)
    clock = SystemClock()
    store = KeyValueStore(get_engine(), clock)
    ledger = Ledger(store)

    if s.run_lock_enabled:
        with RunLock(store, name):
            return run_once(config, ledger, clock)
    return run_once(config, ledger, clock)
