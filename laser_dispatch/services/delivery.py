from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Sequence

import requests

from laser_dispatch.config.pipelines import SourceDescriptor
from laser_dispatch.models.schemas import DeliveryOutcome, Item
from laser_dispatch.services.ledger import Ledger
from laser_dispatch.tools.clock import Clock

logger = logging.getLogger(__name__)

Formatter = Callable[[Item, SourceDescriptor], dict]


# ---------------------------
# Sink
# ---------------------------

class WebhookSink:
    """A single webhook endpoint taking one JSON payload per call."""

    def __init__(self, webhook_url: str, timeout: float = 30.0, session: requests.Session | None = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def post(self, payload: dict) -> requests.Response:
        return self.session.post(self.webhook_url, json=payload, timeout=self.timeout)


# longest rate-limit wait honoured before a retry
MAX_RETRY_AFTER_SECONDS = 300.0


def _usable_wait(value) -> float | None:
    try:
        wait = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(wait) or wait < 0:
        return None
    return min(wait, MAX_RETRY_AFTER_SECONDS)


def retry_after_seconds(response: requests.Response) -> float | None:
    """
    Wait hint from a 429: the Retry-After header, else Discord's JSON
    retry_after field. None when absent or unreadable, capped at
    MAX_RETRY_AFTER_SECONDS.
    """
    raw = response.headers.get("Retry-After")
    if raw is not None:
        wait = _usable_wait(raw)
        if wait is not None:
            return wait

    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("retry_after") is not None:
        return _usable_wait(body["retry_after"])
    return None


# ---------------------------
# Engine
# ---------------------------

@dataclass
class DeliveryStats:
    posted: int = 0
    failed_fatal: int = 0
    failed_transient: int = 0
    deferred: int = 0


class DeliveryEngine:
    def __init__(
        self,
        sink: WebhookSink,
        ledger: Ledger,
        clock: Clock,
        formatter: Formatter,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        pacing_seconds: float = 2.0,
    ):
        self.sink = sink
        self.ledger = ledger
        self.clock = clock
        self.formatter = formatter
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.pacing_seconds = pacing_seconds

    def _backoff(self, attempt: int) -> float:
        return (attempt + 1) * self.backoff_seconds

    def _wait_before_retry(self, attempt: int, seconds: float) -> None:
        # nothing left to retry after the final attempt
        if attempt + 1 < self.max_attempts:
            self.clock.sleep(seconds)

    def deliver(self, item: Item, source: SourceDescriptor) -> DeliveryOutcome:
        """
        Post one item, retrying rate limits, 5xx and transport errors.
        Does not touch the ledger.
        """
        label = item.title[:50]
        try:
            payload = self.formatter(item, source)
        except Exception:
            logger.exception("Could not format %s, treating as rejected", item.ledger_key)
            return DeliveryOutcome.FATAL_REJECTION

        for attempt in range(self.max_attempts):
            try:
                r = self.sink.post(payload)
            except requests.RequestException as e:
                logger.warning(
                    "Network error posting %s (attempt %d/%d): %s",
                    item.ledger_key, attempt + 1, self.max_attempts, e,
                )
                self._wait_before_retry(attempt, self._backoff(attempt))
                continue

            status = r.status_code

            if 200 <= status < 300:
                return DeliveryOutcome.SUCCESS

            if status == 429:
                hint = retry_after_seconds(r)
                wait = hint if hint is not None else self._backoff(attempt)
                logger.info("Rate limited, waiting %.1fs before retry...", wait)
                self._wait_before_retry(attempt, wait)
                continue

            if 400 <= status < 500:
                logger.error("Sink rejected entry (%d): %s", status, label)
                return DeliveryOutcome.FATAL_REJECTION

            if status >= 500:
                logger.warning(
                    "Sink server error (%d), attempt %d/%d", status, attempt + 1, self.max_attempts
                )
                self._wait_before_retry(attempt, self._backoff(attempt))
                continue

            logger.error("Unexpected sink response %d for %s", status, label)
            return DeliveryOutcome.TRANSIENT_FAILURE

        logger.error("Failed to post %s after %d attempts", item.ledger_key, self.max_attempts)
        return DeliveryOutcome.TRANSIENT_FAILURE

    def record(self, item: Item, outcome: DeliveryOutcome) -> None:
        if outcome == DeliveryOutcome.SUCCESS:
            self.ledger.mark_delivered(item.ledger_key)
        elif outcome == DeliveryOutcome.FATAL_REJECTION:
            self.ledger.mark_rejected(item.ledger_key)
        # transient: leave unmarked so the next run picks it up

    def deliver_all(
        self,
        candidates: Sequence[Item],
        sources: dict[str, SourceDescriptor],
        max_deliveries: int | None = None,
    ) -> DeliveryStats:
        """
        Deliver candidates one at a time, in order, writing each outcome to
        the ledger before the next attempt starts.
        """
        stats = DeliveryStats()
        todo = list(candidates)
        if max_deliveries is not None and len(todo) > max_deliveries:
            stats.deferred = len(todo) - max_deliveries
            todo = todo[:max_deliveries]

        for i, item in enumerate(todo):
            if i > 0:
                self.clock.sleep(self.pacing_seconds)

            source = sources.get(item.source)
            if source is None:
                logger.error("No source %r configured for %s, treating as rejected", item.source, item.ledger_key)
                outcome = DeliveryOutcome.FATAL_REJECTION
            else:
                outcome = self.deliver(item, source)
            self.record(item, outcome)

            if outcome == DeliveryOutcome.SUCCESS:
                stats.posted += 1
                logger.info("Posted: [%s] %s", item.source, item.title[:50])
            elif outcome == DeliveryOutcome.FATAL_REJECTION:
                stats.failed_fatal += 1
                logger.warning("Failed (poison pill): [%s] %s", item.source, item.title[:50])
            else:
                stats.failed_transient += 1
                logger.warning("Failed (will retry): [%s] %s", item.source, item.title[:50])

        return stats
