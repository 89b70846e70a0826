"""End-to-end tests for one pipeline run against an in-memory ledger."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from conftest import make_config, make_item, make_response, make_source

from laser_dispatch.config.pipelines import OrderPolicy
from laser_dispatch.db.database import LedgerUnavailableError
from laser_dispatch.models.schemas import RunState
from laser_dispatch.services.ledger import Ledger
from laser_dispatch.workflows.run_pipeline import PipelineRun, run_once, source_fetcher


def _sink(status: int = 204) -> MagicMock:
    sink = MagicMock()
    sink.post.return_value = make_response(status)
    return sink


def _posted_titles(sink: MagicMock) -> list[str]:
    return [c.args[0]["embeds"][0]["title"] for c in sink.post.call_args_list]


class TestRunOnce:
    """Tests for the testable guarantees of a run."""

    def test_idempotent_across_runs(self, ledger, clock) -> None:
        config = make_config([make_source("repo")])
        fetch = lambda s: [make_item("abc123", "repo")]
        sink = _sink()

        first = run_once(config, ledger, clock, fetch=fetch, sink=sink)
        second = run_once(config, ledger, clock, fetch=fetch, sink=sink)

        assert sink.post.call_count == 1
        assert (first.posted, first.skipped) == (1, 0)
        assert (second.posted, second.skipped) == (0, 1)

    def test_oldest_first_delivery_order(self, ledger, clock) -> None:
        config = make_config([make_source("repo")])
        fetch = lambda s: [make_item(i, "repo", title=i) for i in ["A", "B", "C"]]
        sink = _sink()

        run_once(config, ledger, clock, fetch=fetch, sink=sink)

        assert _posted_titles(sink) == ["C", "B", "A"]

    def test_score_ordering(self, ledger, clock) -> None:
        config = make_config(
            [make_source("sub", "reddit")], name="reddit", order_policy=OrderPolicy.SCORE
        )
        fetch = lambda s: [
            make_item(i, "sub", namespace="reddit", title=i, score=score)
            for i, score in [("A", 5), ("B", 500), ("C", 50)]
        ]
        sink = _sink()

        run_once(config, ledger, clock, fetch=fetch, sink=sink)

        assert _posted_titles(sink) == ["B", "C", "A"]

    def test_poison_pill_suppresses_until_expiry(self, ledger, clock) -> None:
        config = make_config([make_source("repo")])
        fetch = lambda s: [make_item("broken", "repo")]
        sink = _sink(400)

        first = run_once(config, ledger, clock, fetch=fetch, sink=sink)
        assert first.failed_fatal == 1

        for _ in range(5):
            clock.advance(hours=4)
            summary = run_once(config, ledger, clock, fetch=fetch, sink=sink)
            assert summary.skipped == 1
        assert sink.post.call_count == 1

        clock.advance(hours=4)  # 24h after the rejection
        run_once(config, ledger, clock, fetch=fetch, sink=sink)
        assert sink.post.call_count == 2

    def test_transient_failure_is_retried_next_run(self, ledger, clock) -> None:
        config = make_config([make_source("repo")], delivery_max_attempts=1)
        fetch = lambda s: [make_item("flaky", "repo")]
        sink = MagicMock()
        sink.post.side_effect = [make_response(503), make_response(200)]

        first = run_once(config, ledger, clock, fetch=fetch, sink=sink)
        second = run_once(config, ledger, clock, fetch=fetch, sink=sink)

        assert first.failed_transient == 1
        assert first.failed == 1
        assert second.posted == 1

    def test_per_run_cap(self, ledger, clock) -> None:
        config = make_config([make_source("repo")], max_deliveries_per_run=10)
        items = [make_item(f"c{n}", "repo") for n in range(50)]
        sink = _sink()

        summary = run_once(config, ledger, clock, fetch=lambda s: items, sink=sink)

        assert sink.post.call_count == 10
        assert summary.posted == 10
        assert summary.deferred == 40
        assert len(ledger.handled(it.ledger_key for it in items)) == 10

        again = run_once(config, ledger, clock, fetch=lambda s: items, sink=sink)
        assert again.posted == 10
        assert again.skipped == 10

    def test_due_scheduling_skips_recently_polled_source(self, ledger, clock) -> None:
        sources = [make_source("sub", "reddit", fetch_interval_seconds=3600)]
        config = make_config(sources, name="reddit")
        fetch = MagicMock(return_value=[])

        run_once(config, ledger, clock, fetch=fetch, sink=_sink())
        clock.advance(minutes=10)
        summary = run_once(config, ledger, clock, fetch=fetch, sink=_sink())

        assert fetch.call_count == 1
        assert summary.sources_selected == 0
        assert summary.sources_total == 1

    def test_failing_source_still_stamped(self, ledger, clock) -> None:
        sources = [make_source("sub", "reddit", fetch_interval_seconds=3600)]
        config = make_config(sources, name="reddit")

        def fetch(source):
            raise ConnectionError("reddit down")

        run_once(config, ledger, clock, fetch=fetch, sink=_sink())

        assert ledger.last_fetched("reddit", "sub") == clock.now()

    def test_partial_failure_isolation(self, ledger, clock) -> None:
        sources = [make_source("good"), make_source("bad"), make_source("also-good")]
        config = make_config(sources)

        def fetch(source):
            if source.key == "bad":
                raise ValueError("malformed payload")
            return [make_item(f"{source.key}-1", source.key)]

        sink = _sink()
        summary = run_once(config, ledger, clock, fetch=fetch, sink=sink)

        assert summary.state == RunState.DONE
        assert summary.posted == 2
        assert summary.sources_selected == 3

    def test_max_item_age_applies(self, ledger, clock) -> None:
        config = make_config([make_source("Claude", "atom")], name="status", max_item_age_seconds=3600)
        fetch = lambda s: [make_item("inc", "Claude", namespace="status", status="resolved")]

        summary = run_once(config, ledger, clock, fetch=fetch, sink=_sink())

        assert summary.stale == 1
        assert summary.posted == 0

    def test_ledger_outage_aborts_run(self, clock) -> None:
        ledger = MagicMock(spec=Ledger)
        ledger.last_fetched.return_value = None
        ledger.mark_fetched.side_effect = LedgerUnavailableError("down")
        config = make_config([make_source("sub", "reddit", fetch_interval_seconds=60)], name="reddit")
        sink = _sink()

        with pytest.raises(LedgerUnavailableError):
            run_once(config, ledger, clock, fetch=lambda s: [], sink=sink)
        sink.post.assert_not_called()


class TestPipelineRun:
    """Tests for the run state machine."""

    def test_reaches_done(self, ledger, clock) -> None:
        run = PipelineRun(make_config([]), ledger, clock, fetch=lambda s: [], sink=_sink())
        assert run.state == RunState.SCHEDULING
        run.execute()
        assert run.state == RunState.DONE

    def test_no_backward_transitions(self, ledger, clock) -> None:
        run = PipelineRun(make_config([]), ledger, clock, fetch=lambda s: [], sink=_sink())
        run.execute()
        with pytest.raises(RuntimeError):
            run._advance(RunState.FETCHING)


class TestSourceFetcher:
    """Tests for routing sources to their fetch collaborator."""

    @patch("laser_dispatch.workflows.run_pipeline.fetch_subreddit_top")
    def test_passes_user_agent_and_timeout(self, mock_fetch) -> None:
        mock_fetch.return_value = []
        source = make_source("ClaudeAI", "reddit")
        config = make_config([source], name="reddit", user_agent="relay-test/2.0", http_timeout_seconds=5)

        source_fetcher(config)(source)

        mock_fetch.assert_called_once_with(source, timeout=5, user_agent="relay-test/2.0")

    @patch("laser_dispatch.workflows.run_pipeline.fetch_repo_commits")
    def test_github_gets_token(self, mock_fetch) -> None:
        mock_fetch.return_value = []
        source = make_source("openai/codex")
        config = make_config([source], github_token="tok")

        source_fetcher(config)(source)

        assert mock_fetch.call_args.kwargs["token"] == "tok"
        assert mock_fetch.call_args.kwargs["user_agent"] == config.user_agent

    def test_item_caps_bound_the_run(self, ledger, clock) -> None:
        sources = [make_source("a"), make_source("b")]
        config = make_config(sources, max_items_per_source=2, max_items_per_run=3, max_deliveries_per_run=10)
        fetch = lambda s: [make_item(f"{s.key}{i}", s.key) for i in range(5)]

        summary = run_once(config, ledger, clock, fetch=fetch, sink=_sink())

        assert summary.items_fetched == 3
        assert summary.posted == 3
