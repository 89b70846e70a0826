"""Tests for due-scheduling."""

from __future__ import annotations

from datetime import timedelta

from conftest import make_source

from laser_dispatch.services.scheduler import is_due, mark_polled, select_due_sources


class TestIsDue:
    """Tests for the per-source due check."""

    def test_never_fetched_is_due(self, clock) -> None:
        source = make_source("a", "reddit", fetch_interval_seconds=3600)
        assert is_due(source, None, clock.now())

    def test_zero_interval_always_due(self, clock) -> None:
        source = make_source("a", "github")
        assert is_due(source, clock.now(), clock.now())

    def test_not_due_inside_interval(self, clock) -> None:
        source = make_source("a", "reddit", fetch_interval_seconds=3600)
        last = clock.now() - timedelta(minutes=59)
        assert not is_due(source, last, clock.now())

    def test_due_once_interval_elapsed(self, clock) -> None:
        source = make_source("a", "reddit", fetch_interval_seconds=3600)
        last = clock.now() - timedelta(minutes=60)
        assert is_due(source, last, clock.now())


class TestSelectDueSources:
    """Tests for selecting the sources polled in one run."""

    def _sources(self, n: int = 6, interval: int = 3600):
        return [make_source(f"sub{i}", "reddit", fetch_interval_seconds=interval) for i in range(n)]

    def test_all_due_on_first_run(self, ledger, clock) -> None:
        sources = self._sources(3)
        assert select_due_sources("reddit", sources, ledger, clock.now()) == sources

    def test_preserves_input_order_and_caps(self, ledger, clock) -> None:
        sources = self._sources(6)
        selected = select_due_sources("reddit", sources, ledger, clock.now(), max_sources=2)
        assert [s.key for s in selected] == ["sub0", "sub1"]

    def test_polled_source_not_reselected_next_run(self, ledger, clock) -> None:
        sources = self._sources(6)

        first = select_due_sources("reddit", sources, ledger, clock.now(), max_sources=2)
        mark_polled("reddit", first, ledger, clock.now())

        clock.advance(minutes=15)
        second = select_due_sources("reddit", sources, ledger, clock.now(), max_sources=2)
        assert [s.key for s in second] == ["sub2", "sub3"]

    def test_source_returns_after_interval(self, ledger, clock) -> None:
        sources = self._sources(2)
        mark_polled("reddit", sources, ledger, clock.now())

        clock.advance(minutes=30)
        assert select_due_sources("reddit", sources, ledger, clock.now()) == []

        clock.advance(minutes=30)
        assert select_due_sources("reddit", sources, ledger, clock.now()) == sources

    def test_rotation_covers_every_source(self, ledger, clock) -> None:
        sources = self._sources(6, interval=3600)
        seen: list[str] = []

        for _ in range(3):
            selected = select_due_sources("reddit", sources, ledger, clock.now(), max_sources=2)
            mark_polled("reddit", selected, ledger, clock.now())
            seen.extend(s.key for s in selected)
            clock.advance(minutes=15)

        assert seen == [s.key for s in sources]

    def test_cap_prefers_sources_waiting_longest(self, ledger, clock) -> None:
        sources = self._sources(4)
        mark_polled("reddit", sources[:2], ledger, clock.now() - timedelta(hours=3))
        mark_polled("reddit", sources[2:3], ledger, clock.now() - timedelta(hours=5))

        selected = select_due_sources("reddit", sources, ledger, clock.now(), max_sources=2)

        # sub3 was never fetched, sub2 is the oldest stamp; output keeps input order
        assert [s.key for s in selected] == ["sub2", "sub3"]

    def test_tail_of_long_list_is_not_starved(self, ledger, clock) -> None:
        sources = self._sources(21, interval=3600)
        polled = {s.key: 0 for s in sources}

        # every 15 minutes for 6 hours, 5 sources per run
        for _ in range(24):
            selected = select_due_sources("reddit", sources, ledger, clock.now(), max_sources=5)
            mark_polled("reddit", selected, ledger, clock.now())
            for s in selected:
                polled[s.key] += 1
            clock.advance(minutes=15)

        assert polled["sub20"] > 0
        assert min(polled.values()) >= 4
