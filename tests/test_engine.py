"""
Tests for the poll engine.

Tests:
- Window emission (records, cursor, watermark)
- Catch-up after a long gap
- Transient and fatal failures
- Cancellation and the run loop
- Snapshot consistency while a window is being emitted
- Failure backoff
"""

import threading
import time
from datetime import timedelta
from unittest.mock import Mock

import pytest

from conftest import T0, FakeFetcher, make_raw_commit
from packages.commit_source.checkpoint import CheckpointAdapter
from packages.commit_source.errors import (
    CheckpointError,
    FetchError,
    RateLimitedError,
    SinkError,
    TransientFetchError,
    TranslationError,
)
from packages.commit_source.github.client import GitHubCommitFetcher
from packages.commit_source.models import EngineState, IterationResult, Window
from packages.commit_source.sink import CollectingSink
from packages.commit_source.utils import to_epoch_millis

HOUR = timedelta(hours=1)


def ms(moment) -> int:
    return to_epoch_millis(moment)


class CancellingSink(CollectingSink):
    """Cancels the engine once it has seen a number of watermarks."""

    def __init__(self, after: int):
        super().__init__()
        self.after = after
        self.engine = None

    def advance_watermark(self, timestamp_millis: int) -> None:
        super().advance_watermark(timestamp_millis)
        if len(self.watermarks) >= self.after:
            self.engine.cancel()


class TestRunOnce:
    """Tests for a single poll pass."""

    def test_thirty_minute_window(self, make_engine, fetcher, sink, clock):
        """Cursor 30 minutes behind now: one fetch, records, cursor and watermark at now."""
        fetcher.events = [
            make_raw_commit("a1", T0 + timedelta(minutes=5)),
            make_raw_commit("a2", T0 + timedelta(minutes=20)),
            make_raw_commit("a3", T0 + timedelta(minutes=40)),
        ]
        clock.now = T0 + timedelta(minutes=30)
        engine = make_engine()

        result = engine.run_once()

        assert fetcher.calls == [(T0, T0 + timedelta(minutes=30))]
        assert [c.sha for c in sink.commits] == ["a1", "a2"]
        assert [ts for _, ts in sink.records] == [
            ms(T0 + timedelta(minutes=5)),
            ms(T0 + timedelta(minutes=20)),
        ]
        assert sink.watermarks == [ms(T0 + timedelta(minutes=30))]
        assert engine.cursor.last_time == T0 + timedelta(minutes=30)
        assert result.emitted == 2
        assert result.watermark == ms(T0 + timedelta(minutes=30))

    def test_records_emitted_oldest_first(self, make_engine, fetcher, sink, clock):
        """GitHub lists newest first; records go out in event-time order."""
        fetcher.events = [
            make_raw_commit("new", T0 + timedelta(minutes=50)),
            make_raw_commit("old", T0 + timedelta(minutes=10)),
        ]
        clock.now = T0 + HOUR

        make_engine().run_once()

        assert [c.sha for c in sink.commits] == ["old", "new"]

    def test_watermark_follows_records(self, make_engine, fetcher, clock):
        """Every record of a window is emitted before its watermark."""
        order = []

        class OrderSink:
            def emit(self, record, timestamp_millis):
                order.append(("record", record.sha))

            def advance_watermark(self, timestamp_millis):
                order.append(("watermark", timestamp_millis))

        fetcher.events = [make_raw_commit("a1", T0 + timedelta(minutes=1))]
        clock.now = T0 + timedelta(minutes=2)

        make_engine(sink=OrderSink()).run_once()

        assert order == [("record", "a1"), ("watermark", ms(T0 + timedelta(minutes=2)))]

    def test_five_hour_gap_catches_up_in_hour_windows(self, make_engine, fetcher, sink, clock):
        """A cursor 5 hours behind is drained in five 1-hour windows, then goes empty."""
        fetcher.events = [
            make_raw_commit(f"h{h}", T0 + timedelta(hours=h, minutes=30)) for h in range(5)
        ]
        clock.now = T0 + timedelta(hours=5)
        engine = make_engine()

        for _ in range(5):
            engine.run_once()

        assert fetcher.calls == [
            (T0 + timedelta(hours=h), T0 + timedelta(hours=h + 1)) for h in range(5)
        ]
        assert [c.sha for c in sink.commits] == ["h0", "h1", "h2", "h3", "h4"]
        assert sink.watermarks == [ms(T0 + timedelta(hours=h + 1)) for h in range(5)]
        assert engine.cursor.last_time == T0 + timedelta(hours=5)

        result = engine.run_once()

        assert result.window.is_empty
        assert len(fetcher.calls) == 5

    def test_empty_window_skips_fetch_but_emits_watermark(self, make_engine, fetcher, sink):
        engine = make_engine()

        result = engine.run_once()

        assert result.window.is_empty
        assert fetcher.calls == []
        assert sink.records == []
        assert sink.watermarks == [ms(T0)]

    def test_clock_behind_cursor_keeps_watermark(self, make_engine, fetcher, sink, clock):
        """Clock skew yields an empty window and repeats the current watermark."""
        clock.now = T0 - timedelta(minutes=10)
        engine = make_engine()

        engine.run_once()

        assert fetcher.calls == []
        assert engine.cursor.last_time == T0
        assert sink.watermarks == [ms(T0)]

    def test_watermarks_never_decrease(self, make_engine, fetcher, sink, clock):
        fetcher.events = [make_raw_commit("a", T0 + timedelta(minutes=90))]
        engine = make_engine()

        for step in (timedelta(minutes=45), timedelta(hours=2), -timedelta(hours=1), timedelta(0)):
            clock.advance(step)
            engine.run_once()

        assert sink.watermarks == sorted(sink.watermarks)
        assert all(ts <= sink.watermarks[-1] for _, ts in sink.records)


class TestFailures:
    """Tests for transient and fatal failures."""

    def test_transient_failure_leaves_cursor_unchanged(self, make_engine, fetcher, sink, clock):
        fetcher.events = [make_raw_commit("a1", T0 + timedelta(minutes=10))]
        fetcher.failures = [TransientFetchError("503")]
        clock.now = T0 + timedelta(minutes=30)
        engine = make_engine()

        result = engine.run_once()

        assert result.failed
        assert engine.cursor.last_time == T0
        assert sink.records == []
        assert sink.watermarks == []
        assert engine.stats.fetch_failures == 1

        engine.run_once()

        assert fetcher.calls == [(T0, T0 + timedelta(minutes=30))] * 2
        assert [c.sha for c in sink.commits] == ["a1"]
        assert engine.stats.consecutive_failures == 0

    def test_rate_limit_is_transient(self, make_engine, fetcher, clock):
        fetcher.failures = [RateLimitedError("limited", status_code=429, retry_after=12)]
        clock.now = T0 + HOUR

        result = make_engine().run_once()

        assert result.failed
        assert result.retry_after == 12

    def test_non_transient_fetch_error_is_fatal(self, make_engine, fetcher, clock):
        fetcher.failures = [FetchError("not found", status_code=404)]
        clock.now = T0 + HOUR
        engine = make_engine()

        with pytest.raises(FetchError):
            engine.run_once()

        assert engine.state == EngineState.FAILED
        assert engine.cursor.last_time == T0
        assert engine.adapter.snapshot() == [T0]

    def test_translation_error_is_fatal_by_default(self, make_engine, fetcher, sink, clock):
        bad = make_raw_commit("bad", T0 + timedelta(minutes=1))
        bad["commit"]["committer"]["date"] = "not a date"
        fetcher.list_events = lambda since, until: [bad]
        clock.now = T0 + HOUR
        engine = make_engine()

        with pytest.raises(TranslationError):
            engine.run_once()

        assert engine.cursor.last_time == T0
        assert sink.watermarks == []

    def test_malformed_events_skipped_when_enabled(self, make_engine, fetcher, sink, clock):
        good = make_raw_commit("good", T0 + timedelta(minutes=1))
        bad = make_raw_commit("bad", T0 + timedelta(minutes=2), files=[{"changes": 3}])
        fetcher.events = [good, bad]
        clock.now = T0 + HOUR
        engine = make_engine(skip_malformed_events=True)

        result = engine.run_once()

        assert [c.sha for c in sink.commits] == ["good"]
        assert result.dropped == 1
        assert engine.stats.dropped_events == 1
        assert engine.cursor.last_time == T0 + HOUR

    def test_events_failing_record_validation_skipped_when_enabled(self, make_engine, fetcher, sink, clock):
        good = make_raw_commit("good", T0 + timedelta(minutes=1))
        nested_login = make_raw_commit("nested", T0 + timedelta(minutes=2))
        nested_login["author"] = {"login": {"nested": "object"}}
        numeric_sha = make_raw_commit("numeric", T0 + timedelta(minutes=3))
        numeric_sha["sha"] = 12345
        fetcher.events = [good, nested_login, numeric_sha]
        clock.now = T0 + HOUR
        engine = make_engine(skip_malformed_events=True)

        result = engine.run_once()

        assert [c.sha for c in sink.commits] == ["good"]
        assert result.dropped == 2
        assert engine.state != EngineState.FAILED

    def test_sink_failure_invalidates_snapshots(self, make_engine, fetcher, clock):
        class FailingSink(CollectingSink):
            def advance_watermark(self, timestamp_millis):
                raise SinkError("stream unavailable")

        clock.now = T0 + HOUR
        engine = make_engine(sink=FailingSink())

        with pytest.raises(SinkError):
            engine.run_once()

        assert engine.state == EngineState.FAILED
        with pytest.raises(CheckpointError):
            engine.adapter.snapshot()


class TestCheckpointInteraction:
    """Tests for restore and snapshot against a live engine."""

    def test_restore_before_first_iteration(self, make_engine, fetcher, clock):
        clock.now = T0 + timedelta(hours=3)
        engine = make_engine()

        engine.adapter.restore([T0 + timedelta(hours=2)])
        engine.adapter.restore([T0 + timedelta(hours=2)])
        engine.run_once()

        assert fetcher.calls == [(T0 + timedelta(hours=2), T0 + timedelta(hours=3))]

    def test_restore_after_first_iteration_rejected(self, make_engine):
        engine = make_engine()
        engine.run_once()

        with pytest.raises(CheckpointError):
            engine.adapter.restore([T0 + HOUR])

    def test_no_regression_after_restore(self, make_engine, fetcher, sink, clock):
        """Neither queried windows nor watermarks fall below the restored cursor."""
        checkpointed = T0 + HOUR
        restored = T0 + timedelta(hours=2)
        clock.now = T0 + timedelta(hours=4)
        engine = make_engine(start=checkpointed)
        engine.adapter.restore([restored])

        for _ in range(3):
            engine.run_once()

        assert fetcher.calls
        assert all(since >= restored for since, _ in fetcher.calls)
        assert all(until > checkpointed for _, until in fetcher.calls)
        assert min(sink.watermarks) >= ms(restored)

    def test_snapshot_waits_for_emission_to_finish(self, make_engine, fetcher, clock):
        """A snapshot taken mid-window blocks and then sees the advanced cursor."""
        entered = threading.Event()
        release = threading.Event()

        class BlockingSink(CollectingSink):
            def emit(self, record, timestamp_millis):
                entered.set()
                release.wait(5)
                super().emit(record, timestamp_millis)

        fetcher.events = [make_raw_commit("a1", T0 + timedelta(minutes=1))]
        clock.now = T0 + HOUR
        engine = make_engine(sink=BlockingSink())
        snapshots = []

        worker = threading.Thread(target=engine.run_once)
        worker.start()
        assert entered.wait(5)

        snapshotter = threading.Thread(target=lambda: snapshots.append(engine.adapter.snapshot()))
        snapshotter.start()
        time.sleep(0.05)
        assert snapshotter.is_alive()

        release.set()
        worker.join(5)
        snapshotter.join(5)

        assert snapshots == [[T0 + HOUR]]


class TestRunLoop:
    """Tests for run() and cancellation."""

    def test_run_until_cancelled(self, make_engine, clock):
        sink = CancellingSink(after=3)
        engine = make_engine(sink=sink)
        sink.engine = engine

        engine.run()

        assert engine.state == EngineState.CANCELLED
        assert len(sink.watermarks) == 3
        assert engine.stats.iterations == 3

    def test_cancel_before_run_emits_nothing(self, make_engine, sink):
        engine = make_engine()
        engine.cancel()

        engine.run()

        assert sink.watermarks == []
        assert engine.state == EngineState.CANCELLED

    def test_fetch_completing_after_cancel_is_discarded(self, make_engine, sink, clock):
        engine = None

        class CancelDuringFetch(FakeFetcher):
            def list_events(self, since, until):
                engine.cancel()
                return [make_raw_commit("late", since)]

        clock.now = T0 + HOUR
        engine = make_engine(fetcher=CancelDuringFetch())

        result = engine.run_once()

        assert result.cancelled
        assert sink.records == []
        assert sink.watermarks == []
        assert engine.cursor.last_time == T0

    def test_cancel_wakes_sleeping_engine(self, make_engine, sink):
        engine = make_engine(poll_interval=timedelta(minutes=10))
        worker = threading.Thread(target=engine.run)
        worker.start()

        deadline = time.monotonic() + 5
        while engine.state != EngineState.SLEEPING and time.monotonic() < deadline:
            time.sleep(0.01)
        engine.cancel()
        worker.join(5)

        assert not worker.is_alive()
        assert engine.state == EngineState.CANCELLED
        assert sink.watermarks == [ms(T0)]

    def test_fatal_error_propagates_from_run(self, make_engine, fetcher, clock):
        fetcher.failures = [FetchError("bad credentials", status_code=401)]
        clock.now = T0 + HOUR
        engine = make_engine()

        with pytest.raises(FetchError):
            engine.run()

        assert engine.state == EngineState.FAILED


class TestBackoff:
    """Tests for next_delay()."""

    def _failed(self, retry_after=None):
        return IterationResult(window=Window(T0, T0 + HOUR), failed=True, retry_after=retry_after)

    def test_success_uses_poll_interval(self, make_engine):
        engine = make_engine(poll_interval=timedelta(seconds=1), max_backoff=timedelta(seconds=10))

        assert engine.next_delay(IterationResult(window=Window(T0, T0))) == timedelta(seconds=1)

    def test_disabled_backoff_uses_poll_interval(self, make_engine):
        engine = make_engine(poll_interval=timedelta(seconds=1))
        engine.stats.consecutive_failures = 4

        assert engine.next_delay(self._failed()) == timedelta(seconds=1)

    def test_doubles_per_failure_up_to_cap(self, make_engine):
        engine = make_engine(poll_interval=timedelta(seconds=1), max_backoff=timedelta(seconds=10))
        delays = []
        for failures in range(1, 6):
            engine.stats.consecutive_failures = failures
            delays.append(engine.next_delay(self._failed()).total_seconds())

        assert delays == [1, 2, 4, 8, 10]

    def test_long_outage_does_not_overflow(self, make_engine):
        engine = make_engine(poll_interval=timedelta(seconds=1), max_backoff=timedelta(seconds=60))
        engine.stats.consecutive_failures = 5000

        assert engine.next_delay(self._failed()) == timedelta(seconds=60)

    def test_rate_limit_hint_raises_delay_within_cap(self, make_engine):
        engine = make_engine(poll_interval=timedelta(seconds=1), max_backoff=timedelta(seconds=10))
        engine.stats.consecutive_failures = 1

        assert engine.next_delay(self._failed(retry_after=3)) == timedelta(seconds=3)
        assert engine.next_delay(self._failed(retry_after=300)) == timedelta(seconds=10)

    def test_counter_resets_after_success(self, make_engine, fetcher, clock):
        fetcher.failures = [TransientFetchError("a"), TransientFetchError("b")]
        clock.now = T0 + HOUR
        engine = make_engine(max_backoff=timedelta(seconds=10))

        engine.run_once()
        engine.run_once()
        assert engine.stats.consecutive_failures == 2

        engine.run_once()
        assert engine.stats.consecutive_failures == 0
        assert engine.stats.fetch_failures == 2


class TestStats:
    def test_get_stats(self, make_engine, fetcher, clock):
        fetcher.events = [make_raw_commit("a1", T0 + timedelta(minutes=1))]
        clock.now = T0 + HOUR
        engine = make_engine()
        engine.run_once()

        stats = engine.get_stats()

        assert stats["source"] == "apache/flink"
        assert stats["iterations"] == 1
        assert stats["records_emitted"] == 1
        assert stats["last_watermark"] == ms(T0 + HOUR)
        assert stats["state"] == EngineState.WATERMARKING.value

    def test_engine_shares_adapter_lock(self, make_engine):
        engine = make_engine()

        assert isinstance(engine.adapter, CheckpointAdapter)
        assert engine.lock is engine.adapter.lock


class TestWithGitHubFetcher:
    """The engine driving the real fetcher over a mocked HTTP session."""

    def test_three_pages_emitted_before_cursor_moves(self, make_engine, clock):
        commits = [make_raw_commit(f"c{i}", T0 + timedelta(seconds=10 * i)) for i in range(250)]
        pages = [commits[:100], commits[100:200], commits[200:]]
        session = Mock()
        session.headers = {}
        session.get.side_effect = [Mock(status_code=200, headers={}, json=Mock(return_value=page)) for page in pages]
        fetcher = GitHubCommitFetcher("apache/flink", session=session, include_files=False)

        cursor_at_emit = []
        engine = None

        class CursorCheckingSink(CollectingSink):
            def emit(self, record, timestamp_millis):
                cursor_at_emit.append(engine.cursor.last_time)
                super().emit(record, timestamp_millis)

        sink = CursorCheckingSink()
        clock.now = T0 + HOUR
        engine = make_engine(fetcher=fetcher, sink=sink)

        engine.run_once()

        assert session.get.call_count == 3
        assert len(sink.records) == 250
        assert set(cursor_at_emit) == {T0}
        assert sink.watermarks == [ms(T0 + HOUR)]
        assert engine.cursor.last_time == T0 + HOUR
