"""
Poll Engine.

Drives the commit source: plan a window from the cursor, fetch and translate
its events, then emit records, advance the cursor and emit the watermark as
one critical section. Sleeps between passes until cancelled.

Threading:
    run() blocks the calling thread. cancel() and CheckpointAdapter.snapshot()
    may be called from any other thread.
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from core.constants import DEFAULT_MAX_WINDOW_SECONDS, DEFAULT_POLL_INTERVAL_SECONDS
from core.logging import LogContext
from core.logging import engine_logger as logger

from .checkpoint import CheckpointAdapter
from .cursor import Cursor
from .errors import TransientFetchError, TranslationError
from .github.client import RemoteFetcher
from .models import Commit, EngineState, EngineStats, IterationResult
from .sink import EmissionSink
from .translator import RecordTranslator
from .utils import utc_now
from .window import next_window

# Caps the backoff exponent so long outages cannot overflow the delay
_MAX_BACKOFF_EXPONENT = 30


class PollEngine:
    """
    Checkpointed, windowed polling loop.

    Example:
        cursor = Cursor(start_time)
        adapter = CheckpointAdapter(cursor)
        engine = PollEngine(fetcher, translator, sink, cursor, adapter=adapter)
        threading.Thread(target=engine.run).start()
        ...
        engine.cancel()
    """

    def __init__(
        self,
        fetcher: RemoteFetcher,
        translator: RecordTranslator,
        sink: EmissionSink,
        cursor: Cursor,
        *,
        poll_interval: timedelta = timedelta(seconds=DEFAULT_POLL_INTERVAL_SECONDS),
        max_window: timedelta = timedelta(seconds=DEFAULT_MAX_WINDOW_SECONDS),
        max_backoff: Optional[timedelta] = None,
        skip_malformed_events: bool = False,
        adapter: Optional[CheckpointAdapter] = None,
        clock: Callable[[], datetime] = utc_now,
        source_id: str = "",
    ):
        if max_window <= timedelta(0):
            raise ValueError(f"max_window must be positive, got {max_window}")
        if poll_interval < timedelta(0):
            raise ValueError(f"poll_interval must not be negative, got {poll_interval}")

        self.fetcher = fetcher
        self.translator = translator
        self.sink = sink
        self.cursor = cursor
        self.poll_interval = poll_interval
        self.max_window = max_window
        self.max_backoff = max_backoff
        self.skip_malformed_events = skip_malformed_events
        self.adapter = adapter or CheckpointAdapter(cursor)
        self.clock = clock
        self.source_id = source_id

        self.state = EngineState.STARTING
        self.stats = EngineStats()
        self._cancelled = threading.Event()

    @property
    def lock(self) -> threading.RLock:
        """The lock guarding emit + advance + watermark."""
        return self.adapter.lock

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Request a stop. Wakes the engine if it is sleeping."""
        if not self._cancelled.is_set():
            logger.info("engine_cancel_requested", source=self.source_id)
        self._cancelled.set()

    # =========================================================================
    # Loop
    # =========================================================================

    def run(self) -> None:
        """
        Poll until cancelled.

        Returns normally on cancellation. Fatal errors (non-transient fetch
        errors, translation errors, sink failures) propagate after the engine
        moves to FAILED.
        """
        with LogContext(source=self.source_id):
            logger.info(
                "engine_started",
                cursor=self.cursor.last_time.isoformat(),
                poll_interval=self.poll_interval.total_seconds(),
                max_window=self.max_window.total_seconds(),
            )
            try:
                while not self._cancelled.is_set():
                    result = self.run_once()
                    if result.cancelled:
                        break
                    self._sleep(self.next_delay(result))
            except Exception as e:
                logger.exception("engine_failed", error=str(e), state=self.state.value)
                raise

            self._set_state(EngineState.CANCELLED)
            logger.info(
                "engine_stopped",
                cursor=self.cursor.last_time.isoformat(),
                iterations=self.stats.iterations,
                records_emitted=self.stats.records_emitted,
            )

    def run_once(self) -> IterationResult:
        """
        Execute a single poll pass without sleeping.

        Transient fetch failures are reported in the result, not raised.
        """
        self.adapter.seal()
        try:
            return self._poll()
        except Exception:
            self._set_state(EngineState.FAILED)
            raise

    def _poll(self) -> IterationResult:
        self._set_state(EngineState.POLLING)
        window = next_window(self.cursor.last_time, self.max_window, self.clock())
        result = IterationResult(window=window)
        self.stats.iterations += 1
        self.stats.last_window = window

        raw: List[Dict[str, Any]] = []
        if not window.is_empty:
            try:
                raw = self.fetcher.list_events(window.since, window.until)
            except TransientFetchError as e:
                self.stats.fetch_failures += 1
                self.stats.consecutive_failures += 1
                result.failed = True
                result.retry_after = getattr(e, "retry_after", None)
                logger.warning(
                    "fetch_failed",
                    since=window.since.isoformat(),
                    until=window.until.isoformat(),
                    error=str(e),
                    consecutive_failures=self.stats.consecutive_failures,
                )
                return result

        if self._cancelled.is_set():
            result.cancelled = True
            logger.info("fetch_discarded", events=len(raw), since=window.since.isoformat())
            return result

        result.fetched = len(raw)
        records = self._translate(raw, result)
        self._emit_window(records, result)
        self.stats.consecutive_failures = 0
        return result

    def _translate(self, raw: List[Dict[str, Any]], result: IterationResult) -> List[Commit]:
        records = []
        for event in raw:
            try:
                records.append(self.translator.translate(event))
            except TranslationError as e:
                if not self.skip_malformed_events:
                    raise
                result.dropped += 1
                self.stats.dropped_events += 1
                logger.warning("event_dropped", error=str(e))

        records.sort(key=lambda record: record.timestamp)
        return records

    def _emit_window(self, records: List[Commit], result: IterationResult) -> None:
        """Emit records, advance the cursor and emit the watermark under the lock."""
        window = result.window
        with self.lock:
            try:
                self._set_state(EngineState.EMITTING)
                for record in records:
                    self.sink.emit(record, record.timestamp_millis)

                self._set_state(EngineState.ADVANCING)
                self.cursor.advance(window.until)

                self._set_state(EngineState.WATERMARKING)
                watermark = self.cursor.millis
                self.sink.advance_watermark(watermark)
            except Exception as e:
                self.adapter.invalidate(f"{type(e).__name__}: {e}")
                raise

        result.emitted = len(records)
        result.watermark = watermark
        self.stats.records_emitted += len(records)
        self.stats.last_watermark = watermark

        logger.info(
            "window_emitted",
            since=window.since.isoformat(),
            until=window.until.isoformat(),
            records=len(records),
            dropped=result.dropped,
            watermark=watermark,
        )

    # =========================================================================
    # Sleeping
    # =========================================================================

    def next_delay(self, result: IterationResult) -> timedelta:
        """
        Delay before the next pass.

        The poll interval, unless backoff is enabled and the pass failed: then
        min(poll_interval * 2**(n-1), max_backoff) for the n-th consecutive
        failure, raised to any rate-limit reset hint (itself capped).
        """
        if not result.failed or self.max_backoff is None:
            return self.poll_interval

        failures = max(self.stats.consecutive_failures, 1)
        exponent = min(failures - 1, _MAX_BACKOFF_EXPONENT)
        cap = self.max_backoff.total_seconds()
        delay = min(self.poll_interval.total_seconds() * 2**exponent, cap)
        if result.retry_after:
            delay = max(delay, min(result.retry_after, cap))
        return timedelta(seconds=delay)

    def _sleep(self, delay: timedelta) -> None:
        self._set_state(EngineState.SLEEPING)
        self._cancelled.wait(delay.total_seconds())

    def _set_state(self, state: EngineState) -> None:
        self.state = state

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        last_window = self.stats.last_window
        return {
            "source": self.source_id,
            "state": self.state.value,
            "cursor": self.cursor.last_time.isoformat(),
            "iterations": self.stats.iterations,
            "records_emitted": self.stats.records_emitted,
            "fetch_failures": self.stats.fetch_failures,
            "consecutive_failures": self.stats.consecutive_failures,
            "dropped_events": self.stats.dropped_events,
            "last_watermark": self.stats.last_watermark,
            "last_window": (
                [last_window.since.isoformat(), last_window.until.isoformat()]
                if last_window
                else None
            ),
            "started_at": self.stats.started_at.isoformat(),
        }


__all__ = ["PollEngine"]
