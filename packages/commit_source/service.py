"""
Commit Source Service.

Wires fetcher, translator, sink, cursor, engine and checkpointing together
from Settings and runs the source until it is cancelled.
"""

import signal
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import redis

from core.config import Settings
from core.logging import get_logger
from core.redis_client import connect_redis, health_check

from .checkpoint import (
    CheckpointAdapter,
    CheckpointCoordinator,
    CheckpointStore,
    MemoryCheckpointStore,
    RedisCheckpointStore,
)
from .cursor import Cursor
from .engine import PollEngine
from .errors import CommitSourceError
from .github.client import GitHubCommitFetcher, RemoteFetcher
from .scheduler import CheckpointScheduler
from .sink import EmissionSink, LoggingSink, RedisStreamSink
from .translator import GitHubCommitTranslator, RecordTranslator
from .utils import utc_now

logger = get_logger("service")


def build_sink(settings: Settings, redis_client: Optional[redis.Redis] = None) -> EmissionSink:
    """Create the emission sink selected by SINK_BACKEND."""
    if settings.sink_backend == "redis":
        if redis_client is None:
            raise CommitSourceError("SINK_BACKEND=redis requires a Redis client")
        return RedisStreamSink(
            redis_client,
            stream_key=settings.stream_key,
            max_len=settings.max_stream_len,
        )
    return LoggingSink()


def build_store(settings: Settings, redis_client: Optional[redis.Redis] = None) -> CheckpointStore:
    """Create the checkpoint store selected by CHECKPOINT_BACKEND."""
    if settings.checkpoint_backend == "redis":
        if redis_client is None:
            raise CommitSourceError("CHECKPOINT_BACKEND=redis requires a Redis client")
        return RedisCheckpointStore(redis_client, key_prefix=settings.checkpoint_key_prefix)
    return MemoryCheckpointStore()


class CommitSourceService:
    """
    Runs one commit source with periodic checkpointing.

    Lifecycle of run():
        1. Restore the latest checkpoint, if any
        2. Start the checkpoint scheduler
        3. Run the engine until SIGINT/SIGTERM or cancel()
        4. Take a final checkpoint, stop the scheduler, close connections
    """

    def __init__(
        self,
        engine: PollEngine,
        coordinator: CheckpointCoordinator,
        scheduler: CheckpointScheduler,
        redis_client: Optional[redis.Redis] = None,
    ):
        self.engine = engine
        self.coordinator = coordinator
        self.scheduler = scheduler
        self.redis_client = redis_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        fetcher: Optional[RemoteFetcher] = None,
        translator: Optional[RecordTranslator] = None,
        sink: Optional[EmissionSink] = None,
        store: Optional[CheckpointStore] = None,
        redis_client: Optional[redis.Redis] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "CommitSourceService":
        """
        Build a service from settings. Collaborators passed in explicitly take
        precedence over the ones the settings would select.

        Raises:
            CommitSourceError: If the configuration is not runnable.
        """
        errors, warnings = settings.validate_runtime_config()
        for warning in warnings:
            logger.warning("config_warning", message=warning)
        if errors:
            raise CommitSourceError("Invalid configuration: " + "; ".join(errors))

        if redis_client is None and (
            (sink is None and settings.sink_backend == "redis")
            or (store is None and settings.checkpoint_backend == "redis")
        ):
            redis_client = connect_redis(settings)

        cursor = Cursor(settings.start_time or clock())
        adapter = CheckpointAdapter(cursor)
        engine = PollEngine(
            fetcher or GitHubCommitFetcher.from_settings(settings),
            translator or GitHubCommitTranslator(repo=settings.github_repo),
            sink or build_sink(settings, redis_client),
            cursor,
            poll_interval=settings.poll_interval,
            max_window=settings.max_window,
            max_backoff=settings.max_backoff,
            skip_malformed_events=settings.skip_malformed_events,
            adapter=adapter,
            clock=clock,
            source_id=settings.github_repo,
        )
        coordinator = CheckpointCoordinator(
            adapter,
            store or build_store(settings, redis_client),
            source_id=settings.github_repo,
        )
        scheduler = CheckpointScheduler(coordinator, settings.checkpoint_interval_seconds)
        return cls(engine, coordinator, scheduler, redis_client=redis_client)

    def run(self, install_signal_handlers: bool = True) -> None:
        """Run the source in the calling thread until cancelled."""
        previous_handlers: Dict[int, Any] = {}
        try:
            restored = self.coordinator.restore_latest()
            logger.info(
                "source_starting",
                source=self.coordinator.source_id,
                restored=restored,
                cursor=self.engine.cursor.last_time,
            )

            if install_signal_handlers:
                previous_handlers = self._install_signal_handlers()
            self.scheduler.start()
            self.engine.run()
            self.coordinator.checkpoint()
        finally:
            self._restore_signal_handlers(previous_handlers)
            self.scheduler.stop()
            self.close()

        logger.info("source_stopped", stats=self.engine.get_stats())

    def cancel(self) -> None:
        self.engine.cancel()

    def close(self) -> None:
        """Release the HTTP session and Redis connections."""
        close_fetcher = getattr(self.engine.fetcher, "close", None)
        if callable(close_fetcher):
            close_fetcher()
        if self.redis_client is not None:
            self.redis_client.close()

    def _install_signal_handlers(self) -> Dict[int, Any]:
        """Route SIGINT/SIGTERM to cancel(). Only possible from the main thread."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("signal_handlers_skipped", reason="not main thread")
            return {}

        def _handle(signum, frame):  # noqa: ARG001
            logger.info("signal_received", signal=signal.Signals(signum).name)
            self.cancel()

        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, _handle)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def get_stats(self) -> Dict[str, Any]:
        """Get combined service statistics."""
        stats: Dict[str, Any] = {
            "engine": self.engine.get_stats(),
            "checkpoints": self.scheduler.get_stats(),
        }
        fetcher_stats = getattr(self.engine.fetcher, "get_stats", None)
        if callable(fetcher_stats):
            stats["fetcher"] = fetcher_stats()
        sink_stats = getattr(self.engine.sink, "get_stats", None)
        if callable(sink_stats):
            stats["sink"] = sink_stats()
        if self.redis_client is not None:
            stats["redis"] = health_check(self.redis_client)
        return stats


__all__ = ["CommitSourceService", "build_sink", "build_store"]
