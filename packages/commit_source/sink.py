"""
Emission Sinks.

Downstream consumers of timestamped records and watermarks. The poll engine
calls both methods only while holding its lock, once per record and then once
for the window's watermark.
"""

import json
import threading
from typing import Any, Dict, List, Optional, Protocol, Tuple

import redis

from core.constants import DEFAULT_STREAM_KEY, MAX_STREAM_LEN
from core.logging import sink_logger as logger

from .errors import SinkError
from .models import Commit


class EmissionSink(Protocol):
    """Receives records with event timestamps and progress watermarks."""

    def emit(self, record: Commit, timestamp_millis: int) -> None: ...

    def advance_watermark(self, timestamp_millis: int) -> None: ...


class CollectingSink:
    """Keeps everything in memory. Used by tests and dry runs."""

    def __init__(self):
        self.records: List[Tuple[Commit, int]] = []
        self.watermarks: List[int] = []
        self._lock = threading.Lock()

    def emit(self, record: Commit, timestamp_millis: int) -> None:
        with self._lock:
            self.records.append((record, timestamp_millis))

    def advance_watermark(self, timestamp_millis: int) -> None:
        with self._lock:
            self.watermarks.append(timestamp_millis)

    @property
    def commits(self) -> List[Commit]:
        with self._lock:
            return [record for record, _ in self.records]


class LoggingSink:
    """Writes every record and watermark to the structured log."""

    def __init__(self):
        self.emitted = 0
        self.last_watermark: Optional[int] = None

    def emit(self, record: Commit, timestamp_millis: int) -> None:
        self.emitted += 1
        logger.info(
            "record_emitted",
            sha=record.sha,
            author=record.author,
            files=len(record.files_changed),
            timestamp=timestamp_millis,
        )

    def advance_watermark(self, timestamp_millis: int) -> None:
        self.last_watermark = timestamp_millis
        logger.info("watermark_advanced", watermark=timestamp_millis)


class RedisStreamSink:
    """
    Redis Streams sink.

    Records are buffered until the window's watermark arrives; the records
    and the watermark are then written in one MULTI/EXEC pipeline, so a
    window reaches the stream completely or not at all.

    Stream entries:
        {"type": "record", "timestamp": "<ms>", "data": "<commit json>"}
        {"type": "watermark", "timestamp": "<ms>"}
    """

    def __init__(
        self,
        client: redis.Redis,
        stream_key: str = DEFAULT_STREAM_KEY,
        max_len: int = MAX_STREAM_LEN,
    ):
        self._client = client
        self.stream_key = stream_key
        self.max_len = max_len
        self._pending: List[Dict[str, str]] = []
        self.published = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def emit(self, record: Commit, timestamp_millis: int) -> None:
        self._pending.append(
            {
                "type": "record",
                "timestamp": str(timestamp_millis),
                "data": json.dumps(record.to_stream_fields()),
            }
        )

    def advance_watermark(self, timestamp_millis: int) -> None:
        """Flush buffered records followed by the watermark."""
        entries = self._pending + [{"type": "watermark", "timestamp": str(timestamp_millis)}]
        pipe = self._client.pipeline(transaction=True)
        for entry in entries:
            pipe.xadd(
                self.stream_key,
                entry,
                maxlen=self.max_len,
                approximate=True,
            )

        try:
            pipe.execute()
        except redis.RedisError as e:
            logger.error("stream_publish_failed", stream=self.stream_key, error=str(e))
            raise SinkError(f"Failed to publish window to {self.stream_key}: {e}") from e
        finally:
            self._pending = []

        self.published += len(entries) - 1
        logger.debug(
            "window_published",
            stream=self.stream_key,
            records=len(entries) - 1,
            watermark=timestamp_millis,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get sink statistics."""
        stats: Dict[str, Any] = {
            "pending": len(self._pending),
            "published": self.published,
        }
        try:
            stats["stream_length"] = self._client.xlen(self.stream_key)
        except redis.RedisError as e:
            logger.debug("stream_length_unavailable", error=str(e))
        return stats


__all__ = ["EmissionSink", "CollectingSink", "LoggingSink", "RedisStreamSink"]
