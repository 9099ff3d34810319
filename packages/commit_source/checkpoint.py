"""
Checkpointing for the commit source.

CheckpointAdapter is the two-method boundary the host uses to capture and
restore the cursor. Stores persist snapshots; the coordinator ties an adapter
to a store for a single source.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

import redis

from core.constants import DEFAULT_CHECKPOINT_KEY_PREFIX
from core.logging import checkpoint_logger as logger

from .cursor import Cursor
from .errors import CheckpointError
from .models import CheckpointSnapshot


class CheckpointAdapter:
    """
    Snapshot and restore the cursor under the engine lock.

    The lock is shared with the poll engine, so a snapshot observes either the
    cursor before an iteration's emit/advance/watermark section or the cursor
    after it, never anything in between.
    """

    def __init__(self, cursor: Cursor, lock: Optional[threading.RLock] = None):
        self._cursor = cursor
        self._lock = lock or threading.RLock()
        self._sealed = False
        self._invalid_reason: Optional[str] = None

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    @property
    def is_valid(self) -> bool:
        return self._invalid_reason is None

    def snapshot(self) -> List[datetime]:
        """
        Capture the persistable state: a single-element list holding the cursor.

        Raises:
            CheckpointError: If the engine failed mid-window.
        """
        with self._lock:
            if self._invalid_reason is not None:
                raise CheckpointError(
                    f"Refusing snapshot after engine failure: {self._invalid_reason}"
                )
            return [self._cursor.last_time]

    def restore(self, state: Sequence[datetime]) -> None:
        """
        Replace the cursor with the first element of a previous snapshot.

        Safe to call repeatedly before the engine starts; the last call wins.

        Raises:
            CheckpointError: If called after the engine started, or if the
                state is empty or does not hold a datetime.
        """
        with self._lock:
            if self._sealed:
                raise CheckpointError("Cannot restore after the engine has started")
            if not state:
                raise CheckpointError("Cannot restore from an empty checkpoint state")
            value = state[0]
            if not isinstance(value, datetime):
                raise CheckpointError(
                    f"Checkpoint state must hold a datetime, got {type(value).__name__}"
                )
            self._cursor.reset(value)
            logger.info("checkpoint_restored", cursor=self._cursor.last_time.isoformat())

    def seal(self) -> None:
        """Mark the engine as started. Further restores are rejected."""
        with self._lock:
            self._sealed = True

    def invalidate(self, reason: str) -> None:
        """Block all further snapshots. Called when an atomic section fails."""
        with self._lock:
            self._invalid_reason = reason


# =============================================================================
# Stores
# =============================================================================

class CheckpointStore(Protocol):
    """Persistence for checkpoint snapshots, keyed by source id."""

    def save(self, snapshot: CheckpointSnapshot) -> None: ...

    def load(self, source_id: str) -> Optional[CheckpointSnapshot]: ...

    def clear(self, source_id: str) -> bool: ...


class MemoryCheckpointStore:
    """In-process store. Snapshots are kept serialized, as a real store would."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def save(self, snapshot: CheckpointSnapshot) -> None:
        with self._lock:
            self._data[snapshot.source_id] = snapshot.to_json()

    def load(self, source_id: str) -> Optional[CheckpointSnapshot]:
        with self._lock:
            payload = self._data.get(source_id)
        if payload is None:
            return None
        return CheckpointSnapshot.from_json(payload)

    def clear(self, source_id: str) -> bool:
        with self._lock:
            return self._data.pop(source_id, None) is not None


class RedisCheckpointStore:
    """
    Redis-backed store. Each source keeps one JSON snapshot under
    "{key_prefix}:{source_id}", overwritten on every save.
    """

    def __init__(self, client: redis.Redis, key_prefix: str = DEFAULT_CHECKPOINT_KEY_PREFIX):
        self._client = client
        self.key_prefix = key_prefix

    def key_for(self, source_id: str) -> str:
        return f"{self.key_prefix}:{source_id}"

    def save(self, snapshot: CheckpointSnapshot) -> None:
        key = self.key_for(snapshot.source_id)
        try:
            self._client.set(key, snapshot.to_json())
        except redis.RedisError as e:
            raise CheckpointError(f"Failed to save checkpoint {key}: {e}") from e

    def load(self, source_id: str) -> Optional[CheckpointSnapshot]:
        key = self.key_for(source_id)
        try:
            payload = self._client.get(key)
        except redis.RedisError as e:
            raise CheckpointError(f"Failed to load checkpoint {key}: {e}") from e

        if payload is None:
            return None
        return CheckpointSnapshot.from_json(payload)

    def clear(self, source_id: str) -> bool:
        key = self.key_for(source_id)
        try:
            return bool(self._client.delete(key))
        except redis.RedisError as e:
            raise CheckpointError(f"Failed to clear checkpoint {key}: {e}") from e


# =============================================================================
# Coordinator
# =============================================================================

class CheckpointCoordinator:
    """Moves snapshots between one source's adapter and a store."""

    def __init__(self, adapter: CheckpointAdapter, store: CheckpointStore, source_id: str):
        self.adapter = adapter
        self.store = store
        self.source_id = source_id

    def checkpoint(self) -> CheckpointSnapshot:
        """Take a snapshot through the adapter and persist it."""
        state = self.adapter.snapshot()
        snapshot = CheckpointSnapshot(source_id=self.source_id, cursor=state[0])
        self.store.save(snapshot)
        logger.info(
            "checkpoint_saved",
            source=self.source_id,
            cursor=snapshot.cursor.isoformat(),
        )
        return snapshot

    def restore_latest(self) -> bool:
        """
        Restore the adapter from the stored snapshot, if there is one.

        Returns:
            True if a snapshot was found and applied.
        """
        snapshot = self.store.load(self.source_id)
        if snapshot is None:
            logger.info("checkpoint_not_found", source=self.source_id)
            return False

        self.adapter.restore([snapshot.cursor])
        return True
