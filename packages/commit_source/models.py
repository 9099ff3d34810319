"""
Commit Source Data Model.

Records emitted downstream, their file-level sub-changes, and the versioned
checkpoint container persisted between restarts.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from core.constants import CHECKPOINT_FORMAT_VERSION, UNKNOWN_AUTHOR

from .errors import CheckpointError
from .utils import ensure_utc, to_epoch_millis, utc_now


# =============================================================================
# Records
# =============================================================================

class FileChanged(BaseModel):
    """One file touched by a commit."""
    filename: str = Field(min_length=1)
    lines_changed: int = Field(default=0, ge=0)


class Commit(BaseModel):
    """
    A single commit as emitted to the stream.

    timestamp is the committer time and becomes the record's event time.
    sha identifies the commit so consumers can drop replays after a restart.
    """
    timestamp: datetime
    author: str = UNKNOWN_AUTHOR
    files_changed: List[FileChanged] = Field(default_factory=list)
    sha: Optional[str] = None
    repo: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("author")
    @classmethod
    def validate_author(cls, v: str) -> str:
        return v or UNKNOWN_AUTHOR

    @property
    def timestamp_millis(self) -> int:
        """Event time in epoch milliseconds."""
        return to_epoch_millis(self.timestamp)

    def to_stream_fields(self) -> Dict[str, Any]:
        """Flatten into a JSON-safe dict for stream payloads."""
        return self.model_dump(mode="json")


# =============================================================================
# Windows
# =============================================================================

@dataclass(frozen=True)
class Window:
    """Half-open fetch interval [since, until)."""
    since: datetime
    until: datetime

    def __post_init__(self):
        if self.until < self.since:
            raise ValueError(f"Window until {self.until} precedes since {self.since}")

    @property
    def is_empty(self) -> bool:
        return self.since == self.until

    @property
    def width(self) -> timedelta:
        return self.until - self.since

    def contains(self, moment: datetime) -> bool:
        return self.since <= ensure_utc(moment) < self.until


# =============================================================================
# Engine state
# =============================================================================

class EngineState(str, Enum):
    """Poll engine lifecycle states."""
    STARTING = "starting"
    POLLING = "polling"
    EMITTING = "emitting"
    ADVANCING = "advancing"
    WATERMARKING = "watermarking"
    SLEEPING = "sleeping"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class IterationResult:
    """Outcome of one poll pass."""
    window: Window
    fetched: int = 0
    emitted: int = 0
    dropped: int = 0
    watermark: Optional[int] = None
    failed: bool = False
    cancelled: bool = False
    retry_after: Optional[float] = None


@dataclass
class EngineStats:
    """Running counters exposed by PollEngine.get_stats()."""
    iterations: int = 0
    records_emitted: int = 0
    fetch_failures: int = 0
    consecutive_failures: int = 0
    dropped_events: int = 0
    last_watermark: Optional[int] = None
    last_window: Optional[Window] = None
    started_at: datetime = field(default_factory=utc_now)


# =============================================================================
# Checkpoints
# =============================================================================

class CheckpointSnapshot(BaseModel):
    """Versioned container for the persisted cursor."""
    version: int = CHECKPOINT_FORMAT_VERSION
    source_id: str = Field(min_length=1)
    cursor: datetime
    taken_at: datetime = Field(default_factory=utc_now)

    @field_validator("cursor", "taken_at")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload: str | bytes) -> "CheckpointSnapshot":
        """
        Decode a stored snapshot.

        Raises:
            CheckpointError: If the payload is corrupt or written by an
                unknown format version.
        """
        try:
            snapshot = cls.model_validate_json(payload)
        except ValueError as e:
            raise CheckpointError(f"Corrupt checkpoint payload: {e}") from e

        if snapshot.version != CHECKPOINT_FORMAT_VERSION:
            raise CheckpointError(
                f"Unsupported checkpoint version {snapshot.version} "
                f"(expected {CHECKPOINT_FORMAT_VERSION})"
            )
        return snapshot


__all__ = [
    "FileChanged",
    "Commit",
    "Window",
    "EngineState",
    "IterationResult",
    "EngineStats",
    "CheckpointSnapshot",
]
