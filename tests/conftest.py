"""
Pytest fixtures for Commit Stream tests.

No network or Redis server is needed: GitHub is replaced by FakeFetcher or a
mocked requests session, Redis by Mock clients.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from core.config import get_settings
from packages.commit_source.checkpoint import CheckpointAdapter
from packages.commit_source.cursor import Cursor
from packages.commit_source.engine import PollEngine
from packages.commit_source.sink import CollectingSink
from packages.commit_source.translator import GitHubCommitTranslator
from packages.commit_source.utils import parse_iso_date

T0 = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)

SETTINGS_ENV_VARS = [
    "GITHUB_REPO",
    "PAT_TOKEN",
    "GITHUB_TOKEN",
    "START_TIME",
    "POLL_INTERVAL_SECONDS",
    "MAX_WINDOW_SECONDS",
    "PAGE_SIZE",
    "FETCH_TIMEOUT_SECONDS",
    "INCLUDE_FILES",
    "MAX_BACKOFF_SECONDS",
    "SKIP_MALFORMED_EVENTS",
    "CHECKPOINT_BACKEND",
    "CHECKPOINT_INTERVAL_SECONDS",
    "CHECKPOINT_KEY_PREFIX",
    "SINK_BACKEND",
    "STREAM_KEY",
    "MAX_STREAM_LEN",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_DB",
    "REDIS_PASSWORD",
    "LOG_LEVEL",
    "DEBUG",
]


def iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def make_raw_commit(
    sha: str,
    committed_at: datetime,
    login: Optional[str] = "octocat",
    files: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Build a commit object shaped like GET /repos/{repo}/commits/{sha}."""
    raw: Dict[str, Any] = {
        "sha": sha,
        "commit": {
            "author": {"name": "Octo Cat", "date": iso(committed_at)},
            "committer": {"name": "GitHub", "date": iso(committed_at)},
            "message": f"commit {sha}",
        },
        "author": {"login": login} if login else None,
    }
    if files is not None:
        raw["files"] = files
    return raw


class FakeClock:
    """Manually driven wall clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeFetcher:
    """
    Serves canned raw commits filtered to the requested window.

    Exceptions queued in `failures` are raised by the next calls, in order.
    """

    def __init__(self, events: Optional[List[Dict[str, Any]]] = None):
        self.events = list(events or [])
        self.calls: List[tuple] = []
        self.failures: List[Exception] = []

    def list_events(self, since: datetime, until: datetime) -> List[Dict[str, Any]]:
        self.calls.append((since, until))
        if self.failures:
            raise self.failures.pop(0)
        return [
            event
            for event in self.events
            if since <= parse_iso_date(event["commit"]["committer"]["date"]) < until
        ]


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate every test from the developer's environment and settings cache."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def translator() -> GitHubCommitTranslator:
    return GitHubCommitTranslator(repo="apache/flink")


@pytest.fixture
def make_engine(fetcher, translator, sink, clock):
    """Factory for engines over the shared fakes. Keyword overrides pass through."""

    def _make(start: datetime = T0, **kwargs) -> PollEngine:
        cursor = Cursor(start)
        options: Dict[str, Any] = {
            "poll_interval": timedelta(0),
            "max_window": timedelta(hours=1),
            "adapter": CheckpointAdapter(cursor),
            "clock": clock,
            "source_id": "apache/flink",
        }
        options.update(kwargs)
        return PollEngine(
            options.pop("fetcher", fetcher),
            options.pop("translator", translator),
            options.pop("sink", sink),
            cursor,
            **options,
        )

    return _make
