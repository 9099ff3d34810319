"""
GitHub REST client for commit history.

Features:
- Paginated commit listing bounded by a time window
- Optional per-commit detail requests for file lists
- Rate limit tracking from response headers
- Status codes mapped onto transient / fatal fetch errors
"""

import threading
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

import requests  # type: ignore[import-untyped]

from core.config import Settings
from core.constants import (
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_PAGE_SIZE,
    GITHUB_API_BASE,
    GITHUB_API_VERSION,
    RATE_LIMIT_REMAINING_HEADER,
    RATE_LIMIT_RESET_HEADER,
    RATE_LIMIT_STATUS_CODES,
    RETRY_AFTER_HEADER,
    TRANSIENT_STATUS_CODES,
    USER_AGENT,
)
from core.logging import github_logger as logger

from ..errors import FetchError, RateLimitedError, TransientFetchError
from ..models import Window
from ..utils import ensure_utc, format_iso_z, parse_iso_date, safe_get


class RemoteFetcher(Protocol):
    """Source of raw events for a half-open time interval."""

    def list_events(self, since: datetime, until: datetime) -> List[Dict[str, Any]]:
        """
        Return every event with since <= time < until, pagination fully drained.

        Raises:
            TransientFetchError: Retryable failure (network, timeout, rate limit, 5xx).
            FetchError: Non-retryable failure (auth, unknown repository).
        """
        ...


class RateLimitState:
    """
    Tracks GitHub API rate limits from X-RateLimit-* headers.

    Thread-safe so stats can be read from outside the engine thread.
    """

    def __init__(self, limit: int = 5000):
        self.remaining = limit
        self.reset_at: int = 0
        self._lock = threading.Lock()

    def update(self, headers: Any) -> None:
        """Update tracking from response headers."""
        if RATE_LIMIT_REMAINING_HEADER not in headers:
            return
        with self._lock:
            try:
                self.remaining = int(headers[RATE_LIMIT_REMAINING_HEADER])
                self.reset_at = int(headers.get(RATE_LIMIT_RESET_HEADER, 0))
            except (TypeError, ValueError):
                logger.debug("rate_limit_header_unparseable", headers=dict(headers))

    def seconds_until_reset(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds until the limit resets, or None when unknown or already past."""
        with self._lock:
            reset_at = self.reset_at
        if reset_at <= 0:
            return None
        wait = reset_at - (now if now is not None else time.time())
        return wait if wait > 0 else None

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {"remaining": self.remaining, "reset_at": self.reset_at}


class GitHubCommitFetcher:
    """
    Lists the commits of one repository inside a time window.

    Example:
        fetcher = GitHubCommitFetcher("apache/flink", token=token)
        raw = fetcher.list_events(since, until)
    """

    def __init__(
        self,
        repo: str,
        token: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        include_files: bool = True,
        session: Optional[requests.Session] = None,
        api_base: str = GITHUB_API_BASE,
    ):
        if not repo or "/" not in repo:
            raise ValueError(f"Repository must be 'owner/name', got {repo!r}")
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")

        self.repo = repo
        self.token = token
        self.page_size = page_size
        self.timeout = timeout
        self.include_files = include_files
        self.api_base = api_base.rstrip("/")
        self.rate_limit = RateLimitState()
        self.session = session or requests.Session()
        self.session.headers.update(self._headers())
        self.requests_made = 0

        if not token:
            logger.warning("no_token", message="PAT_TOKEN not set, using unauthenticated requests")

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubCommitFetcher":
        return cls(
            repo=settings.github_repo,
            token=settings.pat_token,
            page_size=settings.page_size,
            timeout=settings.fetch_timeout_seconds,
            include_files=settings.include_files,
        )

    def __enter__(self) -> "GitHubCommitFetcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def _headers(self) -> Dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    # =========================================================================
    # Requests
    # =========================================================================

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """
        Issue a GET and decode the JSON body.

        Returns None for 409 (the repository has no commits yet).
        """
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientFetchError(f"GitHub request failed: {e}") from e
        except requests.RequestException as e:
            raise FetchError(f"GitHub request could not be sent: {e}") from e

        self.requests_made += 1
        self.rate_limit.update(response.headers)
        status = response.status_code

        if status == 200:
            try:
                return response.json()
            except ValueError as e:
                raise TransientFetchError(f"GitHub returned an undecodable body: {e}", status) from e
        if status == 409:
            logger.debug("repository_empty", repo=self.repo)
            return None
        if status in RATE_LIMIT_STATUS_CODES and self._is_rate_limited(response):
            retry_after = self._retry_after(response)
            logger.warning("rate_limited", status=status, retry_after=retry_after)
            raise RateLimitedError(
                f"GitHub rate limit exhausted (HTTP {status})",
                status_code=status,
                retry_after=retry_after,
            )
        if status in TRANSIENT_STATUS_CODES:
            raise TransientFetchError(f"GitHub server error (HTTP {status})", status)
        if status == 401:
            logger.error("api_auth_failed", url=url)
            raise FetchError("GitHub rejected the credentials (HTTP 401)", status)
        if status == 404:
            raise FetchError(f"Repository {self.repo} not found (HTTP 404)", status)

        logger.error("api_error", status=status, url=url)
        raise FetchError(f"Unexpected GitHub response (HTTP {status})", status)

    def _is_rate_limited(self, response: requests.Response) -> bool:
        """
        429 is always a rate limit. 403 is one only when GitHub says so;
        otherwise it is a permission failure.
        """
        if response.status_code == 429:
            return True
        if RETRY_AFTER_HEADER in response.headers:
            return True
        if response.headers.get(RATE_LIMIT_REMAINING_HEADER) == "0":
            return True
        return "rate limit" in (response.text or "").lower()

    def _retry_after(self, response: requests.Response) -> Optional[float]:
        header = response.headers.get(RETRY_AFTER_HEADER)
        if header is not None:
            try:
                return max(float(header), 0.0)
            except ValueError:
                pass
        return self.rate_limit.seconds_until_reset()

    # =========================================================================
    # Commits
    # =========================================================================

    def list_events(self, since: datetime, until: datetime) -> List[Dict[str, Any]]:
        """
        List all commits committed in [since, until).

        The API bounds are second-granular and inclusive, so the request is
        widened to whole seconds and the result filtered back to the window.
        """
        window = Window(since=ensure_utc(since), until=ensure_utc(until))
        if window.is_empty:
            return []

        url = f"{self.api_base}/repos/{self.repo}/commits"
        upper = window.until.replace(microsecond=0)
        if upper < window.until:
            upper += timedelta(seconds=1)

        commits: List[Dict[str, Any]] = []
        page = 1
        while True:
            params = {
                "since": format_iso_z(window.since),
                "until": format_iso_z(upper),
                "per_page": self.page_size,
                "page": page,
            }
            batch = self._get(url, params)
            if batch is None:
                return []
            if not isinstance(batch, list):
                raise TransientFetchError(f"Expected a list of commits, got {type(batch).__name__}")

            commits.extend(batch)
            if len(batch) < self.page_size:
                break
            page += 1

        in_window = [c for c in commits if self._in_window(c, window)]
        if self.include_files:
            in_window = [self._with_files(c) for c in in_window]

        logger.debug(
            "commits_listed",
            repo=self.repo,
            since=window.since.isoformat(),
            until=window.until.isoformat(),
            pages=page,
            listed=len(commits),
            in_window=len(in_window),
        )
        return in_window

    def get_commit(self, sha: str) -> Dict[str, Any]:
        """Fetch a single commit including its file list."""
        detail = self._get(f"{self.api_base}/repos/{self.repo}/commits/{sha}")
        if not isinstance(detail, dict):
            raise TransientFetchError(f"Expected a commit object for {sha}")
        return detail

    def _with_files(self, commit: Any) -> Any:
        """Replace a listed commit with its detail; items without a sha are left for translation to reject."""
        sha = commit.get("sha") if isinstance(commit, dict) else None
        if not isinstance(sha, str) or not sha:
            return commit
        return self.get_commit(sha)

    @staticmethod
    def _in_window(commit: Dict[str, Any], window: Window) -> bool:
        """
        Keep commits whose committer date lies in the window.

        Commits without a parseable date are kept so translation reports them.
        """
        committed = parse_iso_date(safe_get(commit, "commit", "committer", "date"))
        if committed is None:
            return True
        return window.contains(committed)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "repo": self.repo,
            "requests_made": self.requests_made,
            "rate_limit": self.rate_limit.snapshot(),
        }
