"""
GitHub Module.

Provides the REST client the commit source polls for:
- Windowed commit listing with full pagination
- Per-commit file detail
- Rate limit tracking
"""

from .client import GitHubCommitFetcher, RateLimitState, RemoteFetcher

__all__ = ["GitHubCommitFetcher", "RateLimitState", "RemoteFetcher"]
