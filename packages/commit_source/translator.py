"""
Record Translator.

Converts raw GitHub commit payloads into Commit records. Pure: the fetcher is
responsible for loading any detail (file lists) the translator reads.
"""

from typing import Any, Dict, List, Optional, Protocol

from pydantic import ValidationError

from core.constants import UNKNOWN_AUTHOR

from .errors import TranslationError
from .models import Commit, FileChanged
from .utils import parse_iso_date, safe_get


class RecordTranslator(Protocol):
    """Converts one raw event into one record."""

    def translate(self, raw: Dict[str, Any]) -> Commit: ...


class GitHubCommitTranslator:
    """
    Translate REST commit objects (GET /repos/{repo}/commits[/{sha}]).

    Field mapping:
        timestamp      <- commit.committer.date
        author         <- author.login, "unknown" when GitHub has no linked user
        files_changed  <- files[].filename / files[].changes (empty when absent)
        sha            <- sha
    """

    def __init__(self, repo: Optional[str] = None):
        self.repo = repo

    def translate(self, raw: Dict[str, Any]) -> Commit:
        if not isinstance(raw, dict):
            raise TranslationError(f"Expected a commit object, got {type(raw).__name__}")

        sha = raw.get("sha")
        if not isinstance(sha, str) or not sha:
            raise TranslationError(f"Commit object has no sha: {sha!r}")

        date_str = safe_get(raw, "commit", "committer", "date")
        timestamp = parse_iso_date(date_str)
        if timestamp is None:
            raise TranslationError(f"Commit {sha} has no valid committer date: {date_str!r}")

        author = safe_get(raw, "author", "login") or UNKNOWN_AUTHOR

        try:
            return Commit(
                timestamp=timestamp,
                author=author,
                files_changed=self._translate_files(raw.get("files"), sha),
                sha=sha,
                repo=self.repo,
            )
        except ValidationError as e:
            raise TranslationError(f"Commit {sha} failed validation: {e}") from e

    def _translate_files(self, files: Any, sha: Optional[str]) -> List[FileChanged]:
        if files is None:
            return []
        if not isinstance(files, list):
            raise TranslationError(f"Commit {sha} has a non-list 'files' field")

        changed = []
        for entry in files:
            filename = entry.get("filename") if isinstance(entry, dict) else None
            lines = entry.get("changes", 0) if isinstance(entry, dict) else None
            if not filename or not isinstance(lines, int) or lines < 0:
                raise TranslationError(f"Commit {sha} has a malformed file entry: {entry!r}")
            changed.append(FileChanged(filename=filename, lines_changed=lines))
        return changed


__all__ = ["RecordTranslator", "GitHubCommitTranslator"]
