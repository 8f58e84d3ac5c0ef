"""Value types shared by the probes, the fetch cache and the renderer.

All models are frozen: a snapshot is built once per invocation and only read
afterwards.
"""

from __future__ import annotations

from datetime import timedelta
from enum import StrEnum
from hashlib import md5
from pathlib import Path

from pydantic import BaseModel, Field


class RepoIdentity(BaseModel):
    """Canonical absolute path of a git working-tree root; the cache key."""

    model_config = {"frozen": True}

    root: Path

    @classmethod
    def from_path(cls, path: Path) -> RepoIdentity:
        return cls(root=path.expanduser().resolve())

    @property
    def cache_key(self) -> str:
        """Stable file-name-safe encoding of the root path."""
        return md5(str(self.root).encode()).hexdigest()

    def __str__(self) -> str:
        return str(self.root)


class ProbeKind(StrEnum):
    """Fixed set of probes an invocation can run."""

    VCS_STATUS = "vcs_status"
    CACHE_READ = "cache_read"


class FetchDecision(StrEnum):
    """Outcome of consulting the background fetch manager."""

    SKIPPED = "skipped"
    ALREADY_FRESH = "already_fresh"
    SPAWNED = "spawned"


class VcsState(BaseModel):
    """Local-only working tree state.

    ahead/behind are computed from local refs against the upstream
    remote-tracking ref as of the last fetch; None means no upstream.
    """

    model_config = {"frozen": True}

    branch: str | None  # None = detached HEAD
    commit: str | None  # None = no commits yet
    staged: int = 0
    unstaged: int = 0
    untracked: int = 0
    conflicted: int = 0
    upstream: str | None = None
    ahead: int | None = None
    behind: int | None = None

    @property
    def is_dirty(self) -> bool:
        return bool(self.staged or self.unstaged or self.untracked or self.conflicted)

    @property
    def short_commit(self) -> str | None:
        return self.commit[:8] if self.commit else None


class FetchCacheEntry(BaseModel):
    """Result of the latest background fetch attempt for one repository.

    last_fetch_timestamp and fetch_succeeded describe the latest attempt.
    ahead/behind always hold the counts of the most recent successful fetch;
    a failed attempt carries them forward unchanged.
    """

    model_config = {"frozen": True}

    identity: RepoIdentity
    last_fetch_timestamp: float = Field(..., description="Seconds since epoch of the latest attempt")
    ahead: int | None = None
    behind: int | None = None
    fetch_succeeded: bool
    last_success_timestamp: float | None = Field(
        default=None, description="Seconds since epoch of the latest successful attempt"
    )

    @classmethod
    def succeeded(cls, identity: RepoIdentity, at: float, ahead: int | None, behind: int | None) -> FetchCacheEntry:
        return cls(
            identity=identity,
            last_fetch_timestamp=at,
            ahead=ahead,
            behind=behind,
            fetch_succeeded=True,
            last_success_timestamp=at,
        )

    @classmethod
    def failed_after(cls, identity: RepoIdentity, at: float, previous: FetchCacheEntry | None) -> FetchCacheEntry:
        """Record a failed attempt, preserving the previous successful counts."""
        if previous is None or not previous.has_success:
            return cls(identity=identity, last_fetch_timestamp=at, fetch_succeeded=False)
        return cls(
            identity=identity,
            last_fetch_timestamp=at,
            ahead=previous.ahead,
            behind=previous.behind,
            fetch_succeeded=False,
            last_success_timestamp=previous.last_success_timestamp,
        )

    @property
    def has_success(self) -> bool:
        return self.last_success_timestamp is not None

    def age(self, now: float) -> float:
        return now - self.last_fetch_timestamp


class ProbeResult(BaseModel):
    """Uniform result shape for every probe kind."""

    model_config = {"frozen": True}

    kind: ProbeKind
    payload: VcsState | FetchCacheEntry | None = None
    completed: bool
    duration: timedelta
    error: str | None = None


class PromptSnapshot(BaseModel):
    """Everything the renderer needs for one prompt draw."""

    model_config = {"frozen": True}

    cwd: Path
    identity: RepoIdentity | None = None
    vcs: VcsState | None = None
    # Remote-derived, from the most recent successful fetch
    ahead: int | None = None
    behind: int | None = None
    fetched_at: float | None = None
    fetch_decision: FetchDecision | None = None
    partial: bool = False
    timed_out: frozenset[ProbeKind] = frozenset()

    @property
    def is_repository(self) -> bool:
        return self.identity is not None

    @property
    def is_behind_remote(self) -> bool:
        return bool(self.behind)

    @property
    def is_ahead_of_remote(self) -> bool:
        return bool(self.ahead)
