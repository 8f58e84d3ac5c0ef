"""Local-only git working tree inspection.

Never touches the network and never writes to the repository: remote state
comes exclusively from the background fetch worker.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pygit2

from pursue.shared.error_handling import NotARepositoryError
from pursue.shared.models import RepoIdentity, VcsState

logger = logging.getLogger(__name__)

REPOSITORY_MARKER = ".git"

_STAGED = (
    pygit2.GIT_STATUS_INDEX_NEW
    | pygit2.GIT_STATUS_INDEX_MODIFIED
    | pygit2.GIT_STATUS_INDEX_DELETED
    | pygit2.GIT_STATUS_INDEX_RENAMED
    | pygit2.GIT_STATUS_INDEX_TYPECHANGE
)
_UNSTAGED = (
    pygit2.GIT_STATUS_WT_MODIFIED
    | pygit2.GIT_STATUS_WT_DELETED
    | pygit2.GIT_STATUS_WT_RENAMED
    | pygit2.GIT_STATUS_WT_TYPECHANGE
)


def discover_repository(start: Path) -> RepoIdentity:
    """Walk from start up to the filesystem root looking for a .git marker.

    The marker may be a directory (regular checkout) or a file (linked
    worktree or submodule, "gitdir: <path>").
    """
    current = start.expanduser().resolve()
    for candidate in (current, *current.parents):
        if (candidate / REPOSITORY_MARKER).exists():
            return RepoIdentity.from_path(candidate)
    raise NotARepositoryError(start)


def branch_name(repo: pygit2.Repository) -> str | None:
    """Short name of the checked out branch; None for a detached HEAD.

    A freshly initialized repository has an unborn branch: HEAD points at a
    branch with no commits, whose name is still meaningful.
    """
    if repo.head_is_unborn:
        target = repo.references["HEAD"].target
        return str(target).removeprefix("refs/heads/")
    if repo.head_is_detached:
        return None
    return repo.head.shorthand


def count_changes(repo: pygit2.Repository) -> tuple[int, int, int, int]:
    """Return (staged, unstaged, untracked, conflicted), ignoring .gitignore'd files."""
    staged = unstaged = untracked = conflicted = 0
    for flags in repo.status(untracked_files="normal", ignored=False).values():
        if flags & pygit2.GIT_STATUS_CONFLICTED:
            conflicted += 1
            continue
        if flags & _STAGED:
            staged += 1
        if flags & _UNSTAGED:
            unstaged += 1
        if flags & pygit2.GIT_STATUS_WT_NEW:
            untracked += 1
    return staged, unstaged, untracked, conflicted


def upstream_ahead_behind(repo: pygit2.Repository, branch: str | None) -> tuple[str | None, int | None, int | None]:
    """Return (upstream shorthand, ahead, behind) from local refs only.

    No upstream configured, or an upstream ref that does not exist locally
    yet, yields (None, None, None): absent, not zero.
    """
    if branch is None or repo.head_is_unborn:
        return None, None, None
    local = repo.branches.local.get(branch)
    if local is None:
        return None, None, None
    try:
        upstream = local.upstream
    except (KeyError, pygit2.GitError):
        logger.debug("Upstream of %s is configured but not resolvable", branch)
        return None, None, None
    if upstream is None:
        return None, None, None
    ahead, behind = repo.ahead_behind(local.target, upstream.target)
    return upstream.shorthand, ahead, behind


def probe_vcs_status(identity: RepoIdentity) -> VcsState:
    """Inspect the working tree at identity.root.

    Raises pygit2.GitError (or OSError) if the repository cannot be read; the
    deadline scheduler records that as an incomplete probe.
    """
    repo = pygit2.Repository(str(identity.root))
    branch = branch_name(repo)
    commit = None if repo.head_is_unborn else str(repo.head.target)
    staged, unstaged, untracked, conflicted = count_changes(repo)
    upstream, ahead, behind = upstream_ahead_behind(repo, branch)
    return VcsState(
        branch=branch,
        commit=commit,
        staged=staged,
        unstaged=unstaged,
        untracked=untracked,
        conflicted=conflicted,
        upstream=upstream,
        ahead=ahead,
        behind=behind,
    )
