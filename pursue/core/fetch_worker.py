"""Detached background fetch worker.

Launched by BackgroundFetchManager as `python -m pursue.core.fetch_worker` in
its own session, so the short-lived prompt process that spawned it can exit
without killing the fetch. The worker adopts the fetch lock handed over by its
parent, runs `git fetch` with a bounded timeout, records the outcome in the
cache store and always releases the lock.
"""

from __future__ import annotations

import subprocess
import time
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from typing import Annotated

import pygit2
import structlog
import typer

from pursue.core.cache_store import CacheStore
from pursue.core.fetch_lock import FetchLock
from pursue.core.vcs_probe import branch_name, upstream_ahead_behind
from pursue.shared.error_handling import CacheWriteError, ErrorContext, FetchNetworkError
from pursue.shared.git_utils import GitRunOptions, git_run
from pursue.shared.logging import configure_logging
from pursue.shared.models import FetchCacheEntry, RepoIdentity

log = structlog.get_logger()

LOCAL_REMOTE = "."


def upstream_remote(repo: pygit2.Repository, branch: str | None) -> str | None:
    """Remote the current branch tracks; None for no upstream or a local one."""
    if branch is None or repo.head_is_unborn:
        return None
    try:
        remote = repo.config[f"branch.{branch}.remote"]
    except KeyError:
        return None
    return None if remote == LOCAL_REMOTE else remote


def fetch_remote(root: Path, remote: str, timeout: timedelta) -> None:
    try:
        git_run(["fetch", "--quiet", "--no-tags", "--prune", remote], cwd=root, options=GitRunOptions(timeout=timeout))
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode(errors="replace").strip()
        raise FetchNetworkError(f"git fetch {remote} failed: {stderr or e.returncode}") from e
    except subprocess.TimeoutExpired as e:
        raise FetchNetworkError(f"git fetch {remote} timed out after {timeout.total_seconds():.0f}s") from e
    except OSError as e:
        raise FetchNetworkError(f"Cannot run git: {e}") from e


def fetch_and_count(identity: RepoIdentity, timeout: timedelta) -> tuple[int | None, int | None]:
    """Fetch the upstream's remote, then count ahead/behind against it."""
    repo = pygit2.Repository(str(identity.root))
    branch = branch_name(repo)
    remote = upstream_remote(repo, branch)
    if remote is not None:
        fetch_remote(identity.root, remote, timeout)
        # Remote-tracking refs changed on disk
        repo = pygit2.Repository(str(identity.root))
    _upstream, ahead, behind = upstream_ahead_behind(repo, branch)
    return ahead, behind


def run_fetch(
    identity: RepoIdentity,
    *,
    store: CacheStore,
    lock: FetchLock,
    token: str,
    timeout: timedelta,
    clock: Callable[[], float] = time.time,
    fetcher: Callable[[RepoIdentity, timedelta], tuple[int | None, int | None]] = fetch_and_count,
) -> FetchCacheEntry | None:
    """Perform one fetch under the handed-over lock; returns the recorded entry.

    Returns None without fetching if the lock cannot be adopted (it was
    reclaimed by another process in the meantime).
    """
    handle = lock.adopt(identity, token)
    if handle is None:
        log.warning("fetch_lock_not_adopted", repo=str(identity))
        return None

    with handle, ErrorContext("fetch", str(identity)):
        previous = store.get(identity)
        started = clock()
        try:
            ahead, behind = fetcher(identity, timeout)
            entry = FetchCacheEntry.succeeded(identity, started, ahead, behind)
            log.info("fetch_succeeded", repo=str(identity), ahead=ahead, behind=behind)
        except (FetchNetworkError, pygit2.GitError, OSError) as e:
            # Every failed attempt is recorded; is_due counts it toward fetch_interval
            entry = FetchCacheEntry.failed_after(identity, started, previous)
            log.warning("fetch_failed", repo=str(identity), error=str(e))

        try:
            store.put(entry)
        except CacheWriteError as e:
            # The next successful fetch repairs the record
            log.warning("fetch_result_dropped", repo=str(identity), error=str(e))
        return entry


app = typer.Typer(add_completion=False)


@app.command()
def main(
    repo: Annotated[Path, typer.Argument(help="Repository root to fetch")],
    token: Annotated[str, typer.Option("--token", help="Lock acquisition token handed over by the parent")],
    cache_dir: Annotated[Path, typer.Option("--cache-dir", help="Fetch cache directory")],
    timeout_s: Annotated[float, typer.Option("--timeout-s", help="Timeout for git fetch")],
    staleness_s: Annotated[float, typer.Option("--staleness-s", help="Abandoned-lock ceiling")],
    log_output: Annotated[str, typer.Option("--log-output", help="Log destination")] = "none",
    log_level: Annotated[str, typer.Option("--log-level", help="Log level")] = "INFO",
) -> None:
    configure_logging(log_output=log_output, log_level=log_level)

    identity = RepoIdentity.from_path(repo)
    entry = run_fetch(
        identity,
        store=CacheStore(cache_dir),
        lock=FetchLock(cache_dir, timedelta(seconds=staleness_s)),
        token=token,
        timeout=timedelta(seconds=timeout_s),
    )
    if entry is None or not entry.fetch_succeeded:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
