"""Decide whether a background fetch is due, and launch it without waiting."""

from __future__ import annotations

import logging
import subprocess
import sys
import time
from collections.abc import Callable
from contextlib import ExitStack
from typing import IO, Protocol

from pursue.core.cache_store import CacheStore
from pursue.core.fetch_lock import FetchLock
from pursue.shared.configuration import Configuration
from pursue.shared.models import FetchCacheEntry, FetchDecision, RepoIdentity

logger = logging.getLogger(__name__)

WORKER_MODULE = "pursue.core.fetch_worker"


class WorkerSpawner(Protocol):
    def __call__(self, identity: RepoIdentity, token: str) -> int:
        """Start a detached fetch worker; return its pid."""
        ...


class DetachedWorkerSpawner:
    """Launch the fetch worker as a new session with no inherited stdio.

    The worker outlives the prompt process; its stderr goes to the fetch log
    so crashes before logging is configured are still visible.
    """

    def __init__(self, config: Configuration):
        self.config = config

    def command(self, identity: RepoIdentity, token: str) -> list[str]:
        cfg = self.config
        return [
            sys.executable,
            "-m",
            WORKER_MODULE,
            str(identity.root),
            "--token",
            token,
            "--cache-dir",
            str(cfg.fetch_dir),
            "--timeout-s",
            str(cfg.fetch_timeout.total_seconds()),
            "--staleness-s",
            str(cfg.lock_staleness.total_seconds()),
            "--log-output",
            cfg.log_output or str(cfg.fetch_log_file),
            "--log-level",
            cfg.log_level,
        ]

    def __call__(self, identity: RepoIdentity, token: str) -> int:
        with ExitStack() as stack:
            stderr_dest: int | IO[bytes] = subprocess.DEVNULL
            try:
                self.config.cache_dir.mkdir(parents=True, exist_ok=True)
                stderr_dest = stack.enter_context(self.config.fetch_log_file.open("ab", 0))
            except OSError as e:
                logger.debug("Fetch worker stderr discarded, cannot open log: %s", e)

            proc = subprocess.Popen(
                self.command(identity, token),
                cwd=identity.root,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=stderr_dest,
                start_new_session=True,
                close_fds=True,
            )
        return proc.pid


class BackgroundFetchManager:
    def __init__(
        self,
        store: CacheStore,
        lock: FetchLock,
        config: Configuration,
        spawner: WorkerSpawner | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.lock = lock
        self.config = config
        self.spawner: WorkerSpawner = spawner or DetachedWorkerSpawner(config)
        self.clock = clock

    def is_due(self, identity: RepoIdentity, cached: FetchCacheEntry | None = None) -> bool:
        """No entry counts as infinitely stale; failed attempts count as attempts."""
        entry = cached if cached is not None else self.store.get(identity)
        if entry is None:
            return True
        return entry.age(self.clock()) >= self.config.fetch_interval.total_seconds()

    def maybe_trigger_fetch(self, identity: RepoIdentity, cached: FetchCacheEntry | None = None) -> FetchDecision:
        """Spawn a detached fetch if one is due and nobody else is fetching.

        Never waits on the worker. A held lock (normally a fetch from an
        earlier prompt still running) yields SKIPPED. cached is the entry the
        caller already read, if any.
        """
        if not self.config.fetch_enabled:
            return FetchDecision.SKIPPED
        if not self.is_due(identity, cached):
            return FetchDecision.ALREADY_FRESH

        try:
            handle = self.lock.try_acquire(identity)
        except OSError as e:
            logger.debug("Cannot take fetch lock for %s: %s", identity, e)
            return FetchDecision.SKIPPED
        if handle is None:
            return FetchDecision.SKIPPED

        with handle:
            try:
                pid = self.spawner(identity, handle.info.token)
            except OSError as e:
                logger.warning("Cannot spawn fetch worker for %s: %s", identity, e)
                return FetchDecision.SKIPPED
            # From here on the worker owns the lock; leaving the block does not release it
            handle.transfer(pid)

        logger.debug("Spawned fetch worker pid %d for %s", pid, identity)
        return FetchDecision.SPAWNED
