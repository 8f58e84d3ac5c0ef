"""Per-repository fetch lock shared by every process on the host.

A lock is a file created with O_CREAT | O_EXCL next to the cache record. Its
JSON body names the holder pid and the acquisition time. Existence plus
freshness means "held". A lock older than the staleness ceiling, or whose
holder pid is confirmed dead, is abandoned and may be reclaimed. Reclaim and
release serialize on an flock over a `<key>.reclaim` sidecar.

Acquisition never blocks: a held lock simply yields None.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path

import psutil
from pydantic import BaseModel, Field, ValidationError

from pursue.shared.models import RepoIdentity

logger = logging.getLogger(__name__)


class LockInfo(BaseModel):
    pid: int
    acquired_at: float
    # Identifies one acquisition across a handover between processes
    token: str = Field(default_factory=lambda: uuid.uuid4().hex)


class FetchLockHandle:
    """Ownership of one lock file. Releases on scope exit."""

    def __init__(self, path: Path, identity: RepoIdentity, info: LockInfo):
        self.path = path
        self.identity = identity
        self.info = info
        self._released = False

    def __enter__(self) -> FetchLockHandle:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False

    @property
    def released(self) -> bool:
        return self._released

    def transfer(self, pid: int) -> None:
        """Hand the lock to another process (the spawned fetch worker).

        After transfer this handle no longer owns the lock and release() is a
        no-op; the new holder releases it via FetchLock.adopt().
        """
        info = self.info.model_copy(update={"pid": pid})
        _write_lock_info(self.path, info)
        self.info = info
        self._released = True

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            with _reclaim_guard(self.path, blocking=True):
                current = _read_lock_info(self.path)
                # The lock may have been reclaimed as stale by someone else meanwhile
                if current != self.info:
                    logger.debug("Not releasing %s: now held by pid %s", self.path, current.pid if current else None)
                    return
                self.path.unlink(missing_ok=True)
        except FileNotFoundError:
            return


class FetchLock:
    def __init__(self, lock_dir: Path, staleness: timedelta):
        self.lock_dir = lock_dir
        self.staleness = staleness

    def lock_path(self, identity: RepoIdentity) -> Path:
        return self.lock_dir / f"{identity.cache_key}.lock"

    def try_acquire(self, identity: RepoIdentity) -> FetchLockHandle | None:
        """Take the lock for identity, or return None immediately if it is held."""
        path = self.lock_path(identity)
        path.parent.mkdir(parents=True, exist_ok=True)
        info = LockInfo(pid=os.getpid(), acquired_at=time.time())

        handle = self._create(path, identity, info)
        if handle is not None:
            return handle

        if not self._is_abandoned(path):
            return None

        with _reclaim_guard(path, blocking=False) as guarded:
            # Someone else may have reclaimed it between the check and the guard
            if not guarded or not self._is_abandoned(path):
                return None
            logger.info("Reclaiming abandoned fetch lock %s for %s", path, identity)
            path.unlink(missing_ok=True)
            return self._create(path, identity, info)

    def adopt(self, identity: RepoIdentity, token: str) -> FetchLockHandle | None:
        """Take ownership of a lock handed over by the process that acquired it.

        The token names the acquisition; a lock reclaimed and re-acquired by
        someone else in the meantime carries a different token and is left alone.
        """
        path = self.lock_path(identity)
        try:
            info = _read_lock_info(path)
        except FileNotFoundError:
            return None
        if info is None or info.token != token:
            return None
        if info.pid != os.getpid():
            info = info.model_copy(update={"pid": os.getpid()})
            _write_lock_info(path, info)
        return FetchLockHandle(path, identity, info)

    def is_held(self, identity: RepoIdentity) -> bool:
        path = self.lock_path(identity)
        return path.exists() and not self._is_abandoned(path)

    def _create(self, path: Path, identity: RepoIdentity, info: LockInfo) -> FetchLockHandle | None:
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return None
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(info.model_dump_json())
        return FetchLockHandle(path, identity, info)

    def _is_abandoned(self, path: Path) -> bool:
        try:
            info = _read_lock_info(path)
            held_since = info.acquired_at if info is not None else path.stat().st_mtime
        except FileNotFoundError:
            return True
        if time.time() - held_since > self.staleness.total_seconds():
            return True
        if info is None:
            # Half-written or garbage lock file; only the staleness ceiling may reclaim it
            return False
        return not psutil.pid_exists(info.pid)


def _guard_path(path: Path) -> Path:
    return path.with_suffix(".reclaim")


@contextmanager
def _reclaim_guard(path: Path, *, blocking: bool) -> Iterator[bool]:
    """Exclusive flock on the sidecar of a lock file; yields False if busy.

    Reclaim and release both delete the lock file after checking it. Holding
    this across check and delete keeps one from removing the other's fresh lock.
    """
    fd = os.open(_guard_path(path), os.O_CREAT | os.O_RDWR, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            yield False
            return
        try:
            yield True
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def _read_lock_info(path: Path) -> LockInfo | None:
    """Parse a lock file; None if its contents are unreadable."""
    try:
        return LockInfo.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except FileNotFoundError:
        raise
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError):
        return None


def _write_lock_info(path: Path, info: LockInfo) -> None:
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp.write_text(info.model_dump_json(), encoding="utf-8")
    os.replace(tmp, path)
