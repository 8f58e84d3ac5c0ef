"""File-backed fetch cache: one JSON record per repository.

Records are replaced atomically (write to a temp file in the same directory,
then os.replace), so a reader in another process sees either the old record
or the new one in full. Anything that cannot be decoded is a cache miss.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, ValidationError

from pursue.shared.error_handling import CacheReadCorruptError, CacheWriteError
from pursue.shared.models import FetchCacheEntry, RepoIdentity

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
# Records are tiny; anything larger is not ours
MAX_RECORD_BYTES = 64 * 1024


class CacheRecord(BaseModel):
    """On-disk envelope around a FetchCacheEntry."""

    format_version: int
    entry: FetchCacheEntry


class CacheStore:
    """Explicit per-invocation handle on the fetch cache directory."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = cache_dir

    def record_path(self, identity: RepoIdentity) -> Path:
        return self.cache_dir / f"{identity.cache_key}.json"

    def get(self, identity: RepoIdentity) -> FetchCacheEntry | None:
        """Return the cached entry, or None on miss, corruption or unknown format."""
        path = self.record_path(identity)
        try:
            return self._read(path, identity)
        except FileNotFoundError:
            return None
        except (OSError, CacheReadCorruptError) as e:
            logger.debug("Treating cache record %s as a miss: %s", path, e)
            return None

    def _read(self, path: Path, identity: RepoIdentity) -> FetchCacheEntry | None:
        with path.open("rb") as f:
            raw = f.read(MAX_RECORD_BYTES + 1)
        if len(raw) > MAX_RECORD_BYTES:
            raise CacheReadCorruptError(f"record exceeds {MAX_RECORD_BYTES} bytes")

        try:
            data = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CacheReadCorruptError(f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CacheReadCorruptError("record is not a JSON object")

        # Check the version before validating the body: newer writers may change the shape
        version = data.get("format_version")
        if version != FORMAT_VERSION:
            logger.debug("Ignoring cache record %s with format version %r", path, version)
            return None

        try:
            record = CacheRecord.model_validate(data)
        except ValidationError as e:
            raise CacheReadCorruptError(f"invalid record: {e}") from e

        if record.entry.identity != identity:
            raise CacheReadCorruptError(f"record belongs to {record.entry.identity}, not {identity}")
        return record.entry

    def put(self, entry: FetchCacheEntry) -> None:
        """Atomically replace the record for entry.identity.

        A failed write is retried once with a fresh temp file; if that also
        fails, CacheWriteError is raised and the caller drops the update.
        """
        payload = CacheRecord(format_version=FORMAT_VERSION, entry=entry).model_dump_json()
        path = self.record_path(entry.identity)
        try:
            self._write_atomic(path, payload)
        except OSError as first:
            logger.debug("Cache write to %s failed, retrying once: %s", path, first)
            try:
                self._write_atomic(path, payload)
            except OSError as e:
                raise CacheWriteError(f"Cannot write cache record {path}: {e}") from e

    def _write_atomic(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}_", suffix=".tmp", dir=path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
