"""One prompt draw: probe, read the cache, maybe trigger a fetch, merge.

All state here is invocation-scoped. The cache store and fetch lock are
constructed once per call and passed to the components that need them; the
only state shared with other invocations lives in their files.
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from functools import partial
from pathlib import Path

from pursue.core.aggregator import aggregate
from pursue.core.cache_store import CacheStore
from pursue.core.fetch_lock import FetchLock
from pursue.core.fetch_manager import BackgroundFetchManager
from pursue.core.scheduler import DeadlineScheduler, ProbeTask
from pursue.core.vcs_probe import discover_repository, probe_vcs_status
from pursue.shared.configuration import Configuration
from pursue.shared.error_handling import NotARepositoryError
from pursue.shared.models import FetchCacheEntry, FetchDecision, ProbeKind, ProbeResult, PromptSnapshot, RepoIdentity

logger = logging.getLogger(__name__)


def read_cache(store: CacheStore, identity: RepoIdentity) -> ProbeResult:
    """Synchronous cache read, shaped like any other probe result."""
    started = time.perf_counter()
    entry = store.get(identity)
    result = ProbeResult(
        kind=ProbeKind.CACHE_READ,
        payload=entry,
        completed=True,
        duration=timedelta(seconds=time.perf_counter() - started),
    )
    logger.debug(
        "Cache read for %s took %.1fms (hit=%s)", identity, result.duration.total_seconds() * 1000, entry is not None
    )
    return result


def trigger_fetch(
    fetch_manager: BackgroundFetchManager, identity: RepoIdentity, cached: FetchCacheEntry | None
) -> FetchDecision:
    try:
        return fetch_manager.maybe_trigger_fetch(identity, cached)
    except OSError as e:
        logger.warning("Background fetch not triggered for %s: %s", identity, e)
        return FetchDecision.SKIPPED


def collect_snapshot(
    config: Configuration,
    cwd: Path,
    *,
    store: CacheStore | None = None,
    scheduler: DeadlineScheduler | None = None,
    fetch_manager: BackgroundFetchManager | None = None,
    trigger: bool = True,
) -> PromptSnapshot:
    """Produce the snapshot for one prompt draw. Never raises for probe,
    cache, lock or spawn failures; each only degrades a field."""
    store = store or CacheStore(config.fetch_dir)
    scheduler = scheduler or DeadlineScheduler()
    if fetch_manager is None:
        fetch_manager = BackgroundFetchManager(store, FetchLock(config.fetch_dir, config.lock_staleness), config)

    try:
        identity = discover_repository(cwd)
    except NotARepositoryError:
        return aggregate(None, None, cwd=cwd)
    except OSError as e:
        logger.debug("Repository discovery failed for %s: %s", cwd, e)
        return aggregate(None, None, cwd=cwd)

    tasks: dict[ProbeKind, ProbeTask] = {}
    if ProbeKind.VCS_STATUS in config.enabled_probes:
        tasks[ProbeKind.VCS_STATUS] = partial(probe_vcs_status, identity)
    running = scheduler.launch(tasks, config.deadline)

    # Cache read and fetch decision run on this thread while the probes work
    cache_result = read_cache(store, identity)
    cache_entry = cache_result.payload if isinstance(cache_result.payload, FetchCacheEntry) else None
    decision = trigger_fetch(fetch_manager, identity, cache_entry) if trigger else None

    outcome = running.join()
    return aggregate(
        outcome.get(ProbeKind.VCS_STATUS),
        cache_entry,
        cwd=cwd,
        identity=identity,
        requested=frozenset(tasks),
        fetch_decision=decision,
    )
