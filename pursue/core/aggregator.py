"""Pure merge of probe results and the cached fetch into one PromptSnapshot."""

from __future__ import annotations

from pathlib import Path

from pursue.shared.models import (
    FetchCacheEntry,
    FetchDecision,
    ProbeKind,
    ProbeResult,
    PromptSnapshot,
    RepoIdentity,
    VcsState,
)


def aggregate(
    vcs_probe: ProbeResult | None,
    cache_entry: FetchCacheEntry | None,
    *,
    cwd: Path,
    identity: RepoIdentity | None = None,
    requested: frozenset[ProbeKind] = frozenset(),
    fetch_decision: FetchDecision | None = None,
) -> PromptSnapshot:
    """Merge one invocation's results.

    - branch and change counts come only from a completed VCS probe
    - ahead/behind come only from a cache entry that has seen a successful
      fetch; a failed attempt already carries the previous counts forward
    - partial is set iff a requested probe is missing or did not complete
    """
    vcs: VcsState | None = None
    if vcs_probe is not None and vcs_probe.completed and isinstance(vcs_probe.payload, VcsState):
        vcs = vcs_probe.payload

    ahead = behind = fetched_at = None
    if cache_entry is not None and cache_entry.has_success:
        ahead, behind = cache_entry.ahead, cache_entry.behind
        fetched_at = cache_entry.last_success_timestamp

    results = {vcs_probe.kind: vcs_probe} if vcs_probe is not None else {}
    timed_out = frozenset(kind for kind in requested if kind not in results)
    failed = any(r.kind in requested and not r.completed for r in results.values())

    return PromptSnapshot(
        cwd=cwd,
        identity=identity,
        vcs=vcs,
        ahead=ahead,
        behind=behind,
        fetched_at=fetched_at,
        fetch_decision=fetch_decision,
        partial=bool(timed_out) or failed,
        timed_out=timed_out,
    )
