from datetime import timedelta
from pathlib import Path

from pursue.core.aggregator import aggregate
from pursue.shared.models import FetchCacheEntry, FetchDecision, ProbeKind, ProbeResult, RepoIdentity, VcsState

CWD = Path("/work/repo")
IDENTITY = RepoIdentity(root=CWD)
STATE = VcsState(branch="main", commit="a" * 40, untracked=1)


def _vcs_result(completed: bool = True) -> ProbeResult:
    return ProbeResult(
        kind=ProbeKind.VCS_STATUS,
        payload=STATE if completed else None,
        completed=completed,
        duration=timedelta(milliseconds=3),
        error=None if completed else "boom",
    )


def test_outside_repository():
    snap = aggregate(None, None, cwd=CWD)

    assert not snap.is_repository
    assert snap.vcs is None
    assert not snap.partial


def test_completed_probe_and_successful_fetch():
    entry = FetchCacheEntry.succeeded(IDENTITY, 1000.0, ahead=1, behind=2)

    snap = aggregate(
        _vcs_result(),
        entry,
        cwd=CWD,
        identity=IDENTITY,
        requested=frozenset({ProbeKind.VCS_STATUS}),
        fetch_decision=FetchDecision.ALREADY_FRESH,
    )

    assert snap.vcs == STATE
    assert (snap.ahead, snap.behind) == (1, 2)
    assert snap.fetched_at == 1000.0
    assert snap.fetch_decision == FetchDecision.ALREADY_FRESH
    assert not snap.partial


def test_failed_fetch_carries_previous_counts():
    ok = FetchCacheEntry.succeeded(IDENTITY, 1000.0, ahead=0, behind=2)
    failed = FetchCacheEntry.failed_after(IDENTITY, 2000.0, ok)

    snap = aggregate(None, failed, cwd=CWD, identity=IDENTITY)

    assert not failed.fetch_succeeded
    assert snap.behind == 2
    assert snap.ahead == 0
    assert snap.fetched_at == 1000.0


def test_fetch_that_never_succeeded_shows_nothing():
    failed = FetchCacheEntry.failed_after(IDENTITY, 2000.0, None)

    snap = aggregate(None, failed, cwd=CWD, identity=IDENTITY)

    assert snap.ahead is None
    assert snap.behind is None
    assert snap.fetched_at is None


def test_missing_requested_probe_is_timed_out():
    entry = FetchCacheEntry.succeeded(IDENTITY, 1000.0, ahead=0, behind=2)

    snap = aggregate(None, entry, cwd=CWD, identity=IDENTITY, requested=frozenset({ProbeKind.VCS_STATUS}))

    assert snap.partial
    assert snap.timed_out == {ProbeKind.VCS_STATUS}
    assert snap.vcs is None
    assert snap.behind == 2


def test_errored_probe_is_partial_not_timed_out():
    snap = aggregate(
        _vcs_result(completed=False), None, cwd=CWD, identity=IDENTITY, requested=frozenset({ProbeKind.VCS_STATUS})
    )

    assert snap.partial
    assert snap.timed_out == frozenset()
    assert snap.vcs is None
