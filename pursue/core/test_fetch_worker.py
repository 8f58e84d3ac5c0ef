import subprocess
from datetime import timedelta

import pygit2
import pytest
from typer.testing import CliRunner

from pursue.core import fetch_worker
from pursue.core.fetch_manager import BackgroundFetchManager
from pursue.core.fetch_worker import app, fetch_and_count, run_fetch, upstream_remote
from pursue.shared.error_handling import FetchNetworkError
from pursue.shared.models import FetchCacheEntry, RepoIdentity

TIMEOUT = timedelta(seconds=20)


@pytest.fixture
def identity(repo_factory) -> RepoIdentity:
    return RepoIdentity.from_path(repo_factory.create_repo())


def _handed_over_token(lock, identity) -> str:
    with lock.try_acquire(identity) as handle:
        handle.transfer(4242)
    return handle.info.token


def test_successful_fetch_is_recorded_and_lock_released(store, lock, identity):
    token = _handed_over_token(lock, identity)

    entry = run_fetch(
        identity, store=store, lock=lock, token=token, timeout=TIMEOUT, clock=lambda: 500.0, fetcher=lambda i, t: (1, 3)
    )

    assert entry == FetchCacheEntry.succeeded(identity, 500.0, ahead=1, behind=3)
    assert store.get(identity) == entry
    assert not lock.lock_path(identity).exists()


def test_failed_fetch_keeps_previous_success(store, lock, identity):
    store.put(FetchCacheEntry.succeeded(identity, 100.0, ahead=0, behind=2))
    token = _handed_over_token(lock, identity)

    def unreachable(i, t):
        raise FetchNetworkError("Could not resolve host")

    entry = run_fetch(
        identity, store=store, lock=lock, token=token, timeout=TIMEOUT, clock=lambda: 500.0, fetcher=unreachable
    )

    assert entry is not None
    assert not entry.fetch_succeeded
    assert entry.last_fetch_timestamp == 500.0
    assert entry.behind == 2
    assert entry.last_success_timestamp == 100.0
    assert store.get(identity) == entry
    assert not lock.lock_path(identity).exists()


@pytest.mark.parametrize("error", [pygit2.GitError("object not found"), PermissionError(".git/index")])
def test_repository_error_is_recorded_as_failed_attempt(store, lock, identity, error):
    store.put(FetchCacheEntry.succeeded(identity, 100.0, ahead=1, behind=4))
    token = _handed_over_token(lock, identity)

    def broken(i, t):
        raise error

    entry = run_fetch(
        identity, store=store, lock=lock, token=token, timeout=TIMEOUT, clock=lambda: 500.0, fetcher=broken
    )

    assert entry is not None
    assert not entry.fetch_succeeded
    assert entry.last_fetch_timestamp == 500.0
    assert (entry.ahead, entry.behind) == (1, 4)
    assert entry.last_success_timestamp == 100.0
    assert store.get(identity) == entry
    assert not lock.lock_path(identity).exists()


def test_failed_attempt_defers_next_fetch(store, lock, identity, config):
    token = _handed_over_token(lock, identity)

    def broken(i, t):
        raise pygit2.GitError("invalid upstream configuration")

    run_fetch(identity, store=store, lock=lock, token=token, timeout=TIMEOUT, fetcher=broken)

    manager = BackgroundFetchManager(store, lock, config)
    assert not manager.is_due(identity)


def test_unexpected_error_still_releases_lock(store, lock, identity):
    token = _handed_over_token(lock, identity)

    def buggy(i, t):
        raise ValueError("unexpected")

    with pytest.raises(ValueError):
        run_fetch(identity, store=store, lock=lock, token=token, timeout=TIMEOUT, fetcher=buggy)

    assert not lock.lock_path(identity).exists()
    assert store.get(identity) is None


def test_lock_not_adopted_does_nothing(store, lock, identity):
    calls = []

    entry = run_fetch(
        identity, store=store, lock=lock, token="stale-token", timeout=TIMEOUT, fetcher=lambda i, t: calls.append(i)
    )

    assert entry is None
    assert calls == []
    assert store.get(identity) is None


def test_no_upstream_records_success_without_counts(store, lock, identity):
    token = _handed_over_token(lock, identity)

    entry = run_fetch(identity, store=store, lock=lock, token=token, timeout=TIMEOUT)

    assert entry is not None
    assert entry.fetch_succeeded
    assert (entry.ahead, entry.behind) == (None, None)


def test_upstream_remote(repo_factory):
    repo_path = repo_factory.create_repo()
    repo = pygit2.Repository(str(repo_path))
    assert upstream_remote(repo, "main") is None

    repo_factory.with_upstream(repo_path)
    repo = pygit2.Repository(str(repo_path))
    assert upstream_remote(repo, "main") == "origin"

    repo.config["branch.main.remote"] = "."
    assert upstream_remote(repo, "main") is None
    assert upstream_remote(repo, None) is None


@pytest.mark.timeout(60)
def test_fetch_and_count_against_local_origin(repo_factory):
    origin, clone = repo_factory.create_clone()
    repo_factory.push_to_origin(origin, count=3)

    assert fetch_and_count(RepoIdentity.from_path(clone), TIMEOUT) == (0, 3)


@pytest.mark.timeout(60)
def test_fetch_from_missing_remote_is_network_error(repo_factory):
    origin, clone = repo_factory.create_clone()
    pygit2.Repository(str(clone)).remotes.set_url("origin", str(origin.parent / "gone.git"))

    with pytest.raises(FetchNetworkError):
        fetch_and_count(RepoIdentity.from_path(clone), TIMEOUT)


def test_git_timeout_is_network_error(monkeypatch, temp_dir):
    def hang(*args, **kwargs):
        raise subprocess.TimeoutExpired(cmd="git fetch", timeout=1)

    monkeypatch.setattr(fetch_worker, "git_run", hang)

    with pytest.raises(FetchNetworkError, match="timed out"):
        fetch_worker.fetch_remote(temp_dir, "origin", timedelta(seconds=1))


def test_worker_entry_point_records_entry(store, lock, identity, config):
    token = _handed_over_token(lock, identity)

    result = CliRunner().invoke(
        app,
        [
            str(identity.root),
            "--token",
            token,
            "--cache-dir",
            str(config.fetch_dir),
            "--timeout-s",
            "5",
            "--staleness-s",
            "60",
        ],
    )

    assert result.exit_code == 0, result.output
    entry = store.get(identity)
    assert entry is not None
    assert entry.fetch_succeeded
