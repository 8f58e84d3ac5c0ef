import os
from pathlib import Path

import pytest
from typer.testing import CliRunner

from pursue.core.cache_store import CacheStore
from pursue.core.fetch_lock import FetchLock
from pursue.shared.configuration import Configuration
from pursue.shared.env import CONFIG_ENV, LOG_LEVEL_ENV, LOG_OUTPUT_ENV, TEST_MODE_ENV
from pursue.testing.config_factory import ConfigFactory
from pursue.testing.repo_factory import GitRepoFactory


@pytest.fixture(scope="session", autouse=True)
def _test_mode():
    """Set test mode for the whole session without monkeypatch.

    Session-scoped fixtures cannot depend on the function-scoped monkeypatch fixture.
    Use direct os.environ mutation with a restore on teardown instead.
    """
    prev = os.environ.get(TEST_MODE_ENV)
    os.environ[TEST_MODE_ENV] = "1"
    try:
        yield
    finally:
        if prev is None:
            os.environ.pop(TEST_MODE_ENV, None)
        else:
            os.environ[TEST_MODE_ENV] = prev


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch):
    """Point XDG dirs into the test's temp dir and drop user overrides."""
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))
    for name in (CONFIG_ENV, LOG_OUTPUT_ENV, LOG_LEVEL_ENV, "SSH_CONNECTION"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def repo_factory(temp_dir):
    """Factory for creating git repositories with different configurations."""
    return GitRepoFactory(temp_dir / "repos")


@pytest.fixture
def config_factory(temp_dir):
    """Factory for creating test configurations."""
    return ConfigFactory(temp_dir)


@pytest.fixture
def config(config_factory) -> Configuration:
    """Configuration with background fetch disabled and a generous deadline."""
    return config_factory.minimal(deadline_ms=5000)


@pytest.fixture
def store(config) -> CacheStore:
    return CacheStore(config.fetch_dir)


@pytest.fixture
def lock(config) -> FetchLock:
    return FetchLock(config.fetch_dir, config.lock_staleness)


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()
