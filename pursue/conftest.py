"""Pytest configuration for pursue tests."""

# Import fixtures from testing modules (replaces deprecated pytest_plugins)
from pursue.testing.conftest import *  # noqa: F403
from pursue.testing.conftest import _isolated_env, _test_mode  # noqa: F401
