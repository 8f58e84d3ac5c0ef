"""Environment helpers for pursue.

Centralizes environment variable names and test-mode detection.
"""

import os

CONFIG_ENV = "PURSUE_CONFIG"
LOG_OUTPUT_ENV = "PURSUE_LOG_OUTPUT"
LOG_LEVEL_ENV = "PURSUE_LOG_LEVEL"
TEST_MODE_ENV = "PURSUE_TEST_MODE"


def is_test_mode() -> bool:
    """Return True when running in test mode.

    Values considered true: "1", "true", "yes", "on" (case-insensitive).
    """
    v = os.environ.get(TEST_MODE_ENV)
    if v is None:
        return False
    v = str(v).strip().lower()
    return v in {"1", "true", "yes", "on"}
