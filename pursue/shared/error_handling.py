"""Error taxonomy for pursue.

Nothing here is allowed to escape the prompt-render path: callers downgrade
each of these to a missing snapshot field.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class PursueError(Exception):
    pass


class ConfigError(PursueError):
    """Configuration validation or loading error."""


class NotARepositoryError(PursueError):
    """No git repository encloses the starting path.

    A valid "nothing to show" state, not a failure.
    """

    def __init__(self, start: Path):
        super().__init__(f"Not inside a git repository: {start}")
        self.start = start


class CacheReadCorruptError(PursueError):
    """A cache record exists but cannot be decoded."""


class CacheWriteError(PursueError):
    """A cache record could not be written, even after retrying."""


class FetchNetworkError(PursueError):
    """The remote fetch failed or timed out."""


def log_operation_error(operation: str, repo: str, error: BaseException, **context: Any) -> None:
    logger.error(
        "Operation %s failed for repository %s: %s",
        operation,
        repo,
        error,
        extra={
            "operation": operation,
            "repo": repo,
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context,
        },
    )


class ErrorContext:
    def __init__(self, operation: str, repo: str = ""):
        self.operation = operation
        self.repo = repo

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            log_operation_error(self.operation, self.repo, exc_val)
        return False  # Do not suppress exceptions
