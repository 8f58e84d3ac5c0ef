from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path


def build_noninteractive_git_env(env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment for git commands that must never wait on a human."""
    e = dict(os.environ if env is None else env)
    e["GIT_TERMINAL_PROMPT"] = "0"
    e.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
    e.setdefault("GIT_ASKPASS", "true")
    return e


@dataclass(slots=True)
class GitRunOptions:
    check: bool = True
    capture_output: bool = True
    env: Mapping[str, str] | None = None
    timeout: timedelta | None = None


def git_run(
    args: Sequence[str | os.PathLike[str]], cwd: Path | str, options: GitRunOptions | None = None
) -> subprocess.CompletedProcess:
    opts = options or GitRunOptions()
    cmd: list[str | os.PathLike[str]] = ["git", "-c", "core.hooksPath=", *args]
    return subprocess.run(
        cmd,
        cwd=cwd,
        check=opts.check,
        capture_output=opts.capture_output,
        env=build_noninteractive_git_env(opts.env),
        stdin=subprocess.DEVNULL,
        timeout=opts.timeout.total_seconds() if opts.timeout is not None else None,
    )
