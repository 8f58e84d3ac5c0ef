"""The pre-command line: path, git state, ssh user@host, last command status.

Rendering is pure: everything comes from a PromptSnapshot and the caller's
environment, nothing here touches git or the cache.
"""

from __future__ import annotations

import os
import socket
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from colorama import Fore, Style

from pursue.shared.models import PromptSnapshot

GREY = Fore.LIGHTBLACK_EX
BEHIND_MARK = "⇣"
AHEAD_MARK = "⇡"
PARTIAL_MARK = "…"
SLOW_COMMAND_MS = 5000


def paint(color: str, text: str) -> str:
    return f"{color}{text}{Style.RESET_ALL}"


def format_path(cwd: str | Path, home: str | Path | None, shorten: bool = False) -> str:
    """Replace a leading home directory with ~ and optionally shorten.

    With shorten, every directory but the last is cut to its first
    character: ~/Really/long/path becomes ~/R/l/path.
    """
    path = str(cwd)
    home_str = str(home).rstrip("/") if home else ""
    if home_str and (path == home_str or path.startswith(home_str + "/")):
        path = "~" + path[len(home_str) :]

    if not shorten:
        return path

    parts = path.split("/")
    shortened = [p[:1] if p else p for p in parts[:-1]]
    return "/".join([*shortened, parts[-1]])


def format_duration(duration_ms: int) -> str:
    seconds = duration_ms // 1000
    hours, rest = divmod(seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{minutes}m{seconds}s"
    return f"{seconds}s"


@dataclass(frozen=True)
class SshInfo:
    user: str
    is_root: bool
    host: str

    def render(self) -> str:
        if self.is_root:
            return paint(Fore.WHITE, self.user) + paint(GREY, f"@{self.host}")
        return paint(GREY, f"{self.user}@{self.host}")


def get_ssh_info(env: Mapping[str, str] | None = None) -> SshInfo | None:
    """User and host of the remote session; None outside of ssh."""
    env = os.environ if env is None else env
    user = env.get("USER")
    if not env.get("SSH_CONNECTION") or not user:
        return None
    uid = env.get("UID")
    is_root = uid == "0" if uid is not None else os.geteuid() == 0
    return SshInfo(user=user, is_root=is_root, host=socket.gethostname())


@dataclass(frozen=True)
class VcsInfo:
    branch: str
    is_dirty: bool = False
    is_behind_remote: bool = False
    is_ahead_of_remote: bool = False

    def render(self) -> str:
        out = paint(GREY, self.branch + ("*" if self.is_dirty else ""))
        arrows = (BEHIND_MARK if self.is_behind_remote else "") + (AHEAD_MARK if self.is_ahead_of_remote else "")
        if arrows:
            out += " " + paint(Fore.CYAN, arrows)
        return out


@dataclass(frozen=True)
class PrePrompt:
    path: str
    vcs_info: VcsInfo | None = None
    ssh_info: SshInfo | None = None
    partial: bool = False
    last_status: int | None = None
    duration_ms: int | None = None

    @classmethod
    def from_snapshot(
        cls,
        snapshot: PromptSnapshot,
        *,
        home: str | Path | None,
        shorten: bool = False,
        ssh_info: SshInfo | None = None,
        last_status: int | None = None,
        duration_ms: int | None = None,
    ) -> PrePrompt:
        vcs_info = None
        if snapshot.vcs is not None:
            # Detached HEAD shows the commit instead of a branch name
            label = snapshot.vcs.branch or snapshot.vcs.short_commit
            if label:
                vcs_info = VcsInfo(
                    branch=label,
                    is_dirty=snapshot.vcs.is_dirty,
                    is_behind_remote=snapshot.is_behind_remote,
                    is_ahead_of_remote=snapshot.is_ahead_of_remote,
                )
        return cls(
            path=format_path(snapshot.cwd, home, shorten),
            vcs_info=vcs_info,
            ssh_info=ssh_info,
            partial=snapshot.partial and snapshot.is_repository,
            last_status=last_status,
            duration_ms=duration_ms,
        )

    def render(self) -> str:
        parts = [paint(Fore.BLUE, self.path)]
        if self.vcs_info is not None:
            parts.append(self.vcs_info.render())
        if self.partial:
            parts.append(paint(GREY, PARTIAL_MARK))
        if self.ssh_info is not None:
            parts.append(self.ssh_info.render())
        if self.duration_ms is not None and self.duration_ms > SLOW_COMMAND_MS:
            parts.append(paint(Fore.YELLOW, format_duration(self.duration_ms)))
        if self.last_status:
            parts.append(paint(Fore.RED, str(self.last_status)))
        return " ".join(parts)

    def __str__(self) -> str:
        return self.render()
