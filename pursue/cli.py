"""Thin CLI layer: argument parsing and wiring of the per-invocation handles."""

from __future__ import annotations

import os
from pathlib import Path

import click
import typer

from pursue.core.cache_store import CacheStore
from pursue.core.fetch_lock import FetchLock
from pursue.core.fetch_manager import BackgroundFetchManager
from pursue.core.fetch_worker import run_fetch
from pursue.core.invocation import collect_snapshot
from pursue.core.vcs_probe import discover_repository
from pursue.prompt.precmd import PrePrompt, get_ssh_info
from pursue.shared.configuration import Configuration, load_config
from pursue.shared.env import LOG_LEVEL_ENV, LOG_OUTPUT_ENV
from pursue.shared.error_handling import NotARepositoryError
from pursue.shared.logging import configure_logging

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _current_dir() -> Path:
    try:
        return Path.cwd()
    except FileNotFoundError:
        # Working directory was removed under the shell
        return Path(os.environ.get("PWD", "/"))


@app.callback()
def _root(
    ctx: typer.Context,
    log_output: str | None = typer.Option(
        None, "--log-output", help="Log destination: none, stdout, stderr or a file path"
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL"),
) -> None:
    """Shell prompt status line."""
    # Logging first so a broken config file is reported through it
    configure_logging(log_output=log_output, log_level=log_level)
    config = load_config()

    # Precedence: command line, then environment, then config file
    output = log_output or os.environ.get(LOG_OUTPUT_ENV) or config.log_output
    level = (log_level or os.environ.get(LOG_LEVEL_ENV) or config.log_level).upper()
    if output != log_output or level != log_level:
        configure_logging(log_output=output, log_level=level)
    ctx.obj = config.with_overrides(log_output=output, log_level=level)


@app.command()
def precmd(
    ctx: typer.Context,
    shorten: bool = typer.Option(False, "--shorten", help="Cut every directory but the last to one character"),
    last_status: int | None = typer.Option(None, "--last-status", help="Exit status of the previous command"),
    duration_ms: int | None = typer.Option(None, "--duration-ms", help="Run time of the previous command"),
) -> None:
    """Print the line drawn above the prompt.

    The shell captures the output, so colours are kept even when stdout is
    not a terminal.
    """
    config: Configuration = ctx.obj
    snap = collect_snapshot(config, _current_dir())
    line = PrePrompt.from_snapshot(
        snap,
        home=Path.home(),
        shorten=shorten or config.shorten_path,
        ssh_info=get_ssh_info(),
        last_status=last_status,
        duration_ms=duration_ms,
    )
    click.echo(line.render(), color=True)


@app.command()
def snapshot(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the snapshot as JSON"),
) -> None:
    """Show what the prompt would see, without triggering a fetch."""
    config: Configuration = ctx.obj
    snap = collect_snapshot(config, _current_dir(), trigger=False)
    if as_json:
        click.echo(snap.model_dump_json(indent=2))
        return

    click.echo(f"cwd:        {snap.cwd}")
    click.echo(f"repository: {snap.identity or '-'}")
    if snap.vcs is not None:
        vcs = snap.vcs
        click.echo(f"branch:     {vcs.branch or '(detached)'} {vcs.short_commit or ''}".rstrip())
        click.echo(f"upstream:   {vcs.upstream or '-'}")
        click.echo(
            f"changes:    staged={vcs.staged} unstaged={vcs.unstaged} "
            f"untracked={vcs.untracked} conflicted={vcs.conflicted}"
        )
    click.echo(f"ahead:      {'-' if snap.ahead is None else snap.ahead}")
    click.echo(f"behind:     {'-' if snap.behind is None else snap.behind}")
    click.echo(f"fetched_at: {'-' if snap.fetched_at is None else snap.fetched_at}")
    if snap.partial:
        click.echo(f"partial:    timed out {', '.join(sorted(snap.timed_out)) or '-'}")


@app.command()
def fetch(
    ctx: typer.Context,
    wait: bool = typer.Option(False, "--wait", help="Fetch in the foreground instead of a detached worker"),
) -> None:
    """Trigger the background fetch for the enclosing repository."""
    config: Configuration = ctx.obj
    try:
        identity = discover_repository(_current_dir())
    except NotARepositoryError as e:
        click.echo(str(e), err=True)
        raise typer.Exit(1) from None

    store = CacheStore(config.fetch_dir)
    lock = FetchLock(config.fetch_dir, config.lock_staleness)

    if not wait:
        decision = BackgroundFetchManager(store, lock, config).maybe_trigger_fetch(identity)
        click.echo(decision.value)
        return

    handle = lock.try_acquire(identity)
    if handle is None:
        click.echo("A fetch is already running for this repository", err=True)
        raise typer.Exit(1)
    with handle:
        entry = run_fetch(identity, store=store, lock=lock, token=handle.info.token, timeout=config.fetch_timeout)
    if entry is None or not entry.fetch_succeeded:
        click.echo("fetch failed", err=True)
        raise typer.Exit(1)
    click.echo(f"ahead={entry.ahead} behind={entry.behind}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
