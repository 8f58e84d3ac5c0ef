"""Immutable configuration after resolution.

This module contains the frozen Configuration dataclass that represents
resolved configuration with all paths and durations computed upfront.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import ValidationError

from pursue.shared.config_file import ConfigFile
from pursue.shared.env import CONFIG_ENV, is_test_mode
from pursue.shared.error_handling import ConfigError
from pursue.shared.models import ProbeKind

logger = logging.getLogger(__name__)


def default_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "pursue" / "config.yaml"


def default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base) / "pursue"


@dataclass(frozen=True)
class Configuration:
    """Immutable configuration after resolution."""

    cache_dir: Path
    deadline: timedelta
    enabled_probes: frozenset[ProbeKind]
    fetch_enabled: bool
    fetch_interval: timedelta
    fetch_timeout: timedelta
    lock_staleness: timedelta
    shorten_path: bool
    log_output: str | None
    log_level: str

    @property
    def fetch_dir(self) -> Path:
        """Directory holding one cache record and one lock file per repository."""
        return self.cache_dir / "fetch"

    @property
    def fetch_log_file(self) -> Path:
        """Log file for detached fetch workers."""
        return self.cache_dir / "fetch.log"

    def with_overrides(self, **changes) -> Configuration:
        return replace(self, **changes)

    @classmethod
    def from_config_file(cls, config_file: ConfigFile) -> Configuration:
        cache_dir = (
            Path(config_file.cache_dir).expanduser().resolve() if config_file.cache_dir else default_cache_dir()
        )
        if config_file.fetch_timeout_s >= config_file.lock_staleness_s:
            raise ConfigError(
                f"fetch_timeout_s ({config_file.fetch_timeout_s}) must be below "
                f"lock_staleness_s ({config_file.lock_staleness_s})"
            )

        cfg = cls(
            cache_dir=cache_dir,
            deadline=timedelta(milliseconds=config_file.deadline_ms),
            enabled_probes=frozenset(ProbeKind(p) for p in config_file.enabled_probes),
            fetch_enabled=config_file.fetch_enabled,
            fetch_interval=timedelta(seconds=config_file.fetch_interval_s),
            fetch_timeout=timedelta(seconds=config_file.fetch_timeout_s),
            lock_staleness=timedelta(seconds=config_file.lock_staleness_s),
            shorten_path=config_file.shorten_path,
            log_output=config_file.log_output,
            log_level=config_file.log_level,
        )

        if is_test_mode():
            temp_root = Path(tempfile.gettempdir()).resolve()
            if not cfg.cache_dir.resolve().is_relative_to(temp_root):
                raise ConfigError(
                    "PURSUE_TEST_MODE is set, but cache_dir is not under the system temp directory.\n"
                    f"  cache_dir={cfg.cache_dir}\n"
                    "Refusing to run tests against a non-isolated real environment."
                )
        return cfg

    @classmethod
    def defaults(cls) -> Configuration:
        return cls.from_config_file(ConfigFile())

    @classmethod
    def resolve(cls, config_path: Path) -> Configuration:
        """Resolve configuration from a YAML file; a missing file yields defaults."""
        if not config_path.exists():
            return cls.defaults()

        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            config_file = ConfigFile.model_validate(raw)
        except (yaml.YAMLError, OSError) as e:
            raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
        except ValidationError as e:
            raise ConfigError(f"Configuration validation errors in {config_path}") from e

        return cls.from_config_file(config_file)


def load_config(config_path: Path | None = None) -> Configuration:
    """Load configuration from $PURSUE_CONFIG or the XDG config location.

    A broken config must not stop the prompt from drawing: errors are logged
    and the defaults are used instead.
    """
    if config_path is None:
        env_path = os.getenv(CONFIG_ENV)
        config_path = Path(env_path).expanduser() if env_path else default_config_path()

    try:
        return Configuration.resolve(config_path)
    except ConfigError as e:
        logger.warning("Configuration error, using defaults: %s", e)
        return Configuration.defaults()
