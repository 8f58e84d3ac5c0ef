"""Pure serializable configuration data model.

DO NOT ADD LOGIC - THIS IS PURE DATA

This module contains only the serializable Pydantic model that represents
the configuration data as stored in YAML files. For runtime configuration
with resolved paths and durations, see configuration.py.
"""

from typing import Literal

from pydantic import BaseModel, Field


class ConfigFile(BaseModel):
    """Exact structure of the YAML configuration file.

    All fields are basic Python types that can be serialized to/from YAML.
    """

    model_config = {"extra": "forbid"}

    # Cache location (None = $XDG_CACHE_HOME/pursue)
    cache_dir: str | None = None

    # Probe settings
    deadline_ms: int = Field(default=50, ge=0)
    enabled_probes: list[Literal["vcs_status"]] = Field(default_factory=lambda: ["vcs_status"])

    # Background fetch settings
    fetch_enabled: bool = True
    fetch_interval_s: float = Field(default=60.0, ge=0)
    fetch_timeout_s: float = Field(default=30.0, gt=0)
    lock_staleness_s: float = Field(default=60.0, gt=0)

    # Rendering
    shorten_path: bool = False

    # Logging (None = per-command default)
    log_output: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
