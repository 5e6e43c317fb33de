"""Typed dataclasses describing templer engine configuration."""

from __future__ import annotations

import dataclasses as dc
import enum
from pathlib import Path

from templer._constants import DEFAULT_DEBOUNCE, DEFAULT_SCRIPT_TIMEOUT


class ConfigError(ValueError):
    """Raised when the engine configuration is invalid or incomplete."""


class CachePolicy(enum.StrEnum):
    """How cache groups are assigned to scripts."""

    SHARED = "shared"
    PER_SCRIPT = "per_script"


@dc.dataclass(slots=True)
class EngineConfig:
    """A fully resolved engine configuration.

    Attributes
    ----------
    input_dir : Path
        Directory scanned for ``.jinja`` templates and the pre/post hooks.
    data_dir : Path
        Directory exposed to scripts through ``get_data_file_names``.
    output_dir : Path
        Root that every artifact write must stay inside.
    cache_dir : Path
        Directory holding the persisted ``cache.json``.
    public_dir : Path | None
        Optional directory copied verbatim into ``output_dir`` before a build.
    verbose : bool
        Emit debug-level progress messages.
    no_watch : bool
        Exit after the initial build instead of watching for changes.
    watch_only : bool
        Skip the initial build and only react to changes.
    clear_cache : bool
        Drop every persisted cache group on startup.
    cache_policy : CachePolicy
        Shared cache group (default) or one group per script owner.
    script_timeout : float
        Seconds before the watchdog logs a stalled script.
    debounce : float
        Seconds of quiet required before queued changes are applied.
    """

    input_dir: Path = Path("./templer/input")
    data_dir: Path = Path("./templer/data")
    output_dir: Path = Path("./templer/output")
    cache_dir: Path = Path("./templer/cache")
    public_dir: Path | None = None
    verbose: bool = False
    no_watch: bool = False
    watch_only: bool = False
    clear_cache: bool = False
    cache_policy: CachePolicy = CachePolicy.SHARED
    script_timeout: float = DEFAULT_SCRIPT_TIMEOUT
    debounce: float = DEFAULT_DEBOUNCE


__all__ = ["CachePolicy", "ConfigError", "EngineConfig"]
