"""Load engine configuration YAML into typed dataclasses."""

from __future__ import annotations

import typing as typ
from pathlib import Path

from ruamel.yaml import YAML

from templer.logging import get_logger

from .helpers import (
    _check_exclusive_dirs,
    _coerce_bool,
    _duplicate_keys,
    _optional_path,
    _positive_float,
)
from .models import CachePolicy, ConfigError, EngineConfig

DEFAULT_CONFIG = Path("templer.yaml")

logger = get_logger("config")


def load_engine_config(
    path: Path | None = None,
    overrides: typ.Mapping[str, typ.Any] | None = None,
) -> EngineConfig:
    """Merge the optional YAML file with command-line overrides and validate.

    Parameters
    ----------
    path : Path, optional
        Location of ``templer.yaml``. A missing file is not an error; the
        defaults and overrides are used on their own.
    overrides : Mapping[str, Any], optional
        Values supplied on the command line. ``None`` entries are ignored so
        callers can pass every CLI option unconditionally.

    Returns
    -------
    EngineConfig
        Resolved configuration with directory overlap checks applied.

    Raises
    ------
    ConfigError
        If directories contain one another, mutually exclusive flags are set,
        the cache policy is unknown, or timing values are not positive.
    TypeError
        If the YAML ``options`` block is not a mapping.

    Examples
    --------
    >>> from templer.config import load_engine_config
    >>> config = load_engine_config(None, {"output": "site"})  # doctest: +SKIP
    >>> config.output_dir  # doctest: +SKIP
    PosixPath('site')
    """
    file_options = _read_options(path) if path is not None else {}
    cli_options = {k: v for k, v in (overrides or {}).items() if v is not None}

    for key in sorted(_duplicate_keys(file_options, cli_options)):
        logger.warning(
            "Command line argument %s is overriding option specified in %s", key, path
        )

    merged: dict[str, typ.Any] = {**file_options, **cli_options}
    defaults = EngineConfig()
    config = EngineConfig(
        input_dir=_optional_path(merged.get("input")) or defaults.input_dir,
        data_dir=_optional_path(merged.get("data")) or defaults.data_dir,
        output_dir=_optional_path(merged.get("output")) or defaults.output_dir,
        cache_dir=_optional_path(merged.get("cache")) or defaults.cache_dir,
        public_dir=_optional_path(merged.get("public")),
        verbose=_coerce_bool(merged.get("verbose")),
        no_watch=_coerce_bool(merged.get("no_watch")),
        watch_only=_coerce_bool(merged.get("watch_only")),
        clear_cache=_coerce_bool(merged.get("clear_cache")),
        cache_policy=_parse_policy(merged.get("cache_policy")),
        script_timeout=_positive_float(
            "script_timeout", merged.get("script_timeout", defaults.script_timeout)
        ),
        debounce=_positive_float("debounce", merged.get("debounce", defaults.debounce)),
    )
    validate_engine_config(config)
    return config


def validate_engine_config(config: EngineConfig) -> None:
    """Raise ConfigError for combinations the engine cannot run with."""
    if config.watch_only and config.no_watch:
        msg = "Can't both watch and not watch."
        raise ConfigError(msg)
    _check_exclusive_dirs(
        {
            "input_dir": config.input_dir,
            "data_dir": config.data_dir,
            "output_dir": config.output_dir,
            "cache_dir": config.cache_dir,
        }
    )


def _read_options(path: Path) -> dict[str, typ.Any]:
    """Return the ``options`` mapping from ``path`` or an empty dict."""
    if not path.exists():
        logger.debug("No config file found at %s, using defaults.", path)
        return {}
    loader = YAML(typ="safe")
    loader.version = (1, 2)
    with path.open("r", encoding="utf-8") as handle:
        loaded = loader.load(handle) or {}
    if not isinstance(loaded, dict):
        msg = "Top-level YAML structure must be a mapping."
        raise TypeError(msg)
    options = loaded.get("options") or {}
    if not isinstance(options, dict):
        msg = "The 'options' block must be a mapping."
        raise TypeError(msg)
    return dict(options)


def _parse_policy(value: object | None) -> CachePolicy:
    if value is None:
        return CachePolicy.SHARED
    try:
        return CachePolicy(str(value).strip().lower())
    except ValueError as exc:
        known = ", ".join(policy.value for policy in CachePolicy)
        msg = f"Unknown cache_policy '{value}'. Known policies: {known}"
        raise ConfigError(msg) from exc


__all__ = ["DEFAULT_CONFIG", "load_engine_config", "validate_engine_config"]
