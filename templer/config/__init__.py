"""Load and validate templer engine configuration.

This subpackage parses the optional ``templer.yaml`` file, merges it with
command-line overrides, checks that the input, data, output, and cache roots
do not contain one another, and produces an :class:`EngineConfig` the engine
consumes. The primary entry point is :func:`load_engine_config`.

Examples
--------
>>> from pathlib import Path
>>> from templer.config import load_engine_config
>>> config = load_engine_config(Path("templer.yaml"))  # doctest: +SKIP
>>> config.cache_policy  # doctest: +SKIP
<CachePolicy.SHARED: 'shared'>
"""

from .loader import DEFAULT_CONFIG, load_engine_config, validate_engine_config
from .models import CachePolicy, ConfigError, EngineConfig

__all__ = [
    "DEFAULT_CONFIG",
    "CachePolicy",
    "ConfigError",
    "EngineConfig",
    "load_engine_config",
    "validate_engine_config",
]
