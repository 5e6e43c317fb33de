"""Utility helpers shared by the templer configuration loader."""

from __future__ import annotations

import itertools
import typing as typ
from pathlib import Path

from .models import ConfigError

# Pairs of directory roles that must never contain one another.
EXCLUSIVE_DIRS: tuple[tuple[str, str], ...] = (
    ("input_dir", "data_dir"),
    ("input_dir", "output_dir"),
    ("cache_dir", "output_dir"),
    ("data_dir", "output_dir"),
    ("data_dir", "cache_dir"),
)


def _optional_str(value: object | None) -> str | None:
    """Return a stripped string value or None when empty."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_path(value: object | None) -> Path | None:
    """Return a Path for non-empty values, otherwise None."""
    text = _optional_str(value)
    return Path(text) if text else None


def _coerce_bool(value: object) -> bool:
    """Interpret YAML/env flag values such as ``"yes"`` or ``1``."""
    match value:
        case bool():
            return value
        case str() as text:
            return text.strip().lower() in {"1", "true", "yes", "on"}
        case None:
            return False
        case _:
            return bool(value)


def _positive_float(key: str, value: object) -> float:
    """Return ``value`` as a float, rejecting non-numeric or non-positive input."""
    try:
        number = float(typ.cast("typ.Any", value))
    except (TypeError, ValueError) as exc:
        msg = f"Option '{key}' must be a number, got {value!r}."
        raise ConfigError(msg) from exc
    if number <= 0:
        msg = f"Option '{key}' must be greater than zero, got {number}."
        raise ConfigError(msg)
    return number


def is_within(child: Path, parent: Path) -> bool:
    """Return True when ``child`` resolves to ``parent`` or a path beneath it."""
    return child.resolve().is_relative_to(parent.resolve())


def _check_exclusive_dirs(dirs: typ.Mapping[str, Path]) -> None:
    """Raise ConfigError when two configured roots contain one another."""
    for first, second in EXCLUSIVE_DIRS:
        a, b = dirs[first], dirs[second]
        if is_within(a, b) or is_within(b, a):
            msg = f"Directories must not contain each other: {a}, {b}"
            raise ConfigError(msg)


def _duplicate_keys(*mappings: typ.Mapping[str, object]) -> set[str]:
    """Return keys set to a non-empty value in more than one mapping."""
    seen: set[str] = set()
    duplicates: set[str] = set()
    for key, value in itertools.chain.from_iterable(m.items() for m in mappings):
        if value in (None, False, ""):
            continue
        if key in seen:
            duplicates.add(key)
        seen.add(key)
    return duplicates


__all__ = [
    "EXCLUSIVE_DIRS",
    "_check_exclusive_dirs",
    "_coerce_bool",
    "_duplicate_keys",
    "_optional_path",
    "_optional_str",
    "_positive_float",
    "is_within",
]
