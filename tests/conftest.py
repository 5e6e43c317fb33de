"""Shared fixtures for templer tests.

The ``site`` fixture lays out an input, data, output, and cache directory
under ``tmp_path`` and offers helpers to write templates, data files, and
hooks before constructing an engine over them.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import textwrap
import typing as typ
from pathlib import Path

import pytest

from templer.config import EngineConfig
from templer.engine import Templer


@dc.dataclass
class SiteBuilder:
    """Write site sources beneath a temporary root."""

    root: Path
    config: EngineConfig

    def template(self, name: str, text: str) -> Path:
        """Write ``<input>/<name>.jinja`` with dedented ``text``."""
        path = self.config.input_dir / f"{name}.jinja"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip("\n"), encoding="utf-8")
        return path

    def data(self, relative: str, text: str = "") -> Path:
        path = self.config.data_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def hook(self, filename: str, text: str) -> Path:
        path = self.config.input_dir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip("\n"), encoding="utf-8")
        return path

    def output(self, relative: str) -> Path:
        return self.config.output_dir / relative

    def engine(self, **overrides: typ.Any) -> Templer:
        return Templer(dc.replace(self.config, **overrides))


@pytest.fixture
def site(tmp_path: Path) -> SiteBuilder:
    """Return a builder over empty site directories in ``tmp_path``."""
    config = EngineConfig(
        input_dir=tmp_path / "input",
        data_dir=tmp_path / "data",
        output_dir=tmp_path / "output",
        cache_dir=tmp_path / "cache",
        script_timeout=5.0,
        debounce=0.01,
    )
    for directory in (config.input_dir, config.data_dir):
        directory.mkdir(parents=True)
    return SiteBuilder(root=tmp_path, config=config)


@pytest.fixture(autouse=True)
def _reset_templer_logging() -> typ.Iterator[None]:
    """Undo ``configure_logging`` so caplog keeps seeing templer records."""
    yield
    logger = logging.getLogger("templer")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
