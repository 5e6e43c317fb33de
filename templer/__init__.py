"""Incremental static-site build engine.

templer compiles Jinja2 page templates, runs the Python generate scripts
embedded in them, writes the rendered pages, and records which data files,
templates, and global values each page used, so that a later change
regenerates only the pages it affects.

Exports
-------
- ``Templer``: The engine; one instance owns all build state.
- ``app``: Cyclopts application behind the ``templer`` command.
- ``main``: Convenience function that invokes the Cyclopts app.

Examples
--------
>>> from templer import main
>>> main()  # doctest: +SKIP
>>> from templer import app
>>> "templer" in app.name
True
"""

from __future__ import annotations

from .cli import app, main
from .engine import Templer

__all__ = ["Templer", "app", "main"]
