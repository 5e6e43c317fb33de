"""Path-safe artifact writes and the ledger of everything written.

Every write resolves its target to an absolute path and refuses to touch the
filesystem unless that path lies inside the configured output root. Each
successful write appends an :class:`OutputRecord` to the ledger category for
its artifact kind; the ledger is handed to the post-generation hook.
"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import json
import typing as typ
from pathlib import Path

from templer._constants import (
    DEFAULT_ENTRY_NAME,
    ENTRY_SUFFIX,
    LIB_DIR,
    PAGE_FILENAME,
)
from templer.logging import get_logger

logger = get_logger("output")


class OutputPathError(ValueError):
    """Raised when a write target resolves outside the output root."""


@dc.dataclass(slots=True, frozen=True)
class OutputRecord:
    """One artifact written during a run.

    Attributes
    ----------
    source : str
        Page (or hook) name that produced the artifact.
    path : Path
        Absolute filesystem path of the artifact.
    time : str
        ISO-8601 UTC timestamp of the write.
    """

    source: str
    path: Path
    time: str


@dc.dataclass(slots=True)
class OutputLedger:
    """Append-only write records plus arbitrary per-page output data."""

    html: list[OutputRecord] = dc.field(default_factory=list)
    entry: list[OutputRecord] = dc.field(default_factory=list)
    lib: list[OutputRecord] = dc.field(default_factory=list)
    json: list[OutputRecord] = dc.field(default_factory=list)
    out_data: dict[str, typ.Any] = dc.field(default_factory=dict)

    def prune(self, page: str) -> None:
        """Forget the structured output data recorded for ``page``."""
        self.out_data.pop(page, None)

    def snapshot(self) -> dict[str, typ.Any]:
        """Return a detached, plain-data copy for read access by scripts."""

        def _records(records: list[OutputRecord]) -> list[dict[str, str]]:
            return [
                {"source": r.source, "path": str(r.path), "time": r.time}
                for r in records
            ]

        return {
            "html": _records(self.html),
            "entry": _records(self.entry),
            "lib": _records(self.lib),
            "json": _records(self.json),
            "out_data": json.loads(json.dumps(self.out_data, default=str)),
        }


class OutputWriter:
    """Write artifacts beneath ``output_dir`` and record them in ``ledger``."""

    def __init__(self, output_dir: Path, ledger: OutputLedger) -> None:
        self.output_dir = output_dir
        self.root = output_dir.resolve()
        self.ledger = ledger

    def resolve(self, relative: str | Path) -> Path:
        """Return the absolute path for ``relative`` under the output root.

        Raises
        ------
        OutputPathError
            If the resolved path is not the root or a descendant of it.
        """
        candidate = (self.root / str(relative).lstrip("/")).resolve()
        if not candidate.is_relative_to(self.root):
            msg = f"Trying to write {candidate} which is outside of {self.root}"
            raise OutputPathError(msg)
        return candidate

    def write_page(self, source: str, page_path: str, html: str) -> Path:
        """Write ``html`` to ``<page_path>/index.html``."""
        target = self.resolve(Path(page_path) / PAGE_FILENAME)
        self._write(target, html)
        self.ledger.html.append(_record(source, target))
        logger.info("Wrote: %s", target)
        return target

    def write_entry_script(self, source: str, page_path: str, script: str) -> Path:
        """Write the composed entry script for ``page_path``."""
        name = entry_script_name(page_path) + ENTRY_SUFFIX
        target = self.resolve(Path(page_path) / name)
        self._write(target, script)
        self.ledger.entry.append(_record(source, target))
        logger.info("Wrote: %s", target)
        return target

    def write_lib(self, source: str, script: str) -> Path:
        """Write a verbatim lib block to ``js/<page name>.js``."""
        target = self.resolve(Path(LIB_DIR) / f"{source}{ENTRY_SUFFIX}")
        self._write(target, script)
        self.ledger.lib.append(_record(source, target))
        logger.info("Wrote: %s", target)
        return target

    def write_site_file(self, source: str, relative: str, payload: object) -> Path:
        """Write a ``site_files`` entry; non-string payloads are JSON encoded."""
        target = self.resolve(relative)
        if isinstance(payload, str):
            text = payload
        else:
            text = json.dumps(payload)
        self._write(target, text)
        self.ledger.json.append(_record(source, target))
        logger.info("Wrote: %s", target)
        return target

    @staticmethod
    def _write(target: Path, text: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")


def entry_script_name(page_path: str) -> str:
    """Return the entry script stem: the last path segment, or ``main``."""
    segments = [part for part in page_path.split("/") if part]
    return segments[-1] if segments else DEFAULT_ENTRY_NAME


def _record(source: str, path: Path) -> OutputRecord:
    return OutputRecord(
        source=source, path=path, time=dt.datetime.now(dt.UTC).isoformat()
    )


__all__ = [
    "OutputLedger",
    "OutputPathError",
    "OutputRecord",
    "OutputWriter",
    "entry_script_name",
]
