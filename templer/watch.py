"""Turn file changes into debounced incremental rebuilds.

:class:`PollingWatcher` compares ``(size, mtime_ns)`` snapshots of the input
and data directories and reports files that were added, modified, or
deleted. :class:`IncrementalUpdateCoordinator` classifies each change, maps
it to the pages that depend on it, and merges those pages into one pending
set. When no change has arrived for the debounce window, the merged set is
queued and generated in a single run followed by the post-generation hook.
"""

from __future__ import annotations

import asyncio
import enum
import typing as typ
from pathlib import Path

from templer._constants import POST_GENERATE_SCRIPT, PRE_GENERATE_SCRIPT
from templer.config.helpers import is_within
from templer.generator import Trigger, TriggerReason
from templer.heartbeat import Heartbeat
from templer.logging import get_logger

if typ.TYPE_CHECKING:
    from templer.engine import Templer

Snapshot = dict[Path, tuple[int, int]]

logger = get_logger("watch")


class ChangeKind(enum.Enum):
    """What a changed path is to the engine."""

    DATA = "data"
    PRE_GENERATE = "pre_generate"
    POST_GENERATE = "post_generate"
    TEMPLATE = "template"
    IGNORED = "ignored"


def classify_change(input_dir: Path, data_dir: Path, path: Path) -> ChangeKind:
    """Return the kind of ``path``; data wins over everything else."""
    if is_within(path, data_dir):
        return ChangeKind.DATA
    resolved = path.resolve()
    if resolved == (input_dir / PRE_GENERATE_SCRIPT).resolve():
        return ChangeKind.PRE_GENERATE
    if resolved == (input_dir / POST_GENERATE_SCRIPT).resolve():
        return ChangeKind.POST_GENERATE
    if is_within(path, input_dir):
        return ChangeKind.TEMPLATE
    return ChangeKind.IGNORED


class IncrementalUpdateCoordinator:
    """Collect dependent pages from changes and regenerate them in batches."""

    def __init__(self, engine: Templer, *, debounce: float | None = None) -> None:
        self.engine = engine
        self.debounce = debounce if debounce is not None else engine.config.debounce
        self.pending: dict[str, Trigger | None] = {}
        self.errors_seen = engine.error_count
        self._timer: Heartbeat | None = None
        self._flush_tasks: set[asyncio.Task[int]] = set()
        self._fatal: BaseException | None = None
        self._stop: asyncio.Event | None = None
        self._lock = asyncio.Lock()

    async def notify(self, path: Path, reason: TriggerReason) -> None:
        """Handle one change and (re)start the debounce window."""
        config = self.engine.config
        kind = classify_change(config.input_dir, config.data_dir, path)
        match kind:
            case ChangeKind.DATA:
                trigger = Trigger(path=str(path.resolve()), reason=reason)
                self.merge(self.engine.data_dependents(path), trigger)
            case ChangeKind.PRE_GENERATE:
                await self.engine.run_hook(self.engine.process_pre_generate)
                logger.info("%s updated; updating dependents.", PRE_GENERATE_SCRIPT)
                self.merge(self.engine.global_dependents())
            case ChangeKind.POST_GENERATE:
                await self.engine.run_hook(self.engine.process_post_generate)
                logger.info("%s updated.", POST_GENERATE_SCRIPT)
            case ChangeKind.TEMPLATE:
                self._template_changed(path, reason)
            case ChangeKind.IGNORED:
                logger.debug("Ignoring change outside watched roots: %s", path)
                return
        self._restart_timer()

    def merge(self, pages: typ.Iterable[str], trigger: Trigger | None = None) -> None:
        """Add ``pages`` to the pending set.

        A page keeps the most recent data trigger seen in the window; a
        change without a trigger never erases one.
        """
        for page in pages:
            if trigger is not None or page not in self.pending:
                self.pending[page] = trigger

    async def flush(self) -> int:
        """Regenerate every pending page now; return how many were queued."""
        async with self._lock:
            if self._timer is not None:
                self._timer.stop()
            pending, self.pending = self.pending, {}
            queued = self.engine.update_deps(pending)
            if queued:
                await self.engine.generate_pages()
                logger.info("Dependency updates complete.")
                await self.engine.run_hook(self.engine.process_post_generate)
            self._report_new_errors()
            return queued

    async def watch(
        self,
        watcher: PollingWatcher,
        *,
        stop: asyncio.Event | None = None,
    ) -> None:
        """Feed ``watcher`` changes into :meth:`notify` until ``stop`` is set.

        An exception escaping a debounced flush, such as
        :class:`~templer.cache.CacheExpiryError`, sets ``stop`` and is raised
        from here once the in-flight flushes have finished.
        """
        stop = stop or asyncio.Event()
        self._stop = stop
        logger.info("Watching for changes.")
        while not stop.is_set():
            for path, reason in watcher.poll():
                await self.notify(path, reason)
            try:
                await asyncio.wait_for(stop.wait(), timeout=watcher.interval)
            except TimeoutError:
                continue
        if self._flush_tasks:
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)
        if self._fatal is not None:
            raise self._fatal

    def _template_changed(self, path: Path, reason: TriggerReason) -> None:
        name = self.engine.template_name(path)
        if name is None:
            logger.debug("Not a template: %s", path)
            return
        if reason is TriggerReason.DELETED:
            logger.info("%s has been removed", path)
            self.engine.process_deleted_template(name)
            return
        for scanned in self.engine.process_template_files(path):
            logger.info("Template updated: %s", path)
            self.merge(self.engine.template_dependents(scanned))

    def _restart_timer(self) -> None:
        if self._timer is None:
            self._timer = Heartbeat(
                "watcher", self._elapsed, self.debounce, repeat=False
            )
        self._timer.restart()

    def _elapsed(self, _name: str) -> None:
        task = asyncio.ensure_future(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_done)

    def _flush_done(self, task: asyncio.Task[int]) -> None:
        self._flush_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        logger.error("Incremental update failed: %s", error)
        if self._fatal is None:
            self._fatal = error
        if self._stop is not None:
            self._stop.set()

    def _report_new_errors(self) -> None:
        current = self.engine.error_count
        if current > self.errors_seen:
            logger.error("New errors detected: %d", current - self.errors_seen)
        self.errors_seen = current


class PollingWatcher:
    """Report file changes under ``roots`` by comparing stat snapshots.

    Files and directories whose name starts with ``.`` are ignored. The first
    snapshot is taken on construction, so existing files are not reported.
    """

    def __init__(self, roots: typ.Iterable[Path], *, interval: float = 0.5) -> None:
        self.roots = [Path(root) for root in roots]
        self.interval = interval
        self._snapshot = self.snapshot()

    def snapshot(self) -> Snapshot:
        files: Snapshot = {}
        for root in self.roots:
            if not root.is_dir():
                continue
            for path in root.rglob("*"):
                relative = path.relative_to(root)
                if any(part.startswith(".") for part in relative.parts):
                    continue
                try:
                    stat_result = path.stat()
                except FileNotFoundError:
                    continue
                if path.is_file():
                    files[path] = (stat_result.st_size, stat_result.st_mtime_ns)
        return files

    def poll(self) -> list[tuple[Path, TriggerReason]]:
        """Return changes since the previous call, sorted by path."""
        current = self.snapshot()
        previous = self._snapshot
        self._snapshot = current
        changes: list[tuple[Path, TriggerReason]] = []
        for path in sorted(current.keys() | previous.keys()):
            if path not in previous:
                changes.append((path, TriggerReason.ADDED))
            elif path not in current:
                changes.append((path, TriggerReason.DELETED))
            elif current[path] != previous[path]:
                changes.append((path, TriggerReason.MODIFIED))
        return changes


__all__ = [
    "ChangeKind",
    "IncrementalUpdateCoordinator",
    "PollingWatcher",
    "classify_change",
]
