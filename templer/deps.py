"""Reverse dependency indexes used to decide what to regenerate.

Every index maps a resource key to the set of page names that must be
regenerated when that resource changes. Four kinds of key are tracked:

* template names (a page included, wrapped, or referenced by another page),
* absolute data file paths reported through ``watch_files``,
* glob patterns reported through ``watch_globs``,
* the global data produced by the pre-generation hook.

Example
-------
>>> from templer.deps import DependencyKind, DependencyTracker
>>> tracker = DependencyTracker()
>>> tracker.record(DependencyKind.GLOB, "posts/*.md", "blog")
>>> sorted(tracker.dependents_of(DependencyKind.PATH, "/site/data/posts/a.md"))
['blog']
"""

from __future__ import annotations

import enum
from pathlib import Path, PurePosixPath

from templer.logging import get_logger

GLOBAL_KEY = "global"

logger = get_logger("deps")


class DependencyKind(enum.Enum):
    """The resource families the tracker indexes."""

    TEMPLATE = "template"
    PATH = "path"
    GLOB = "glob"
    GLOBAL = "global"


class DependencyTracker:
    """Maintain reverse indexes from resource keys to dependent pages."""

    def __init__(self) -> None:
        self.templates: dict[str, set[str]] = {}
        self.paths: dict[str, set[str]] = {}
        # Insertion order doubles as pattern registration order.
        self.globs: dict[str, set[str]] = {}
        self.global_dependents: set[str] = set()

    def record(self, kind: DependencyKind, key: str, dependent: str) -> None:
        """Record that ``dependent`` must regenerate when ``key`` changes.

        Re-recording an existing edge is a no-op. Path keys are normalised to
        absolute paths; the key of a ``GLOBAL`` edge is ignored because global
        dependents form a single flat set.
        """
        match kind:
            case DependencyKind.GLOBAL:
                self.global_dependents.add(dependent)
            case DependencyKind.PATH:
                self.paths.setdefault(_absolute(key), set()).add(dependent)
            case DependencyKind.GLOB:
                self.globs.setdefault(key, set()).add(dependent)
            case DependencyKind.TEMPLATE:
                self.templates.setdefault(key, set()).add(dependent)

    def dependents_of(self, kind: DependencyKind, key: str = GLOBAL_KEY) -> set[str]:
        """Return a copy of the pages depending on ``key``.

        For ``PATH`` lookups an exact match wins; otherwise every registered
        glob pattern is tested against the path in registration order and the
        first match is used. An empty set means nothing depends on ``key``.
        """
        match kind:
            case DependencyKind.GLOBAL:
                return set(self.global_dependents)
            case DependencyKind.TEMPLATE:
                return set(self.templates.get(key, ()))
            case DependencyKind.GLOB:
                return set(self.globs.get(key, ()))
            case DependencyKind.PATH:
                return self._path_dependents(_absolute(key))
        return set()

    def template_dependents(self, template: str) -> set[str]:
        """Return pages depending on ``template`` plus the template itself."""
        logger.debug("Template dependency tree: %s", self.templates)
        return {*self.dependents_of(DependencyKind.TEMPLATE, template), template}

    def remove_page(self, page: str) -> None:
        """Forget ``page`` as a dependent in every index; safe to call repeatedly.

        Keys that ``page`` itself provides stay, so pages that include it are
        still regenerated if it is created again. Keys left without
        dependents are dropped.
        """
        for index in (self.templates, self.paths, self.globs):
            for key in list(index):
                index[key].discard(page)
                if not index[key]:
                    del index[key]
        self.global_dependents.discard(page)

    def _path_dependents(self, path: str) -> set[str]:
        exact = self.paths.get(path)
        if exact:
            logger.info("Update triggered by: %s", path)
            return set(exact)
        for pattern, dependents in self.globs.items():
            if _glob_match(path, pattern):
                logger.info("Update triggered by: %s", path)
                return set(dependents)
        logger.info("No dependencies to update for %s", path)
        return set()


def _absolute(path: str) -> str:
    return str(Path(path).resolve())


def _glob_match(path: str, pattern: str) -> bool:
    """Match ``pattern`` against the trailing segments of ``path``.

    Wildcards never cross a ``/``, so ``posts/*.md`` does not match a file
    under ``posts/drafts/``.
    """
    relative = pattern.lstrip("/")
    if not relative:
        return False
    return PurePosixPath(Path(path).as_posix()).match(relative)


__all__ = ["GLOBAL_KEY", "DependencyKind", "DependencyTracker"]
