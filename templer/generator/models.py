"""Shared dataclasses used by the page generation pipeline."""

from __future__ import annotations

import asyncio
import dataclasses as dc
import enum
import typing as typ

from templer._constants import PATH_WILDCARD


class WildcardError(ValueError):
    """Raised when a batch request does not fit the page's generate target."""


class TriggerReason(enum.StrEnum):
    """Why a change notification queued a page."""

    ADDED = "Added"
    MODIFIED = "Modified"
    DELETED = "Deleted"


@dc.dataclass(slots=True, frozen=True)
class Trigger:
    """The input change that caused a regeneration."""

    path: str
    reason: TriggerReason = TriggerReason.MODIFIED

    def as_input(self) -> dict[str, str]:
        return {"path": self.path, "reason": self.reason.value}


class RequestStatus(enum.StrEnum):
    """Lifecycle of one generation request within a run."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dc.dataclass(slots=True)
class GenerationRequest:
    """A queued page awaiting generation.

    Attributes
    ----------
    name : str
        Page to generate.
    generate : str
        Target path pattern holding zero or one ``*`` wildcard.
    trigger : Trigger | None
        Change that queued the page; ``None`` for the initial build.
    status : RequestStatus
        Where the request is in its run.
    """

    name: str
    generate: str
    trigger: Trigger | None = None
    status: RequestStatus = RequestStatus.QUEUED

    @property
    def wildcards(self) -> int:
        return self.generate.count(PATH_WILDCARD)


@dc.dataclass(slots=True, frozen=True)
class PageRequest:
    """One page entry requested by a generate script's batch callback."""

    path: str
    data: dict[str, typ.Any] = dc.field(default_factory=dict)

    @classmethod
    def from_value(cls, value: object) -> PageRequest:
        """Build a request from a ``{"path": ..., "data": {...}}`` mapping."""
        if isinstance(value, PageRequest):
            return value
        if not isinstance(value, typ.Mapping):
            msg = f"Page requests must be mappings with a 'path', got {value!r}"
            raise TypeError(msg)
        data = value.get("data") or {}
        if not isinstance(data, typ.Mapping):
            msg = f"Page request data must be a mapping, got {data!r}"
            raise TypeError(msg)
        return cls(path=str(value.get("path", "")), data=dict(data))


def normalize_page_requests(pages: object) -> list[PageRequest]:
    """Accept a single page entry or a list of them."""
    if isinstance(pages, (list, tuple)):
        return [PageRequest.from_value(page) for page in pages]
    return [PageRequest.from_value(pages)]


def batch_paths(generate: str, pages: list[PageRequest]) -> list[str]:
    """Return the output path of each requested page.

    A target with one wildcard substitutes each entry's path fragment. A
    target with no wildcard accepts at most one entry, rendered at the
    literal path.

    Raises
    ------
    WildcardError
        If the target has more than one wildcard, or has none and more than
        one page was requested.
    """
    wildcards = generate.count(PATH_WILDCARD)
    if wildcards > 1 and pages:
        msg = (
            f"Generate paths can only include a single path replacement "
            f"{PATH_WILDCARD}: {generate}"
        )
        raise WildcardError(msg)
    if wildcards == 0:
        if len(pages) > 1:
            msg = (
                f"Generate paths must include a path replacement {PATH_WILDCARD} "
                f"when generating more than one page from data: {generate}"
            )
            raise WildcardError(msg)
        return [generate for _ in pages]
    return [generate.replace(PATH_WILDCARD, page.path, 1) for page in pages]


class CompletionBarrier:
    """Fan-out/fan-in counter that signals once every unit has settled.

    The count starts at the number of queued requests, grows when a script
    fans out into extra renders, and shrinks as each unit settles. ``wait``
    returns when it reaches zero.
    """

    def __init__(self, initial: int = 0) -> None:
        self._pending = initial
        self._done = asyncio.Event()
        if initial <= 0:
            self._done.set()

    @property
    def pending(self) -> int:
        return self._pending

    def add(self, count: int = 1) -> None:
        self._pending += count
        if self._pending > 0:
            self._done.clear()

    def settle(self) -> None:
        self._pending -= 1
        if self._pending <= 0:
            self._pending = 0
            self._done.set()

    async def wait(self) -> None:
        await self._done.wait()


__all__ = [
    "CompletionBarrier",
    "GenerationRequest",
    "PageRequest",
    "RequestStatus",
    "Trigger",
    "TriggerReason",
    "WildcardError",
    "batch_paths",
    "normalize_page_requests",
]
