"""The single mutable state structure owned by one engine instance."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from templer.cache import CacheStore
from templer.content import Page
from templer.deps import DependencyTracker
from templer.generator.models import GenerationRequest, Trigger
from templer.output import OutputLedger


@dc.dataclass(slots=True)
class EngineState:
    """Pages, dependency indexes, cache, ledger, queue, and run counters.

    Internal components receive this object by reference; the engine that
    creates it is its only owner.
    """

    cache: CacheStore
    pages: dict[str, Page] = dc.field(default_factory=dict)
    deps: DependencyTracker = dc.field(default_factory=DependencyTracker)
    ledger: OutputLedger = dc.field(default_factory=OutputLedger)
    to_generate: dict[str, GenerationRequest] = dc.field(default_factory=dict)
    global_data: dict[str, typ.Any] = dc.field(default_factory=dict)
    error_count: int = 0

    def cue(self, name: str, trigger: Trigger | None = None) -> bool:
        """Queue ``name`` when its front matter declares a generate target."""
        page = self.pages.get(name)
        if page is None or not page.generate:
            return False
        self.to_generate[name] = GenerationRequest(
            name=name, generate=page.generate, trigger=trigger
        )
        return True

    def wrapper_chain(self, name: str) -> list[str]:
        """Return the wrappers of ``name`` from innermost to outermost."""
        chain: list[str] = []
        current = self.pages.get(name)
        while current is not None and current.wrapper:
            if current.wrapper in chain or current.wrapper == name:
                break
            chain.append(current.wrapper)
            current = self.pages.get(current.wrapper)
        return chain


__all__ = ["EngineState"]
