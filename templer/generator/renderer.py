"""Recursive page rendering with includes and nested wrappers.

Templates pull in other templates with ``{{ include("name", {...}) }}``. A
page whose front matter names a ``wrapper`` is rendered inside it: the
outermost wrapper is rendered first and each ``{{ include("_body") }}`` hands
control back one level inwards until the page itself is reached.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from markupsafe import Markup

from templer._constants import BODY_SLOT
from templer.deps import DependencyKind
from templer.logging import get_logger
from templer.sandbox import GlobalAccessor

if typ.TYPE_CHECKING:
    from templer.state import EngineState

logger = get_logger("renderer")


class RenderError(RuntimeError):
    """Raised when a page cannot be rendered."""


class UnwrappedBodyError(RenderError):
    """Raised when ``_body`` is included outside of a wrapper."""


@dc.dataclass(slots=True, frozen=True)
class RenderContext:
    """Per-call recursion state threaded through nested includes.

    Attributes
    ----------
    parent : str
        Page whose render started the recursion; dependencies are recorded
        against it.
    template : str
        Template currently being rendered.
    wrap_stack : tuple[str, ...]
        Templates still waiting to be rendered at a ``_body`` slot, innermost
        first.
    progress : list[str]
        Shared record of the most recent template entered, used in errors.
    """

    parent: str
    template: str
    wrap_stack: tuple[str, ...] = ()
    progress: list[str] = dc.field(default_factory=list)


class PageRenderer:
    """Render pages from the compiled templates held in engine state."""

    def __init__(self, state: EngineState) -> None:
        self.state = state

    def render(
        self,
        parent: str,
        current: str,
        data: typ.Mapping[str, typ.Any] | None = None,
        include_data: typ.Mapping[str, typ.Any] | None = None,
        ctx: RenderContext | None = None,
    ) -> str:
        """Render ``current`` on behalf of page ``parent``.

        Parameters
        ----------
        parent : str
            The page being rendered.
        current : str
            Template to render: the page itself, an included template, or
            ``_body``.
        data : Mapping, optional
            Data passed down from the enclosing level.
        include_data : Mapping, optional
            Data passed with an include; it overrides everything else.
        ctx : RenderContext, optional
            Enclosing recursion state; ``None`` starts a new render.

        Raises
        ------
        UnwrappedBodyError
            If ``_body`` is included while no wrapped template is pending.
        RenderError
            If a template is unknown or failed to compile.
        """
        if ctx is None:
            ctx = RenderContext(parent=parent, template=parent, progress=[parent])

        if current == BODY_SLOT:
            if not ctx.wrap_stack:
                msg = f"Wrapper {ctx.template} was not wrapping anything"
                raise UnwrappedBodyError(msg)
            target = ctx.wrap_stack[-1]
            wrap_stack = ctx.wrap_stack[:-1]
        else:
            target, wrap_stack = self._unwrap(parent, current)

        ctx.progress[:] = [target]
        page = self.state.pages.get(target)
        if page is None or page.template is None:
            msg = f"Template not found: {target}"
            raise RenderError(msg)

        merged = {**(data or {}), **page.front_matter, **(include_data or {})}
        inner = dc.replace(ctx, template=target, wrap_stack=wrap_stack)

        def include(
            name: str, include_with: typ.Mapping[str, typ.Any] | None = None
        ) -> Markup:
            html = self.render(parent, name, merged, include_with, inner)
            return Markup(html)  # noqa: S704

        return page.template.render(**merged, include=include)

    def render_page(
        self,
        name: str,
        data: typ.Mapping[str, typ.Any] | None = None,
        *,
        progress: list[str] | None = None,
    ) -> str:
        """Render page ``name`` from the top of its wrapper chain.

        When given, ``progress`` is left holding the innermost template
        entered, which is the one error messages report.
        """
        progress = progress if progress is not None else []
        progress[:] = [name]
        ctx = RenderContext(parent=name, template=name, progress=progress)
        base = {"global": GlobalAccessor(self.state, name), **(data or {})}
        return self.render(name, name, base, ctx=ctx)

    def _unwrap(self, parent: str, current: str) -> tuple[str, tuple[str, ...]]:
        """Resolve the wrapper chain of ``current``.

        Returns the outermost wrapper to render first and the stack of
        templates its ``_body`` slots unwind through.
        """
        if current != parent:
            self.state.deps.record(DependencyKind.TEMPLATE, current, parent)
        chain = self.state.wrapper_chain(current)
        if not chain:
            return current, ()
        logger.debug("Wrapping %s in %s", current, " > ".join(chain))
        for wrapped, wrapper in zip([current, *chain], chain, strict=False):
            self.state.deps.record(DependencyKind.TEMPLATE, wrapper, wrapped)
            self.state.deps.record(DependencyKind.TEMPLATE, wrapper, parent)
        stack = (current, *chain[:-1])
        return chain[-1], stack


__all__ = ["PageRenderer", "RenderContext", "RenderError", "UnwrappedBodyError"]
