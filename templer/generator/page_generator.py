"""Run queued page generation: scripts, batch renders, and entry scripts.

:class:`GenerationOrchestrator` drains the generation queue held in engine
state. Pages with a generate script (their own or one referenced through
``generate-use``) run it in the sandbox; the script fans out into rendered
pages through ``generate_pages`` and finishes with ``resolve``. Pages without
a script render once at their literal target path. A
:class:`~templer.generator.models.CompletionBarrier` tracks every pending
script and render so :meth:`GenerationOrchestrator.generate_pages` returns
only when the whole run has settled.

Example
-------
>>> orchestrator = GenerationOrchestrator(  # doctest: +SKIP
...     state, content, renderer, sandbox, writer
... )
>>> asyncio.run(orchestrator.generate_pages())  # doctest: +SKIP
"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import functools
import typing as typ

from templer._constants import ENTRY_SUFFIX
from templer.deps import DependencyKind
from templer.generator.models import (
    CompletionBarrier,
    GenerationRequest,
    RequestStatus,
    WildcardError,
    batch_paths,
    normalize_page_requests,
)
from templer.generator.renderer import PageRenderer, RenderContext, RenderError
from templer.logging import get_logger
from templer.output import OutputPathError, OutputWriter, entry_script_name
from templer.sandbox import (
    GeneratorResponse,
    GlobalAccessor,
    ScriptError,
    ScriptInvocation,
    ScriptSandbox,
)

if typ.TYPE_CHECKING:
    from templer.content import ContentStore
    from templer.state import EngineState

logger = get_logger("generator")


@dc.dataclass(slots=True)
class _ScriptRun:
    """Bookkeeping for one running generate script."""

    request: GenerationRequest
    owner: str
    cache_name: str
    rendered: int = 0


class GenerationOrchestrator:
    """Generate every queued page and wait for all of them to settle."""

    def __init__(
        self,
        state: EngineState,
        content: ContentStore,
        renderer: PageRenderer,
        sandbox: ScriptSandbox,
        writer: OutputWriter,
    ) -> None:
        self.state = state
        self.content = content
        self.renderer = renderer
        self.sandbox = sandbox
        self.writer = writer
        self.last_run: list[GenerationRequest] = []

    async def generate_pages(self) -> None:
        """Generate all queued pages.

        The queue is drained up front, so pages queued while this run is in
        flight wait for the next one.

        Raises
        ------
        CacheExpiryError
            If a cache entry carries an invalid expiry when a script starts.
        """
        requests = list(self.state.to_generate.values())
        self.state.to_generate.clear()
        self.last_run = requests
        if not requests:
            logger.info("Nothing to do. Will wait for changes.")
            return

        barrier = CompletionBarrier(len(requests))
        tasks: list[asyncio.Task[None]] = []
        for request in requests:
            request.status = RequestStatus.RUNNING
            script = self.content.generate_script(request.name)
            if script is None:
                rendered = self.render_page(request.name, request.generate)
                request.status = _outcome(rendered is not None)
                barrier.settle()
                continue
            owner, source = script
            run = _ScriptRun(
                request=request,
                owner=owner,
                cache_name=self.state.cache.group_name(owner),
            )
            invocation = self.sandbox.start(
                request.name,
                source,
                functools.partial(self._bindings, run, barrier),
            )
            tasks.append(asyncio.ensure_future(self._finish(run, invocation, barrier)))

        await barrier.wait()
        await asyncio.gather(*tasks)

    def render_page(
        self,
        name: str,
        path: str,
        data: typ.Mapping[str, typ.Any] | None = None,
    ) -> str | None:
        """Render ``name`` at ``path`` and write its HTML and entry script.

        Failures are logged and counted; ``None`` is returned in that case,
        otherwise the normalised output path.
        """
        path = fix_path(path)
        last_path = entry_script_name(path)
        input_vars = {
            "page_path": path,
            "page_name": name,
            "last_path": last_path,
            "entry_script": f"{path}/{last_path}{ENTRY_SUFFIX}",
        }
        progress = [name]
        try:
            html = self.renderer.render_page(
                name, {**input_vars, **(data or {})}, progress=progress
            )
            self.writer.write_page(name, path, html)
        except Exception as exc:  # noqa: BLE001 - template code may raise anything
            self.state.error_count += 1
            logger.error(
                "Error rendering page: %s, template: %s, path: %s",
                name,
                progress[0],
                path,
            )
            logger.error("%s: %s", type(exc).__name__, exc)
            return None
        self.write_entry_scripts(name, path)
        return path

    def write_entry_scripts(self, name: str, path: str) -> None:
        """Compose entry scripts along the wrapper chain, outermost first."""
        parts: list[str] = []
        for source in [*reversed(self.state.wrapper_chain(name)), name]:
            page = self.state.pages.get(source)
            if page is None or page.entry_script is None:
                continue
            if source != name:
                logger.debug(
                    "Appending wrapper entry script from '%s' for '%s'", source, name
                )
            parts.append(f"// entry script: {source}\n{page.entry_script}")
        if not parts:
            return
        try:
            self.writer.write_entry_script(name, path, "\n".join(parts))
        except (OutputPathError, OSError) as exc:
            self.state.error_count += 1
            logger.error("Error writing entry script for '%s': %s", name, exc)

    def render_template(
        self, owner: str, template: str, data: typ.Mapping[str, typ.Any] | None = None
    ) -> str:
        """Render ``template`` to a string for a script, without writing it.

        Raises
        ------
        RenderError
            Wrapping whatever stopped the render, naming the template reached.
        """
        progress = [template]
        ctx = RenderContext(parent=owner, template=template, progress=progress)
        base = {"global": GlobalAccessor(self.state, owner), **(data or {})}
        try:
            return self.renderer.render(owner, template, base, ctx=ctx)
        except Exception as exc:
            msg = f"Couldn't render template {template} ({progress[0]}): {exc}"
            raise RenderError(msg) from exc

    def process_response(
        self, name: str, cache_name: str, response: GeneratorResponse
    ) -> None:
        """Apply a resolved response: cache, out data, site files, watches."""
        if response.cache is not None:
            self.state.cache.replace(cache_name, response.cache)
        if response.out_data is not None:
            self.state.ledger.out_data[name] = response.out_data
        for relative, payload in response.site_files.items():
            try:
                self.writer.write_site_file(name, relative, payload)
            except (OutputPathError, OSError, TypeError) as exc:
                self.state.error_count += 1
                logger.error("Error writing site file for '%s': %s", name, exc)
        for path in response.watch_files:
            self.state.deps.record(DependencyKind.PATH, path, name)
        for pattern in response.watch_globs:
            self.state.deps.record(DependencyKind.GLOB, pattern, name)

    def _bindings(
        self,
        run: _ScriptRun,
        barrier: CompletionBarrier,
        invocation: ScriptInvocation,
    ) -> dict[str, typ.Any]:
        name = run.request.name
        page = self.state.pages[name]
        trigger = run.request.trigger
        return {
            **self.sandbox.base_bindings(
                name, invocation, self.state.cache.group(run.cache_name)
            ),
            "generate_pages": functools.partial(
                self._generate_batch, run, barrier, invocation
            ),
            "inputs": {
                "triggered_by": trigger.as_input() if trigger else None,
                "front_matter": page.front_matter,
                "global": GlobalAccessor(self.state, name),
            },
            "get_data_file_names": functools.partial(
                self.sandbox.data_file_names, name
            ),
            "render_template": functools.partial(self.render_template, name),
        }

    def _generate_batch(
        self,
        run: _ScriptRun,
        barrier: CompletionBarrier,
        invocation: ScriptInvocation,
        pages: object,
    ) -> None:
        """Render the pages a script requests through ``generate_pages``.

        A malformed request rejects the invocation and raises back into the
        script.
        """
        request = run.request
        logger.info("Generating batch pages for: %s", request.name)
        try:
            entries = normalize_page_requests(pages)
            paths = batch_paths(request.generate, entries)
        except (TypeError, WildcardError) as exc:
            invocation.reject(exc)
            raise
        if not entries:
            logger.debug(
                "Generate script %s requesting zero pages to render", request.name
            )
            return
        barrier.add(len(entries))
        for entry, path in zip(entries, paths, strict=True):
            run.rendered += 1
            self.render_page(request.name, path, entry.data)
            barrier.settle()

    async def _finish(
        self,
        run: _ScriptRun,
        invocation: ScriptInvocation,
        barrier: CompletionBarrier,
    ) -> None:
        request = run.request
        try:
            response = await self.sandbox.wait(invocation)
        except ScriptError:
            request.status = RequestStatus.FAILED
            return
        else:
            request.status = RequestStatus.DONE
            logger.info("Generator resolved: %s", request.name)
            if run.rendered == 0:
                if request.wildcards:
                    logger.debug(
                        "Generate script '%s' requested no pages. Ignoring.",
                        request.name,
                    )
                else:
                    logger.debug(
                        "Rendering %s at its literal generate path", request.name
                    )
                    self.render_page(request.name, request.generate)
            self.process_response(request.name, run.cache_name, response)
        finally:
            barrier.settle()


def _outcome(succeeded: bool) -> RequestStatus:
    return RequestStatus.DONE if succeeded else RequestStatus.FAILED


def fix_path(path: str) -> str:
    """Trim one trailing ``/`` so ``/blog/`` and ``/blog`` land together."""
    if path.endswith("/"):
        return path[:-1]
    return path


__all__ = ["GenerationOrchestrator", "fix_path"]
