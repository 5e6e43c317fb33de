"""The templer engine: one state bag and the components operating on it.

:class:`Templer` owns a single :class:`~templer.state.EngineState` and hands
it by reference to the content store, renderer, sandbox, and orchestrator.
The CLI and the incremental update coordinator drive a build through the
public methods here; nothing else creates engine state.

Example
-------
>>> import asyncio
>>> from templer.config import EngineConfig
>>> from templer.engine import Templer
>>> engine = Templer(EngineConfig())  # doctest: +SKIP
>>> asyncio.run(engine.build())  # doctest: +SKIP
0
"""

from __future__ import annotations

import typing as typ
from pathlib import Path

from templer._constants import (
    POST_GENERATE_NAME,
    POST_GENERATE_SCRIPT,
    PRE_GENERATE_NAME,
    PRE_GENERATE_SCRIPT,
    TEMPLATE_SUFFIX,
)
from templer.cache import CacheStore
from templer.content import ContentStore
from templer.deps import DependencyKind
from templer.generator import (
    GenerationOrchestrator,
    PageRenderer,
    Trigger,
    template_compiler,
)
from templer.logging import get_logger
from templer.output import OutputWriter
from templer.sandbox import GeneratorResponse, ScriptError, ScriptSandbox
from templer.state import EngineState

if typ.TYPE_CHECKING:
    from templer.config import EngineConfig
    from templer.generator.markup import TemplateCompiler
    from templer.sandbox import ScriptInvocation

logger = get_logger("engine")


class Templer:
    """Incremental static-site build engine."""

    def __init__(
        self,
        config: EngineConfig,
        *,
        compile_template: TemplateCompiler | None = None,
    ) -> None:
        """Create the engine state and load the persisted cache.

        Parameters
        ----------
        config : EngineConfig
            Validated configuration.
        compile_template : TemplateCompiler, optional
            Turns a template body into a renderable template; defaults to
            the Jinja2 environment from :mod:`templer.generator.markup`.
        """
        self.config = config
        cache = CacheStore(config.cache_dir, policy=config.cache_policy)
        if config.clear_cache:
            logger.info("Clearing cache.")
            cache.clear()
        self.state = EngineState(cache=cache)
        self.writer = OutputWriter(config.output_dir, self.state.ledger)
        self.content = ContentStore(
            self.state, compile_template or template_compiler(), self.writer
        )
        self.renderer = PageRenderer(self.state)
        self.sandbox = ScriptSandbox(
            self.state, data_dir=config.data_dir, timeout=config.script_timeout
        )
        self.orchestrator = GenerationOrchestrator(
            self.state, self.content, self.renderer, self.sandbox, self.writer
        )

    @property
    def error_count(self) -> int:
        return self.state.error_count

    async def build(self) -> int:
        """Run the full pipeline once and return the aggregate error count.

        Hook failures are logged and counted without stopping the build.

        Raises
        ------
        CacheExpiryError
            If a cache entry carries an invalid expiry.
        """
        await self.run_hook(self.process_pre_generate)
        self.process_template_files()
        await self.generate_pages()
        await self.run_hook(self.process_post_generate)
        return self.error_count

    async def prime(self) -> None:
        """Load global data and scan templates without generating anything.

        Used when only watching, so later changes resolve against a complete
        page and dependency set.
        """
        await self.run_hook(self.process_pre_generate)
        self.process_template_files()
        self.state.to_generate.clear()

    async def process_pre_generate(self) -> None:
        """Run ``pre_generate.py`` and replace the global data with its result.

        Raises
        ------
        ScriptError
            If the hook rejects or raises.
        """
        path = self.config.input_dir / PRE_GENERATE_SCRIPT
        if not path.is_file():
            logger.info("%s not found, skipping.", PRE_GENERATE_SCRIPT)
            return
        cache_name = self.state.cache.group_name(PRE_GENERATE_NAME)
        response = await self._run_script(
            PRE_GENERATE_NAME, path, cache_name, kind="pre_generate"
        )
        self.state.global_data = dict(response.global_data or {})
        self.orchestrator.process_response(PRE_GENERATE_SCRIPT, cache_name, response)

    async def process_post_generate(self) -> None:
        """Run ``post_generate.py`` with a snapshot of the output ledger.

        Raises
        ------
        ScriptError
            If the hook rejects or raises.
        """
        path = self.config.input_dir / POST_GENERATE_SCRIPT
        if not path.is_file():
            logger.info("%s not found, skipping.", POST_GENERATE_SCRIPT)
            return
        cache_name = self.state.cache.group_name(POST_GENERATE_NAME)
        response = await self._run_script(
            POST_GENERATE_NAME,
            path,
            cache_name,
            kind="post_generate",
            extra={"output": self.state.ledger.snapshot()},
        )
        self.orchestrator.process_response(POST_GENERATE_SCRIPT, cache_name, response)

    def process_template_files(self, file: Path | None = None) -> list[str]:
        """Scan every template under the input directory, or just ``file``.

        Returns the names of the pages scanned.
        """
        if file is None:
            if not self.config.input_dir.is_dir():
                self.state.error_count += 1
                logger.error("Could not scan %s", self.config.input_dir)
                return []
            files = sorted(self.config.input_dir.rglob(f"*{TEMPLATE_SUFFIX}"))
            logger.info("Processing %d input files.", len(files))
        else:
            files = [file]

        names: list[str] = []
        for path in files:
            name = self.template_name(path)
            if name is None:
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except OSError as exc:
                self.state.error_count += 1
                logger.error("Could not read template %s: %s", path, exc)
                continue
            self.content.scan(name, text)
            names.append(name)
        return names

    async def generate_pages(self) -> None:
        await self.orchestrator.generate_pages()

    def process_deleted_template(self, name: str) -> None:
        """Remove every trace of page ``name``; repeating it is a no-op."""
        self.content.remove(name)
        self.state.deps.remove_page(name)
        self.state.to_generate.pop(name, None)
        self.state.cache.remove_page(name)
        self.state.ledger.prune(name)
        logger.info("Removed template: %s", name)

    def update_deps(self, dependents: typ.Mapping[str, Trigger | None]) -> int:
        """Queue each dependent page with the change that triggered it.

        Returns the number of pages queued; pages without a ``generate``
        target are skipped.
        """
        return sum(
            self.state.cue(name, trigger) for name, trigger in dependents.items()
        )

    def data_dependents(self, path: Path | str) -> set[str]:
        return self.state.deps.dependents_of(DependencyKind.PATH, str(path))

    def template_dependents(self, name: str) -> set[str]:
        return self.state.deps.template_dependents(name)

    def global_dependents(self) -> set[str]:
        logger.info("Update triggered by %s change.", PRE_GENERATE_SCRIPT)
        return self.state.deps.dependents_of(DependencyKind.GLOBAL)

    def template_name(self, path: Path) -> str | None:
        """Return the page name for a template file, or ``None`` if it isn't one."""
        if path.suffix != TEMPLATE_SUFFIX:
            return None
        try:
            relative = path.resolve().relative_to(self.config.input_dir.resolve())
        except ValueError:
            return None
        return relative.with_suffix("").as_posix()

    def store_cache(self) -> None:
        self.state.cache.store()

    async def run_hook(self, hook: typ.Callable[[], typ.Awaitable[None]]) -> None:
        try:
            await hook()
        except ScriptError as exc:
            logger.error("%s failed: %s", exc.name, exc)

    async def _run_script(
        self,
        name: str,
        path: Path,
        cache_name: str,
        *,
        kind: str,
        extra: dict[str, typ.Any] | None = None,
    ) -> GeneratorResponse:
        source = path.read_text(encoding="utf-8")
        cache = self.state.cache.group(cache_name)

        def bindings(invocation: ScriptInvocation) -> dict[str, typ.Any]:
            return {
                **self.sandbox.base_bindings(name, invocation, cache),
                **(extra or {}),
            }

        return await self.sandbox.run(name, source, bindings, kind=kind)


__all__ = ["Templer"]
