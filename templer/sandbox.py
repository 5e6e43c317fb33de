"""Run user scripts in fresh namespaces with an explicit capability table.

Generate scripts and the pre/post generation hooks are Python source. Each
invocation compiles the source (top-level ``await`` allowed) and evaluates it
in a new namespace holding only the bindings the engine hands over, such as
``resolve``, ``reject``, ``cache``, and ``log``. A script signals completion
by calling ``resolve`` or ``reject`` exactly once; that may happen long after
the body has finished executing, so the engine waits on a future rather than
on the body itself.

Example
-------
>>> sandbox = ScriptSandbox(state, data_dir=Path("data"))  # doctest: +SKIP
>>> invocation = sandbox.start("blog", "resolve()", bindings)  # doctest: +SKIP
>>> response = await sandbox.wait(invocation)  # doctest: +SKIP
"""

from __future__ import annotations

import ast
import asyncio
import builtins
import dataclasses as dc
import inspect
import traceback
import typing as typ
from pathlib import Path

from templer._constants import DEFAULT_SCRIPT_TIMEOUT
from templer.content import parse_front_matter
from templer.deps import GLOBAL_KEY, DependencyKind
from templer.heartbeat import Heartbeat
from templer.logging import get_logger

if typ.TYPE_CHECKING:
    from templer.state import EngineState

BindingsFactory = typ.Callable[["ScriptInvocation"], dict[str, typ.Any]]

CONTEXT_LINES = 3

logger = get_logger("sandbox")
script_logger = get_logger("script")


class ScriptError(RuntimeError):
    """Raised when a script rejects, throws, or resolves with a bad response."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


class UndefinedGlobalError(KeyError):
    """Raised when a script or template reads a global key that was never set."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "undefined global"


class GlobalAccessor:
    """Read-only view of the global data that records who reads it.

    Every successful ``get`` marks the reading page as a global-data
    dependent, so a later change to the pre-generation hook regenerates it.
    Unknown keys raise :class:`UndefinedGlobalError` without recording.
    """

    def __init__(self, state: EngineState, page: str) -> None:
        self._state = state
        self._page = page

    def get(self, key: str) -> typ.Any:
        if key not in self._state.global_data:
            msg = f"Accessing undefined global data element: {key}"
            raise UndefinedGlobalError(msg)
        self._state.deps.record(DependencyKind.GLOBAL, GLOBAL_KEY, self._page)
        return self._state.global_data[key]

    __getitem__ = get

    def __contains__(self, key: object) -> bool:
        return key in self._state.global_data

    def __repr__(self) -> str:
        return f"GlobalAccessor(page={self._page!r})"


@dc.dataclass(slots=True)
class GeneratorResponse:
    """What a script hands to ``resolve``.

    Attributes
    ----------
    cache : dict | None
        Replacement contents for the script's cache group.
    out_data : Any
        Structured data recorded against the page for the post hook.
    site_files : dict[str, Any]
        Output-relative path to string or JSON-serialisable payload.
    watch_files : list[str]
        Absolute file paths the invocation depends on.
    watch_globs : list[str]
        Glob patterns the invocation depends on.
    global_data : dict | None
        Replacement global data; honoured for the pre-generation hook only.
    """

    cache: dict[str, typ.Any] | None = None
    out_data: typ.Any = None
    site_files: dict[str, typ.Any] = dc.field(default_factory=dict)
    watch_files: list[str] = dc.field(default_factory=list)
    watch_globs: list[str] = dc.field(default_factory=list)
    global_data: dict[str, typ.Any] | None = None

    @classmethod
    def from_value(cls, value: object) -> GeneratorResponse:
        """Coerce a resolved value (``None`` or a mapping) into a response."""
        if value is None:
            return cls()
        if isinstance(value, GeneratorResponse):
            return value
        if not isinstance(value, typ.Mapping):
            msg = f"Scripts must resolve with a mapping or None, got {value!r}"
            raise TypeError(msg)
        cache = value.get("cache")
        global_data = value.get("global")
        return cls(
            cache=dict(cache) if cache is not None else None,
            out_data=value.get("out_data"),
            site_files=dict(value.get("site_files") or {}),
            watch_files=[str(path) for path in value.get("watch_files") or ()],
            watch_globs=[str(glob) for glob in value.get("watch_globs") or ()],
            global_data=dict(global_data) if global_data is not None else None,
        )


class ScriptLogger:
    """``log`` binding that prefixes messages with the invoking page name."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __call__(self, message: object, *args: object) -> None:
        text = " ".join(str(part) for part in (message, *args))
        script_logger.info("%s: %s", self.name, text)


class ScriptInvocation:
    """One running script: its completion future and stall watchdog."""

    def __init__(
        self,
        name: str,
        source: str,
        *,
        kind: str = "generate",
        timeout: float = DEFAULT_SCRIPT_TIMEOUT,
    ) -> None:
        self.name = name
        self.source = source
        self.filename = f"<{kind} {name}>"
        loop = asyncio.get_running_loop()
        self.future: asyncio.Future[typ.Any] = loop.create_future()
        self.watchdog = Heartbeat(name, self._stalled, timeout, loop=loop)
        self.task: asyncio.Task[typ.Any] | None = None

    @property
    def settled(self) -> bool:
        return self.future.done()

    def resolve(self, response: object = None) -> None:
        if self._already_settled("resolve"):
            return
        self.watchdog.stop()
        self.future.set_result(response)

    def reject(self, error: object = None) -> None:
        if self._already_settled("reject"):
            return
        self.watchdog.stop()
        if isinstance(error, Exception):
            self.future.set_exception(error)
        else:
            self.future.set_exception(ScriptError(self.name, str(error)))

    def attach(self, task: asyncio.Task[typ.Any]) -> None:
        """Treat an exception escaping an awaiting script body as a reject."""
        self.task = task

        def _done(finished: asyncio.Task[typ.Any]) -> None:
            if finished.cancelled():
                error: BaseException | None = ScriptError(
                    self.name, "script was cancelled"
                )
            else:
                error = finished.exception()
            if error is not None and not self.settled:
                self.reject(error)

        task.add_done_callback(_done)

    def _already_settled(self, action: str) -> bool:
        if self.future.done():
            logger.warning(
                "%s called %s after it had already settled; ignoring", self.name, action
            )
            return True
        return False

    def _stalled(self, name: str) -> None:
        logger.warning("Waiting for %s to call resolve", name)


class ScriptSandbox:
    """Start scripts, await their completion, and report their failures."""

    def __init__(
        self,
        state: EngineState,
        *,
        data_dir: Path,
        timeout: float = DEFAULT_SCRIPT_TIMEOUT,
    ) -> None:
        self.state = state
        self.data_dir = data_dir
        self.timeout = timeout

    def start(
        self,
        name: str,
        source: str,
        bindings: BindingsFactory,
        *,
        kind: str = "generate",
    ) -> ScriptInvocation:
        """Evaluate ``source`` with fresh bindings and return its invocation.

        Expired cache entries are purged first. Synchronous exceptions from
        the body become a reject; the caller learns of them through
        :meth:`wait`. Must be called from inside a running event loop.

        Raises
        ------
        CacheExpiryError
            If the cache holds an entry with a non-numeric expiry.
        """
        self.state.cache.expire()
        invocation = ScriptInvocation(name, source, kind=kind, timeout=self.timeout)
        namespace: dict[str, typ.Any] = {
            "__builtins__": builtins,
            "__name__": f"templer.scripts.{kind}",
            "Path": Path,
        }
        namespace.update(bindings(invocation))
        invocation.watchdog.start()
        try:
            code = compile(
                source,
                invocation.filename,
                "exec",
                flags=ast.PyCF_ALLOW_TOP_LEVEL_AWAIT,
                dont_inherit=True,
            )
            result = eval(code, namespace)  # noqa: S307 - scripts are site sources
        except SystemExit as exc:
            if not invocation.settled:
                invocation.reject(_exit_error(name, exc))
        except Exception as exc:  # noqa: BLE001 - surfaced through the invocation
            if not invocation.settled:
                invocation.reject(exc)
        else:
            if inspect.iscoroutine(result):
                invocation.attach(asyncio.ensure_future(_trap_exit(name, result)))
        return invocation

    async def wait(self, invocation: ScriptInvocation) -> GeneratorResponse:
        """Return the resolved response or raise :class:`ScriptError`.

        Failures are logged with the offending script line and counted once
        against the run.
        """
        try:
            value = await invocation.future
            return GeneratorResponse.from_value(value)
        except Exception as exc:
            self.state.error_count += 1
            report_script_error(invocation, exc)
            if isinstance(exc, ScriptError):
                raise
            raise ScriptError(invocation.name, str(exc)) from exc
        finally:
            invocation.watchdog.stop()

    async def run(
        self,
        name: str,
        source: str,
        bindings: BindingsFactory,
        *,
        kind: str = "generate",
    ) -> GeneratorResponse:
        """Start ``source`` and wait for it to settle."""
        invocation = self.start(name, source, bindings, kind=kind)
        return await self.wait(invocation)

    def base_bindings(
        self, name: str, invocation: ScriptInvocation, cache: dict[str, typ.Any]
    ) -> dict[str, typ.Any]:
        """Capabilities every script receives."""
        return {
            "resolve": invocation.resolve,
            "reject": invocation.reject,
            "cache": cache,
            "log": ScriptLogger(name),
            "front_matter_parse": parse_front_matter,
            "data_dir": self.data_dir.resolve(),
        }

    def data_file_names(
        self, name: str, globs: str | typ.Sequence[str] | None = None
    ) -> list[str]:
        """List absolute data file paths, optionally filtered by glob patterns."""
        root = self.data_dir.resolve()
        files: set[Path] = set()
        if root.is_dir():
            if globs is None:
                files = {path for path in root.rglob("*") if path.is_file()}
            else:
                patterns = [globs] if isinstance(globs, str) else list(globs)
                files = {
                    path
                    for pattern in patterns
                    for path in root.glob(pattern)
                    if path.is_file()
                }
        if not files:
            logger.warning(
                "Warning, %s requested data files but none were found at %s",
                name,
                self.data_dir,
            )
        return [str(path) for path in sorted(files)]


def _exit_error(name: str, exit_: SystemExit) -> ScriptError:
    error = ScriptError(name, f"script called exit({exit_.code!r})")
    error.__cause__ = exit_
    return error


async def _trap_exit(name: str, body: typ.Awaitable[typ.Any]) -> typ.Any:
    """Await a script body, turning ``SystemExit`` into a script failure."""
    try:
        return await body
    except SystemExit as exc:
        raise _exit_error(name, exc) from exc


def report_script_error(invocation: ScriptInvocation, error: BaseException) -> None:
    """Log ``error`` and echo the script around the line that raised it."""
    logger.error("Script error: %s", invocation.name)
    logger.error("%s: %s", type(error).__name__, error)
    line = _error_line(error, invocation.filename)
    if line is None:
        return
    lines = invocation.source.split("\n")
    start = max(line - 1 - CONTEXT_LINES, 0)
    end = min(line + CONTEXT_LINES, len(lines))
    for number in range(start, end):
        marker = ">" if number == line - 1 else " "
        logger.error("%s %4d | %s", marker, number + 1, lines[number])


def _error_line(error: BaseException, filename: str) -> int | None:
    """Map ``error`` back to a 1-based line number within the script source."""
    if isinstance(error, SyntaxError) and error.filename == filename:
        return error.lineno
    current: BaseException | None = error
    while current is not None:
        frames = traceback.extract_tb(current.__traceback__)
        for frame in reversed(frames):
            if frame.filename == filename:
                return frame.lineno
        current = current.__cause__ or current.__context__
    return None


__all__ = [
    "GeneratorResponse",
    "GlobalAccessor",
    "ScriptError",
    "ScriptInvocation",
    "ScriptLogger",
    "ScriptSandbox",
    "UndefinedGlobalError",
    "report_script_error",
]
