"""Cyclopts CLI entrypoint for building and watching a templer site.

The ``templer`` console script runs one full build of the input directory
into the output directory and then, unless told otherwise, keeps watching
the input and data directories and regenerates only the affected pages.
The cache is written back to disk on every exit path.

Examples
--------
Build once and exit:

>>> from templer.cli import app
>>> app.run(["generate", "--no-watch"])  # doctest: +SKIP

Build into a custom directory and keep watching:

>>> app.run(["generate", "--output", "dist"])  # doctest: +SKIP
"""

from __future__ import annotations

import asyncio
import shutil
import signal
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import App, Parameter

from .cache import CacheExpiryError
from .config import DEFAULT_CONFIG, ConfigError, EngineConfig, load_engine_config
from .engine import Templer
from .logging import configure_logging, get_logger
from .watch import IncrementalUpdateCoordinator, PollingWatcher

EXIT_ERRORS = 1
BAD_OPTIONS = 3

app = App(name="templer", config=cyclopts.config.Env("TEMPLER_", command=False))  # type: ignore[unknown-argument]

logger = get_logger("cli")


@app.command(help="Build the site, then watch for changes.")
def generate(
    *,
    input_dir: typ.Annotated[
        Path | None, Parameter(name="--input", help="Template input directory")
    ] = None,
    data_dir: typ.Annotated[
        Path | None, Parameter(name="--data", help="Data directory for scripts")
    ] = None,
    output_dir: typ.Annotated[
        Path | None, Parameter(name="--output", help="Output directory")
    ] = None,
    public_dir: typ.Annotated[
        Path | None,
        Parameter(name="--public", help="Directory copied verbatim into output"),
    ] = None,
    cache_dir: typ.Annotated[
        Path | None, Parameter(name="--cache", help="Cache directory")
    ] = None,
    config: typ.Annotated[
        Path, Parameter(help="Path to templer.yaml")
    ] = DEFAULT_CONFIG,
    no_watch: typ.Annotated[
        bool, Parameter(negative="", help="Exit after the initial build")
    ] = False,
    watch_only: typ.Annotated[
        bool, Parameter(negative="", help="Skip the initial build and only watch")
    ] = False,
    clear_cache: typ.Annotated[
        bool, Parameter(negative="", help="Discard the persisted cache first")
    ] = False,
    verbose: typ.Annotated[
        bool, Parameter(negative="", help="Log debug detail")
    ] = False,
    log_file: typ.Annotated[
        Path | None, Parameter(help="Also write log records to this file")
    ] = None,
) -> None:
    """Run the engine with options merged from ``templer.yaml`` and the CLI.

    Parameters
    ----------
    input_dir : Path or None, optional
        Directory holding ``.jinja`` templates and the generation hooks.
    data_dir : Path or None, optional
        Directory scripts read data files from.
    output_dir : Path or None, optional
        Directory every artifact is written beneath.
    public_dir : Path or None, optional
        Static files copied into the output directory before the build.
    cache_dir : Path or None, optional
        Directory holding ``cache.json``.
    config : Path, optional
        Path to the optional ``templer.yaml``.
    no_watch : bool, optional
        Exit after the initial build.
    watch_only : bool, optional
        Skip the initial build.
    clear_cache : bool, optional
        Start from an empty cache.
    verbose : bool, optional
        Log debug-level detail.
    log_file : Path or None, optional
        File receiving a copy of every log record.

    Raises
    ------
    SystemExit
        With status 3 on configuration errors, 1 when a ``--no-watch`` build
        reported errors, or ``128 + signal`` when interrupted.
    """
    configure_logging(verbose=verbose, log_file=log_file)
    overrides = {
        "input": input_dir,
        "data": data_dir,
        "output": output_dir,
        "public": public_dir,
        "cache": cache_dir,
        "no_watch": no_watch or None,
        "watch_only": watch_only or None,
        "clear_cache": clear_cache or None,
        "verbose": verbose or None,
    }
    try:
        engine_config = load_engine_config(config, overrides)
        if engine_config.verbose and not verbose:
            configure_logging(verbose=True, log_file=log_file)
        copy_public(engine_config)
    except (ConfigError, TypeError) as exc:
        logger.error("%s Exiting.", exc)
        raise SystemExit(BAD_OPTIONS) from exc

    status = asyncio.run(run(engine_config))
    if status:
        raise SystemExit(status)


def copy_public(config: EngineConfig) -> None:
    """Copy the public directory into the output directory, if configured.

    Raises
    ------
    ConfigError
        If the public directory does not exist.
    """
    if config.public_dir is None:
        return
    if not config.public_dir.is_dir():
        msg = f"Public directory not found: {config.public_dir}"
        raise ConfigError(msg)
    logger.info("Copying %s to %s", config.public_dir, config.output_dir)
    shutil.copytree(config.public_dir, config.output_dir, dirs_exist_ok=True)


async def run(config: EngineConfig) -> int:
    """Build and watch according to ``config``; return the exit status."""
    engine = Templer(config)
    stop = asyncio.Event()
    received: list[int] = []
    _install_signal_handlers(stop, received)
    try:
        if config.watch_only:
            await engine.prime()
        else:
            errors = await engine.build()
            if errors:
                logger.error("Errors detected: %d", errors)
            else:
                logger.info("Zero errors detected.")
            if config.no_watch:
                logger.info("All files written. No-watch option ending program now.")
                return EXIT_ERRORS if errors else 0
            logger.info("All files written.")
        coordinator = IncrementalUpdateCoordinator(engine)
        watcher = PollingWatcher([config.input_dir, config.data_dir])
        await coordinator.watch(watcher, stop=stop)
    except CacheExpiryError as exc:
        logger.error("%s", exc)
        return BAD_OPTIONS
    finally:
        engine.store_cache()
    return 128 + received[0] if received else 0


def _install_signal_handlers(stop: asyncio.Event, received: list[int]) -> None:
    loop = asyncio.get_running_loop()

    def _handle(signum: int) -> None:
        logger.info("Received signal %d, stopping.", signum)
        received.append(signum)
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _handle, signum)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - non-Unix
            logger.debug("Signal handlers unavailable for %s", signum)


def main() -> None:
    """Invoke the Cyclopts application behind the ``templer`` console command.

    Examples
    --------
    >>> from templer.cli import main
    >>> main()  # doctest: +SKIP
    """
    app()


if __name__ == "__main__":  # pragma: no cover - manual invocation helper
    main()
