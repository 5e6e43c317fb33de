"""Tests for script evaluation, settlement, and error reporting."""

from __future__ import annotations

import asyncio
import logging
import typing as typ

import pytest

from templer.deps import DependencyKind
from templer.sandbox import (
    GeneratorResponse,
    GlobalAccessor,
    ScriptError,
    UndefinedGlobalError,
)

if typ.TYPE_CHECKING:
    from conftest import SiteBuilder

    from templer.engine import Templer


def _run(
    engine: Templer, source: str, name: str = "demo", cache: dict | None = None
) -> GeneratorResponse:
    group = {} if cache is None else cache

    async def _go() -> GeneratorResponse:
        return await engine.sandbox.run(
            name, source, lambda inv: engine.sandbox.base_bindings(name, inv, group)
        )

    return asyncio.run(_go())


def test_resolve_returns_response(site: SiteBuilder) -> None:
    engine = site.engine()
    response = _run(
        engine,
        'resolve({"out_data": {"n": 1}, "watch_globs": ["*.md"], "global": {"a": 1}})',
    )
    assert response.out_data == {"n": 1}
    assert response.watch_globs == ["*.md"]
    assert response.global_data == {"a": 1}
    assert engine.error_count == 0


def test_reject_is_counted_once(
    site: SiteBuilder, caplog: pytest.LogCaptureFixture
) -> None:
    engine = site.engine()
    with (
        caplog.at_level(logging.ERROR, logger="templer"),
        pytest.raises(ScriptError, match="no data"),
    ):
        _run(engine, 'reject("no data")')
    assert engine.error_count == 1
    assert "Script error: demo" in caplog.text


def test_exception_reports_offending_line(
    site: SiteBuilder, caplog: pytest.LogCaptureFixture
) -> None:
    engine = site.engine()
    source = "x = 1\ny = 2\nraise ValueError('boom')\nz = 3\nresolve()"
    with caplog.at_level(logging.ERROR, logger="templer"), pytest.raises(ScriptError):
        _run(engine, source)
    assert "ValueError: boom" in caplog.text
    assert ">    3 | raise ValueError('boom')" in caplog.text
    assert "     1 | x = 1" in caplog.text
    assert engine.error_count == 1


def test_syntax_error_is_reported(
    site: SiteBuilder, caplog: pytest.LogCaptureFixture
) -> None:
    engine = site.engine()
    with caplog.at_level(logging.ERROR, logger="templer"), pytest.raises(ScriptError):
        _run(engine, "resolve(")
    assert ">    1 | resolve(" in caplog.text


def test_non_mapping_response_fails(site: SiteBuilder) -> None:
    engine = site.engine()
    with pytest.raises(ScriptError, match="mapping or None"):
        _run(engine, "resolve(5)")
    assert engine.error_count == 1


def test_second_resolve_is_ignored(
    site: SiteBuilder, caplog: pytest.LogCaptureFixture
) -> None:
    engine = site.engine()
    with caplog.at_level(logging.WARNING, logger="templer"):
        response = _run(engine, 'resolve({"out_data": 1})\nresolve({"out_data": 2})')
    assert response.out_data == 1
    assert "already settled" in caplog.text
    assert engine.error_count == 0


def test_top_level_await_resolves(site: SiteBuilder) -> None:
    engine = site.engine()
    source = "import asyncio\nawait asyncio.sleep(0)\nresolve({'out_data': 'late'})"
    assert _run(engine, source).out_data == "late"


def test_exception_after_await_rejects(site: SiteBuilder) -> None:
    engine = site.engine()
    source = "import asyncio\nawait asyncio.sleep(0)\nraise RuntimeError('late')"
    with pytest.raises(ScriptError, match="late"):
        _run(engine, source)
    assert engine.error_count == 1


@pytest.mark.parametrize(
    ("source", "line"),
    [
        ("import sys\nsys.exit(2)", 2),
        ("import asyncio, sys\nawait asyncio.sleep(0)\nsys.exit(2)", 3),
    ],
    ids=["sync", "after-await"],
)
def test_exit_fails_only_the_script(
    site: SiteBuilder, caplog: pytest.LogCaptureFixture, source: str, line: int
) -> None:
    engine = site.engine()
    with (
        caplog.at_level(logging.ERROR, logger="templer"),
        pytest.raises(ScriptError, match=r"script called exit\(2\)"),
    ):
        _run(engine, source)
    assert engine.error_count == 1
    assert f">    {line} | sys.exit(2)" in caplog.text


def test_watchdog_reports_stalled_script(
    site: SiteBuilder, caplog: pytest.LogCaptureFixture
) -> None:
    engine = site.engine(script_timeout=0.01)
    source = "import asyncio\nawait asyncio.sleep(0.1)\nresolve()"
    with caplog.at_level(logging.WARNING, logger="templer"):
        _run(engine, source, name="slow")
    assert "Waiting for slow to call resolve" in caplog.text
    assert engine.error_count == 0


def test_log_binding_prefixes_page(
    site: SiteBuilder, caplog: pytest.LogCaptureFixture
) -> None:
    engine = site.engine()
    with caplog.at_level(logging.INFO, logger="templer"):
        _run(engine, 'log("hello", 1)\nresolve()', name="blog")
    assert "blog: hello 1" in caplog.text


def test_expired_cache_entries_are_gone_before_script(site: SiteBuilder) -> None:
    engine = site.engine()
    group = engine.state.cache.group("shared")
    group["stale"] = {"data": 1, "expires": 1}
    group["kept"] = {"data": 2}
    response = _run(engine, "resolve({'out_data': sorted(cache)})", cache=group)
    assert response.out_data == ["kept"]


def test_front_matter_parse_binding(site: SiteBuilder) -> None:
    engine = site.engine()
    source = (
        "doc = front_matter_parse('---\\ntitle: T\\n---\\nbody')\n"
        "resolve({'out_data': [doc.attributes['title'], doc.body]})"
    )
    assert _run(engine, source).out_data == ["T", "body"]


def test_data_file_names(site: SiteBuilder, caplog: pytest.LogCaptureFixture) -> None:
    first = site.data("posts/a.md")
    second = site.data("posts/b.md")
    other = site.data("feed.json")
    sandbox = site.engine().sandbox

    assert sandbox.data_file_names("blog", "posts/*.md") == [
        str(first.resolve()),
        str(second.resolve()),
    ]
    assert sandbox.data_file_names("blog") == sorted(
        str(path.resolve()) for path in (first, second, other)
    )
    with caplog.at_level(logging.WARNING, logger="templer"):
        assert sandbox.data_file_names("blog", ["*.csv"]) == []
    assert "requested data files but none were found" in caplog.text


def test_global_accessor_records_only_known_keys(site: SiteBuilder) -> None:
    engine = site.engine()
    engine.state.global_data = {"site": "Example"}
    accessor = GlobalAccessor(engine.state, "home")

    with pytest.raises(UndefinedGlobalError, match="undefined global data element"):
        accessor.get("missing")
    assert engine.state.deps.dependents_of(DependencyKind.GLOBAL) == set()

    assert accessor["site"] == "Example"
    assert "site" in accessor
    assert engine.state.deps.dependents_of(DependencyKind.GLOBAL) == {"home"}


def test_response_from_value_rejects_non_mappings() -> None:
    assert GeneratorResponse.from_value(None) == GeneratorResponse()
    with pytest.raises(TypeError):
        GeneratorResponse.from_value(["not", "a", "mapping"])
