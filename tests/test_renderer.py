"""Tests for recursive includes, wrappers, and render data precedence."""

from __future__ import annotations

import typing as typ

import pytest

from templer.deps import DependencyKind
from templer.generator import RenderError, UnwrappedBodyError

if typ.TYPE_CHECKING:
    from conftest import SiteBuilder

    from templer.engine import Templer


def _engine_with(site: SiteBuilder, pages: dict[str, str]) -> Templer:
    engine = site.engine()
    for name, text in pages.items():
        engine.content.scan(name, text)
    return engine


def test_nested_wrappers_render_outermost_first(site: SiteBuilder) -> None:
    engine = _engine_with(
        site,
        {
            "A": "---\nwrapper: B\n---\n<p>A</p>",
            "B": "---\nwrapper: C\n---\n<main>{{ include('_body') }}</main>",
            "C": "<html>{{ include('_body') }}</html>",
        },
    )
    assert engine.renderer.render_page("A") == "<html><main><p>A</p></main></html>"

    deps = engine.state.deps
    assert deps.dependents_of(DependencyKind.TEMPLATE, "B") >= {"A"}
    assert deps.dependents_of(DependencyKind.TEMPLATE, "C") >= {"A", "B"}


def test_include_passes_data_and_records_dependency(site: SiteBuilder) -> None:
    engine = _engine_with(
        site,
        {
            "home": "---\ntitle: Home\n---\n{{ include('nav', {'active': 'home'}) }}",
            "nav": "<nav>{{ active }}-{{ title }}</nav>",
        },
    )
    assert engine.renderer.render_page("home") == "<nav>home-Home</nav>"
    assert engine.template_dependents("nav") == {"nav", "home"}


def test_data_precedence(site: SiteBuilder) -> None:
    engine = _engine_with(
        site,
        {
            "page": (
                "---\ntitle: front\n---\n"
                "{{ title }}|{{ include('part', {'label': 'include'}) }}"
            ),
            "part": "---\nlabel: part-front\n---\n{{ label }}/{{ title }}",
        },
    )
    html = engine.renderer.render_page("page", {"title": "call", "label": "call"})
    assert html == "front|include/front"


def test_body_outside_wrapper_is_an_error(site: SiteBuilder) -> None:
    engine = _engine_with(site, {"lonely": "<div>{{ include('_body') }}</div>"})
    with pytest.raises(UnwrappedBodyError, match="was not wrapping anything"):
        engine.renderer.render_page("lonely")


def test_missing_include_reports_template(site: SiteBuilder) -> None:
    engine = _engine_with(site, {"home": "{{ include('missing') }}"})
    progress: list[str] = []
    with pytest.raises(RenderError, match="Template not found: missing"):
        engine.renderer.render_page("home", progress=progress)
    assert progress == ["missing"]


def test_global_reads_are_recorded(site: SiteBuilder) -> None:
    engine = _engine_with(site, {"home": "<h1>{{ global.get('site') }}</h1>"})
    engine.state.global_data = {"site": "Example"}
    assert engine.renderer.render_page("home") == "<h1>Example</h1>"
    assert engine.state.deps.dependents_of(DependencyKind.GLOBAL) == {"home"}


def test_output_is_autoescaped(site: SiteBuilder) -> None:
    engine = _engine_with(site, {"home": "{{ snippet }}"})
    html = engine.renderer.render_page("home", {"snippet": "<b>x</b>"})
    assert html == "&lt;b&gt;x&lt;/b&gt;"
