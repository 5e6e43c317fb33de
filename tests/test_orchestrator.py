"""Tests for generate scripts, batch renders, and run settlement."""

from __future__ import annotations

import asyncio
import json
import typing as typ

import pytest

from templer.generator import RequestStatus, Trigger, TriggerReason, WildcardError
from templer.generator.models import PageRequest, batch_paths
from templer.generator.page_generator import fix_path

if typ.TYPE_CHECKING:
    from conftest import SiteBuilder

    from templer.engine import Templer


def _build(engine: Templer) -> int:
    return asyncio.run(engine.build())


def _statuses(engine: Templer) -> dict[str, RequestStatus]:
    return {request.name: request.status for request in engine.orchestrator.last_run}


def test_wildcard_batch_renders_each_entry(site: SiteBuilder) -> None:
    site.template(
        "blog/index",
        """
        ---
        generate: /blog/*
        ---
        <script generate>
        generate_pages([
            {"path": "a", "data": {"title": "A"}},
            {"path": "b", "data": {"title": "B"}},
        ])
        resolve()
        </script>
        <h1>{{ title }}</h1>
        """,
    )
    engine = site.engine()
    assert _build(engine) == 0
    assert site.output("blog/a/index.html").read_text(encoding="utf-8") == "<h1>A</h1>"
    assert site.output("blog/b/index.html").read_text(encoding="utf-8") == "<h1>B</h1>"
    assert _statuses(engine) == {"blog/index": RequestStatus.DONE}


def test_literal_target_renders_once_without_pages(site: SiteBuilder) -> None:
    site.template(
        "about",
        """
        ---
        generate: /about
        ---
        <script generate>
        resolve()
        </script>
        <p>{{ page_path }} {{ last_path }} {{ entry_script }}</p>
        """,
    )
    assert _build(site.engine()) == 0
    html = site.output("about/index.html").read_text(encoding="utf-8")
    assert html == "<p>/about about /about/about.js</p>"


def test_wildcard_target_without_pages_writes_nothing(site: SiteBuilder) -> None:
    site.template(
        "blog/index",
        """
        ---
        generate: /blog/*
        ---
        <script generate>
        generate_pages([])
        resolve()
        </script>
        <p>x</p>
        """,
    )
    assert _build(site.engine()) == 0
    assert not site.output("blog").exists()


def test_page_without_script_renders_at_target(site: SiteBuilder) -> None:
    site.template("home", "---\ngenerate: /\n---\n<p>{{ page_name }}</p>")
    site.template("partial", "<p>never generated</p>")
    engine = site.engine()
    assert _build(engine) == 0
    assert site.output("index.html").read_text(encoding="utf-8") == "<p>home</p>"
    assert list(_statuses(engine)) == ["home"]


def test_two_wildcards_fail_that_page_only(site: SiteBuilder) -> None:
    site.template(
        "bad",
        """
        ---
        generate: /x/*/*
        ---
        <script generate>
        generate_pages([{"path": "a"}])
        resolve()
        </script>
        <p>bad</p>
        """,
    )
    site.template("home", "---\ngenerate: /\n---\n<p>home</p>")
    engine = site.engine()
    assert _build(engine) == 1
    assert not site.output("x").exists()
    assert site.output("index.html").exists()
    assert _statuses(engine) == {
        "bad": RequestStatus.FAILED,
        "home": RequestStatus.DONE,
    }


def test_render_failure_is_counted(site: SiteBuilder) -> None:
    site.template("broken", "---\ngenerate: /broken\n---\n<p>{{ nothing_here }}</p>")
    engine = site.engine()
    assert _build(engine) == 1
    assert not site.output("broken/index.html").exists()
    assert _statuses(engine) == {"broken": RequestStatus.FAILED}


def test_entry_scripts_compose_along_wrappers(site: SiteBuilder) -> None:
    site.template(
        "layout",
        "<body>{{ include('_body') }}</body><script entry>layout()</script>",
    )
    site.template(
        "home",
        """
        ---
        generate: /
        wrapper: layout
        ---
        <p>home</p>
        <script entry>home()</script>
        """,
    )
    assert _build(site.engine()) == 0
    assert site.output("index.html").read_text(encoding="utf-8") == (
        "<body><p>home</p></body>"
    )
    assert site.output("main.js").read_text(encoding="utf-8") == (
        "// entry script: layout\nlayout()\n// entry script: home\nhome()"
    )


def test_site_files_outside_output_are_refused(site: SiteBuilder) -> None:
    site.template(
        "feeds",
        """
        ---
        generate: /feeds
        ---
        <script generate>
        resolve({"site_files": {"../evil.txt": "x", "feed.json": {"items": [1]}}})
        </script>
        <p>feeds</p>
        """,
    )
    engine = site.engine()
    assert _build(engine) == 1
    assert not (site.root / "evil.txt").exists()
    feed = json.loads(site.output("feed.json").read_text(encoding="utf-8"))
    assert feed == {"items": [1]}
    assert site.output("feeds/index.html").exists()


def test_page_targets_outside_output_are_refused(site: SiteBuilder) -> None:
    site.template("escape", "---\ngenerate: /../../escape\n---\n<p>escape</p>")
    site.template(
        "batch",
        """
        ---
        generate: /posts/*
        ---
        <script generate>
        generate_pages([{"path": "../../../breakout"}, {"path": "fine"}])
        resolve()
        </script>
        <p>post</p>
        """,
    )
    site.template("home", "---\ngenerate: /\n---\n<p>home</p>")
    engine = site.engine()
    assert _build(engine) == 2
    for outside in (site.root / "escape", site.root.parent / "escape"):
        assert not outside.exists()
    assert not (site.root.parent / "breakout").exists()
    assert site.output("posts/fine/index.html").exists()
    assert site.output("index.html").exists()
    assert _statuses(engine)["escape"] is RequestStatus.FAILED
    assert _statuses(engine)["home"] is RequestStatus.DONE


def test_response_updates_cache_out_data_and_watches(site: SiteBuilder) -> None:
    data_file = site.data("feed.json", "[]")
    site.template(
        "feeds",
        """
        ---
        generate: /feeds
        ---
        <script generate>
        resolve({
            "cache": {"feed": {"data": [1, 2]}},
            "out_data": {"count": 2},
            "watch_files": [str(data_dir / "feed.json")],
            "watch_globs": ["posts/*.md"],
        })
        </script>
        <p>feeds</p>
        """,
    )
    engine = site.engine()
    assert _build(engine) == 0
    assert engine.state.cache.group("shared") == {"feed": {"data": [1, 2]}}
    assert engine.state.ledger.out_data == {"feeds": {"count": 2}}
    assert engine.data_dependents(data_file) == {"feeds"}
    assert engine.data_dependents(site.data("posts/new.md")) == {"feeds"}


def test_generate_use_runs_referenced_script_for_each_page(site: SiteBuilder) -> None:
    site.template(
        "blog/index",
        """
        ---
        generate: /blog/*
        section: Blog
        ---
        <script generate>
        section = inputs["front_matter"]["section"]
        generate_pages({"path": "first", "data": {"heading": section}})
        resolve()
        </script>
        <h1>{{ heading }}</h1>
        """,
    )
    site.template(
        "news/index",
        """
        ---
        generate: /news/*
        section: News
        ---
        <script generate-use:"blog/index"></script>
        <h2>{{ heading }}</h2>
        """,
    )
    assert _build(site.engine()) == 0
    blog = site.output("blog/first/index.html").read_text(encoding="utf-8")
    news = site.output("news/first/index.html").read_text(encoding="utf-8")
    assert blog == "<h1>Blog</h1>"
    assert news == "<h2>News</h2>"


def test_render_template_binding(site: SiteBuilder) -> None:
    site.template("snippets/card", "<b>{{ name }}</b>")
    site.template(
        "home",
        """
        ---
        generate: /
        ---
        <script generate>
        html = render_template("snippets/card", {"name": "N"})
        resolve({"site_files": {"card.html": html}})
        </script>
        <p>home</p>
        """,
    )
    engine = site.engine()
    assert _build(engine) == 0
    assert site.output("card.html").read_text(encoding="utf-8") == "<b>N</b>"
    assert "home" in engine.template_dependents("snippets/card")


def test_trigger_is_exposed_to_script(site: SiteBuilder) -> None:
    site.template(
        "feeds",
        """
        ---
        generate: /feeds
        ---
        <script generate>
        resolve({"out_data": inputs["triggered_by"]})
        </script>
        <p>feeds</p>
        """,
    )
    engine = site.engine()
    _build(engine)
    assert "feeds" not in engine.state.ledger.out_data

    trigger = Trigger(path="/data/feed.json", reason=TriggerReason.ADDED)
    assert engine.update_deps({"feeds": trigger}) == 1
    asyncio.run(engine.generate_pages())
    assert engine.state.ledger.out_data["feeds"] == {
        "path": "/data/feed.json",
        "reason": "Added",
    }


@pytest.mark.parametrize(
    ("generate", "paths", "expected"),
    [
        ("/blog/*", ["a", "b"], ["/blog/a", "/blog/b"]),
        ("/about", ["ignored"], ["/about"]),
        ("/x/*/*", [], []),
    ],
)
def test_batch_paths(generate: str, paths: list[str], expected: list[str]) -> None:
    pages = [PageRequest(path=path) for path in paths]
    assert batch_paths(generate, pages) == expected


@pytest.mark.parametrize(
    ("generate", "count"),
    [("/x/*/*", 1), ("/about", 2)],
)
def test_batch_paths_rejects_mismatched_targets(generate: str, count: int) -> None:
    pages = [PageRequest(path=str(index)) for index in range(count)]
    with pytest.raises(WildcardError):
        batch_paths(generate, pages)


def test_fix_path_trims_one_trailing_slash() -> None:
    assert fix_path("/blog/") == "/blog"
    assert fix_path("/blog") == "/blog"
    assert fix_path("/") == ""
