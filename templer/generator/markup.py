"""Jinja2 environment for page bodies, with markdown and highlighting helpers.

Page bodies are compiled once per scan. Besides ``include``, which is handed
in at render time, templates can use:

* the ``markdown`` filter, converting prose with fenced code highlighted,
* the ``highlight(code, language)`` global for a single snippet,
* the ``pygments_css`` global holding the stylesheet both depend on.

Example
-------
>>> from templer.generator.markup import template_compiler
>>> compile_template = template_compiler()
>>> compile_template("<p>{{ name }}</p>").render(name="<b>")
'<p>&lt;b&gt;</p>'
"""

from __future__ import annotations

import typing as typ

from jinja2 import Environment, StrictUndefined, Template, select_autoescape
from markdown import Markdown
from markupsafe import Markup
from pygments import highlight as pygments_highlight
from pygments.formatters.html import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

TemplateCompiler = typ.Callable[[str], Template]

HIGHLIGHT_CLASS = "highlight"
MARKDOWN_EXTENSIONS = ("fenced_code", "codehilite", "tables", "sane_lists")


class MarkupHelpers:
    """Markdown conversion and snippet highlighting sharing one pygments style."""

    def __init__(self, style: str = "default") -> None:
        self.style = style
        self.formatter = HtmlFormatter(style=style, cssclass=HIGHLIGHT_CLASS)

    @property
    def stylesheet(self) -> Markup:
        return Markup(self.formatter.get_style_defs(f".{HIGHLIGHT_CLASS}"))  # noqa: S704

    def markdown(self, text: str | None) -> Markup:
        """Convert ``text`` to HTML; blank input yields an empty string."""
        if not text or not text.strip():
            return Markup("")
        converter = Markdown(
            extensions=list(MARKDOWN_EXTENSIONS),
            extension_configs={
                "codehilite": {
                    "css_class": HIGHLIGHT_CLASS,
                    "guess_lang": False,
                    "pygments_style": self.style,
                }
            },
        )
        return Markup(converter.convert(text))  # noqa: S704

    def highlight(self, code: str, language: str | None = None) -> Markup:
        """Highlight ``code``; a missing or unknown language falls back to text."""
        try:
            lexer = get_lexer_by_name(language or "text")
        except ClassNotFound:
            lexer = get_lexer_by_name("text")
        return Markup(pygments_highlight(code, lexer, self.formatter))  # noqa: S704


def build_environment(helpers: MarkupHelpers | None = None) -> Environment:
    """Return the Jinja2 environment used to compile page bodies.

    Undefined names raise at render time, so a typo fails the page that
    contains it instead of rendering blanks.
    """
    helpers = helpers or MarkupHelpers()
    env = Environment(
        autoescape=select_autoescape(default_for_string=True, default=True),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["markdown"] = helpers.markdown
    env.globals["highlight"] = helpers.highlight
    env.globals["pygments_css"] = helpers.stylesheet
    return env


def template_compiler(env: Environment | None = None) -> TemplateCompiler:
    """Return a callable turning raw template text into a Jinja2 template."""
    environment = env or build_environment()
    return environment.from_string


__all__ = [
    "MarkupHelpers",
    "TemplateCompiler",
    "build_environment",
    "template_compiler",
]
