r"""Parse template source units and hold per-page content.

A template source unit is a ``.jinja`` file with an optional YAML front
matter header followed by a Jinja body. The body may embed script blocks::

    ---
    generate: blog/*
    wrapper: layouts/main
    ---
    <script generate>
    posts = get_data_file_names("posts/*.md")
    generate_pages([{"path": Path(p).stem, "data": {}} for p in posts])
    resolve()
    </script>
    <h1>{{ title }}</h1>

``generate`` and ``generate-use`` blocks attach a generate script to the
page, ``entry`` blocks are composed into the page's entry script at render
time, and ``lib`` blocks are written straight to the output ``js`` folder.

Example
-------
>>> from templer.content import parse_front_matter
>>> doc = parse_front_matter("---\ntitle: Hi\n---\nBody")
>>> doc.attributes["title"], doc.body
('Hi', 'Body')
"""

from __future__ import annotations

import dataclasses as dc
import io
import re
import textwrap
import typing as typ

from jinja2 import Template, TemplateSyntaxError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from templer._constants import (
    END_SCRIPT,
    SCRIPT_ENTRY,
    SCRIPT_GENERATE,
    SCRIPT_GENERATE_USE,
    SCRIPT_LIB,
)
from templer.deps import DependencyKind
from templer.logging import get_logger

if typ.TYPE_CHECKING:
    from templer.generator.markup import TemplateCompiler
    from templer.output import OutputWriter
    from templer.state import EngineState

FRONT_MATTER_PATTERN = re.compile(
    r"\A\ufeff?---[ \t]*\r?\n(.*?)^(?:---|\.\.\.)[ \t]*(?:\r?\n|\Z)",
    re.DOTALL | re.MULTILINE,
)
EXTRACT_SCRIPT = re.compile(r"<script[\s\S]*?>[\s\S]*?</script>", re.IGNORECASE)
GENERATE_USE_REF = re.compile(r'^"([\w-]+(?:/[\w-]+)+)">$')

logger = get_logger("content")


class ContentError(ValueError):
    """Raised when a template source unit cannot be parsed."""


@dc.dataclass(slots=True)
class FrontMatterDocument:
    """Front matter attributes and the remaining body of a source text."""

    attributes: dict[str, typ.Any]
    body: str


@dc.dataclass(slots=True)
class ScriptBlocks:
    """Script bodies found in one template source unit.

    Attributes
    ----------
    generate : str | None
        Body of a ``<script generate>`` block.
    generate_ref : str | None
        Page name given by a well-formed ``<script generate-use:"...">``.
    entry : str | None
        Body of a ``<script entry>`` block.
    lib : str | None
        Body of a ``<script lib>`` block.
    """

    generate: str | None = None
    generate_ref: str | None = None
    entry: str | None = None
    lib: str | None = None


@dc.dataclass(slots=True)
class Page:
    """Everything the engine knows about one scanned template."""

    name: str
    front_matter: dict[str, typ.Any]
    template: Template | None
    generate_script: str | None = None
    generate_ref: str | None = None
    entry_script: str | None = None

    @property
    def generate(self) -> str | None:
        """Target path pattern from the ``generate`` front matter key."""
        value = self.front_matter.get("generate")
        return str(value) if value else None

    @property
    def wrapper(self) -> str | None:
        """Name of the page wrapping this one, if any."""
        value = self.front_matter.get("wrapper")
        return str(value) if value else None


def parse_front_matter(text: str) -> FrontMatterDocument:
    """Split ``text`` into YAML front matter attributes and body.

    Raises
    ------
    ContentError
        If the header is not valid YAML or does not describe a mapping.
    """
    match = FRONT_MATTER_PATTERN.match(text)
    if not match:
        return FrontMatterDocument(attributes={}, body=text)
    loader = YAML(typ="safe")
    loader.version = (1, 2)
    try:
        loaded = loader.load(io.StringIO(match.group(1))) or {}
    except YAMLError as exc:
        msg = f"Front matter is not valid YAML: {exc}"
        raise ContentError(msg) from exc
    if not isinstance(loaded, dict):
        msg = "Front matter must be a mapping."
        raise ContentError(msg)
    return FrontMatterDocument(attributes=dict(loaded), body=text[match.end() :])


def extract_scripts(name: str, body: str) -> tuple[str, ScriptBlocks]:
    """Remove recognised script blocks from ``body``.

    Returns the body without those blocks and the script bodies found. Script
    tags that carry none of the known markers stay in the body untouched. A
    malformed ``generate-use`` reference is logged and dropped.
    """
    blocks = ScriptBlocks()

    def _consume(match: re.Match[str]) -> str:
        source = match.group(0)
        if source.startswith(SCRIPT_GENERATE):
            blocks.generate = textwrap.dedent(_inner(source, SCRIPT_GENERATE))
        elif source.startswith(SCRIPT_GENERATE_USE):
            reference = _inner(source, SCRIPT_GENERATE_USE).strip()
            ref_match = GENERATE_USE_REF.match(reference)
            if ref_match:
                blocks.generate_ref = ref_match.group(1)
            else:
                logger.error(
                    "Generate-use script template in '%s' not specified correctly: %s",
                    name,
                    reference,
                )
        elif source.startswith(SCRIPT_ENTRY):
            blocks.entry = _inner(source, SCRIPT_ENTRY)
        elif source.startswith(SCRIPT_LIB):
            blocks.lib = _inner(source, SCRIPT_LIB)
        else:
            return source
        return ""

    stripped = EXTRACT_SCRIPT.sub(_consume, body)
    return stripped.strip(), blocks


def _inner(source: str, marker: str) -> str:
    return source[len(marker) : -len(END_SCRIPT)]


class ContentStore:
    """Scan template sources into :class:`Page` records held by the engine."""

    def __init__(
        self,
        state: EngineState,
        compile_template: TemplateCompiler,
        writer: OutputWriter,
    ) -> None:
        self.state = state
        self.compile_template = compile_template
        self.writer = writer

    def scan(self, name: str, text: str) -> Page | None:
        """Parse, compile, and store the source of page ``name``.

        The page replaces any earlier version. ``lib`` blocks are written
        immediately, and the page is queued for generation when its front
        matter declares a ``generate`` target. Returns ``None`` (after
        counting an error) when the front matter cannot be parsed.
        """
        try:
            document = parse_front_matter(text)
        except ContentError as exc:
            self.state.error_count += 1
            logger.error("%s in %s", exc, name)
            return None

        body, blocks = extract_scripts(name, document.body)
        if blocks.lib is not None:
            self._write_lib(name, blocks.lib)
        if blocks.generate_ref:
            # Editing the referenced page must regenerate this one.
            self.state.deps.record(DependencyKind.TEMPLATE, blocks.generate_ref, name)

        logger.info("Compiling template: %s", name)
        page = Page(
            name=name,
            front_matter=document.attributes,
            template=self._compile(name, body),
            generate_script=blocks.generate,
            generate_ref=blocks.generate_ref,
            entry_script=blocks.entry,
        )
        self.state.pages[name] = page
        self.state.cue(name)
        return page

    def generate_script(self, name: str) -> tuple[str, str] | None:
        """Return ``(owner, body)`` of the script ``name`` runs, if any.

        A page's own ``generate`` block wins over a ``generate-use`` reference.
        """
        page = self.state.pages.get(name)
        if page is None:
            return None
        if page.generate_script:
            return name, page.generate_script
        if page.generate_ref:
            referenced = self.state.pages.get(page.generate_ref)
            if referenced is not None and referenced.generate_script:
                logger.debug(
                    "Using reference generate script '%s' for '%s'",
                    page.generate_ref,
                    name,
                )
                return page.generate_ref, referenced.generate_script
        return None

    def remove(self, name: str) -> None:
        """Forget page ``name``; unknown names are ignored."""
        self.state.pages.pop(name, None)

    def _compile(self, name: str, body: str) -> Template | None:
        try:
            return self.compile_template(body)
        except TemplateSyntaxError as exc:
            self.state.error_count += 1
            logger.error("%s in %s (line %s)", exc.message, name, exc.lineno)
            return None

    def _write_lib(self, name: str, script: str) -> None:
        try:
            self.writer.write_lib(name, script)
        except (OSError, ValueError) as exc:
            self.state.error_count += 1
            logger.error("Error writing lib script for %s: %s", name, exc)


__all__ = [
    "ContentError",
    "ContentStore",
    "FrontMatterDocument",
    "Page",
    "ScriptBlocks",
    "extract_scripts",
    "parse_front_matter",
]
