"""Markdown to standalone HTML converters."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

import markdown
from jinja2 import (
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    Template,
    TemplateError,
)

from .._utils import ensure, run_logged
from ..core.models import SourceDocument

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "standalone.html.j2"
MARKDOWN_EXTENSIONS = ["extra", "toc", "sane_lists"]


class ConversionError(Exception):
    """Raised when a source document cannot be rendered to HTML."""


class Converter(Protocol):
    name: str

    def convert(self, source: SourceDocument) -> str:
        """Return the complete standalone HTML document for ``source``."""
        ...


def read_source(source: SourceDocument) -> str:
    try:
        return source.path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConversionError(f"Cannot read {source.path}: {exc}") from exc


def load_template(template_path: Path | None = None) -> Template:
    """Load the standalone page template.

    Args:
        template_path: Optional template file; the packaged template is used
            when omitted

    Returns:
        Compiled Jinja2 template
    """
    if template_path is None:
        loader = PackageLoader("notespub.rendering", "templates")
        name = DEFAULT_TEMPLATE
    else:
        if not template_path.exists():
            raise FileNotFoundError(f"Template not found: {template_path}")
        loader = FileSystemLoader(str(template_path.parent))
        name = template_path.name

    env = Environment(
        loader=loader,
        undefined=StrictUndefined,
        autoescape=True,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    return env.get_template(name)


class MarkdownConverter:
    """Python-Markdown with a generated table of contents."""

    name = "markdown"

    def __init__(self, template_path: Path | None = None, lang: str = "en") -> None:
        self.template = load_template(template_path)
        self.lang = lang

    def convert(self, source: SourceDocument) -> str:
        text = read_source(source)
        md = markdown.Markdown(extensions=MARKDOWN_EXTENSIONS, output_format="html")
        try:
            body = md.convert(text)
            return self.template.render(
                title=source.title,
                lang=self.lang,
                toc=md.toc if md.toc_tokens else "",
                body=body,
            )
        except TemplateError as exc:
            raise ConversionError(f"Cannot render {source.path}: {exc}") from exc


class PandocConverter:
    """Delegates to the pandoc executable, using its standalone HTML writer."""

    name = "pandoc"

    def __init__(self) -> None:
        ensure(["pandoc"])

    def command(self, source: SourceDocument) -> list[str]:
        return [
            "pandoc",
            "-f",
            "markdown",
            "-t",
            "html",
            "-s",
            "--toc",
            "--metadata",
            f"title={source.title}",
            str(source.path),
        ]

    def convert(self, source: SourceDocument) -> str:
        try:
            result = run_logged(
                self.command(source), capture_output=True, echo="on_error"
            )
        except subprocess.CalledProcessError as exc:
            raise ConversionError(
                f"pandoc failed for {source.path} (exit {exc.returncode})"
            ) from exc
        return result.stdout


def make_converter(
    name: str, *, template_path: Path | None = None, lang: str = "en"
) -> Converter:
    if name == "markdown":
        return MarkdownConverter(template_path=template_path, lang=lang)
    if name == "pandoc":
        return PandocConverter()
    raise ValueError(f"Unknown converter: {name!r}")
