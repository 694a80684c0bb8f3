"""Document build engine."""

from __future__ import annotations

import logging
from pathlib import Path

from ..core.models import (
    HTML_SUFFIX,
    BuildArtifact,
    BuildConfig,
    RenderedDocument,
    SourceDocument,
)
from .converters import ConversionError, Converter
from .io import atomic_write_text

logger = logging.getLogger(__name__)


def discover_sources(source_dir: Path, pattern: str = "*.md") -> list[SourceDocument]:
    """List the source documents present in a directory.

    Args:
        source_dir: Directory holding the Markdown sources
        pattern: Glob pattern selecting source files

    Returns:
        Source documents sorted by file name
    """
    if not source_dir.is_dir():
        raise FileNotFoundError(f"Source directory not found: {source_dir}")
    return [
        SourceDocument(path=path)
        for path in sorted(source_dir.glob(pattern))
        if path.is_file()
    ]


def build_document(
    source: SourceDocument, output_dir: Path, converter: Converter, file_mode: int
) -> RenderedDocument:
    """Render a single source document.

    Args:
        source: Document to convert
        output_dir: Directory receiving ``<stem>.html``
        converter: Converter producing the standalone HTML
        file_mode: File permissions

    Returns:
        The rendered document
    """
    logger.debug(f"Converting {source.path} with {converter.name}")

    html = converter.convert(source)
    output_path = source.output_path(output_dir)
    try:
        atomic_write_text(output_path, html, mode=file_mode)
    except OSError as exc:
        raise ConversionError(f"Cannot write {output_path}: {exc}") from exc

    logger.info(f"Rendered {source.path} → {output_path}")
    return RenderedDocument(source=source, output_path=output_path, title=source.title)


def build_all(
    config: BuildConfig, converter: Converter, artifact_name: str = "notes-html"
) -> BuildArtifact:
    """Render all configured documents, stopping at the first failure.

    Args:
        config: Build configuration
        converter: Converter producing the standalone HTML
        artifact_name: Name given to the resulting artifact

    Returns:
        Artifact listing every rendered file
    """
    logger.info(f"Building {len(config.sources)} document(s)")

    rendered = [
        build_document(source, config.output_dir, converter, config.file_mode)
        for source in config.sources
    ]

    logger.info(f"Successfully built {len(rendered)} document(s)")
    return BuildArtifact(
        name=artifact_name, files=[doc.output_path for doc in rendered]
    )


def clean(output_dir: Path) -> list[Path]:
    """Remove every rendered HTML file from ``output_dir``."""
    removed: list[Path] = []
    if not output_dir.is_dir():
        return removed
    for path in sorted(output_dir.glob(f"*{HTML_SUFFIX}")):
        if not path.is_file():
            continue
        path.unlink()
        logger.info(f"removed '{path}'")
        removed.append(path)
    return removed
