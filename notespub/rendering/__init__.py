from .converters import (
    ConversionError,
    Converter,
    MarkdownConverter,
    PandocConverter,
    make_converter,
)
from .engine import build_all, build_document, clean, discover_sources

__all__ = [
    "ConversionError",
    "Converter",
    "MarkdownConverter",
    "PandocConverter",
    "build_all",
    "build_document",
    "clean",
    "discover_sources",
    "make_converter",
]
