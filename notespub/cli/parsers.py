"""CLI argument parsers and validators."""

from __future__ import annotations

import typer

CONVERTERS = ("markdown", "pandoc")


def parse_file_mode(value: str) -> int:
    """Parse octal file mode string."""
    try:
        return int(value, 8)
    except ValueError as e:
        raise typer.BadParameter(f"Invalid octal mode: {value!r}") from e


def parse_converter(value: str) -> str:
    """Validate the converter name."""
    name = value.strip().lower()
    if name not in CONVERTERS:
        raise typer.BadParameter(
            f"Unknown converter {value!r}; choose from {', '.join(CONVERTERS)}"
        )
    return name


def parse_ref(value: str) -> str:
    """Validate a git ref or branch name."""
    ref = value.strip()
    if not ref:
        raise typer.BadParameter(
            "No ref given; pass --ref or set GITHUB_REF (e.g. refs/heads/main)"
        )
    return ref
