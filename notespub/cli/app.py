"""Main CLI application."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from typing_extensions import Annotated

from ..core.models import PushEvent
from ..publish import (
    ArtifactError,
    CredentialsError,
    DeployLockHeldError,
    Pipeline,
    PipelineState,
    TransportError,
)
from ..rendering import ConversionError, clean as clean_outputs
from ..settings import Settings
from .parsers import parse_converter, parse_file_mode, parse_ref

logger = logging.getLogger(__name__)

PIPELINE_ERRORS = (
    ConversionError,
    ArtifactError,
    CredentialsError,
    DeployLockHeldError,
    TransportError,
    FileNotFoundError,
)

app = typer.Typer(
    name="notespub",
    help="Build Markdown notes into standalone HTML and publish them over SSH.",
    no_args_is_help=True,
)

SourceDirOption = Annotated[
    Optional[Path],
    typer.Option("--source-dir", help="Directory holding the Markdown sources.", metavar="DIR"),
]
OutputDirOption = Annotated[
    Optional[Path],
    typer.Option(
        "--output-dir",
        help="Directory receiving the HTML files (default: source dir).",
        metavar="DIR",
    ),
]
RefOption = Annotated[
    str,
    typer.Option(
        "--ref",
        envvar="GITHUB_REF",
        help="Git ref of the triggering push (default: $GITHUB_REF).",
        metavar="REF",
    ),
]


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )


def load_settings(**overrides: Any) -> Settings:
    try:
        return Settings(
            **{key: value for key, value in overrides.items() if value is not None}
        )
    except ValidationError as exc:
        raise _fail(exc) from exc


def _fail(exc: Exception) -> typer.Exit:
    logger.error("%s", exc)
    return typer.Exit(code=1)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    configure_logging(verbose)


@app.command()
def build(
    source_dir: SourceDirOption = None,
    output_dir: OutputDirOption = None,
    converter: Annotated[
        Optional[str],
        typer.Option("--converter", help="Markdown converter: markdown or pandoc."),
    ] = None,
    template: Annotated[
        Optional[Path],
        typer.Option("--template", help="Jinja2 page template (markdown converter only)."),
    ] = None,
    file_mode: Annotated[
        Optional[str],
        typer.Option("--mode", help="File permissions in octal (default: 0644).", metavar="OCTAL"),
    ] = None,
    upload: Annotated[
        bool,
        typer.Option("--artifact/--no-artifact", help="Stage the output as a build artifact."),
    ] = True,
) -> None:
    """Render every Markdown source into a standalone HTML document."""
    settings = load_settings(
        source_dir=source_dir,
        output_dir=output_dir,
        converter=parse_converter(converter) if converter else None,
        template_path=template,
        file_mode=parse_file_mode(file_mode) if file_mode else None,
    )
    try:
        result = Pipeline(settings).build(upload=upload)
    except PIPELINE_ERRORS as exc:
        raise _fail(exc) from exc

    files = result.artifact.files if result.artifact else []
    logger.debug(f"Completed: {len(files)} file(s) built")


@app.command()
def clean(output_dir: OutputDirOption = None) -> None:
    """Remove previously rendered HTML documents."""
    settings = load_settings(output_dir=output_dir)
    removed = clean_outputs(settings.resolved_output_dir)
    logger.debug(f"Completed: {len(removed)} file(s) removed")


@app.command()
def deploy(ref: RefOption = "") -> None:
    """Publish the staged artifact when REF is the primary branch."""
    event = PushEvent.from_env(parse_ref(ref))
    pipeline = Pipeline(load_settings(), state=PipelineState.BUILT)
    try:
        pipeline.deploy(event)
    except PIPELINE_ERRORS as exc:
        raise _fail(exc) from exc


@app.command()
def run(
    ref: RefOption = "",
    source_dir: SourceDirOption = None,
    output_dir: OutputDirOption = None,
) -> None:
    """Build all documents, then deploy them when REF is the primary branch."""
    event = PushEvent.from_env(parse_ref(ref))
    pipeline = Pipeline(load_settings(source_dir=source_dir, output_dir=output_dir))
    try:
        result = pipeline.run(event)
    except PIPELINE_ERRORS as exc:
        raise _fail(exc) from exc
    logger.debug(f"Finished in state {result.state.value}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
