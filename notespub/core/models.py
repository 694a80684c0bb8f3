"""Domain models for documents, build artifacts and deployment."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

HTML_SUFFIX = ".html"


class SourceDocument(BaseModel):
    """An author-written Markdown file."""

    path: Path = Field(..., description="Source file path")

    @property
    def title(self) -> str:
        return self.path.stem

    def output_path(self, output_dir: Path) -> Path:
        return output_dir / f"{self.path.stem}{HTML_SUFFIX}"


class RenderedDocument(BaseModel):
    """A standalone HTML file generated from one source document."""

    source: SourceDocument = Field(..., description="Document it was built from")
    output_path: Path = Field(..., description="Written HTML file")
    title: str = Field(..., description="Value of the <title> element")


class BuildConfig(BaseModel):
    """Configuration for one build run."""

    sources: list[SourceDocument] = Field(..., description="Documents to render")
    output_dir: Path = Field(default_factory=Path.cwd, description="Output directory")
    file_mode: int = Field(default=0o644, description="File permissions (octal)")


class BuildArtifact(BaseModel):
    """The complete set of rendered documents from one build run."""

    name: str = Field(..., description="Artifact name")
    files: list[Path] = Field(default_factory=list, description="Rendered files")


class ManifestEntry(BaseModel):
    name: str
    size: int
    sha256: str


class ArtifactManifest(BaseModel):
    name: str
    files: list[ManifestEntry] = Field(default_factory=list)


class DeploymentTarget(BaseModel):
    """Remote host and directory that receives the artifact."""

    user: str = Field(..., description="Remote login user")
    host: str = Field(..., description="Remote host name")
    path: str = Field(..., description="Absolute remote destination directory")
    file_mode: int = Field(default=0o644, description="Mode of transferred files")

    @property
    def login(self) -> str:
        return f"{self.user}@{self.host}"

    @property
    def directory(self) -> str:
        return self.path.rstrip("/") or "/"


class PushEvent(BaseModel):
    """A change-push event that triggers the pipeline."""

    ref: str = Field(..., description="Git ref, e.g. refs/heads/main")
    sha: str | None = Field(default=None, description="Commit that was pushed")
    run_id: str | None = Field(default=None, description="CI run identifier")

    @classmethod
    def from_env(cls, ref: str | None = None) -> "PushEvent":
        return cls(
            ref=ref if ref is not None else os.environ.get("GITHUB_REF", ""),
            sha=os.environ.get("GITHUB_SHA") or None,
            run_id=os.environ.get("GITHUB_RUN_ID") or None,
        )
