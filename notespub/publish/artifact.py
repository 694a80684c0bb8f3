"""Local artifact store handing rendered documents from build to deploy."""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from ..core.models import ArtifactManifest, BuildArtifact, ManifestEntry

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


class ArtifactError(Exception):
    """Raised when an artifact is missing, incomplete or corrupted."""


def file_digest(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ArtifactStore:
    def __init__(self, root: Path) -> None:
        self.root = root

    def path_for(self, name: str) -> Path:
        return self.root / name

    def upload(self, name: str, files: Iterable[Path]) -> BuildArtifact:
        target = self.path_for(name)
        if target.exists():
            shutil.rmtree(target)
        target.mkdir(parents=True)

        manifest = ArtifactManifest(name=name)
        stored: list[Path] = []
        for source in files:
            if not source.is_file():
                raise ArtifactError(f"Cannot upload missing file: {source}")
            destination = target / source.name
            shutil.copy2(source, destination)
            manifest.files.append(
                ManifestEntry(
                    name=source.name,
                    size=destination.stat().st_size,
                    sha256=file_digest(destination),
                )
            )
            stored.append(destination)

        (target / MANIFEST_NAME).write_text(manifest.model_dump_json(indent=2) + "\n")
        logger.info("Uploaded artifact %s (%d file(s))", name, len(stored))
        return BuildArtifact(name=name, files=stored)

    def load_manifest(self, name: str) -> ArtifactManifest:
        manifest_path = self.path_for(name) / MANIFEST_NAME
        if not manifest_path.exists():
            raise ArtifactError(f"Artifact not found: {name} ({manifest_path})")
        try:
            return ArtifactManifest.model_validate_json(manifest_path.read_text())
        except ValidationError as exc:
            raise ArtifactError(f"Invalid manifest for artifact {name}: {exc}") from exc

    def download(self, name: str, destination: Path) -> list[Path]:
        manifest = self.load_manifest(name)
        source_dir = self.path_for(name)
        destination.mkdir(parents=True, exist_ok=True)

        fetched: list[Path] = []
        for entry in manifest.files:
            source = source_dir / entry.name
            if not source.is_file():
                raise ArtifactError(f"Artifact {name} is missing {entry.name}")
            target = destination / entry.name
            shutil.copy2(source, target)
            if file_digest(target) != entry.sha256:
                raise ArtifactError(f"Checksum mismatch for {entry.name} in {name}")
            fetched.append(target)

        logger.info(
            "Downloaded artifact %s into %s (%d file(s))", name, destination, len(fetched)
        )
        return fetched
