from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable

from .artifact import ArtifactStore

logger = logging.getLogger(__name__)


def wipe_workspace(path: Path) -> None:
    """Remove everything inside ``path``, keeping the directory itself."""
    path.mkdir(parents=True, exist_ok=True)
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
    logger.debug("Wiped deployment workspace %s", path)


def stage_artifact(store: ArtifactStore, name: str, workspace: Path) -> list[Path]:
    wipe_workspace(workspace)
    return store.download(name, workspace)


def normalize_permissions(files: Iterable[Path], mode: int = 0o644) -> None:
    for path in files:
        os.chmod(path, mode)
        logger.debug("chmod %o %s", mode, path)
