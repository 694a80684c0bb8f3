"""SSH credential materialization for the deploy step."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from pydantic import SecretStr

logger = logging.getLogger(__name__)

KEY_FILE = "deploy_key"
KNOWN_HOSTS_FILE = "deploy_known_hosts"


class CredentialsError(Exception):
    """Raised when deploy credentials are missing or cannot be written."""


@dataclass(frozen=True)
class SshIdentity:
    key_path: Path
    known_hosts_path: Path


def _write_restricted(path: Path, content: str, mode: int) -> None:
    # A fresh file is created with the final mode; an existing one may be wider.
    path.unlink(missing_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content if content.endswith("\n") else content + "\n")
    os.chmod(path, mode)


@contextmanager
def materialize_credentials(
    ssh_dir: Path,
    private_key: SecretStr | None,
    known_hosts: str | None,
) -> Iterator[SshIdentity]:
    if private_key is None or not private_key.get_secret_value().strip():
        raise CredentialsError("SSH private key is not configured")
    if known_hosts is None or not known_hosts.strip():
        raise CredentialsError("Known hosts record is not configured")

    identity = SshIdentity(
        key_path=ssh_dir / KEY_FILE, known_hosts_path=ssh_dir / KNOWN_HOSTS_FILE
    )
    try:
        ssh_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(ssh_dir, 0o700)
        _write_restricted(identity.key_path, private_key.get_secret_value(), 0o600)
        _write_restricted(identity.known_hosts_path, known_hosts, 0o644)
    except OSError as exc:
        raise CredentialsError(f"Cannot write credentials to {ssh_dir}: {exc}") from exc

    logger.info("Configured SSH credentials in %s", ssh_dir)
    try:
        yield identity
    finally:
        for path in (identity.key_path, identity.known_hosts_path):
            path.unlink(missing_ok=True)
        logger.debug("Removed SSH credentials from %s", ssh_dir)
