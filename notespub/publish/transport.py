from __future__ import annotations

import logging
import shlex
import subprocess
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Iterator, Protocol, Sequence

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .._utils import ensure, run_logged
from ..core.models import DeploymentTarget
from .credentials import SshIdentity

logger = logging.getLogger(__name__)

SSH_EXIT_CONNECTION_ERROR = 255
# Remote exit status when the lock directory is already present.
LOCK_HELD_EXIT = 3


class TransportError(Exception):
    """Raised when a remote command or file copy fails."""


class DeployLockHeldError(Exception):
    """Raised when another deployment holds the remote lock."""


class Transport(Protocol):
    def lock(self) -> AbstractContextManager[None]: ...

    def publish(self, files: Sequence[Path], run_id: str) -> list[str]: ...


def _log_lock_retry(retry_state: RetryCallState) -> None:
    sleep_for = (
        f"; waiting {retry_state.next_action.sleep:.0f}s"
        if retry_state.next_action and retry_state.next_action.sleep is not None
        else ""
    )
    logger.warning(
        "Deploy lock is held by another run (attempt %d)%s",
        retry_state.attempt_number,
        sleep_for,
    )


class ScpTransport:
    """Copies files to the deployment target with scp over key-based SSH."""

    def __init__(
        self,
        target: DeploymentTarget,
        identity: SshIdentity,
        *,
        atomic: bool = True,
        lock_attempts: int = 6,
        lock_wait_max: float = 30.0,
    ) -> None:
        ensure(["ssh", "scp"])
        self.target = target
        self.identity = identity
        self.atomic = atomic
        self.lock_attempts = lock_attempts
        self.lock_wait_max = lock_wait_max

    @property
    def lock_path(self) -> str:
        return f"{self.target.directory}.lock"

    def ssh_options(self) -> list[str]:
        return [
            "-o",
            f"IdentityFile={self.identity.key_path}",
            "-o",
            f"UserKnownHostsFile={self.identity.known_hosts_path}",
            "-o",
            "IdentitiesOnly=yes",
            "-o",
            "StrictHostKeyChecking=yes",
            "-o",
            "BatchMode=yes",
        ]

    def _ssh_command(self, command: str) -> list[str]:
        return ["ssh", *self.ssh_options(), self.target.login, command]

    def run_remote(self, command: str) -> subprocess.CompletedProcess[str]:
        try:
            return run_logged(
                self._ssh_command(command), capture_output=True, echo="on_error"
            )
        except subprocess.CalledProcessError as exc:
            raise TransportError(
                f"Remote command failed on {self.target.host} "
                f"(exit {exc.returncode}): {(exc.stderr or '').strip()}"
            ) from exc

    def copy(self, files: Sequence[Path], remote_dir: str) -> None:
        cmd = [
            "scp",
            "-p",
            *self.ssh_options(),
            *(str(path) for path in files),
            f"{self.target.login}:{remote_dir}/",
        ]
        try:
            run_logged(cmd, capture_output=True, echo="on_error")
        except subprocess.CalledProcessError as exc:
            raise TransportError(
                f"scp to {self.target.login}:{remote_dir} failed "
                f"(exit {exc.returncode}): {(exc.stderr or '').strip()}"
            ) from exc

    def _acquire_command(self) -> str:
        lock = shlex.quote(self.lock_path)
        return f"mkdir {lock} || {{ test -d {lock} && exit {LOCK_HELD_EXIT}; exit 1; }}"

    def _try_acquire(self) -> None:
        result = run_logged(
            self._ssh_command(self._acquire_command()),
            capture_output=True,
            check=False,
            echo="never",
        )
        if result.returncode == 0:
            return
        if result.returncode == SSH_EXIT_CONNECTION_ERROR:
            raise TransportError(
                f"Cannot reach {self.target.host}: {(result.stderr or '').strip()}"
            )
        if result.returncode == LOCK_HELD_EXIT:
            raise DeployLockHeldError(f"{self.lock_path} exists on {self.target.host}")
        raise TransportError(
            f"Cannot create deploy lock {self.lock_path} on {self.target.host} "
            f"(exit {result.returncode}): {(result.stderr or '').strip()}"
        )

    @contextmanager
    def lock(self) -> Iterator[None]:
        retrying = Retrying(
            reraise=True,
            retry=retry_if_exception_type(DeployLockHeldError),
            stop=stop_after_attempt(self.lock_attempts),
            wait=wait_exponential(
                multiplier=1, min=min(2.0, self.lock_wait_max), max=self.lock_wait_max
            ),
            before_sleep=_log_lock_retry,
        )
        retrying(self._try_acquire)
        logger.info("Acquired deploy lock %s", self.lock_path)
        try:
            yield
        finally:
            self._release()

    def _release(self) -> None:
        result = run_logged(
            self._ssh_command(f"rmdir {shlex.quote(self.lock_path)}"),
            capture_output=True,
            check=False,
            echo="never",
        )
        if result.returncode != 0:
            logger.warning(
                "Could not release deploy lock %s: %s",
                self.lock_path,
                (result.stderr or "").strip(),
            )
            return
        logger.info("Released deploy lock %s", self.lock_path)

    def publish(self, files: Sequence[Path], run_id: str) -> list[str]:
        names = [path.name for path in files]
        if not names:
            logger.warning("Nothing to publish")
            return names

        destination = self.target.directory
        if not self.atomic:
            self.copy(files, destination)
            logger.info("Copied %d file(s) to %s", len(names), destination)
            return names

        staging = f"{destination}.incoming-{run_id}"
        self.run_remote(f"mkdir -p {shlex.quote(staging)}")
        try:
            self.copy(files, staging)
            staged = " ".join(shlex.quote(f"{staging}/{name}") for name in names)
            self.run_remote(
                f"chmod {self.target.file_mode:o} {staged}"
                f" && mkdir -p {shlex.quote(destination)}"
                f" && mv -f {staged} {shlex.quote(destination)}/"
                f" && rmdir {shlex.quote(staging)}"
            )
        except TransportError:
            self._discard(staging)
            raise

        logger.info("Published %d file(s) to %s", len(names), destination)
        return names

    def _discard(self, staging: str) -> None:
        result = run_logged(
            self._ssh_command(f"rm -rf {shlex.quote(staging)}"),
            capture_output=True,
            check=False,
            echo="never",
        )
        if result.returncode != 0:
            logger.warning("Could not remove remote staging directory %s", staging)
