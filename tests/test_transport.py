"""Tests for the scp transport, driven through a recorded run_logged."""

from __future__ import annotations

from pathlib import Path

import pytest

from notespub.core.models import DeploymentTarget
from notespub.publish import transport as transport_module
from notespub.publish.credentials import SshIdentity
from notespub.publish.transport import (
    LOCK_HELD_EXIT,
    DeployLockHeldError,
    ScpTransport,
    TransportError,
)

LOGIN = "webmaster@comrade.one"
DEST = "/srv/www/comrade.one/notes"
ACQUIRE = (
    f"mkdir {DEST}.lock || {{ test -d {DEST}.lock && exit {LOCK_HELD_EXIT}; exit 1; }}"
)


@pytest.fixture(autouse=True)
def no_tool_check(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(transport_module, "ensure", lambda commands: None)


@pytest.fixture
def identity(tmp_path: Path) -> SshIdentity:
    return SshIdentity(
        key_path=tmp_path / "deploy_key", known_hosts_path=tmp_path / "deploy_known_hosts"
    )


@pytest.fixture
def target() -> DeploymentTarget:
    return DeploymentTarget(user="webmaster", host="comrade.one", path=DEST + "/")


@pytest.fixture
def files(tmp_path: Path) -> list[Path]:
    paths = [tmp_path / "Programming.html", tmp_path / "Algorithms.html"]
    for path in paths:
        path.write_text("<html></html>\n")
    return paths


def _install(monkeypatch, runner):
    monkeypatch.setattr(transport_module, "run_logged", runner)
    return runner


class TestScpTransport:
    def test_ssh_options(self, target, identity):
        options = ScpTransport(target, identity).ssh_options()
        assert f"IdentityFile={identity.key_path}" in options
        assert f"UserKnownHostsFile={identity.known_hosts_path}" in options
        assert "StrictHostKeyChecking=yes" in options
        assert "BatchMode=yes" in options

    def test_direct_copy(self, monkeypatch, fake_runner, target, identity, files):
        runner = _install(monkeypatch, fake_runner())
        transport = ScpTransport(target, identity, atomic=False)

        published = transport.publish(files, "run1")

        assert published == ["Programming.html", "Algorithms.html"]
        assert len(runner.calls) == 1
        scp = runner.calls[0]
        assert scp[:2] == ["scp", "-p"]
        assert scp[-3:] == [str(files[0]), str(files[1]), f"{LOGIN}:{DEST}/"]

    def test_staged_copy_then_rename(self, monkeypatch, fake_runner, target, identity, files):
        runner = _install(monkeypatch, fake_runner())
        transport = ScpTransport(target, identity)

        transport.publish(files, "run1")

        staging = f"{DEST}.incoming-run1"
        assert [call[0] for call in runner.calls] == ["ssh", "scp", "ssh"]
        assert runner.calls[1][-1] == f"{LOGIN}:{staging}/"
        mkdir, finalize = runner.remote_commands()
        assert mkdir == f"mkdir -p {staging}"
        assert finalize.startswith(
            f"chmod 644 {staging}/Programming.html {staging}/Algorithms.html"
        )
        assert f"mv -f {staging}/Programming.html {staging}/Algorithms.html {DEST}/" in finalize
        assert finalize.endswith(f"rmdir {staging}")

    def test_failed_copy_discards_staging(
        self, monkeypatch, fake_runner, target, identity, files
    ):
        runner = _install(
            monkeypatch, fake_runner(lambda cmd: 1 if cmd[0] == "scp" else 0)
        )
        transport = ScpTransport(target, identity)

        with pytest.raises(TransportError, match="scp"):
            transport.publish(files, "run1")

        assert runner.remote_commands()[-1] == f"rm -rf {DEST}.incoming-run1"
        assert not any("mv -f" in command for command in runner.remote_commands())

    def test_nothing_to_publish(self, monkeypatch, fake_runner, target, identity):
        runner = _install(monkeypatch, fake_runner())
        assert ScpTransport(target, identity).publish([], "run1") == []
        assert runner.calls == []

    def test_remote_paths_are_quoted(self, monkeypatch, fake_runner, identity, files):
        runner = _install(monkeypatch, fake_runner())
        target = DeploymentTarget(user="web", host="example.org", path="/srv/my notes/")
        ScpTransport(target, identity).publish(files[:1], "r")
        assert runner.remote_commands()[0] == "mkdir -p '/srv/my notes.incoming-r'"


class TestDeployLock:
    def test_acquire_and_release(self, monkeypatch, fake_runner, target, identity):
        runner = _install(monkeypatch, fake_runner())
        transport = ScpTransport(target, identity)

        with transport.lock():
            assert runner.remote_commands() == [ACQUIRE]

        assert runner.remote_commands()[-1] == f"rmdir {DEST}.lock"

    def test_waits_for_held_lock(self, monkeypatch, fake_runner, target, identity):
        attempts = iter([LOCK_HELD_EXIT, LOCK_HELD_EXIT, 0])

        def codes(cmd):
            if cmd[-1].startswith("mkdir"):
                return next(attempts)
            return 0

        runner = _install(monkeypatch, fake_runner(codes))
        transport = ScpTransport(target, identity, lock_attempts=5, lock_wait_max=0)

        with transport.lock():
            pass

        assert runner.remote_commands().count(ACQUIRE) == 3

    def test_gives_up_after_attempts(self, monkeypatch, fake_runner, target, identity):
        runner = _install(
            monkeypatch, fake_runner(
                lambda cmd: LOCK_HELD_EXIT if cmd[-1].startswith("mkdir") else 0
            )
        )
        transport = ScpTransport(target, identity, lock_attempts=2, lock_wait_max=0)

        with pytest.raises(DeployLockHeldError):
            with transport.lock():
                pass

        assert len(runner.calls) == 2
        assert not any(cmd.startswith("rmdir") for cmd in runner.remote_commands())

    def test_connection_error_is_not_retried(
        self, monkeypatch, fake_runner, target, identity
    ):
        runner = _install(monkeypatch, fake_runner(lambda cmd: 255))
        transport = ScpTransport(target, identity, lock_attempts=5, lock_wait_max=0)

        with pytest.raises(TransportError, match="Cannot reach"):
            with transport.lock():
                pass

        assert len(runner.calls) == 1

    def test_released_when_publish_fails(
        self, monkeypatch, fake_runner, target, identity, files
    ):
        runner = _install(
            monkeypatch, fake_runner(lambda cmd: 1 if cmd[0] == "scp" else 0)
        )
        transport = ScpTransport(target, identity, atomic=False)

        with pytest.raises(TransportError):
            with transport.lock():
                transport.publish(files, "run1")

        assert runner.remote_commands()[-1] == f"rmdir {DEST}.lock"

    def test_release_failure_keeps_publish_error(
        self, monkeypatch, fake_runner, target, identity, files
    ):
        def codes(cmd):
            if cmd[0] == "scp" or cmd[-1].startswith("rmdir"):
                return 1
            return 0

        runner = _install(monkeypatch, fake_runner(codes))
        transport = ScpTransport(target, identity, atomic=False)

        with pytest.raises(TransportError, match="scp"):
            with transport.lock():
                transport.publish(files, "run1")

        assert runner.remote_commands()[-1] == f"rmdir {DEST}.lock"

    def test_release_failure_after_success_is_a_warning(
        self, monkeypatch, fake_runner, target, identity, files, caplog
    ):
        _install(
            monkeypatch,
            fake_runner(lambda cmd: 1 if cmd[-1].startswith("rmdir") else 0),
        )
        transport = ScpTransport(target, identity, atomic=False)

        with transport.lock():
            published = transport.publish(files, "run1")

        assert published == ["Programming.html", "Algorithms.html"]
        assert "Could not release deploy lock" in caplog.text

    def test_lock_creation_error_is_not_retried(
        self, monkeypatch, fake_runner, target, identity
    ):
        runner = _install(
            monkeypatch, fake_runner(lambda cmd: 1 if cmd[-1].startswith("mkdir") else 0)
        )
        transport = ScpTransport(target, identity, lock_attempts=5, lock_wait_max=0)

        with pytest.raises(TransportError, match="Cannot create deploy lock"):
            with transport.lock():
                pass

        assert runner.remote_commands() == [ACQUIRE]
