"""Build and publish pipeline.

A run moves through ``idle -> building -> built`` and then either stops in
``skipped`` (push to a non-primary branch) or continues through ``staged ->
deploying -> deployed``. Any error moves the run to ``failed`` and is
re-raised; no step is retried.
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Callable

from pydantic import BaseModel, Field

from ..core.models import BuildArtifact, BuildConfig, DeploymentTarget, PushEvent
from ..rendering import build_all, discover_sources, make_converter
from ..settings import Settings
from .artifact import ArtifactStore
from .credentials import SshIdentity, materialize_credentials
from .transport import ScpTransport, Transport
from .workspace import normalize_permissions, stage_artifact

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    BUILT = "built"
    SKIPPED = "skipped"
    STAGED = "staged"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    FAILED = "failed"


_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.IDLE: {PipelineState.BUILDING},
    PipelineState.BUILDING: {PipelineState.BUILT},
    PipelineState.BUILT: {PipelineState.SKIPPED, PipelineState.STAGED},
    PipelineState.STAGED: {PipelineState.DEPLOYING},
    PipelineState.DEPLOYING: {PipelineState.DEPLOYED},
}

TERMINAL_STATES = {PipelineState.SKIPPED, PipelineState.DEPLOYED, PipelineState.FAILED}


class PipelineStateError(Exception):
    """Raised on a transition the pipeline does not allow."""


class PipelineResult(BaseModel):
    state: PipelineState
    history: list[PipelineState] = Field(default_factory=list)
    artifact: BuildArtifact | None = None
    deployed: list[str] = Field(default_factory=list)


TransportFactory = Callable[[DeploymentTarget, SshIdentity, Settings], Transport]


def scp_transport(
    target: DeploymentTarget, identity: SshIdentity, settings: Settings
) -> Transport:
    return ScpTransport(
        target,
        identity,
        atomic=settings.atomic_deploy,
        lock_attempts=settings.lock_attempts,
        lock_wait_max=settings.lock_wait_max,
    )


def is_primary_ref(ref: str, primary_branch: str) -> bool:
    return ref in (f"refs/heads/{primary_branch}", primary_branch)


class Pipeline:
    def __init__(
        self,
        settings: Settings,
        *,
        transport_factory: TransportFactory = scp_transport,
        state: PipelineState = PipelineState.IDLE,
    ) -> None:
        self.settings = settings
        self.transport_factory = transport_factory
        self.store = ArtifactStore(settings.artifact_root)
        self.state = state
        self.history: list[PipelineState] = [state]
        self.artifact: BuildArtifact | None = None
        self.deployed: list[str] = []

    def _transition(self, new_state: PipelineState) -> None:
        allowed = _TRANSITIONS.get(self.state, set())
        if new_state is PipelineState.FAILED:
            allowed = set() if self.state in TERMINAL_STATES else {new_state}
        if new_state not in allowed:
            raise PipelineStateError(
                f"Cannot move from {self.state.value} to {new_state.value}"
            )
        logger.info("==> %s", new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def _fail(self) -> None:
        if self.state not in TERMINAL_STATES:
            self._transition(PipelineState.FAILED)

    def result(self) -> PipelineResult:
        return PipelineResult(
            state=self.state,
            history=list(self.history),
            artifact=self.artifact,
            deployed=list(self.deployed),
        )

    def build(self, *, upload: bool = True) -> PipelineResult:
        self._transition(PipelineState.BUILDING)
        try:
            settings = self.settings
            config = BuildConfig(
                sources=discover_sources(settings.source_dir, settings.source_pattern),
                output_dir=settings.resolved_output_dir,
                file_mode=settings.file_mode,
            )
            converter = make_converter(
                settings.converter,
                template_path=settings.template_path,
                lang=settings.lang,
            )
            artifact = build_all(config, converter, settings.artifact_name)
            if upload:
                artifact = self.store.upload(artifact.name, artifact.files)
            self.artifact = artifact
        except Exception:
            self._fail()
            raise
        self._transition(PipelineState.BUILT)
        return self.result()

    def deploy(self, event: PushEvent) -> PipelineResult:
        settings = self.settings
        if not is_primary_ref(event.ref, settings.primary_branch):
            logger.info(
                "Push to %r is not on %r; skipping deploy",
                event.ref,
                settings.primary_branch,
            )
            self._transition(PipelineState.SKIPPED)
            return self.result()

        try:
            files = stage_artifact(
                self.store, settings.artifact_name, settings.workspace_dir
            )
            self._transition(PipelineState.STAGED)

            target = settings.deployment_target()
            normalize_permissions(files, target.file_mode)
            with materialize_credentials(
                settings.ssh_dir, settings.ssh_private_key, settings.known_hosts
            ) as identity:
                self._transition(PipelineState.DEPLOYING)
                transport = self.transport_factory(target, identity, settings)
                run_id = event.run_id or uuid.uuid4().hex[:12]
                with transport.lock():
                    self.deployed = transport.publish(files, run_id)
        except Exception:
            self._fail()
            raise
        self._transition(PipelineState.DEPLOYED)
        logger.info(
            "Deployed %d file(s) to %s:%s",
            len(self.deployed),
            target.login,
            target.directory,
        )
        return self.result()

    def run(self, event: PushEvent) -> PipelineResult:
        self.build()
        return self.deploy(event)
