from .artifact import ArtifactError, ArtifactStore
from .credentials import CredentialsError, SshIdentity, materialize_credentials
from .pipeline import (
    Pipeline,
    PipelineResult,
    PipelineState,
    PipelineStateError,
    is_primary_ref,
)
from .transport import DeployLockHeldError, ScpTransport, TransportError
from .workspace import normalize_permissions, stage_artifact, wipe_workspace

__all__ = [
    "ArtifactError",
    "ArtifactStore",
    "CredentialsError",
    "DeployLockHeldError",
    "Pipeline",
    "PipelineResult",
    "PipelineState",
    "PipelineStateError",
    "ScpTransport",
    "SshIdentity",
    "TransportError",
    "is_primary_ref",
    "materialize_credentials",
    "normalize_permissions",
    "stage_artifact",
    "wipe_workspace",
]
