from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.models import DeploymentTarget


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="NOTESPUB_", case_sensitive=False, populate_by_name=True
    )

    # Build
    source_dir: Path = Path(".")
    output_dir: Path | None = None
    source_pattern: str = "*.md"
    converter: Literal["markdown", "pandoc"] = "markdown"
    template_path: Path | None = None
    lang: str = "en"
    file_mode: int = 0o644

    # Artifact staging
    artifact_root: Path = Path(".artifacts")
    artifact_name: str = "notes-html"
    workspace_dir: Path = Path("deploy-workspace")

    # Deployment
    primary_branch: str = "main"
    remote_user: str = "webmaster"
    remote_host: str = "comrade.one"
    remote_path: str = "/srv/www/comrade.one/notes/"
    remote_file_mode: int = 0o644
    atomic_deploy: bool = True
    lock_attempts: int = 6
    lock_wait_max: float = 30.0

    # Credentials
    ssh_dir: Path = Field(default_factory=lambda: Path.home() / ".ssh")
    ssh_private_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "NOTESPUB_SSH_PRIVATE_KEY", "DEPLOY_SSH_PRIVATE_KEY"
        ),
    )
    known_hosts: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "NOTESPUB_KNOWN_HOSTS", "DEPLOY_KNOWN_HOSTS"
        ),
    )

    @field_validator("file_mode", "remote_file_mode", mode="before")
    @classmethod
    def _parse_octal_mode(cls, value: object) -> object:
        # Environment values such as "0644" are octal, not decimal.
        if isinstance(value, str):
            return int(value, 8)
        return value

    @property
    def resolved_output_dir(self) -> Path:
        return self.output_dir if self.output_dir is not None else self.source_dir

    def deployment_target(self) -> DeploymentTarget:
        return DeploymentTarget(
            user=self.remote_user,
            host=self.remote_host,
            path=self.remote_path,
            file_mode=self.remote_file_mode,
        )
