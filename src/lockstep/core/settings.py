"""Engine settings for lockstep.

All tunables the engine reads at runtime live on ``LockstepSettings``: the
script batching and fan-out knobs, the indentation tokens, monitor polling
and kill timings, and the per-backend sections for cluster submission and
container runs.

Settings are immutable once built. The CLI builds one instance (env vars
with the ``LOCKSTEP_`` prefix, ``.env``, then the ``settings:`` section of
the pipeline file on top) and passes it explicitly to every component.

Examples:
    >>> settings = LockstepSettings(script_batch_size=10, worker_threads=2)
    >>> settings.cluster.submit_command
    'qsub {script}'
    >>> settings.with_overrides(worker_threads=4).worker_threads
    4
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendKind(str, Enum):
    """Where a module's main script runs."""

    DIRECT = "direct"  # Local child process
    CLUSTER = "cluster"  # Batch-system submission
    CONTAINER = "container"  # docker/podman run


class ContainerSettings(BaseModel):
    """Container backend configuration."""

    model_config = ConfigDict(frozen=True)

    runtime: str = Field(default="docker", description="Container runtime executable (docker, podman)")
    image_owner: str | None = Field(default=None, description="Registry owner prefix for module images")
    image_name: str | None = Field(default=None, description="Image name override for every module")
    image_tag: str = Field(default="latest", description="Image tag")
    save_container_on_exit: bool = Field(default=False, description="Omit --rm so stopped containers remain")


class ClusterSettings(BaseModel):
    """Cluster (batch scheduler) backend configuration."""

    model_config = ConfigDict(frozen=True)

    submit_command: str = Field(
        default="qsub {script}",
        description="Submission template; {script}, {name} and {module_dir} are substituted",
    )
    cancel_command: str | None = Field(
        default=None,
        description="Cancel template run on timeout; {job_id} is the last token the submission printed",
    )
    job_header: list[str] = Field(default_factory=list, description="Scheduler directive lines (#PBS ...)")
    environment_modules: list[str] = Field(default_factory=list, description="Names passed to 'module load'")
    prologue: list[str] = Field(default_factory=list, description="Extra shell lines run before the body")


class LockstepSettings(BaseSettings):
    """Engine-wide settings.

    Fields
    ──────
    executables            : Interpreter/tool name -> absolute path
    default_timeout_minutes: Timeout used when a module declares none (None = no deadline)
    script_batch_size      : Work items per worker script
    worker_threads         : Worker scripts the main script runs concurrently
    script_permissions     : Octal mode applied to generated scripts
    poll_interval_seconds  : Monitor polling period
    kill_timeout_seconds   : Grace period between SIGTERM and SIGKILL
    log_tail_lines         : Output lines copied into failure markers and errors
    halt_on_failure        : Stop the chain at the first failed module
    delete_temp_files      : Remove module temp dirs after a successful pipeline
    backend                : Global backend override (None = per-module preference)
    """

    model_config = SettingsConfigDict(
        env_prefix="LOCKSTEP_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ── Interpreters ─────────────────────────────────────────────
    executables: dict[str, str] = Field(default_factory=dict)

    # ── Scripts ──────────────────────────────────────────────────
    script_batch_size: int = Field(default=1, ge=1)
    worker_threads: int = Field(default=1, ge=1)
    script_permissions: str = "770"
    script_header: str = "#!/bin/bash"
    indent: str = "   "
    block_open_tokens: tuple[str, ...] = ("{", "then", "do")
    block_close_tokens: tuple[str, ...] = ("}", "fi", "done")

    # ── Monitoring ───────────────────────────────────────────────
    default_timeout_minutes: float | None = Field(default=None, gt=0)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    kill_timeout_seconds: float = Field(default=10.0, ge=0)
    log_tail_lines: int = Field(default=20, ge=0)

    # ── Pipeline policy ──────────────────────────────────────────
    halt_on_failure: bool = True
    delete_temp_files: bool = False

    # ── Backends ─────────────────────────────────────────────────
    backend: BackendKind | None = None
    container: ContainerSettings = Field(default_factory=ContainerSettings)
    cluster: ClusterSettings = Field(default_factory=ClusterSettings)

    @field_validator("script_permissions")
    @classmethod
    def _octal_mode(cls, value: str) -> str:
        try:
            mode = int(value, 8)
        except ValueError as exc:
            raise ValueError(f"script_permissions must be an octal string, got {value!r}") from exc
        if not 0 <= mode <= 0o7777:
            raise ValueError(f"script_permissions out of range: {value!r}")
        return value

    @property
    def script_mode(self) -> int:
        return int(self.script_permissions, 8)

    def with_overrides(self, **overrides: Any) -> LockstepSettings:
        """Return a copy with *overrides* applied on top, re-validated."""
        if not overrides:
            return self
        data = self.model_dump()
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value
        return LockstepSettings.model_validate(data)


__all__ = [
    "BackendKind",
    "ClusterSettings",
    "ContainerSettings",
    "LockstepSettings",
]
