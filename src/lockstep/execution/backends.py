"""Execution backend adapter.

Every module's main script runs through one of three backends. They differ
in three things only, so each is a row in one operation table:

    ============  ==========================  =============================  ========
    backend       preamble (script lines)     launch (argv)                  detached
    ============  ==========================  =============================  ========
    direct        none                        <interpreter> <main>           no
    cluster       job header, module load,    <submit_command template>      yes
                  prologue
    container     none                        <runtime> run [--rm] -v ...    no
                                              -w <script_dir> <image>
                                              bash <main>
    ============  ==========================  =============================  ========

A detached launch returns as soon as the job is queued; the monitor then
waits for the main script's completion marker instead of the exit code.
"""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from lockstep.core.errors import InvalidConfigError, MissingExecutableError
from lockstep.core.settings import BackendKind, LockstepSettings

if TYPE_CHECKING:
    from lockstep.orchestration.modules import ModuleContext, PipelineModule


@dataclass(frozen=True)
class BackendOps:
    """Operations one backend supplies."""

    preamble: Callable[[LockstepSettings], list[str]]
    launch: Callable[[PipelineModule, ModuleContext, Path, LockstepSettings], list[str]]
    detached: bool = False


def resolve_executable(name: str, settings: LockstepSettings) -> str:
    """Absolute path for *name*: ``settings.executables`` first, then PATH."""
    configured = settings.executables.get(name)
    if configured:
        if not Path(configured).is_file():
            raise MissingExecutableError(
                name, f"Executable '{name}' is configured as '{configured}', which does not exist"
            )
        return configured

    found = shutil.which(name)
    if found is None:
        raise MissingExecutableError(name)
    return found


def container_image(module: PipelineModule, settings: LockstepSettings) -> str:
    """``[owner/]name:tag`` for *module*."""
    container = settings.container
    name = container.image_name or module.container_image or module.name.lower()
    if container.image_owner:
        name = f"{container.image_owner}/{name}"
    return f"{name}:{container.image_tag}"


# ---------------------------------------------------------------------------
# Direct
# ---------------------------------------------------------------------------


def _no_preamble(settings: LockstepSettings) -> list[str]:
    return []


def _direct_launch(
    module: PipelineModule, ctx: ModuleContext, main_script: Path, settings: LockstepSettings
) -> list[str]:
    return [resolve_executable(module.interpreter, settings), str(main_script)]


# ---------------------------------------------------------------------------
# Cluster
# ---------------------------------------------------------------------------


def _cluster_preamble(settings: LockstepSettings) -> list[str]:
    cluster = settings.cluster
    lines = list(cluster.job_header)
    lines.extend(f"module load {name}" for name in cluster.environment_modules)
    lines.extend(cluster.prologue)
    return lines


def _expand_template(template: str, key: str, **values: str) -> list[str]:
    try:
        tokens = [token.format(**values) for token in shlex.split(template)]
    except (KeyError, IndexError, ValueError) as exc:
        raise InvalidConfigError(key, template, f"Invalid {key} template {template!r}: {exc}") from exc
    if not tokens:
        raise InvalidConfigError(key, template, f"{key} is empty")
    return tokens


def _cluster_launch(
    module: PipelineModule, ctx: ModuleContext, main_script: Path, settings: LockstepSettings
) -> list[str]:
    argv = _expand_template(
        settings.cluster.submit_command,
        "cluster.submit_command",
        script=str(main_script),
        name=f"{ctx.prefix}_{module.name}",
        module_dir=str(ctx.module_dir),
    )
    argv[0] = resolve_executable(argv[0], settings)
    return argv


def cancel_command(settings: LockstepSettings, job_id: str) -> list[str] | None:
    """Cancel argv for a submitted cluster job, or None when not configured."""
    template = settings.cluster.cancel_command
    if not template:
        return None
    argv = _expand_template(template, "cluster.cancel_command", job_id=job_id)
    argv[0] = resolve_executable(argv[0], settings)
    return argv


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------


def _container_launch(
    module: PipelineModule, ctx: ModuleContext, main_script: Path, settings: LockstepSettings
) -> list[str]:
    container = settings.container
    cmd = [resolve_executable(container.runtime, settings), "run"]
    if not container.save_container_on_exit:
        cmd.append("--rm")

    # Host paths are mounted at the same location so generated scripts work unchanged
    volumes: list[Path] = []
    for directory in (*ctx.input_dirs, ctx.module_dir):
        if directory not in volumes:
            volumes.append(directory)
    for directory in volumes:
        cmd.extend(["-v", f"{directory}:{directory}"])

    cmd.extend(["-w", str(ctx.script_dir)])
    cmd.append(container_image(module, settings))
    cmd.extend(["bash", str(main_script)])
    return cmd


_BACKENDS: dict[BackendKind, BackendOps] = {
    BackendKind.DIRECT: BackendOps(preamble=_no_preamble, launch=_direct_launch),
    BackendKind.CLUSTER: BackendOps(preamble=_cluster_preamble, launch=_cluster_launch, detached=True),
    BackendKind.CONTAINER: BackendOps(preamble=_no_preamble, launch=_container_launch),
}


def backend_ops(kind: BackendKind) -> BackendOps:
    return _BACKENDS[kind]


def select_backend(module: PipelineModule, settings: LockstepSettings) -> BackendKind:
    """The module's preferred backend unless settings force one globally."""
    return settings.backend or module.backend


def build_launch_command(
    kind: BackendKind,
    module: PipelineModule,
    ctx: ModuleContext,
    main_script: Path,
    settings: LockstepSettings,
) -> list[str]:
    """Argument vector that starts *main_script* on backend *kind*.

    Raises:
        MissingExecutableError: The interpreter, submit tool, or runtime is missing
        InvalidConfigError: The cluster submit template cannot be expanded
    """
    return _BACKENDS[kind].launch(module, ctx, main_script, settings)


__all__ = [
    "BackendOps",
    "backend_ops",
    "build_launch_command",
    "cancel_command",
    "container_image",
    "resolve_executable",
    "select_backend",
]
