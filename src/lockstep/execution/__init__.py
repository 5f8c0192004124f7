"""Script generation, backend dispatch, and job monitoring."""

from lockstep.execution.backends import (
    BackendOps,
    backend_ops,
    build_launch_command,
    container_image,
    resolve_executable,
    select_backend,
)
from lockstep.execution.markers import MarkerState, ModuleMarkers
from lockstep.execution.monitor import Job, JobMonitor, JobState
from lockstep.execution.scripts import ScriptMaterializer, ScriptSet, find_main_script, indent_lines

__all__ = [
    "BackendOps",
    "Job",
    "JobMonitor",
    "JobState",
    "MarkerState",
    "ModuleMarkers",
    "ScriptMaterializer",
    "ScriptSet",
    "backend_ops",
    "build_launch_command",
    "container_image",
    "find_main_script",
    "indent_lines",
    "resolve_executable",
    "select_backend",
]
