"""
lockstep - ordered pipeline runner for script-producing modules.

Modules form a single chain: each module's output directory is the next
module's input. Every module writes bash scripts that run directly, on a
batch cluster, or in a container, and on-disk markers let a rerun pick up
where the last one stopped.

    from lockstep import DependencyResolver, PipelineDriver, PipelineLayout

    order = DependencyResolver(providers).resolve(modules)
    result = PipelineDriver(settings, PipelineLayout(root, inputs)).run(order)
"""

from lockstep.core.errors import LockstepError
from lockstep.core.settings import BackendKind, LockstepSettings
from lockstep.orchestration import (
    DependencyResolver,
    ModuleContext,
    ModuleKind,
    ModuleStatus,
    PipelineDriver,
    PipelineLayout,
    PipelineModule,
    PipelineResult,
    load_pipeline,
    register_module,
)

__version__ = "0.1.0"

__all__ = [
    "BackendKind",
    "DependencyResolver",
    "LockstepError",
    "LockstepSettings",
    "ModuleContext",
    "ModuleKind",
    "ModuleStatus",
    "PipelineDriver",
    "PipelineLayout",
    "PipelineModule",
    "PipelineResult",
    "load_pipeline",
    "register_module",
]
