"""Module sequencing: contract, registry, resolver, layout, loader, and driver."""

from lockstep.orchestration.driver import ModuleResult, ModuleStatus, PipelineDriver, PipelineResult
from lockstep.orchestration.layout import PipelineLayout
from lockstep.orchestration.loader import LoadedPipeline, PipelineSpec, load_pipeline
from lockstep.orchestration.modules import ModuleContext, ModuleKind, PipelineModule
from lockstep.orchestration.registry import clear_registry, get_module, list_modules, register_module
from lockstep.orchestration.resolver import DependencyResolver, ResolvedModule, validate_order

__all__ = [
    "DependencyResolver",
    "LoadedPipeline",
    "ModuleContext",
    "ModuleKind",
    "ModuleResult",
    "ModuleStatus",
    "PipelineDriver",
    "PipelineLayout",
    "PipelineModule",
    "PipelineResult",
    "PipelineSpec",
    "ResolvedModule",
    "clear_registry",
    "get_module",
    "list_modules",
    "load_pipeline",
    "register_module",
    "validate_order",
]
