"""Module registry.

Modules register under a stable identifier with ``@register_module``. A
pipeline file names modules by that identifier or by a dotted
``package.module.ClassName`` path, which is imported on first use.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable

from lockstep.core.errors import InvalidConfigError
from lockstep.core.logging import get_logger
from lockstep.orchestration.modules import PipelineModule

logger = get_logger(__name__)

_registry: dict[str, type[PipelineModule]] = {}


def register_module(name: str) -> Callable[[type[PipelineModule]], type[PipelineModule]]:
    """Decorator to register a module class under *name*."""

    def decorator(cls: type[PipelineModule]) -> type[PipelineModule]:
        if name in _registry and _registry[name] is not cls:
            raise ValueError(f"Module '{name}' is already registered")
        cls.name = name
        _registry[name] = cls
        logger.debug("module_registered", name=name, cls=cls.__name__)
        return cls

    return decorator


def get_module(name: str) -> type[PipelineModule]:
    """Get a module class by registered name or dotted import path."""
    if name in _registry:
        return _registry[name]
    if "." in name:
        return _import_module_class(name)
    available = ", ".join(sorted(_registry)) or "none"
    raise KeyError(f"Module '{name}' not found. Available: {available}")


def is_registered(name: str) -> bool:
    return name in _registry


def list_modules() -> list[str]:
    """List all registered module names."""
    return sorted(_registry.keys())


def clear_registry() -> None:
    """Clear registry (for testing)."""
    _registry.clear()


def _import_module_class(path: str) -> type[PipelineModule]:
    module_path, _, class_name = path.rpartition(".")
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise KeyError(f"Cannot import module '{path}': {exc}") from exc

    cls = getattr(module, class_name, None)
    if cls is None:
        raise KeyError(f"'{module_path}' has no attribute '{class_name}'")
    if not (isinstance(cls, type) and issubclass(cls, PipelineModule)):
        raise InvalidConfigError("modules", path, f"'{path}' is not a PipelineModule subclass")

    if not cls.name:
        cls.name = class_name
    _registry.setdefault(path, cls)
    logger.debug("module_imported", path=path, name=cls.name)
    return cls


__all__ = [
    "clear_registry",
    "get_module",
    "is_registered",
    "list_modules",
    "register_module",
]
