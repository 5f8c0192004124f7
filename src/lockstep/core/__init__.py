"""Core primitives shared by every lockstep package: errors, logging, settings."""

from lockstep.core.errors import (
    ConfigError,
    DependencyResolutionError,
    ExecutionError,
    LockstepError,
    ModuleTimeoutError,
    ResourceMissingError,
    ValidationError,
)
from lockstep.core.logging import LogContext, configure_logging, get_logger
from lockstep.core.settings import BackendKind, LockstepSettings

__all__ = [
    "BackendKind",
    "ConfigError",
    "DependencyResolutionError",
    "ExecutionError",
    "LockstepError",
    "LockstepSettings",
    "LogContext",
    "ModuleTimeoutError",
    "ResourceMissingError",
    "ValidationError",
    "configure_logging",
    "get_logger",
]
