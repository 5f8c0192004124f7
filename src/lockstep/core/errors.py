"""
Structured error types for lockstep.

Every failure the engine can surface is a ``LockstepError`` carrying a
category, the failing module (when there is one), a captured tail of the
failing script's output, and the underlying cause.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                        LockstepError                             │
        │        (category, context, cause)                                │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError              DependencyResolutionError              │
        │  (CONFIG)                 (DEPENDENCY)                           │
        │     │                        │                                   │
        │  MissingConfigError       UnresolvableDependencyError            │
        │  InvalidConfigError       CyclicDependencyError                  │
        │                           DependencyOrderError                   │
        │                                                                  │
        │  ResourceMissingError     ExecutionError      ValidationError    │
        │  (RESOURCE)               (EXECUTION)         (VALIDATION)       │
        │     │                        │                                   │
        │  MissingExecutableError   ModuleTimeoutError                     │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    - ConfigError and DependencyResolutionError abort the whole pipeline
      before any script is materialized.
    - ResourceMissingError, ExecutionError, ModuleTimeoutError and
      ValidationError fail the current module; the driver then halts the
      chain.

Examples:
    >>> error = ExecutionError("Script exited with status 1")
    >>> error.with_context(module="B", exit_code=1).context.module
    'B'
    >>> error.to_dict()["category"]
    'EXECUTION'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    CONFIG = "CONFIG"
    DEPENDENCY = "DEPENDENCY"
    RESOURCE = "RESOURCE"
    EXECUTION = "EXECUTION"
    TIMEOUT = "TIMEOUT"
    VALIDATION = "VALIDATION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured context attached to an error.

    Attributes:
        module: Identifier of the failing module
        ordinal: Position of the module in the resolved order
        script: Script that was running when the error happened
        exit_code: Process exit code, when one is known
        log_tail: Last lines of the captured script output
        metadata: Anything else worth reporting
    """

    module: str | None = None
    ordinal: int | None = None
    script: str | None = None
    exit_code: int | None = None
    log_tail: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key in ("module", "ordinal", "script", "exit_code"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.log_tail:
            result["log_tail"] = list(self.log_tail)
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        return result


class LockstepError(Exception):
    """
    Base exception for all lockstep errors.

    Subclasses set ``default_category``; callers may override it per
    instance. ``with_context()`` adds metadata fluently, unknown keys land in
    ``context.metadata``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    @property
    def module(self) -> str | None:
        return self.context.module

    def with_context(self, **kwargs: Any) -> LockstepError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        if self.context.module:
            return f"[{self.context.module}] {self.message}"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(LockstepError):
    """Missing or invalid configuration. Caught before any module runs."""

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Missing required configuration: {key}")


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# DEPENDENCY RESOLUTION ERRORS
# =============================================================================


class DependencyResolutionError(LockstepError):
    """The module order cannot be resolved. Caught before execution begins."""

    default_category = ErrorCategory.DEPENDENCY


class UnresolvableDependencyError(DependencyResolutionError):
    """A required capability has no registered provider."""

    def __init__(self, module: str, capability: str, message: str | None = None):
        self.capability = capability
        super().__init__(
            message or f"No provider registered for capability '{capability}' required by '{module}'",
            context=ErrorContext(module=module),
        )


class CyclicDependencyError(DependencyResolutionError):
    """Satisfying a requirement would make a module depend on itself."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        cycle_str = " -> ".join(cycle)
        super().__init__(
            f"Cycle detected in module dependencies: {cycle_str}",
            context=ErrorContext(module=cycle[0] if cycle else None),
        )


class DependencyOrderError(DependencyResolutionError):
    """A provider is declared, but only after the module that needs it."""

    def __init__(self, module: str, capability: str, provider: str):
        self.capability = capability
        self.provider = provider
        super().__init__(
            f"'{module}' requires '{capability}', but its provider '{provider}' "
            f"is declared later in the pipeline; move '{provider}' before '{module}'",
            context=ErrorContext(module=module),
        )


# =============================================================================
# RESOURCE ERRORS
# =============================================================================


class ResourceMissingError(LockstepError):
    """A template or support file the module needs is absent."""

    default_category = ErrorCategory.RESOURCE

    def __init__(self, message: str, *, path: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.path = path


class MissingExecutableError(ResourceMissingError):
    """An interpreter or tool cannot be resolved from settings or PATH."""

    def __init__(self, executable: str, message: str | None = None):
        self.executable = executable
        super().__init__(
            message or f"Executable '{executable}' is not configured and was not found on PATH",
            path=executable,
        )


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class ExecutionError(LockstepError):
    """A module script failed: non-zero exit, failure marker, or launch error."""

    default_category = ErrorCategory.EXECUTION


class ModuleTimeoutError(ExecutionError):
    """A module exceeded its timeout and was terminated by the engine."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, message: str, *, timeout_minutes: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout_minutes = timeout_minutes


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(LockstepError):
    """A module-declared post-condition or structural rule is unmet."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        return result


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "LockstepError",
    "ConfigError",
    "MissingConfigError",
    "InvalidConfigError",
    "DependencyResolutionError",
    "UnresolvableDependencyError",
    "CyclicDependencyError",
    "DependencyOrderError",
    "ResourceMissingError",
    "MissingExecutableError",
    "ExecutionError",
    "ModuleTimeoutError",
    "ValidationError",
]
