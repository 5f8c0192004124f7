"""
Dependency Resolver - turns the declared module list into a runnable order.

Modules declare the capabilities they need (``requires()``), never concrete
module names. The resolver walks the declared order and, for each unmet
requirement:

1. Looks at the modules already placed earlier; an upstream provider wins
2. Refuses a provider that the user declared *later* (DependencyOrderError)
3. Otherwise looks the capability up in the ``providers`` table and inserts
   that module immediately before the dependent, resolving the provider's
   own requirements first

Design Principles:
- No execution, no filesystem access
- Providers are configuration data, never discovered by type inspection
- Clear error messages for all failure modes
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import structlog

from lockstep.core.errors import (
    CyclicDependencyError,
    DependencyOrderError,
    DependencyResolutionError,
    UnresolvableDependencyError,
)
from lockstep.orchestration.modules import PipelineModule
from lockstep.orchestration.registry import get_module, is_registered

logger = structlog.get_logger()


@dataclass(frozen=True)
class ResolvedModule:
    """A module with its final position in the chain."""

    module: PipelineModule
    ordinal: int
    predecessor: str | None = None

    @property
    def name(self) -> str:
        return self.module.name

    @property
    def dir_name(self) -> str:
        return f"{self.ordinal:02d}_{self.module.name}"


class DependencyResolver:
    """
    Resolves declared modules into a linear, dependency-respecting order.

    Example:
        resolver = DependencyResolver(providers={"normalized": "Normalize"})
        order = resolver.resolve([Import(), Report()])
        # Report requires "normalized", so Normalize is inserted before it
        [r.name for r in order]  # ["Import", "Normalize", "Report"]
    """

    def __init__(self, providers: Mapping[str, str] | None = None):
        self.providers = dict(providers or {})

    def resolve(self, declared: Sequence[PipelineModule]) -> list[ResolvedModule]:
        """
        Resolve *declared* into the final order.

        Raises:
            UnresolvableDependencyError: No provider for a required capability
            CyclicDependencyError: A module would depend on itself
            DependencyOrderError: The provider is declared after its dependent
        """
        logger.debug(
            "resolver.start",
            declared=[m.name for m in declared],
            providers=len(self.providers),
        )

        placed: list[PipelineModule] = []
        for index, module in enumerate(declared):
            self._place(module, placed, stack=[], later=declared[index + 1 :])

        order = [
            ResolvedModule(
                module=module,
                ordinal=ordinal,
                predecessor=placed[ordinal - 1].name if ordinal > 0 else None,
            )
            for ordinal, module in enumerate(placed)
        ]

        inserted = [m.name for m in placed if m not in declared]
        logger.info(
            "resolver.resolved",
            order=[r.name for r in order],
            inserted=inserted,
        )
        return order

    def _place(
        self,
        module: PipelineModule,
        placed: list[PipelineModule],
        stack: list[str],
        later: Sequence[PipelineModule],
    ) -> None:
        if module.name in stack:
            raise CyclicDependencyError(stack[stack.index(module.name) :] + [module.name])
        stack.append(module.name)

        for capability in module.requires():
            if _provider_in(capability, placed) is not None:
                continue

            declared_later = _provider_in(capability, later)
            if declared_later is not None:
                raise DependencyOrderError(module.name, capability, declared_later.name)

            provider = self._instantiate_provider(module.name, capability)
            logger.debug(
                "resolver.insert_provider",
                module=module.name,
                capability=capability,
                provider=provider.name,
            )
            self._place(provider, placed, stack, later)

        stack.pop()
        placed.append(module)

    def _instantiate_provider(self, dependent: str, capability: str) -> PipelineModule:
        provider_id = self.providers.get(capability)
        if provider_id is None and is_registered(capability):
            provider_id = capability
        if provider_id is None:
            raise UnresolvableDependencyError(dependent, capability)

        try:
            provider = get_module(provider_id)()
        except KeyError as exc:
            raise UnresolvableDependencyError(
                dependent,
                capability,
                f"Provider '{provider_id}' for capability '{capability}' is not a registered module",
            ) from exc

        if capability not in provider.capabilities:
            raise UnresolvableDependencyError(
                dependent,
                capability,
                f"Module '{provider.name}' is registered as provider of '{capability}' but does not provide it",
            )
        return provider


def _provider_in(capability: str, modules: Sequence[PipelineModule]) -> PipelineModule | None:
    for module in modules:
        if capability in module.capabilities:
            return module
    return None


def validate_order(order: Sequence[ResolvedModule]) -> None:
    """
    Check that *order* is a valid chain.

    Ordinals must be 0..n-1 in sequence and every requirement must be
    satisfied by a module placed earlier.
    """
    for expected, resolved in enumerate(order):
        if resolved.ordinal != expected:
            raise DependencyResolutionError(
                f"Module '{resolved.name}' has ordinal {resolved.ordinal}, expected {expected}"
            )
        earlier = [r.module for r in order[:expected]]
        for capability in resolved.module.requires():
            if _provider_in(capability, earlier) is not None:
                continue
            later = _provider_in(capability, [r.module for r in order[expected:]])
            if later is not None and later is not resolved.module:
                raise DependencyOrderError(resolved.name, capability, later.name)
            raise UnresolvableDependencyError(resolved.name, capability)


__all__ = [
    "DependencyResolver",
    "ResolvedModule",
    "validate_order",
]
