"""
Shared pytest fixtures and configuration for lockstep tests.

This module provides:
- Registry and logging cleanup fixtures for test isolation
- Fast-polling settings so real bash jobs finish in milliseconds
- Temporary pipeline roots with a small input directory
- ``module_factory`` for declaring throwaway modules inside a test

Usage:
    def test_chain(module_factory, layout, settings):
        module_factory("A")
        module_factory("B", requires=["A"])
        ...
"""

import os
import shlex
import sys
from collections.abc import Callable, Generator, Sequence
from pathlib import Path
from typing import Any

import pytest
import structlog

# Ensure lockstep package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from lockstep.core.logging import clear_context
from lockstep.core.settings import LockstepSettings
from lockstep.orchestration.layout import PipelineLayout
from lockstep.orchestration.modules import ModuleContext, ModuleKind, PipelineModule
from lockstep.orchestration.registry import clear_registry, register_module


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_module_registry() -> Generator[None, None, None]:
    """Clear the module registry before and after each test."""
    clear_registry()
    yield
    clear_registry()


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Drop structlog configuration and bound context after each test.

    CLI tests configure logging against the runner's captured streams,
    which are closed once the invocation returns.
    """
    yield
    clear_context()
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def no_lockstep_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the developer's LOCKSTEP_* variables and .env out of settings."""
    for key in list(os.environ):
        if key.startswith("LOCKSTEP_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


# =============================================================================
# Settings and Layout
# =============================================================================


@pytest.fixture
def settings() -> LockstepSettings:
    """Settings that poll fast and kill fast."""
    return LockstepSettings(
        poll_interval_seconds=0.05,
        kill_timeout_seconds=1.0,
        log_tail_lines=5,
    )


@pytest.fixture
def input_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "input"
    directory.mkdir()
    for name in ("sample1.fq", "sample2.fq", "sample3.fq"):
        (directory / name).write_text(f"@{name}\nACGT\n")
    return directory


@pytest.fixture
def pipeline_root(tmp_path: Path) -> Path:
    return tmp_path / "pipeline"


@pytest.fixture
def layout(pipeline_root: Path, input_dir: Path) -> PipelineLayout:
    return PipelineLayout(root=pipeline_root, input_dirs=(input_dir,))


@pytest.fixture
def make_context(tmp_path: Path) -> Callable[..., ModuleContext]:
    """Build a ModuleContext under ``tmp_path`` with its directories created."""

    def _make(name: str = "Align", ordinal: int = 1, input_dirs: Sequence[Path] = ()) -> ModuleContext:
        ctx = ModuleContext(
            ordinal=ordinal,
            name=name,
            module_dir=tmp_path / f"{ordinal:02d}_{name}",
            input_dirs=tuple(input_dirs),
        )
        for directory in (ctx.output_dir, ctx.script_dir, ctx.temp_dir):
            directory.mkdir(parents=True, exist_ok=True)
        return ctx

    return _make


# =============================================================================
# Sample Modules
# =============================================================================


ItemsSpec = Sequence[Sequence[str]] | Callable[[ModuleContext], list[list[str]]]


def _define_module(
    name: str,
    *,
    requires: Sequence[str] = (),
    provides: Sequence[str] = (),
    items: ItemsSpec | None = None,
    kind: ModuleKind = ModuleKind.SCRIPT,
    timeout: float | None = None,
    register: bool = True,
    **attrs: Any,
) -> type[PipelineModule]:
    """Declare a module that writes ``<name>.txt`` listing its inputs.

    ``items`` replaces the default work item; extra keyword arguments become
    class attributes (hook overrides included).
    """

    def build_script(self: PipelineModule, ctx: ModuleContext) -> list[list[str]]:
        if items is None:
            target = shlex.quote(str(ctx.output_dir / f"{name}.txt"))
            sources = " ".join(shlex.quote(str(d)) for d in ctx.input_dirs) or "."
            return [[f"ls {sources} > {target}"]]
        if callable(items):
            return items(ctx)
        return [list(item) for item in items]

    def execute(self: PipelineModule, ctx: ModuleContext) -> None:
        (ctx.output_dir / f"{name}.txt").write_text(f"{name}\n")

    namespace: dict[str, Any] = {
        "provides": tuple(provides),
        "kind": kind,
        "timeout": timeout,
        "build_script": build_script,
        "execute": execute,
        "requires": lambda self: list(requires),
    }
    namespace.update(attrs)
    cls = type(name, (PipelineModule,), namespace)
    if register:
        return register_module(name)(cls)
    cls.name = name
    return cls


@pytest.fixture
def module_factory() -> Callable[..., type[PipelineModule]]:
    return _define_module
