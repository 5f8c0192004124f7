"""Module contract.

A pipeline module is the unit the engine sequences. The engine never looks
inside a module; it only calls the hooks on ``PipelineModule``:

    check_dependencies   validate config before anything runs
    build_script         work items, one list of shell lines per item
    worker_functions     shell functions shared by every worker script
    main_script          optional custom main body
    template_files       support files copied into the script directory
    verify_output        post-condition checked after a successful run
    summary              short text for the pipeline summary
    execute              body of an in-process module

Script modules (``ModuleKind.SCRIPT``) produce bash scripts that a backend
runs. In-process modules (``ModuleKind.IN_PROCESS``) run ``execute()`` inside
the engine and share the same markers.
"""

from __future__ import annotations

from abc import ABC
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from lockstep.core.errors import ValidationError
from lockstep.core.settings import BackendKind, LockstepSettings
from lockstep.execution.markers import failure_markers

OUTPUT_DIR = "output"
SCRIPT_DIR = "script"
TEMP_DIR = "temp"


class ModuleKind(str, Enum):
    """How the driver runs a module."""

    SCRIPT = "script"
    IN_PROCESS = "in_process"


@dataclass(frozen=True)
class ModuleContext:
    """Where a module lives on disk and what it reads.

    Attributes:
        ordinal: Position in the resolved order, starting at 0
        name: Registered module identifier
        module_dir: ``<root>/<NN>_<name>``
        input_dirs: Predecessor's output dir, or the pipeline inputs for the first module
        predecessor: Identifier of the module that feeds this one
    """

    ordinal: int
    name: str
    module_dir: Path
    input_dirs: tuple[Path, ...] = ()
    predecessor: str | None = None

    @property
    def output_dir(self) -> Path:
        return self.module_dir / OUTPUT_DIR

    @property
    def script_dir(self) -> Path:
        return self.module_dir / SCRIPT_DIR

    @property
    def temp_dir(self) -> Path:
        return self.module_dir / TEMP_DIR

    @property
    def prefix(self) -> str:
        """Zero-padded ordinal used in directory and script names."""
        return f"{self.ordinal:02d}"

    def input_files(self) -> list[Path]:
        """Regular files in the input directories, sorted by name per directory."""
        files: list[Path] = []
        for directory in self.input_dirs:
            if directory.is_dir():
                files.extend(sorted(p for p in directory.iterdir() if p.is_file()))
        return files


class PipelineModule(ABC):
    """Base class for pipeline modules.

    Subclasses register with ``@register_module("Name")`` and override the
    hooks they need. ``options`` carries the per-module settings from the
    pipeline file.
    """

    name: str = ""
    description: str = ""
    kind: ModuleKind = ModuleKind.SCRIPT
    provides: tuple[str, ...] = ()
    interpreter: str = "bash"
    container_image: str | None = None
    backend: BackendKind = BackendKind.DIRECT
    timeout: float | None = None

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        self.options = dict(options or {})
        if "timeout" in self.options:
            self.timeout = self.options["timeout"]
        if "backend" in self.options:
            self.backend = BackendKind(self.options["backend"])

    @property
    def capabilities(self) -> tuple[str, ...]:
        """Everything this module satisfies: its own name plus ``provides``."""
        return (self.name, *self.provides)

    def requires(self) -> list[str]:
        """Capabilities that must be produced earlier in the pipeline."""
        return []

    def check_dependencies(self, ctx: ModuleContext, settings: LockstepSettings) -> None:  # noqa: B027
        """Raise ConfigError when the module cannot run with *settings*."""

    def build_script(self, ctx: ModuleContext) -> list[list[str]]:
        """One list of shell lines per work item. Empty means no workers."""
        return []

    def build_container_script(self, ctx: ModuleContext) -> list[list[str]] | None:
        """Work items for container runs; None falls back to ``build_script``."""
        return None

    def worker_functions(self, ctx: ModuleContext) -> list[str]:
        return []

    def main_script(self, ctx: ModuleContext) -> list[str] | None:
        """Custom main script body; None gets the default worker runner."""
        return None

    def template_files(self, ctx: ModuleContext) -> list[Path]:
        return []

    def timeout_minutes(self, settings: LockstepSettings) -> float | None:
        if self.timeout is not None:
            return float(self.timeout)
        return settings.default_timeout_minutes

    def verify_output(self, ctx: ModuleContext) -> None:  # noqa: B027
        """Raise ValidationError when the output is unusable downstream."""

    def execute(self, ctx: ModuleContext) -> None:
        raise ValidationError(
            f"Module '{self.name}' is declared in-process but does not implement execute()",
            field="kind",
        )

    def summary(self, ctx: ModuleContext) -> str:
        """Output file counts by extension plus any worker failure output."""
        counts: Counter[str] = Counter()
        if ctx.output_dir.is_dir():
            for path in ctx.output_dir.iterdir():
                if path.is_file():
                    counts[path.suffix[1:] if path.suffix else "none"] += 1

        lines = [f"{ctx.prefix}_{self.name}"]
        for ext in sorted(counts):
            lines.append(f"   Generated {counts[ext]} {ext} files")
        if not counts:
            lines.append("   No output files")

        failures = failure_markers(ctx.script_dir)
        if failures:
            lines.append("   Script errors:")
            for marker in failures:
                for text in marker.read_text(encoding="utf-8").splitlines():
                    lines.append(f"      {text}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, kind={self.kind.value})"


__all__ = [
    "ModuleContext",
    "ModuleKind",
    "PipelineModule",
]
