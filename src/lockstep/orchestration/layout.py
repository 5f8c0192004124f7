"""Pipeline directory layout.

    <root>/
        lockstepComplete
        summary.txt
        00_Import/{output,script,temp}/
        01_Normalize/{output,script,temp}/

Module N reads module N-1's ``output`` directory; module 0 reads the
pipeline's configured input directories.
"""

from __future__ import annotations

import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from lockstep.core.logging import get_logger
from lockstep.execution.markers import MarkerState, ModuleMarkers, pipeline_marker
from lockstep.orchestration.modules import ModuleContext
from lockstep.orchestration.resolver import ResolvedModule

logger = get_logger(__name__)

SUMMARY_FILE = "summary.txt"


@dataclass(frozen=True)
class PipelineLayout:
    """Directory plan for one pipeline root."""

    root: Path
    input_dirs: tuple[Path, ...] = ()

    @property
    def complete_marker(self) -> Path:
        return pipeline_marker(self.root)

    @property
    def summary_path(self) -> Path:
        return self.root / SUMMARY_FILE

    def module_dir(self, resolved: ResolvedModule) -> Path:
        return self.root / resolved.dir_name

    def context(self, resolved: ResolvedModule, input_dirs: Sequence[Path] | None = None) -> ModuleContext:
        """Context for *resolved*; input defaults to the pipeline inputs."""
        return ModuleContext(
            ordinal=resolved.ordinal,
            name=resolved.name,
            module_dir=self.module_dir(resolved),
            input_dirs=tuple(input_dirs if input_dirs is not None else self.input_dirs),
            predecessor=resolved.predecessor,
        )

    def contexts(self, order: Sequence[ResolvedModule]) -> list[ModuleContext]:
        """Contexts for the whole chain, each wired to its predecessor's output."""
        result: list[ModuleContext] = []
        for resolved in order:
            inputs = (result[-1].output_dir,) if result else self.input_dirs
            result.append(self.context(resolved, inputs))
        return result

    def prepare(self, ctx: ModuleContext) -> None:
        for directory in (ctx.output_dir, ctx.script_dir, ctx.temp_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def markers(self, resolved: ResolvedModule) -> ModuleMarkers:
        return ModuleMarkers(self.module_dir(resolved))

    def status(self, order: Sequence[ResolvedModule]) -> list[tuple[ResolvedModule, MarkerState]]:
        return [(resolved, self.markers(resolved).state()) for resolved in order]

    def reset(self, order: Sequence[ResolvedModule], name: str) -> list[str]:
        """Clear markers of module *name* and every module after it.

        Returns the names of the modules that were reset.

        Raises:
            KeyError: *name* is not in the order
        """
        names = [r.name for r in order]
        if name not in names:
            raise KeyError(f"Module '{name}' is not part of this pipeline. Modules: {', '.join(names)}")

        reset: list[str] = []
        for resolved in order[names.index(name) :]:
            self.markers(resolved).clear()
            reset.append(resolved.name)
        self.complete_marker.unlink(missing_ok=True)
        logger.info("layout.reset", modules=reset)
        return reset

    def remove_temp_dirs(self, contexts: Sequence[ModuleContext]) -> None:
        for ctx in contexts:
            if ctx.temp_dir.exists():
                shutil.rmtree(ctx.temp_dir)
                logger.debug("layout.temp_removed", module=ctx.name)


__all__ = [
    "SUMMARY_FILE",
    "PipelineLayout",
]
