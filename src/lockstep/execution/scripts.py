"""Script materializer.

Turns a module's work items into executable bash scripts in its script
directory::

    script/
        MAIN_03_Align.sh        runs the workers, touches MAIN_03_Align.sh_Success
        03.0_Align.sh           work items 0 .. batch_size-1
        03.1_Align.sh           next batch
        template.R              copied support files

Every script gets the configured header, the backend preamble, and an
indentation pass. The script directory is wiped and rebuilt on each
materialization, so a half-written directory never survives a retry, and
rebuilding from the same inputs yields byte-identical files.
"""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from lockstep.core.errors import ResourceMissingError, ValidationError
from lockstep.core.logging import get_logger
from lockstep.core.settings import BackendKind, LockstepSettings
from lockstep.execution.backends import backend_ops
from lockstep.execution.markers import WORKER_FAILURES, WORKER_STARTED, WORKER_SUCCESS, worker_marker

if TYPE_CHECKING:
    from lockstep.orchestration.modules import ModuleContext, PipelineModule

logger = get_logger(__name__)

MAIN_PREFIX = "MAIN_"
SCRIPT_EXT = ".sh"


class ScriptRole(str, Enum):
    MAIN = "main"
    WORKER = "worker"


@dataclass(frozen=True)
class Script:
    """A generated script and the lines written to it."""

    path: Path
    role: ScriptRole
    lines: tuple[str, ...]


@dataclass(frozen=True)
class ScriptSet:
    """Everything one materialization wrote."""

    main: Script
    workers: tuple[Script, ...] = ()
    templates: tuple[Path, ...] = ()

    @property
    def paths(self) -> list[Path]:
        return [self.main.path, *(w.path for w in self.workers), *self.templates]


def main_script_name(ctx: ModuleContext) -> str:
    return f"{MAIN_PREFIX}{ctx.prefix}_{ctx.name}{SCRIPT_EXT}"


def worker_script_name(ctx: ModuleContext, batch: int) -> str:
    return f"{ctx.prefix}.{batch}_{ctx.name}{SCRIPT_EXT}"


def indent_lines(
    lines: Iterable[str],
    indent: str = "   ",
    open_tokens: Sequence[str] = ("{", "then", "do"),
    close_tokens: Sequence[str] = ("}", "fi", "done"),
) -> list[str]:
    """Re-indent shell lines by block structure.

    The level drops before a line that is exactly a close token and rises
    after a line whose last word is an open token. It never goes below zero.
    """
    level = 0
    result: list[str] = []
    for raw in lines:
        line = raw.strip()
        if line in close_tokens:
            level = max(level - 1, 0)
        result.append(indent * level + line if line else "")
        words = line.split()
        if words and words[-1] in open_tokens:
            level += 1
    return result


def find_main_script(script_dir: Path) -> Path:
    """The single ``MAIN_`` script in *script_dir*.

    Raises:
        ValidationError: Zero or more than one main script exists
    """
    mains: list[Path] = []
    if script_dir.is_dir():
        mains = sorted(
            p
            for p in script_dir.iterdir()
            if p.is_file() and p.name.startswith(MAIN_PREFIX) and not _is_marker(p)
        )
    if len(mains) != 1:
        raise ValidationError(
            f"Expected exactly one {MAIN_PREFIX} script in {script_dir}, found {len(mains)}",
            field="script_dir",
        )
    return mains[0]


def _is_marker(path: Path) -> bool:
    return path.name.endswith((WORKER_STARTED, WORKER_SUCCESS, WORKER_FAILURES)) or path.name.endswith(".log")


def _batches(items: list[list[str]], size: int) -> list[list[list[str]]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class ScriptMaterializer:
    """Writes the scripts for one module.

    Example:
        materializer = ScriptMaterializer(settings)
        scripts = materializer.materialize(module, ctx, BackendKind.DIRECT)
        scripts.main.path  # .../script/MAIN_01_Align.sh
    """

    def __init__(self, settings: LockstepSettings):
        self.settings = settings

    def materialize(self, module: PipelineModule, ctx: ModuleContext, backend: BackendKind) -> ScriptSet:
        """Regenerate *module*'s script directory.

        Raises:
            ResourceMissingError: A declared template file does not exist
        """
        templates = list(module.template_files(ctx))
        missing = [p for p in templates if not Path(p).is_file()]
        if missing:
            raise ResourceMissingError(
                f"Missing template file(s) for '{module.name}': {', '.join(str(p) for p in missing)}",
                path=str(missing[0]),
            ).with_context(module=module.name, ordinal=ctx.ordinal)

        items: list[list[str]] | None = None
        if backend is BackendKind.CONTAINER:
            items = module.build_container_script(ctx)
        if items is None:
            items = module.build_script(ctx)

        preamble = backend_ops(backend).preamble(self.settings)
        functions = list(module.worker_functions(ctx))

        script_dir = ctx.script_dir
        if script_dir.exists():
            shutil.rmtree(script_dir)
        script_dir.mkdir(parents=True)

        workers: list[Script] = []
        for batch, batch_items in enumerate(_batches(list(items), self.settings.script_batch_size)):
            path = script_dir / worker_script_name(ctx, batch)
            body = [*functions]
            for item in batch_items:
                body.extend(item)
            workers.append(self._write(path, ScriptRole.WORKER, self._worker_lines(path, preamble, body)))

        main_path = script_dir / main_script_name(ctx)
        custom = module.main_script(ctx)
        if custom is not None:
            main_lines = self._custom_main_lines(main_path, ctx, preamble, custom)
        else:
            main_lines = self._default_main_lines(main_path, ctx, preamble, [w.path for w in workers])
        main = self._write(main_path, ScriptRole.MAIN, main_lines)

        copied: list[Path] = []
        for template in templates:
            target = script_dir / Path(template).name
            shutil.copy(template, target)
            copied.append(target)

        logger.info(
            "materializer.scripts_written",
            module=module.name,
            backend=backend.value,
            workers=len(workers),
            templates=len(copied),
        )
        return ScriptSet(main=main, workers=tuple(workers), templates=tuple(copied))

    # ------------------------------------------------------------------
    # Script bodies
    # ------------------------------------------------------------------

    def _worker_lines(self, path: Path, preamble: list[str], body: list[str]) -> list[str]:
        return [
            self.settings.script_header,
            *preamble,
            "set -e",
            f"touch {_q(worker_marker(path, WORKER_STARTED))}",
            *body,
            f"touch {_q(worker_marker(path, WORKER_SUCCESS))}",
        ]

    def _custom_main_lines(
        self, path: Path, ctx: ModuleContext, preamble: list[str], body: list[str]
    ) -> list[str]:
        # Any failing body command leaves <main>_Failures
        return [
            self.settings.script_header,
            *preamble,
            "set -eE",
            "function main_failed() {",
            f'echo "Main script failed at line $1 with status $2" > {_q(worker_marker(path, WORKER_FAILURES))}',
            "}",
            "trap 'main_failed $LINENO $?' ERR",
            f"cd {_q(ctx.script_dir)}",
            f"touch {_q(worker_marker(path, WORKER_STARTED))}",
            *body,
            f"touch {_q(worker_marker(path, WORKER_SUCCESS))}",
        ]

    def _default_main_lines(
        self, path: Path, ctx: ModuleContext, preamble: list[str], workers: list[Path]
    ) -> list[str]:
        tail = self.settings.log_tail_lines
        lines = [
            self.settings.script_header,
            *preamble,
            f"cd {_q(ctx.script_dir)}",
            f"touch {_q(worker_marker(path, WORKER_STARTED))}",
            "",
            "function run_worker() {",
            'if ! bash "$1" > "$1.log" 2>&1; then',
            f'tail -n {tail} "$1.log" > "$1{WORKER_FAILURES}"',
            "return 1",
            "fi",
            "}",
            "",
            "function check_failures() {",
            f'for marker in {_q(ctx.script_dir)}/*{WORKER_FAILURES}; do',
            'if [ -e "$marker" ]; then',
            'echo "Worker failed: $marker" >&2',
            "exit 1",
            "fi",
            "done",
            "}",
        ]

        threads = self.settings.worker_threads
        for start in range(0, len(workers), threads):
            lines.append("")
            for worker in workers[start : start + threads]:
                lines.append(f"run_worker {_q(worker)} &")
            lines.append("wait")
            lines.append("check_failures")

        lines.append("")
        lines.append(f"touch {_q(worker_marker(path, WORKER_SUCCESS))}")
        return lines

    def _write(self, path: Path, role: ScriptRole, lines: list[str]) -> Script:
        settings = self.settings
        formatted = indent_lines(
            lines,
            indent=settings.indent,
            open_tokens=settings.block_open_tokens,
            close_tokens=settings.block_close_tokens,
        )
        path.write_text("\n".join(formatted) + "\n", encoding="utf-8")
        path.chmod(settings.script_mode)
        return Script(path=path, role=role, lines=tuple(formatted))


def _q(path: Path | str) -> str:
    return shlex.quote(str(path))


__all__ = [
    "MAIN_PREFIX",
    "Script",
    "ScriptMaterializer",
    "ScriptRole",
    "ScriptSet",
    "find_main_script",
    "indent_lines",
    "main_script_name",
    "worker_script_name",
]
