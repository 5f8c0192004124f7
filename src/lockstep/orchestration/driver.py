"""
Pipeline Driver - runs a resolved module chain to completion.

Order of work:
1. Validate the resolved order
2. Run ``check_dependencies`` for every module that is not already complete;
   any ConfigError stops here, before a single script is written
3. For each module in order:
   - completion marker present: skip it and wire its output forward
   - otherwise clear stale markers, run it, verify its output, mark it complete
   - on failure or timeout: record the error and halt the chain
4. Write ``summary.txt`` and, when every module succeeded or was skipped,
   the pipeline completion marker

Module kinds are dispatched through a table: script modules go through the
materializer, a backend, and the job monitor; in-process modules call
``execute()`` directly.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from lockstep.core.errors import ExecutionError, LockstepError, ModuleTimeoutError
from lockstep.core.logging import LogContext, get_logger
from lockstep.core.settings import LockstepSettings
from lockstep.execution.backends import build_launch_command, select_backend
from lockstep.execution.markers import MarkerState, ModuleMarkers
from lockstep.execution.monitor import Job, JobMonitor, JobState
from lockstep.execution.scripts import ScriptMaterializer, find_main_script
from lockstep.orchestration.layout import PipelineLayout
from lockstep.orchestration.modules import ModuleContext, ModuleKind, PipelineModule
from lockstep.orchestration.resolver import ResolvedModule, validate_order

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ModuleStatus(str, Enum):
    """Outcome of one module in one pipeline run."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"  # Completion marker from an earlier run
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    NOT_RUN = "not_run"  # Chain halted before this module

    @property
    def is_ok(self) -> bool:
        return self in (ModuleStatus.SUCCEEDED, ModuleStatus.SKIPPED)


@dataclass
class ModuleResult:
    """What happened to one module."""

    name: str
    ordinal: int
    status: ModuleStatus
    context: ModuleContext
    error: LockstepError | None = None
    job: Job | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "ordinal": self.ordinal,
            "status": self.status.value,
            "module_dir": str(self.context.module_dir),
            "error": self.error.to_dict() if self.error else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class PipelineResult:
    """Aggregate outcome of a pipeline run."""

    root: Path
    modules: list[ModuleResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(m.status.is_ok for m in self.modules)

    @property
    def failed_module(self) -> ModuleResult | None:
        for result in self.modules:
            if result.status in (ModuleStatus.FAILED, ModuleStatus.TIMED_OUT):
                return result
        return None

    def status_of(self, name: str) -> ModuleStatus:
        for result in self.modules:
            if result.name == name:
                return result.status
        raise KeyError(name)

    @property
    def statuses(self) -> dict[str, ModuleStatus]:
        return {m.name: m.status for m in self.modules}

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "succeeded": self.succeeded,
            "modules": [m.to_dict() for m in self.modules],
        }


class PipelineDriver:
    """
    Runs resolved modules one at a time.

    Example:
        driver = PipelineDriver(settings, PipelineLayout(root, input_dirs))
        result = driver.run(DependencyResolver(providers).resolve(modules))
        result.succeeded
    """

    def __init__(
        self,
        settings: LockstepSettings,
        layout: PipelineLayout,
        *,
        materializer: ScriptMaterializer | None = None,
        monitor: JobMonitor | None = None,
    ) -> None:
        self.settings = settings
        self.layout = layout
        self.materializer = materializer or ScriptMaterializer(settings)
        self.monitor = monitor or JobMonitor(settings)
        self._runners: dict[ModuleKind, Callable[[PipelineModule, ModuleContext], Job | None]] = {
            ModuleKind.SCRIPT: self._run_script,
            ModuleKind.IN_PROCESS: self._run_in_process,
        }

    def run(self, order: Sequence[ResolvedModule]) -> PipelineResult:
        """
        Run *order* and return per-module statuses.

        Raises:
            DependencyResolutionError: The order is not a valid chain
            ConfigError: A module's check_dependencies failed
        """
        validate_order(order)
        contexts = self.layout.contexts(order)

        with LogContext(pipeline=str(self.layout.root)):
            self._check_dependencies(order, contexts)

            logger.info("driver.pipeline_started", modules=[r.name for r in order])
            result = PipelineResult(root=self.layout.root)
            halted = False
            for resolved, ctx in zip(order, contexts, strict=True):
                if halted:
                    result.modules.append(
                        ModuleResult(resolved.name, resolved.ordinal, ModuleStatus.NOT_RUN, ctx)
                    )
                    continue

                module_result = self._run_module(resolved.module, ctx)
                result.modules.append(module_result)
                if not module_result.status.is_ok and self.settings.halt_on_failure:
                    halted = True

            self._finish(order, contexts, result)
        return result

    def _check_dependencies(self, order: Sequence[ResolvedModule], contexts: Sequence[ModuleContext]) -> None:
        for resolved, ctx in zip(order, contexts, strict=True):
            if ModuleMarkers(ctx.module_dir).is_complete():
                continue
            try:
                resolved.module.check_dependencies(ctx, self.settings)
            except LockstepError as exc:
                if exc.context.module is None:
                    exc.with_context(module=resolved.name, ordinal=resolved.ordinal)
                logger.error("driver.dependency_check_failed", module=resolved.name, error=exc.message)
                raise

    def _run_module(self, module: PipelineModule, ctx: ModuleContext) -> ModuleResult:
        markers = ModuleMarkers(ctx.module_dir)
        result = ModuleResult(module.name, ctx.ordinal, ModuleStatus.SUCCEEDED, ctx)

        with LogContext(module=module.name, ordinal=ctx.ordinal):
            if markers.is_complete():
                logger.info("driver.module_skipped", reason="complete_marker")
                result.status = ModuleStatus.SKIPPED
                return result

            markers.reset()
            self.layout.prepare(ctx)
            result.started_at = _utcnow()
            logger.info("driver.module_started", kind=module.kind.value)

            try:
                result.job = self._runners[module.kind](module, ctx)
                module.verify_output(ctx)
            except ModuleTimeoutError as exc:
                result.status = ModuleStatus.TIMED_OUT
                result.error = self._record_failure(exc, module, ctx, markers)
            except LockstepError as exc:
                result.status = ModuleStatus.FAILED
                result.error = self._record_failure(exc, module, ctx, markers)
            except Exception as exc:
                # Hook code outside the error taxonomy
                wrapped = ExecutionError(f"{type(exc).__name__}: {exc}", cause=exc)
                result.status = ModuleStatus.FAILED
                result.error = self._record_failure(wrapped, module, ctx, markers)
            else:
                markers.mark_complete()
                logger.info("driver.module_succeeded")

            result.completed_at = _utcnow()
        return result

    def _record_failure(
        self,
        error: LockstepError,
        module: PipelineModule,
        ctx: ModuleContext,
        markers: ModuleMarkers,
    ) -> LockstepError:
        if error.context.module is None:
            error.with_context(module=module.name, ordinal=ctx.ordinal)
        if markers.state() is not MarkerState.FAILED:
            markers.mark_failed(error.message, error.context.log_tail)
        logger.error(
            "driver.module_failed",
            error_type=type(error).__name__,
            category=error.category.value,
            error=error.message,
            log_tail=error.context.log_tail,
        )
        return error

    # ------------------------------------------------------------------
    # Module kinds
    # ------------------------------------------------------------------

    def _run_script(self, module: PipelineModule, ctx: ModuleContext) -> Job:
        backend = select_backend(module, self.settings)
        self.materializer.materialize(module, ctx, backend)
        main_script = find_main_script(ctx.script_dir)
        command = build_launch_command(backend, module, ctx, main_script, self.settings)

        timeout = module.timeout_minutes(self.settings)
        job = self.monitor.launch(command, ctx, main_script, backend)
        state = self.monitor.await_completion(job, timeout)

        if state is JobState.TIMED_OUT:
            raise ModuleTimeoutError(job.reason or "Timed out", timeout_minutes=timeout).with_context(
                module=module.name,
                ordinal=ctx.ordinal,
                script=str(main_script),
                exit_code=job.exit_code,
                log_tail=job.log_tail,
            )
        if state is not JobState.SUCCEEDED:
            raise ExecutionError(job.reason or f"Job ended in state {state.value}").with_context(
                module=module.name,
                ordinal=ctx.ordinal,
                script=str(main_script),
                exit_code=job.exit_code,
                log_tail=job.log_tail,
            )
        return job

    def _run_in_process(self, module: PipelineModule, ctx: ModuleContext) -> None:
        ModuleMarkers(ctx.module_dir).mark_started()
        module.execute(ctx)

    # ------------------------------------------------------------------
    # Wrap-up
    # ------------------------------------------------------------------

    def _finish(
        self,
        order: Sequence[ResolvedModule],
        contexts: Sequence[ModuleContext],
        result: PipelineResult,
    ) -> None:
        self.layout.root.mkdir(parents=True, exist_ok=True)
        self.layout.summary_path.write_text(self._summary(order, result), encoding="utf-8")

        if result.succeeded:
            self.layout.complete_marker.touch()
            if self.settings.delete_temp_files:
                self.layout.remove_temp_dirs(contexts)
            logger.info("driver.pipeline_succeeded", modules=len(result.modules))
        else:
            self.layout.complete_marker.unlink(missing_ok=True)
            failed = result.failed_module
            logger.error("driver.pipeline_failed", module=failed.name if failed else None)

    def _summary(self, order: Sequence[ResolvedModule], result: PipelineResult) -> str:
        status = "SUCCESS" if result.succeeded else "FAILED"
        lines = [f"Pipeline {self.layout.root}: {status}", ""]
        for resolved, module_result in zip(order, result.modules, strict=True):
            lines.append(f"[{module_result.status.value}]")
            if module_result.status is ModuleStatus.NOT_RUN:
                lines.append(f"{module_result.context.prefix}_{resolved.name}")
            else:
                lines.append(resolved.module.summary(module_result.context))
            if module_result.error is not None:
                lines.append(f"   Error: {module_result.error.message}")
            lines.append("")
        return "\n".join(lines)


__all__ = [
    "ModuleResult",
    "ModuleStatus",
    "PipelineDriver",
    "PipelineResult",
]
