"""Job monitor.

Starts a module's main script through its backend command and polls it to a
terminal state::

    pending ──launch──▶ running ──┬──▶ succeeded   main _Success marker and exit 0
               │                  ├──▶ failed      non-zero exit, a _Failures marker,
               │                  │                or exit 0 without the marker
               │                  └──▶ timed_out   deadline passed; process group killed
               └──(OSError)──▶ failed

For detached (cluster) launches the submission exits right away; a zero
exit only means "queued" and the state is then driven by the markers alone.

The monitor writes the module's started and failed markers. The completion
marker is left to the driver, which first checks the module's output.
"""

from __future__ import annotations

import os
import signal
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from lockstep.core.errors import ExecutionError
from lockstep.core.logging import get_logger
from lockstep.core.settings import BackendKind, LockstepSettings
from lockstep.execution.backends import backend_ops, cancel_command
from lockstep.execution.markers import WORKER_SUCCESS, ModuleMarkers, failure_markers, worker_marker

if TYPE_CHECKING:
    from lockstep.orchestration.modules import ModuleContext

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JobState(str, Enum):
    """Lifecycle state of a launched main script."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT)


@dataclass
class Job:
    """One run attempt of one module's main script."""

    module: str
    backend: BackendKind
    command: list[str]
    main_script: Path
    log_path: Path
    module_dir: Path
    detached: bool = False
    state: JobState = JobState.PENDING
    started_at: datetime | None = None
    deadline: datetime | None = None
    finished_at: datetime | None = None
    exit_code: int | None = None
    job_id: str | None = None
    reason: str | None = None
    log_tail: list[str] = field(default_factory=list)
    process: subprocess.Popen | None = field(default=None, repr=False)

    @property
    def script_dir(self) -> Path:
        return self.main_script.parent

    @property
    def markers(self) -> ModuleMarkers:
        return ModuleMarkers(self.module_dir)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


def tail_lines(path: Path, count: int) -> list[str]:
    """Last *count* lines of a text file; empty when the file is missing."""
    if count <= 0 or not path.is_file():
        return []
    with path.open(encoding="utf-8", errors="replace") as fh:
        lines = fh.read().splitlines()
    return lines[-count:]


class JobMonitor:
    """Launches main scripts and waits for them.

    Example:
        monitor = JobMonitor(settings)
        job = monitor.launch(command, ctx, main_script, BackendKind.DIRECT)
        state = monitor.await_completion(job, timeout_minutes=30)
    """

    def __init__(
        self,
        settings: LockstepSettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def launch(
        self,
        command: list[str],
        ctx: ModuleContext,
        main_script: Path,
        backend: BackendKind,
    ) -> Job:
        """Start *command* and mark the module started.

        Raises:
            ExecutionError: The process could not be created
        """
        ctx.temp_dir.mkdir(parents=True, exist_ok=True)
        job = Job(
            module=ctx.name,
            backend=backend,
            command=list(command),
            main_script=main_script,
            log_path=ctx.temp_dir / f"{main_script.name}.log",
            module_dir=ctx.module_dir,
            detached=backend_ops(backend).detached,
        )

        try:
            with job.log_path.open("wb") as log:
                process = subprocess.Popen(
                    job.command,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    cwd=str(main_script.parent),
                    start_new_session=True,
                )
        except OSError as exc:
            job.state = JobState.FAILED
            job.reason = f"Failed to start {job.command[0]}: {exc}"
            job.finished_at = _utcnow()
            job.markers.mark_failed(job.reason)
            logger.error("monitor.launch_failed", module=job.module, command=job.command, error=str(exc))
            raise ExecutionError(job.reason, cause=exc).with_context(
                module=job.module, ordinal=ctx.ordinal, script=str(main_script)
            ) from exc

        job.process = process
        job.state = JobState.RUNNING
        job.started_at = _utcnow()
        job.markers.mark_started()
        logger.info(
            "monitor.launched",
            module=job.module,
            backend=backend.value,
            pid=process.pid,
            detached=job.detached,
        )
        return job

    # ------------------------------------------------------------------
    # Wait
    # ------------------------------------------------------------------

    def await_completion(self, job: Job, timeout_minutes: float | None = None) -> JobState:
        """Poll *job* until it reaches a terminal state and return that state."""
        if job.state.is_terminal:
            return job.state
        if job.process is None:
            raise ExecutionError(f"Job for '{job.module}' was never launched").with_context(module=job.module)

        start = self._clock()
        deadline = None
        if timeout_minutes is not None:
            deadline = start + timeout_minutes * 60
            job.deadline = (job.started_at or _utcnow()) + timedelta(minutes=timeout_minutes)

        success_marker = worker_marker(job.main_script, WORKER_SUCCESS)
        while True:
            exit_code = job.process.poll()
            if exit_code is not None:
                job.exit_code = exit_code
                if job.detached and job.job_id is None:
                    job.job_id = self._submission_id(job)

            state = self._evaluate(job, exit_code, success_marker)
            if state is not None:
                return state

            if deadline is not None and self._clock() >= deadline:
                return self._time_out(job, timeout_minutes)

            self._sleep(self.settings.poll_interval_seconds)

    def _evaluate(self, job: Job, exit_code: int | None, success_marker: Path) -> JobState | None:
        failures = failure_markers(job.script_dir)

        if job.detached:
            if exit_code is None:
                return None
            if exit_code != 0:
                return self._fail(job, f"Submission exited with status {exit_code}")
            if failures:
                return self._fail(job, f"Worker failure reported by {failures[0].name}")
            if success_marker.exists():
                return self._succeed(job)
            return None

        if exit_code is None:
            return None
        if exit_code != 0:
            return self._fail(job, f"Main script exited with status {exit_code}")
        if failures:
            return self._fail(job, f"Worker failure reported by {failures[0].name}")
        if not success_marker.exists():
            return self._fail(job, "Main script exited 0 without writing its completion marker")
        return self._succeed(job)

    def _succeed(self, job: Job) -> JobState:
        job.state = JobState.SUCCEEDED
        job.finished_at = _utcnow()
        logger.info("monitor.succeeded", module=job.module, duration_seconds=job.duration_seconds)
        return job.state

    def _fail(self, job: Job, reason: str) -> JobState:
        job.state = JobState.FAILED
        job.reason = reason
        job.finished_at = _utcnow()
        job.log_tail = self._collect_tail(job)
        job.markers.mark_failed(reason, job.log_tail)
        logger.error("monitor.failed", module=job.module, reason=reason, exit_code=job.exit_code)
        return job.state

    def _time_out(self, job: Job, timeout_minutes: float | None) -> JobState:
        logger.warning("monitor.timeout", module=job.module, timeout_minutes=timeout_minutes)
        self._terminate(job)
        if job.detached and job.job_id:
            self._cancel_submission(job)

        job.state = JobState.TIMED_OUT
        job.reason = f"Timed out after {timeout_minutes} minutes"
        job.finished_at = _utcnow()
        job.log_tail = self._collect_tail(job)
        job.markers.mark_failed(job.reason, job.log_tail)
        return job.state

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def _terminate(self, job: Job) -> None:
        """SIGTERM the process group, SIGKILL it after the grace period."""
        process = job.process
        if process is None or process.poll() is not None:
            return
        try:
            os.killpg(process.pid, signal.SIGTERM)
            try:
                process.wait(timeout=self.settings.kill_timeout_seconds)
            except subprocess.TimeoutExpired:
                os.killpg(process.pid, signal.SIGKILL)
                process.wait()
        except ProcessLookupError:
            pass  # Process group already gone
        job.exit_code = process.returncode

    def _cancel_submission(self, job: Job) -> None:
        cmd = cancel_command(self.settings, job.job_id)
        if cmd is None:
            logger.warning("monitor.no_cancel_command", module=job.module, job_id=job.job_id)
            return
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
        except (subprocess.TimeoutExpired, OSError) as exc:
            logger.error("monitor.cancel_failed", module=job.module, job_id=job.job_id, error=str(exc))
            return
        if result.returncode != 0:
            logger.error(
                "monitor.cancel_failed",
                module=job.module,
                job_id=job.job_id,
                exit_code=result.returncode,
                stderr=result.stderr.strip(),
            )
        else:
            logger.info("monitor.cancelled", module=job.module, job_id=job.job_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _submission_id(job: Job) -> str | None:
        tokens = job.log_path.read_text(encoding="utf-8", errors="replace").split() if job.log_path.is_file() else []
        return tokens[-1] if tokens else None

    def _collect_tail(self, job: Job) -> list[str]:
        count = self.settings.log_tail_lines
        lines = tail_lines(job.log_path, count)
        for marker in failure_markers(job.script_dir):
            lines.extend(tail_lines(marker, count))
        return lines[-count:] if count else []


__all__ = [
    "Job",
    "JobMonitor",
    "JobState",
    "tail_lines",
]
