"""Tests for ``lockstep.execution.monitor`` against real bash processes."""

import time

import pytest

from lockstep.core.errors import ExecutionError
from lockstep.core.settings import BackendKind
from lockstep.execution.markers import MarkerState, ModuleMarkers
from lockstep.execution.monitor import JobMonitor, JobState, tail_lines

pytestmark = pytest.mark.integration


def _main(ctx, *body):
    main = ctx.script_dir / f"MAIN_{ctx.prefix}_{ctx.name}.sh"
    main.write_text("\n".join(["#!/bin/bash", *body]) + "\n")
    main.chmod(0o770)
    return main


def _success(main):
    return f'touch "{main}_Success"'


class TestLifecycle:
    def test_success(self, settings, make_context):
        ctx = make_context()
        main = ctx.script_dir / f"MAIN_{ctx.prefix}_{ctx.name}.sh"
        _main(ctx, "echo working", _success(main))
        monitor = JobMonitor(settings)

        job = monitor.launch(["bash", str(main)], ctx, main, BackendKind.DIRECT)
        assert job.state is JobState.RUNNING
        assert job.started_at is not None
        assert ModuleMarkers(ctx.module_dir).state() is MarkerState.STARTED

        assert monitor.await_completion(job) is JobState.SUCCEEDED
        assert job.exit_code == 0
        assert job.log_path.read_text() == "working\n"
        assert job.log_path.parent == ctx.temp_dir

    def test_nonzero_exit(self, settings, make_context):
        ctx = make_context()
        main = _main(ctx, "echo about to fail", "exit 3")
        monitor = JobMonitor(settings)

        job = monitor.launch(["bash", str(main)], ctx, main, BackendKind.DIRECT)

        assert monitor.await_completion(job) is JobState.FAILED
        assert job.exit_code == 3
        assert "status 3" in job.reason
        assert job.log_tail == ["about to fail"]
        markers = ModuleMarkers(ctx.module_dir)
        assert markers.state() is MarkerState.FAILED
        assert "about to fail" in markers.failed_path.read_text()

    def test_exit_zero_without_marker(self, settings, make_context):
        ctx = make_context()
        main = _main(ctx, "echo forgot the marker")
        monitor = JobMonitor(settings)

        job = monitor.launch(["bash", str(main)], ctx, main, BackendKind.DIRECT)

        assert monitor.await_completion(job) is JobState.FAILED
        assert "without writing its completion marker" in job.reason

    def test_failure_marker_wins(self, settings, make_context):
        ctx = make_context()
        main = ctx.script_dir / f"MAIN_{ctx.prefix}_{ctx.name}.sh"
        _main(ctx, f'echo "worker blew up" > "{ctx.script_dir}/01.0_Align.sh_Failures"', _success(main))
        monitor = JobMonitor(settings)

        job = monitor.launch(["bash", str(main)], ctx, main, BackendKind.DIRECT)

        assert monitor.await_completion(job) is JobState.FAILED
        assert "01.0_Align.sh_Failures" in job.reason
        assert "worker blew up" in job.log_tail

    def test_launch_error(self, settings, make_context):
        ctx = make_context()
        main = _main(ctx, "true")
        monitor = JobMonitor(settings)

        with pytest.raises(ExecutionError) as exc_info:
            monitor.launch([str(ctx.temp_dir / "no-such-interpreter"), str(main)], ctx, main, BackendKind.DIRECT)

        assert exc_info.value.module == "Align"
        assert isinstance(exc_info.value.cause, OSError)
        assert ModuleMarkers(ctx.module_dir).state() is MarkerState.FAILED


@pytest.mark.slow
class TestTimeout:
    def test_timeout_kills_process_group(self, settings, make_context):
        ctx = make_context()
        main = _main(ctx, "echo sleeping", "sleep 30 &", "wait")
        monitor = JobMonitor(settings)

        job = monitor.launch(["bash", str(main)], ctx, main, BackendKind.DIRECT)
        started = time.monotonic()
        state = monitor.await_completion(job, timeout_minutes=0.005)

        assert state is JobState.TIMED_OUT
        assert time.monotonic() - started < 10
        assert job.process.poll() is not None
        assert job.deadline is not None
        markers = ModuleMarkers(ctx.module_dir)
        assert markers.state() is MarkerState.FAILED
        assert markers.failure_reason() == "Timed out after 0.005 minutes"
        assert "sleeping" in markers.failed_path.read_text()

    def test_no_deadline_without_timeout(self, settings, make_context):
        ctx = make_context()
        main = ctx.script_dir / f"MAIN_{ctx.prefix}_{ctx.name}.sh"
        _main(ctx, "sleep 0.2", _success(main))
        monitor = JobMonitor(settings)

        job = monitor.launch(["bash", str(main)], ctx, main, BackendKind.DIRECT)

        assert monitor.await_completion(job, timeout_minutes=None) is JobState.SUCCEEDED
        assert job.deadline is None


class TestDetached:
    def test_marker_appears_after_submission_exits(self, settings, make_context):
        ctx = make_context()
        main = ctx.script_dir / f"MAIN_{ctx.prefix}_{ctx.name}.sh"
        _main(ctx, _success(main))
        submit = ctx.temp_dir / "submit.sh"
        submit.write_text(f'#!/bin/bash\n(sleep 0.3; bash "$1") > /dev/null 2>&1 &\necho "Submitted batch job 4242"\n')
        monitor = JobMonitor(settings)

        job = monitor.launch(["bash", str(submit), str(main)], ctx, main, BackendKind.CLUSTER)
        assert job.detached

        assert monitor.await_completion(job, timeout_minutes=1) is JobState.SUCCEEDED
        assert job.job_id == "4242"

    def test_submission_failure(self, settings, make_context):
        ctx = make_context()
        main = _main(ctx, "true")
        monitor = JobMonitor(settings)

        job = monitor.launch(["bash", "-c", "echo queue full; exit 1"], ctx, main, BackendKind.CLUSTER)

        assert monitor.await_completion(job) is JobState.FAILED
        assert "Submission exited with status 1" == job.reason


class TestTailLines:
    def test_tail(self, tmp_path):
        log = tmp_path / "x.log"
        log.write_text("\n".join(str(i) for i in range(10)) + "\n")
        assert tail_lines(log, 3) == ["7", "8", "9"]
        assert tail_lines(log, 0) == []
        assert tail_lines(tmp_path / "missing.log", 3) == []
