"""Tests for lockstep.cli: commands driven through typer's CliRunner.

Pipelines are written to ``tmp_path`` and use modules declared with the
``module_factory`` fixture, so the ``run`` tests execute real bash scripts.
"""

from __future__ import annotations

import textwrap

import pytest
from typer.testing import CliRunner

from lockstep.cli.app import app

runner = CliRunner()


def _pipeline(tmp_path, modules, extra=""):
    path = tmp_path / "pipeline.yaml"
    listed = "\n".join(f"  - {m}" for m in modules)
    path.write_text(
        textwrap.dedent(
            """\
            root: runs/demo
            input_dirs: [input]
            settings:
              poll_interval_seconds: 0.05
            modules:
            """
        )
        + listed
        + "\n"
        + extra
    )
    return path


@pytest.fixture
def chain(module_factory, input_dir):
    module_factory("A")
    module_factory("Normalize", provides=["normalized"])
    module_factory("B", requires=["normalized"])


# ─── Root ────────────────────────────────────────────────────────────────


class TestRoot:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "plan", "status", "reset", "modules"):
            assert command in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("lockstep ")


# ─── plan / modules ──────────────────────────────────────────────────────


class TestPlan:
    def test_plan_shows_inserted_provider(self, tmp_path, chain):
        path = _pipeline(tmp_path, ["A", "B"], "providers:\n  normalized: Normalize\n")

        result = runner.invoke(app, ["plan", str(path), "--json"])

        assert result.exit_code == 0
        assert '"module": "Normalize"' in result.output
        assert result.output.index('"module": "A"') < result.output.index('"module": "Normalize"')
        assert result.output.index('"module": "Normalize"') < result.output.index('"module": "B"')

    def test_plan_unresolvable(self, tmp_path, chain):
        path = _pipeline(tmp_path, ["A", "B"])

        result = runner.invoke(app, ["plan", str(path)])

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_missing_pipeline_file(self, tmp_path):
        result = runner.invoke(app, ["plan", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "CONFIG" in result.output


class TestModules:
    def test_lists_registered(self, chain):
        result = runner.invoke(app, ["modules", "--json"])
        assert result.exit_code == 0
        assert '"module": "Normalize"' in result.output
        assert '"provides": "normalized"' in result.output

    def test_bad_import(self):
        result = runner.invoke(app, ["modules", "--import", "no_such_pkg_xyz"])
        assert result.exit_code == 1


# ─── run / status / reset ────────────────────────────────────────────────


@pytest.mark.integration
class TestRun:
    def test_run_success(self, tmp_path, chain):
        path = _pipeline(tmp_path, ["A", "B"], "providers:\n  normalized: Normalize\n")

        result = runner.invoke(app, ["run", str(path)])

        assert result.exit_code == 0, result.output
        assert "Pipeline complete" in result.output
        assert (tmp_path / "runs" / "demo" / "lockstepComplete").exists()

    def test_run_failure_exits_nonzero(self, tmp_path, module_factory, input_dir):
        module_factory("A")
        module_factory("Broken", items=[["echo broken-output", "exit 4"]])
        path = _pipeline(tmp_path, ["A", "Broken"])

        result = runner.invoke(app, ["run", str(path)])

        assert result.exit_code == 1
        assert "Error" in result.output
        assert "broken-output" in result.output
        assert not (tmp_path / "runs" / "demo" / "lockstepComplete").exists()

    def test_status_and_reset(self, tmp_path, chain):
        path = _pipeline(tmp_path, ["A", "B"], "providers:\n  normalized: Normalize\n")
        assert runner.invoke(app, ["run", str(path)]).exit_code == 0

        status = runner.invoke(app, ["status", str(path), "--json"])
        assert status.exit_code == 0
        assert status.output.count('"status": "complete"') == 3

        reset = runner.invoke(app, ["reset", str(path), "Normalize"])
        assert reset.exit_code == 0
        assert "Reset 2 module(s): Normalize, B" in reset.output

        status = runner.invoke(app, ["status", str(path), "--json"])
        assert status.output.count('"status": "complete"') == 1
        assert status.output.count('"status": "new"') == 2

    def test_each_command_logs_to_its_own_stream(self, tmp_path, chain):
        path = _pipeline(tmp_path, ["A", "B"], "providers:\n  normalized: Normalize\n")

        assert runner.invoke(app, ["--json-logs", "run", str(path)]).exit_code == 0
        plan = runner.invoke(app, ["--log-level", "DEBUG", "plan", str(path)])
        assert plan.exit_code == 0, plan.output
        assert "resolver.resolved" in plan.output

    def test_reset_unknown_module(self, tmp_path, chain):
        path = _pipeline(tmp_path, ["A"])
        result = runner.invoke(app, ["reset", str(path), "Ghost"])
        assert result.exit_code == 1
