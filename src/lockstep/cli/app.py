"""
Root Typer application for the lockstep CLI.

    lockstep [--log-level DEBUG] [--json-logs] run PIPELINE.yaml [--backend cluster]
    lockstep plan PIPELINE.yaml
    lockstep status PIPELINE.yaml
    lockstep reset PIPELINE.yaml MODULE
    lockstep modules [--import mylab.modules]

``run`` exits 0 only when every module succeeded or was skipped.
"""

from __future__ import annotations

import importlib
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path

import typer
from typer import Typer

from lockstep.cli.utils import console, err_console, fail, open_pipeline, print_rows, styled
from lockstep.core.errors import InvalidConfigError, LockstepError
from lockstep.core.logging import configure_logging
from lockstep.core.settings import BackendKind
from lockstep.execution.backends import select_backend
from lockstep.orchestration.driver import PipelineDriver
from lockstep.orchestration.registry import get_module, list_modules

app = Typer(
    name="lockstep",
    help="lockstep: run ordered chains of script modules with resume.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("lockstep")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"lockstep {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="DEBUG, INFO, WARNING, ERROR"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines"),
) -> None:
    """Run, plan, inspect, and reset pipelines."""
    configure_logging(level=log_level, json_format=json_logs or None)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run")
def run_pipeline(
    pipeline: Path = typer.Argument(..., help="Pipeline YAML file"),
    backend: BackendKind | None = typer.Option(None, "--backend", "-b", help="Force one backend for every module"),
    json_out: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Run a pipeline, skipping modules that already completed."""
    loaded = open_pipeline(pipeline, backend)

    try:
        order = loaded.resolve()
        result = PipelineDriver(loaded.settings, loaded.layout).run(order)
    except LockstepError as exc:
        fail(exc)

    rows = [
        {
            "ordinal": f"{m.ordinal:02d}",
            "module": m.name,
            "status": m.status.value,
            "seconds": "" if m.duration_seconds is None else f"{m.duration_seconds:.1f}",
        }
        for m in result.modules
    ]
    if json_out:
        console.print_json(data=result.to_dict())
    else:
        print_rows(rows, title=f"Pipeline {loaded.layout.root}")

    failed = result.failed_module
    if failed is not None and failed.error is not None:
        fail(failed.error)
    if not result.succeeded:
        raise typer.Exit(code=1)
    if not json_out:
        console.print(f"[bold green]Pipeline complete[/bold green]: {loaded.layout.summary_path}")


@app.command("plan")
def plan_pipeline(
    pipeline: Path = typer.Argument(..., help="Pipeline YAML file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the resolved module order without running anything."""
    loaded = open_pipeline(pipeline)
    try:
        order = loaded.resolve()
    except LockstepError as exc:
        fail(exc)

    rows = [
        {
            "ordinal": f"{r.ordinal:02d}",
            "module": r.name,
            "predecessor": r.predecessor or "-",
            "requires": ", ".join(r.module.requires()) or "-",
            "backend": select_backend(r.module, loaded.settings).value,
            "timeout": r.module.timeout_minutes(loaded.settings) or "-",
        }
        for r in order
    ]
    print_rows(rows, title="Resolved order", as_json=json_out)


@app.command("status")
def pipeline_status(
    pipeline: Path = typer.Argument(..., help="Pipeline YAML file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show each module's marker state."""
    loaded = open_pipeline(pipeline)
    try:
        order = loaded.resolve()
    except LockstepError as exc:
        fail(exc)

    layout = loaded.layout
    rows = []
    for resolved, state in layout.status(order):
        rows.append(
            {
                "ordinal": f"{resolved.ordinal:02d}",
                "module": resolved.name,
                "status": state.value,
                "reason": layout.markers(resolved).failure_reason() or "",
            }
        )
    print_rows(rows, title=f"Pipeline {layout.root}", as_json=json_out)
    if not json_out:
        done = layout.complete_marker.exists()
        console.print(f"Pipeline: {styled('complete' if done else 'new')}")


@app.command("reset")
def reset_module(
    pipeline: Path = typer.Argument(..., help="Pipeline YAML file"),
    module: str = typer.Argument(..., help="First module to run again"),
) -> None:
    """Remove markers so MODULE and everything after it run again."""
    loaded = open_pipeline(pipeline)
    try:
        order = loaded.resolve()
        reset = loaded.layout.reset(order, module)
    except LockstepError as exc:
        fail(exc)
    except KeyError as exc:
        fail(InvalidConfigError("module", module, str(exc.args[0])))

    console.print(f"Reset {len(reset)} module(s): {', '.join(reset)}")


@app.command("modules")
def show_modules(
    imports: list[str] = typer.Option([], "--import", "-i", help="Python module to import first"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List registered modules."""
    for name in imports:
        try:
            importlib.import_module(name)
        except ImportError as exc:
            err_console.print(f"[bold red]Error[/bold red]: cannot import {name}: {exc}")
            raise typer.Exit(code=1) from exc

    rows = []
    for name in list_modules():
        cls = get_module(name)
        rows.append(
            {
                "module": name,
                "kind": cls.kind.value,
                "provides": ", ".join(cls.provides) or "-",
                "description": cls.description,
            }
        )
    print_rows(rows, title="Modules", as_json=json_out)
