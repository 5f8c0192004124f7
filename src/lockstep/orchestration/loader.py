"""Pipeline file loading.

A pipeline file is YAML validated by pydantic::

    root: runs/demo                  # relative paths resolve against this file
    input_dirs: [data/raw]
    imports: [mylab.modules]         # imported so their modules register
    modules:
      - Import
      - name: Align
        backend: cluster
        timeout: 90
        options: {threads: 8}
      - mylab.modules.Report         # dotted path, imported on demand
    providers:
      aligned_reads: Align
    settings:
      script_batch_size: 4
      cluster:
        submit_command: "sbatch --job-name {name} {script}"

Every problem in the file surfaces as a ConfigError before anything runs.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from lockstep.core.errors import InvalidConfigError, MissingConfigError
from lockstep.core.logging import get_logger
from lockstep.core.settings import BackendKind, LockstepSettings
from lockstep.orchestration.layout import PipelineLayout
from lockstep.orchestration.modules import PipelineModule
from lockstep.orchestration.registry import get_module
from lockstep.orchestration.resolver import DependencyResolver, ResolvedModule

logger = get_logger(__name__)


class ModuleEntry(BaseModel):
    """One entry of the ``modules`` list."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, description="Registered module name or dotted class path")
    backend: BackendKind | None = Field(default=None, description="Backend preference for this module")
    timeout: float | None = Field(default=None, gt=0, description="Timeout in minutes")
    options: dict[str, Any] = Field(default_factory=dict)

    def module_options(self) -> dict[str, Any]:
        options = dict(self.options)
        if self.backend is not None:
            options["backend"] = self.backend.value
        if self.timeout is not None:
            options["timeout"] = self.timeout
        return options


class PipelineSpec(BaseModel):
    """Validated contents of a pipeline file."""

    model_config = ConfigDict(extra="forbid")

    root: Path
    input_dirs: list[Path] = Field(default_factory=list)
    imports: list[str] = Field(default_factory=list)
    modules: list[ModuleEntry] = Field(..., min_length=1)
    providers: dict[str, str] = Field(default_factory=dict)
    settings: dict[str, Any] = Field(default_factory=dict)

    @field_validator("modules", mode="before")
    @classmethod
    def _names_as_entries(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"name": item} if isinstance(item, str) else item for item in value]
        return value

    @classmethod
    def from_yaml(cls, yaml_content: str) -> PipelineSpec:
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as exc:
            raise InvalidConfigError("pipeline", None, f"Invalid YAML: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidConfigError("pipeline", data, "Pipeline file must be a mapping")
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as exc:
            raise InvalidConfigError("pipeline", None, f"Invalid pipeline file: {exc}") from exc


@dataclass(frozen=True)
class LoadedPipeline:
    """A validated pipeline with its settings and directory layout."""

    spec: PipelineSpec
    settings: LockstepSettings
    layout: PipelineLayout
    source: Path | None = None

    def instantiate(self) -> list[PipelineModule]:
        """Create the declared modules in declaration order."""
        modules: list[PipelineModule] = []
        for entry in self.spec.modules:
            try:
                cls = get_module(entry.name)
            except KeyError as exc:
                raise InvalidConfigError("modules", entry.name, str(exc.args[0])) from exc
            modules.append(cls(entry.module_options()))
        return modules

    def resolve(self) -> list[ResolvedModule]:
        return DependencyResolver(self.spec.providers).resolve(self.instantiate())


def load_pipeline(
    path: str | Path,
    *,
    settings: LockstepSettings | None = None,
    **overrides: Any,
) -> LoadedPipeline:
    """
    Load and validate a pipeline file.

    Settings precedence: *overrides* > file ``settings:`` > *settings*
    (environment and defaults when omitted).

    Raises:
        MissingConfigError: The file or an input directory does not exist
        InvalidConfigError: The file, a setting, or an import is invalid
    """
    path = Path(path)
    if not path.is_file():
        raise MissingConfigError("pipeline", f"Pipeline file not found: {path}")

    spec = PipelineSpec.from_yaml(path.read_text(encoding="utf-8"))
    loaded = build_pipeline(spec, base_dir=path.parent.resolve(), settings=settings, **overrides)
    logger.debug("loader.pipeline_loaded", path=str(path), modules=len(spec.modules))
    return LoadedPipeline(spec=loaded.spec, settings=loaded.settings, layout=loaded.layout, source=path)


def build_pipeline(
    spec: PipelineSpec,
    *,
    base_dir: Path | None = None,
    settings: LockstepSettings | None = None,
    **overrides: Any,
) -> LoadedPipeline:
    """Turn a validated spec into a LoadedPipeline (imports, settings, layout)."""
    base_dir = base_dir or Path.cwd()

    for name in spec.imports:
        try:
            importlib.import_module(name)
        except ImportError as exc:
            raise InvalidConfigError("imports", name, f"Cannot import '{name}': {exc}") from exc

    try:
        base = settings or LockstepSettings()
        merged = base.with_overrides(**spec.settings).with_overrides(**overrides)
    except pydantic.ValidationError as exc:
        raise InvalidConfigError("settings", None, f"Invalid settings: {exc}") from exc

    root = _absolute(spec.root, base_dir)
    input_dirs = tuple(_absolute(p, base_dir) for p in spec.input_dirs)
    for directory in input_dirs:
        if not directory.is_dir():
            raise MissingConfigError("input_dirs", f"Input directory does not exist: {directory}")

    return LoadedPipeline(spec=spec, settings=merged, layout=PipelineLayout(root=root, input_dirs=input_dirs))


def _absolute(path: Path, base_dir: Path) -> Path:
    path = path.expanduser()
    return path if path.is_absolute() else (base_dir / path).resolve()


__all__ = [
    "LoadedPipeline",
    "ModuleEntry",
    "PipelineSpec",
    "build_pipeline",
    "load_pipeline",
]
