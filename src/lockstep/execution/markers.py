"""On-disk status markers.

Markers are empty (or short text) sentinel files. They are the only state
the engine keeps between runs, which is what makes resume work: a module
whose directory holds ``lockstepComplete`` is never run again.

    <root>/
        lockstepComplete                     pipeline marker
        02_Normalize/
            lockstepStarted                  module markers
            lockstepComplete
            lockstepFailed                   reason + log tail
            lockstepState.jsonl              append-only history
            script/
                MAIN_02_Normalize.sh
                MAIN_02_Normalize.sh_Success worker markers
                02.0_Normalize.sh_Failures

Every module-marker write also appends one JSON line to
``lockstepState.jsonl`` so the history of attempts survives a reset.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

STARTED = "lockstepStarted"
COMPLETE = "lockstepComplete"
FAILED = "lockstepFailed"
STATE_LOG = "lockstepState.jsonl"

WORKER_STARTED = "_Started"
WORKER_SUCCESS = "_Success"
WORKER_FAILURES = "_Failures"


class MarkerState(str, Enum):
    """What the markers in a module directory say about it."""

    NEW = "new"
    STARTED = "started"
    COMPLETE = "complete"
    FAILED = "failed"


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


def worker_marker(script: Path, suffix: str) -> Path:
    """Marker path for a script: ``<script name><suffix>`` beside it."""
    return script.with_name(script.name + suffix)


def failure_markers(script_dir: Path) -> list[Path]:
    """All ``_Failures`` markers currently in *script_dir*."""
    if not script_dir.is_dir():
        return []
    return sorted(p for p in script_dir.iterdir() if p.name.endswith(WORKER_FAILURES))


def pipeline_marker(root: Path) -> Path:
    return root / COMPLETE


@dataclass(frozen=True)
class ModuleMarkers:
    """Marker files of one module directory."""

    module_dir: Path

    @property
    def started_path(self) -> Path:
        return self.module_dir / STARTED

    @property
    def complete_path(self) -> Path:
        return self.module_dir / COMPLETE

    @property
    def failed_path(self) -> Path:
        return self.module_dir / FAILED

    @property
    def state_log(self) -> Path:
        return self.module_dir / STATE_LOG

    def state(self) -> MarkerState:
        if self.complete_path.exists():
            return MarkerState.COMPLETE
        if self.failed_path.exists():
            return MarkerState.FAILED
        if self.started_path.exists():
            return MarkerState.STARTED
        return MarkerState.NEW

    def is_complete(self) -> bool:
        return self.complete_path.exists()

    def mark_started(self) -> None:
        self._touch(self.started_path, "")
        self._record(MarkerState.STARTED)

    def mark_complete(self) -> None:
        self.started_path.unlink(missing_ok=True)
        self.failed_path.unlink(missing_ok=True)
        self._touch(self.complete_path, "")
        self._record(MarkerState.COMPLETE)

    def mark_failed(self, reason: str, log_tail: list[str] | None = None) -> None:
        """Write the failure marker with *reason* followed by the output tail."""
        self.started_path.unlink(missing_ok=True)
        lines = [reason]
        if log_tail:
            lines.append("")
            lines.append("--- last output lines ---")
            lines.extend(log_tail)
        self._touch(self.failed_path, "\n".join(lines) + "\n")
        self._record(MarkerState.FAILED, reason=reason)

    def failure_reason(self) -> str | None:
        if not self.failed_path.exists():
            return None
        text = self.failed_path.read_text(encoding="utf-8")
        return text.splitlines()[0] if text else ""

    def reset(self) -> None:
        """Remove stale started/failed markers before a new attempt."""
        removed = [p.name for p in (self.started_path, self.failed_path) if p.exists()]
        self.started_path.unlink(missing_ok=True)
        self.failed_path.unlink(missing_ok=True)
        if removed:
            self._record(MarkerState.NEW, removed=removed)

    def clear(self) -> None:
        """Remove every module marker, including completion."""
        self.complete_path.unlink(missing_ok=True)
        self.reset()

    def history(self) -> list[dict]:
        if not self.state_log.exists():
            return []
        with self.state_log.open(encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]

    def _touch(self, path: Path, text: str) -> None:
        self.module_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    def _record(self, state: MarkerState, **detail) -> None:
        entry = {"at": _utcnow(), "state": state.value, **detail}
        with self.state_log.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry) + "\n")


__all__ = [
    "COMPLETE",
    "FAILED",
    "STARTED",
    "STATE_LOG",
    "WORKER_FAILURES",
    "WORKER_STARTED",
    "WORKER_SUCCESS",
    "MarkerState",
    "ModuleMarkers",
    "failure_markers",
    "pipeline_marker",
    "worker_marker",
]
