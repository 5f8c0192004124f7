"""Tests for ``lockstep.core.errors``."""

import pytest

from lockstep.core.errors import (
    ConfigError,
    CyclicDependencyError,
    DependencyOrderError,
    DependencyResolutionError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    InvalidConfigError,
    LockstepError,
    MissingConfigError,
    MissingExecutableError,
    ModuleTimeoutError,
    ResourceMissingError,
    UnresolvableDependencyError,
    ValidationError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        ("error", "parent", "category"),
        [
            (MissingConfigError("root"), ConfigError, ErrorCategory.CONFIG),
            (InvalidConfigError("worker_threads", 0), ConfigError, ErrorCategory.CONFIG),
            (UnresolvableDependencyError("B", "x"), DependencyResolutionError, ErrorCategory.DEPENDENCY),
            (CyclicDependencyError(["A", "B", "A"]), DependencyResolutionError, ErrorCategory.DEPENDENCY),
            (DependencyOrderError("B", "x", "C"), DependencyResolutionError, ErrorCategory.DEPENDENCY),
            (MissingExecutableError("Rscript"), ResourceMissingError, ErrorCategory.RESOURCE),
            (ModuleTimeoutError("slow"), ExecutionError, ErrorCategory.TIMEOUT),
            (ValidationError("bad"), LockstepError, ErrorCategory.VALIDATION),
        ],
    )
    def test_parent_and_category(self, error, parent, category):
        assert isinstance(error, parent)
        assert isinstance(error, LockstepError)
        assert error.category == category

    def test_category_override(self):
        e = ExecutionError("odd", category=ErrorCategory.INTERNAL)
        assert e.category == ErrorCategory.INTERNAL


class TestContext:
    def test_with_context_sets_known_fields(self):
        e = ExecutionError("exit 1").with_context(module="B", exit_code=1, log_tail=["boom"])
        assert e.module == "B"
        assert e.context.exit_code == 1
        assert e.context.log_tail == ["boom"]

    def test_with_context_unknown_keys_go_to_metadata(self):
        e = ExecutionError("x").with_context(host="node7")
        assert e.context.metadata == {"host": "node7"}

    def test_str_prefixes_module(self):
        e = ExecutionError("exit 1", context=ErrorContext(module="B"))
        assert str(e) == "[B] exit 1"
        assert str(ExecutionError("plain")) == "plain"

    def test_cause_is_chained(self):
        cause = OSError("no such file")
        e = ExecutionError("launch failed", cause=cause)
        assert e.__cause__ is cause

    def test_to_dict(self):
        e = ModuleTimeoutError("Timed out", timeout_minutes=2).with_context(
            module="Align", ordinal=3, log_tail=["last line"]
        )
        data = e.to_dict()
        assert data["error_type"] == "ModuleTimeoutError"
        assert data["category"] == "TIMEOUT"
        assert data["context"] == {"module": "Align", "ordinal": 3, "log_tail": ["last line"]}
        assert e.timeout_minutes == 2

    def test_validation_field_in_dict(self):
        assert ValidationError("bad", field="output").to_dict()["field"] == "output"


class TestMessages:
    def test_cycle_message(self):
        e = CyclicDependencyError(["A", "B", "A"])
        assert e.cycle == ["A", "B", "A"]
        assert "A -> B -> A" in str(e)

    def test_order_error_names_provider(self):
        e = DependencyOrderError("Report", "normalized", "Normalize")
        assert e.provider == "Normalize"
        assert e.module == "Report"
        assert "move 'Normalize' before 'Report'" in e.message

    def test_unresolvable_keeps_capability(self):
        e = UnresolvableDependencyError("Report", "normalized")
        assert e.capability == "normalized"
        assert "normalized" in str(e)

    def test_missing_executable(self):
        e = MissingExecutableError("Rscript")
        assert e.executable == "Rscript"
        assert e.path == "Rscript"
        assert "PATH" in e.message

