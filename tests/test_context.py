"""
Tests for the per-execution context.
"""

import re

import pytest

from kgflow.workflow import ExecutionContext, StepResult


@pytest.fixture
def context(clock):
    return ExecutionContext("report", inputs={"limit": 5, "author": "alice"}, clock=clock)


def result(step_id, success=True, duration=10.0):
    return StepResult(step_id=step_id, success=success, duration_ms=duration, timestamp="2024-01-01T00:00:00.000Z")


class TestInit:
    def test_inputs_seed_values(self, context):
        assert context.initialized
        assert context.get("limit") == 5
        assert context.keys() == ["limit", "author"]
        assert context.start_time == "2024-01-01T00:00:00.000Z"

    def test_inputs_are_copied(self, clock):
        inputs = {"tags": ["a"]}
        context = ExecutionContext("wf", inputs=inputs, clock=clock)
        context.get("tags").append("b")
        assert inputs == {"tags": ["a"]}
        assert context.inputs == {"tags": ["a"]}

    def test_uninitialized(self, clock):
        context = ExecutionContext(clock=clock)
        assert not context.initialized
        assert len(context) == 0

    def test_reinit_clears_state(self, context):
        context.set("x", 1)
        context.record(result("a"))
        context.init("other", {"y": 2})
        assert context.keys() == ["y"]
        assert context.history == []
        assert context.workflow_id == "other"


class TestValues:
    def test_set_get_has_remove(self, context):
        context.set("commits", [1, 2])
        assert context.has("commits")
        assert "commits" in context
        assert context.remove("commits") is True
        assert context.remove("commits") is False
        assert context.get("commits", "none") == "none"

    def test_output_aliases(self, context):
        context.set_output("render", {"content": "hi"})
        assert context.get_output("render") == {"content": "hi"}

    def test_keys_keep_insertion_order(self, context):
        context.set("z", 1)
        context.set("a", 2)
        context.set("limit", 9)
        assert context.keys() == ["limit", "author", "z", "a"]

    def test_keys_matching(self, context):
        context.set("step_render", 1)
        context.set("step_save", 2)
        assert context.keys_matching("step_") == ["step_render", "step_save"]
        assert context.keys_matching(re.compile(r"^l")) == ["limit"]

    def test_merge(self, context):
        assert context.merge({"limit": 10, "new": True}) == 1
        assert context.get("limit") == 5
        assert context.merge({"limit": 10}, overwrite=True) == 1
        assert context.get("limit") == 10


class TestHistory:
    def test_record_and_stats(self, context):
        context.record(result("a", duration=10.0))
        context.record(result("b", success=False, duration=30.0))
        assert context.last_execution["stepId"] == "b"
        assert context.history[0]["contextSize"] == 2
        stats = context.execution_stats()
        assert stats["stepCount"] == 2
        assert stats["successfulSteps"] == 1
        assert stats["failedSteps"] == 1
        assert stats["averageStepDurationMs"] == 20.0

    def test_empty_stats(self, context):
        stats = context.execution_stats()
        assert stats["stepCount"] == 0
        assert "averageStepDurationMs" not in stats
        assert context.last_execution is None


class TestSnapshotsAndExport:
    def test_snapshot_restore(self, context):
        snapshot = context.snapshot()
        context.set("later", 1)
        context.restore(snapshot)
        assert not context.has("later")
        assert context.get("limit") == 5

    def test_snapshot_is_deep(self, context):
        context.set("items", [1])
        snapshot = context.snapshot()
        context.get("items").append(2)
        assert snapshot["context"]["items"] == [1]

    def test_export_shape(self, context):
        assert context.export() == {
            "workflowId": "report",
            "startTime": "2024-01-01T00:00:00.000Z",
            "context": {"limit": 5, "author": "alice"},
        }

    def test_export_with_history_and_metadata(self, context):
        context.record(result("a"))
        data = context.export(include_history=True, include_metadata=True)
        assert len(data["history"]) == 1
        assert data["metadata"]["contextSize"] == 2
        assert data["metadata"]["initialized"] is True

    def test_import_state(self, context, clock):
        context.set("result", "done")
        restored = ExecutionContext(clock=clock)
        restored.import_state(context.export(include_history=True))
        assert restored.workflow_id == "report"
        assert restored.get("result") == "done"
        assert restored.initialized

    def test_summary_value_types(self, context):
        context.set("items", [])
        context.set("flag", False)
        context.set("meta", {"a": 1})
        context.set("nothing", None)
        assert context.summary()["valueTypes"] == {
            "number": 1,
            "string": 1,
            "array": 1,
            "boolean": 1,
            "object": 1,
            "null": 1,
        }
