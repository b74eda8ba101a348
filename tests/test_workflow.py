"""
Unit tests for run tracking.

Tests run id generation and state transition history.
"""

import re

from ppuitest.core.workflow import RunContext, TaskState, generate_run_id


class TestRunId:
    """Run id generation."""

    def test_uses_build_id_in_pipeline(self, monkeypatch):
        monkeypatch.setenv("BUILD_BUILDID", "4711")
        monkeypatch.setenv("SYSTEM_JOBATTEMPT", "2")

        assert generate_run_id() == "build-4711-2"

    def test_defaults_attempt_to_one(self, monkeypatch):
        monkeypatch.setenv("BUILD_BUILDID", "4711")

        assert generate_run_id() == "build-4711-1"

    def test_generated_outside_pipeline(self):
        run_id = generate_run_id()

        assert re.fullmatch(r"\d{8}-[0-9a-f]{16}", run_id)
        assert generate_run_id() != run_id


class TestRunContext:
    """State transitions."""

    def test_initial_state(self):
        context = RunContext()

        assert context.current_state == TaskState.INIT
        assert context.state_history == []
        assert context.duration >= 0

    def test_transitions_are_recorded_in_order(self):
        context = RunContext(run_id="run-1")

        context.transition_to(TaskState.PROVISION_OR_SKIP)
        context.transition_to(TaskState.BOOTSTRAP, {"node": "v20"})

        assert context.current_state == TaskState.BOOTSTRAP
        assert context.visited_states == [TaskState.PROVISION_OR_SKIP, TaskState.BOOTSTRAP]
        assert context.state_history[0]["from_state"] == "init"
        assert context.state_history[1]["metadata"] == {"node": "v20"}

    def test_to_dict(self):
        context = RunContext(run_id="run-1", metadata={"browser": "chromium"})
        context.transition_to(TaskState.DONE)

        data = context.to_dict()

        assert data["run_id"] == "run-1"
        assert data["state"] == "done"
        assert data["transitions"] == 1
        assert data["metadata"] == {"browser": "chromium"}
