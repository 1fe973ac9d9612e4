"""Tests for the workflow orchestrator facade."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from flowdesk.core.config import Settings
from flowdesk.core.exceptions import (
    ExecutionNotFoundError,
    WorkflowLimitExceededError,
    WorkflowNotFoundError,
)
from flowdesk.workflows.catalog import WorkflowCatalog
from flowdesk.workflows.models import (
    ExecutionStatus,
    StepErrorKind,
    StepStatus,
    StepTemplate,
    TriggerRule,
    WorkflowTemplate,
)
from flowdesk.workflows.orchestrator import WorkflowOrchestrator, build_default_orchestrator
from flowdesk.workflows.parameters import ParameterExtractor
from flowdesk.workflows.registry import FunctionStepExecutor, StepExecutorRegistry

_NOW = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)


def _make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "WORKFLOW_RETRY_BASE_DELAY_SECONDS": 0.0,
        "WORKFLOW_RETRY_MAX_DELAY_SECONDS": 0.0,
        "WORKFLOW_MAX_ACTIVE_PER_USER": 3,
        "WORKFLOW_RUN_IN_BACKGROUND": True,
    }
    values.update(overrides)
    return Settings(**values)


def _linear_template() -> WorkflowTemplate:
    return WorkflowTemplate(
        id="three-steps",
        name="Three Steps",
        steps=[
            StepTemplate(
                id="one",
                name="One",
                plugin_name="Test",
                function_name="One",
                output_mappings={"result": "oneOut"},
            ),
            StepTemplate(
                id="two",
                name="Two",
                plugin_name="Test",
                function_name="Two",
                depends_on=["one"],
                parameters={"input": "{{oneOut}}"},
            ),
            StepTemplate(
                id="three",
                name="Three",
                plugin_name="Test",
                function_name="Three",
                depends_on=["two"],
            ),
        ],
    )


def _make_orchestrator(
    functions: dict[str, Any],
    **settings_overrides: Any,
) -> WorkflowOrchestrator:
    catalog = WorkflowCatalog()
    catalog.register(
        _linear_template(),
        TriggerRule(template_id="three-steps", phrases=["run three steps"]),
    )
    registry = StepExecutorRegistry()
    registry.register("Test", FunctionStepExecutor(functions, plugin_name="Test"))
    return WorkflowOrchestrator(
        catalog,
        registry,
        extractor=ParameterExtractor(clock=lambda: _NOW),
        settings=_make_settings(**settings_overrides),
    )


def _ok(value: str = "ok") -> AsyncMock:
    return AsyncMock(return_value=value)


class TestStartWorkflow:
    """Tests for WorkflowOrchestrator.start_workflow."""

    async def test_wait_runs_to_completion(self) -> None:
        """wait=True returns the finished execution."""
        orchestrator = _make_orchestrator({"One": _ok("1"), "Two": _ok("2"), "Three": _ok("3")})

        execution = await orchestrator.start_workflow(
            "three-steps", "run three steps", "user-1", session_id="s-1", wait=True
        )

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.session_id == "s-1"
        assert execution.trigger_message == "run three steps"
        assert execution.context["userId"] == "user-1"
        assert orchestrator.get_execution(execution.id).status == ExecutionStatus.COMPLETED

    async def test_background_returns_running_snapshot(self) -> None:
        """The default background mode returns immediately with a running record."""
        gate = asyncio.Event()

        async def slow(_params: dict[str, Any]) -> str:
            await gate.wait()
            return "done"

        orchestrator = _make_orchestrator({"One": slow, "Two": _ok(), "Three": _ok()})

        execution = await orchestrator.start_workflow("three-steps", "go", "user-1")

        assert execution.status == ExecutionStatus.RUNNING
        assert [s.status for s in execution.steps] == [StepStatus.PENDING] * 3
        assert len(orchestrator.list_active("user-1")) == 1

        gate.set()
        finished = await orchestrator.wait_for_completion(execution.id, timeout=1)
        assert finished.status == ExecutionStatus.COMPLETED
        assert orchestrator.list_active("user-1") == []

    async def test_unknown_template_raises(self) -> None:
        orchestrator = _make_orchestrator({})

        with pytest.raises(WorkflowNotFoundError):
            await orchestrator.start_workflow("nope", "hi", "user-1")

    async def test_conversation_context_seeds_parameters(self) -> None:
        """Caller context values reach the step parameters."""
        two = AsyncMock(return_value="ok")
        orchestrator = _make_orchestrator({"One": _ok(""), "Two": two, "Three": _ok()})

        await orchestrator.start_workflow(
            "three-steps",
            "go",
            "user-1",
            conversation_context={"oneOut": "from the conversation"},
            wait=True,
        )

        two.assert_awaited_once_with({"input": "from the conversation"})


class TestActiveLimit:
    """Tests for the per-user active execution cap."""

    async def test_limit_is_enforced_per_user(self) -> None:
        gate = asyncio.Event()

        async def blocked(_params: dict[str, Any]) -> str:
            await gate.wait()
            return "x"

        orchestrator = _make_orchestrator(
            {"One": blocked, "Two": _ok(), "Three": _ok()},
            WORKFLOW_MAX_ACTIVE_PER_USER=2,
        )

        first = await orchestrator.start_workflow("three-steps", "go", "user-1")
        await orchestrator.start_workflow("three-steps", "go", "user-1")

        with pytest.raises(WorkflowLimitExceededError):
            await orchestrator.start_workflow("three-steps", "go", "user-1")

        # Other users are unaffected
        other = await orchestrator.start_workflow("three-steps", "go", "user-2")
        assert other.user_id == "user-2"

        gate.set()
        await orchestrator.wait_for_completion(first.id, timeout=1)
        await orchestrator.shutdown()


class TestCancellation:
    """Tests for cancel_execution."""

    async def test_cancel_after_first_step_completes(self) -> None:
        """Step two never starts and step one's context is retained."""
        two = AsyncMock(return_value="never")
        execution_ids: list[str] = []

        async def one(_params: dict[str, Any]) -> str:
            assert orchestrator.cancel_execution(execution_ids[0]) is True
            return "first result"

        orchestrator = _make_orchestrator({"One": one, "Two": two, "Three": _ok()})

        # The background task only starts once this coroutine yields
        execution = await orchestrator.start_workflow("three-steps", "go", "user-1")
        execution_ids.append(execution.id)

        final = await orchestrator.wait_for_completion(execution.id, timeout=1)

        assert final.status == ExecutionStatus.CANCELLED
        assert final.context["oneOut"] == "first result"
        assert final.get_step("one").status == StepStatus.SUCCEEDED
        two.assert_not_awaited()
        for step_id in ("two", "three"):
            record = final.get_step(step_id)
            assert record.status == StepStatus.SKIPPED
            assert record.error_kind == StepErrorKind.CANCELLED

    async def test_cancel_while_last_step_runs(self) -> None:
        """A cancel accepted during the final step ends the run cancelled."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def three(_params: dict[str, Any]) -> str:
            started.set()
            await release.wait()
            return "third result"

        orchestrator = _make_orchestrator({"One": _ok(), "Two": _ok(), "Three": three})
        execution = await orchestrator.start_workflow("three-steps", "go", "user-1")
        await asyncio.wait_for(started.wait(), timeout=1)

        assert orchestrator.cancel_execution(execution.id) is True
        release.set()
        final = await orchestrator.wait_for_completion(execution.id, timeout=1)

        assert final.status == ExecutionStatus.CANCELLED
        assert final.get_step("three").status == StepStatus.SUCCEEDED
        assert final.error_message is not None

    async def test_cancel_unknown_or_finished_returns_false(self) -> None:
        orchestrator = _make_orchestrator({"One": _ok(), "Two": _ok(), "Three": _ok()})
        execution = await orchestrator.start_workflow("three-steps", "go", "user-1", wait=True)

        assert orchestrator.cancel_execution("missing") is False
        assert orchestrator.cancel_execution(execution.id) is False

    async def test_wait_for_unknown_execution_raises(self) -> None:
        orchestrator = _make_orchestrator({})

        with pytest.raises(ExecutionNotFoundError):
            await orchestrator.wait_for_completion("missing")

    async def test_shutdown_marks_running_executions_cancelled(self) -> None:
        async def forever(_params: dict[str, Any]) -> str:
            await asyncio.sleep(60)
            return "never"

        orchestrator = _make_orchestrator({"One": forever, "Two": _ok(), "Three": _ok()})
        execution = await orchestrator.start_workflow("three-steps", "go", "user-1")
        await asyncio.sleep(0.01)

        await orchestrator.shutdown()

        final = orchestrator.get_execution(execution.id)
        assert final.status == ExecutionStatus.CANCELLED
        assert final.completed_at is not None
        for record in final.steps:
            assert record.status == StepStatus.SKIPPED
            assert record.error_kind == StepErrorKind.CANCELLED
            assert record.completed_at is not None
            assert record.tolerated is False


class TestRetention:
    """Tests for cleanup_expired."""

    async def test_finished_executions_expire(self) -> None:
        orchestrator = _make_orchestrator(
            {"One": _ok(), "Two": _ok(), "Three": _ok()}, WORKFLOW_RETENTION_MINUTES=1
        )
        execution = await orchestrator.start_workflow("three-steps", "go", "user-1", wait=True)

        assert orchestrator.cleanup_expired() == 0
        removed = orchestrator.store.cleanup(
            timedelta(minutes=1), now=datetime.now(UTC) + timedelta(minutes=5)
        )
        assert removed == 1
        assert orchestrator.get_execution(execution.id) is None


class TestDefaultOrchestrator:
    """Tests for build_default_orchestrator."""

    def test_detects_built_in_workflows(self) -> None:
        orchestrator = build_default_orchestrator(settings=_make_settings())

        template = orchestrator.detect_trigger("Please run my weekly review")

        assert template is not None
        assert template.id == "weekly-review"
        assert [t.id for t in orchestrator.list_templates()] == [
            "meeting-to-tasks",
            "email-to-calendar",
            "project-planning",
            "meeting-follow-up",
            "weekly-review",
        ]
        assert orchestrator.get_template("missing") is None
