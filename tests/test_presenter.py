"""Tests for the execution summary presenter."""

from flowdesk.workflows.models import (
    ExecutionStatus,
    StepErrorKind,
    StepExecution,
    StepStatus,
    WorkflowExecution,
)
from flowdesk.workflows.presenter import format_execution_summary


def test_summary_lists_each_step_with_reason() -> None:
    execution = WorkflowExecution(
        template_id="meeting-follow-up",
        template_name="Meeting Follow-up",
        status=ExecutionStatus.PARTIALLY_COMPLETED,
        steps=[
            StepExecution(step_id="a", step_name="Get Transcript", status=StepStatus.SUCCEEDED),
            StepExecution(
                step_id="b",
                step_name="Extract Decisions",
                status=StepStatus.FAILED,
                error="upstream 503",
                error_kind=StepErrorKind.TRANSIENT,
                tolerated=True,
                attempts=2,
            ),
            StepExecution(
                step_id="c",
                step_name="Send Email",
                status=StepStatus.SKIPPED,
                error="Missing required parameter(s): toEmail",
            ),
        ],
    )

    lines = format_execution_summary(execution).splitlines()

    assert lines[0] == "Workflow 'Meeting Follow-up' partially completed."
    assert lines[1] == "✅ Get Transcript"
    assert lines[2] == "❌ Extract Decisions: upstream 503 (optional) [2 attempts]"
    assert lines[3] == "⏭️ Send Email: Missing required parameter(s): toEmail"


def test_failed_summary_includes_error_message() -> None:
    execution = WorkflowExecution(
        template_id="wf",
        status=ExecutionStatus.FAILED,
        error_message="Step 'A' did not complete: boom",
        steps=[StepExecution(step_id="a", step_name="A", status=StepStatus.FAILED, error="boom")],
    )

    summary = format_execution_summary(execution)

    assert summary.startswith("Workflow 'wf' failed.")
    assert summary.endswith("Step 'A' did not complete: boom")


def test_running_summary_shows_progress() -> None:
    execution = WorkflowExecution(
        template_id="wf",
        template_name="WF",
        status=ExecutionStatus.RUNNING,
        steps=[
            StepExecution(step_id="a", status=StepStatus.SUCCEEDED),
            StepExecution(step_id="b"),
        ],
    )

    assert format_execution_summary(execution).splitlines()[0] == "Workflow 'WF' is running. (50% done)"
