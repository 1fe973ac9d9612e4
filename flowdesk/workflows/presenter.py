"""Plain-text summaries of workflow executions for chat responses."""

from flowdesk.workflows.models import ExecutionStatus, StepExecution, StepStatus, WorkflowExecution

_STATUS_HEADLINES: dict[ExecutionStatus, str] = {
    ExecutionStatus.PENDING: "is queued",
    ExecutionStatus.RUNNING: "is running",
    ExecutionStatus.COMPLETED: "completed successfully",
    ExecutionStatus.PARTIALLY_COMPLETED: "partially completed",
    ExecutionStatus.FAILED: "failed",
    ExecutionStatus.CANCELLED: "was cancelled",
}

_STEP_ICONS: dict[StepStatus, str] = {
    StepStatus.PENDING: "⏳",
    StepStatus.RUNNING: "🔄",
    StepStatus.SUCCEEDED: "✅",
    StepStatus.FAILED: "❌",
    StepStatus.SKIPPED: "⏭️",
}


def _step_line(step: StepExecution) -> str:
    line = f"{_STEP_ICONS[step.status]} {step.step_name or step.step_id}"
    if step.status == StepStatus.SUCCEEDED and step.empty_result:
        line += " (no results)"
    elif step.error:
        line += f": {step.error}"
    if step.tolerated and step.status != StepStatus.SUCCEEDED:
        line += " (optional)"
    if step.attempts > 1:
        line += f" [{step.attempts} attempts]"
    return line


def format_execution_summary(execution: WorkflowExecution) -> str:
    """Render *execution* as a short multi-line summary.

    The first line names the workflow and its overall status; each following
    line is one step in plan order with a status icon and, where the step did
    not succeed, the reason.
    """
    name = execution.template_name or execution.template_id
    lines = [f"Workflow '{name}' {_STATUS_HEADLINES[execution.status]}."]
    if execution.status == ExecutionStatus.RUNNING:
        lines[0] += f" ({execution.progress:.0f}% done)"

    lines.extend(_step_line(step) for step in execution.steps)

    if execution.error_message and execution.status in (
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    ):
        lines.append("")
        lines.append(execution.error_message)
    return "\n".join(lines)
