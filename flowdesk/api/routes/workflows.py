"""API routes for workflow detection, execution and status."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from flowdesk.api.deps import CurrentUserId, Orchestrator
from flowdesk.core.exceptions import (
    WorkflowLimitExceededError,
    WorkflowNotFoundError,
    sanitize_error,
)
from flowdesk.workflows.models import WorkflowExecution, WorkflowTemplate
from flowdesk.workflows.presenter import format_execution_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------


class DetectWorkflowRequest(BaseModel):
    """Request body for trigger detection."""

    message: str = Field(..., min_length=1, description="The user's message.")
    recent_topics: list[str] = Field(
        default_factory=list, description="Recent conversation topics, most recent first."
    )


class StartWorkflowRequest(BaseModel):
    """Request body for starting a workflow."""

    message: str = Field(default="", description="Message that triggered the workflow.")
    session_id: str = Field(default="", description="Conversation session id.")
    context: dict[str, Any] = Field(
        default_factory=dict, description="Extra seed values for the execution context."
    )
    wait: bool | None = Field(
        default=None, description="Run to completion before responding; defaults to settings."
    )


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------


class WorkflowStepResponse(BaseModel):
    """One step of a workflow template."""

    id: str
    name: str
    plugin_name: str
    function_name: str
    depends_on: list[str] = Field(default_factory=list)
    optional: bool = False


class WorkflowTemplateResponse(BaseModel):
    """Serialised workflow template returned by the API."""

    id: str
    name: str
    description: str = ""
    steps: list[WorkflowStepResponse] = Field(default_factory=list)


class DetectWorkflowResponse(BaseModel):
    """Result of trigger detection."""

    matched: bool
    template_id: str | None = None
    template_name: str | None = None


class ExecutionResponse(BaseModel):
    """An execution snapshot with its human-readable summary."""

    execution: WorkflowExecution
    summary: str


class CancelResponse(BaseModel):
    """Result of a cancellation request."""

    cancelled: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _template_to_response(template: WorkflowTemplate) -> WorkflowTemplateResponse:
    return WorkflowTemplateResponse(
        id=template.id,
        name=template.name,
        description=template.description,
        steps=[
            WorkflowStepResponse(
                id=step.id,
                name=step.display_name,
                plugin_name=step.plugin_name,
                function_name=step.function_name,
                depends_on=list(step.depends_on),
                optional=step.optional,
            )
            for step in template.steps
        ],
    )


def _execution_to_response(execution: WorkflowExecution) -> ExecutionResponse:
    return ExecutionResponse(execution=execution, summary=format_execution_summary(execution))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/")
async def list_workflows(
    user_id: CurrentUserId,
    orchestrator: Orchestrator,
) -> list[WorkflowTemplateResponse]:
    """List the active workflow templates."""
    templates = orchestrator.list_templates()
    logger.info("Listed workflows", extra={"user_id": user_id, "count": len(templates)})
    return [_template_to_response(t) for t in templates]


@router.post("/detect")
async def detect_workflow(
    data: DetectWorkflowRequest,
    user_id: CurrentUserId,
    orchestrator: Orchestrator,
) -> DetectWorkflowResponse:
    """Detect which workflow, if any, a message asks for."""
    template = orchestrator.detect_trigger(data.message, data.recent_topics)
    if template is None:
        return DetectWorkflowResponse(matched=False)

    logger.info(
        "Workflow detected",
        extra={"user_id": user_id, "template_id": template.id},
    )
    return DetectWorkflowResponse(matched=True, template_id=template.id, template_name=template.name)


@router.get("/executions")
async def list_active_executions(
    user_id: CurrentUserId,
    orchestrator: Orchestrator,
) -> list[ExecutionResponse]:
    """List the current user's running executions."""
    return [_execution_to_response(e) for e in orchestrator.list_active(user_id)]


@router.get("/executions/{execution_id}")
async def get_execution(
    execution_id: str,
    user_id: CurrentUserId,
    orchestrator: Orchestrator,
) -> ExecutionResponse:
    """Get an execution snapshot.

    Executions belonging to other users are reported as not found.
    """
    execution = orchestrator.get_execution(execution_id)
    if execution is None or execution.user_id != user_id:
        raise HTTPException(status_code=404, detail="Workflow execution not found")
    return _execution_to_response(execution)


@router.post("/executions/{execution_id}/cancel")
async def cancel_execution(
    execution_id: str,
    user_id: CurrentUserId,
    orchestrator: Orchestrator,
) -> CancelResponse:
    """Request cancellation of a running execution."""
    execution = orchestrator.get_execution(execution_id)
    if execution is None or execution.user_id != user_id:
        raise HTTPException(status_code=404, detail="Workflow execution not found")

    cancelled = orchestrator.cancel_execution(execution_id)
    logger.info(
        "Workflow cancellation requested",
        extra={"user_id": user_id, "execution_id": execution_id, "cancelled": cancelled},
    )
    return CancelResponse(cancelled=cancelled)


@router.post("/{template_id}/start", status_code=201)
async def start_workflow(
    template_id: str,
    data: StartWorkflowRequest,
    user_id: CurrentUserId,
    orchestrator: Orchestrator,
) -> ExecutionResponse:
    """Start a workflow for the current user."""
    try:
        execution = await orchestrator.start_workflow(
            template_id,
            data.message,
            user_id,
            session_id=data.session_id,
            conversation_context=data.context,
            wait=data.wait,
        )
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=sanitize_error(e)) from e
    except WorkflowLimitExceededError as e:
        raise HTTPException(status_code=429, detail=sanitize_error(e)) from e

    logger.info(
        "Workflow started",
        extra={
            "user_id": user_id,
            "template_id": template_id,
            "execution_id": execution.id,
            "status": execution.status.value,
        },
    )
    return _execution_to_response(execution)
