"""Custom exceptions for the flowdesk workflow orchestrator."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "NotFoundError": "The requested resource was not found.",
    "ConfigurationError": "A workflow is misconfigured. Please contact support.",
    "MissingPreconditionError": "Some information needed for this step was not available.",
    "TransientStepFailure": "A connected service is temporarily unavailable.",
    "TerminalStepFailure": "A connected service rejected the request.",
    "StepExecutorNotFoundError": "The requested capability is not available.",
    "ExecutionCancelledError": "The workflow was cancelled.",
    "WorkflowLimitExceededError": "Too many workflows are running. Please try again shortly.",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Walks the exception's MRO so subclasses inherit the message of the
    nearest mapped ancestor.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class FlowdeskException(Exception):
    """Base exception for all flowdesk-specific errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize flowdesk exception.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class NotFoundError(FlowdeskException):
    """Resource not found error (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        """Initialize not found error.

        Args:
            resource: Name of the resource that was not found.
            resource_id: Optional ID of the resource.
        """
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource, "resource_id": resource_id},
        )


class WorkflowNotFoundError(NotFoundError):
    """Workflow template not found error (404)."""

    def __init__(self, workflow_id: str) -> None:
        """Initialize workflow not found error.

        Args:
            workflow_id: The ID of the workflow that was not found.
        """
        super().__init__(resource="Workflow", resource_id=workflow_id)


class ExecutionNotFoundError(NotFoundError):
    """Workflow execution not found error (404)."""

    def __init__(self, execution_id: str) -> None:
        """Initialize execution not found error.

        Args:
            execution_id: The ID of the execution that was not found.
        """
        super().__init__(resource="Workflow execution", resource_id=execution_id)


class ConfigurationError(FlowdeskException):
    """Malformed or cyclic workflow template (500).

    Raised only while templates are registered at startup, never from a
    user-triggered run.
    """

    def __init__(self, message: str, template_id: str | None = None) -> None:
        """Initialize configuration error.

        Args:
            message: Description of what is wrong with the template.
            template_id: ID of the offending template, if known.
        """
        super().__init__(
            message=message,
            code="WORKFLOW_CONFIGURATION_ERROR",
            status_code=500,
            details={"template_id": template_id},
        )
        self.template_id = template_id


class MissingPreconditionError(FlowdeskException):
    """A required step parameter could not be resolved."""

    def __init__(self, step_id: str, missing: list[str]) -> None:
        """Initialize missing precondition error.

        Args:
            step_id: Step whose parameters were unresolved.
            missing: Names of the unresolved required parameters.
        """
        super().__init__(
            message=f"Missing required parameter(s): {', '.join(missing)}",
            code="MISSING_PRECONDITION",
            status_code=422,
            details={"step_id": step_id, "missing": missing},
        )
        self.step_id = step_id
        self.missing = missing


class TransientStepFailure(FlowdeskException):
    """Retryable step failure (network or timeout class)."""

    def __init__(self, message: str, service: str | None = None) -> None:
        """Initialize transient step failure.

        Args:
            message: Error message reported by the executor.
            service: Name of the plugin that failed.
        """
        super().__init__(
            message=message,
            code="TRANSIENT_STEP_FAILURE",
            status_code=503,
            details={"service": service},
        )


class TerminalStepFailure(FlowdeskException):
    """Non-retryable step failure, e.g. the executor rejected the input."""

    def __init__(self, message: str, service: str | None = None) -> None:
        """Initialize terminal step failure.

        Args:
            message: Error message reported by the executor.
            service: Name of the plugin that failed.
        """
        super().__init__(
            message=message,
            code="TERMINAL_STEP_FAILURE",
            status_code=502,
            details={"service": service},
        )


class StepExecutorNotFoundError(TerminalStepFailure):
    """No executor is registered for a step's plugin or function."""

    def __init__(self, plugin_name: str, function_name: str) -> None:
        """Initialize executor not found error.

        Args:
            plugin_name: Plugin the step targets.
            function_name: Function the step targets.
        """
        super().__init__(
            message=f"Function '{function_name}' not found in plugin '{plugin_name}'",
            service=plugin_name,
        )
        self.code = "STEP_EXECUTOR_NOT_FOUND"
        self.details["function_name"] = function_name


class ExecutionCancelledError(FlowdeskException):
    """Cooperative cancellation observed between steps."""

    def __init__(self, execution_id: str) -> None:
        """Initialize cancellation error.

        Args:
            execution_id: The cancelled execution.
        """
        super().__init__(
            message=f"Workflow execution '{execution_id}' was cancelled",
            code="EXECUTION_CANCELLED",
            status_code=409,
            details={"execution_id": execution_id},
        )


class WorkflowLimitExceededError(FlowdeskException):
    """Per-user concurrent execution cap reached (429)."""

    def __init__(self, user_id: str, limit: int) -> None:
        """Initialize limit error.

        Args:
            user_id: User who hit the cap.
            limit: The configured cap.
        """
        super().__init__(
            message=f"User already has {limit} active workflow(s). Try again when one finishes.",
            code="WORKFLOW_LIMIT_EXCEEDED",
            status_code=429,
            details={"user_id": user_id, "limit": limit},
        )
