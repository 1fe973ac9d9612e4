"""Pydantic models for workflow templates and executions.

Templates (:class:`WorkflowTemplate`, :class:`StepTemplate`,
:class:`TriggerRule`) are immutable catalog data loaded at process start.
Executions (:class:`WorkflowExecution`, :class:`StepExecution`) are the
mutable per-run records driven by the execution engine and published to the
execution record store.
"""

from __future__ import annotations

import enum
import re
import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ExecutionStatus(str, enum.Enum):
    """Lifecycle state of a workflow execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_COMPLETED = "partially_completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.PARTIALLY_COMPLETED,
        ExecutionStatus.CANCELLED,
    }
)


class StepStatus(str, enum.Enum):
    """Lifecycle state of a single step within an execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepErrorKind(str, enum.Enum):
    """Why a step did not succeed."""

    MISSING_PRECONDITION = "missing_precondition"
    DEPENDENCY_FAILED = "dependency_failed"
    TRANSIENT = "transient"
    TERMINAL = "terminal"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    CONDITION_NOT_MET = "condition_not_met"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class StepCondition(BaseModel):
    """Guard compared against the shared context before a step runs.

    Attributes:
        field: Context key to read.
        operator: ``eq`` and ``contains`` compare as strings; ``gt`` and
            ``lt`` compare numerically.
        value: Expected value.
    """

    model_config = ConfigDict(frozen=True)

    field: str = Field(..., min_length=1)
    operator: Literal["eq", "contains", "gt", "lt"] = "eq"
    value: Any = None


class StepTemplate(BaseModel):
    """A single step inside a workflow template.

    Attributes:
        id: Unique step identifier within the template.
        name: Human-readable step name.
        description: What the step does.
        plugin_name: Plugin whose executor performs the step.
        function_name: Function invoked on that executor.
        parameters: Static parameters; string values may contain
            ``{{paramName}}`` placeholders resolved from the shared context.
        depends_on: Step ids that must reach a terminal state first.
        output_mappings: Output key → context key written on success.
        required_parameters: Parameter names that must resolve to a
            non-blank value for the step to run.
        optional: If ``True``, failure does not block dependents.
        max_retries: Retries after the initial attempt.
        timeout_seconds: Per-invocation timeout; ``None`` uses the default.
        condition: Optional guard; when it does not hold the step is skipped
            without blocking its dependents.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(default="")
    description: str = Field(default="")
    plugin_name: str = Field(...)
    function_name: str = Field(...)
    parameters: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    output_mappings: dict[str, str] = Field(default_factory=dict)
    required_parameters: list[str] = Field(default_factory=list)
    optional: bool = Field(default=False)
    max_retries: int = Field(default=0, ge=0)
    timeout_seconds: float | None = Field(default=None, gt=0)
    condition: StepCondition | None = Field(default=None)

    @property
    def executor_ref(self) -> str:
        """``Plugin.Function`` reference used in logs and records."""
        return f"{self.plugin_name}.{self.function_name}"

    @property
    def display_name(self) -> str:
        """Name shown to users, falling back to the step id."""
        return self.name or self.id


class WorkflowTemplate(BaseModel):
    """A named, ordered set of steps with dependencies and defaults."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(...)
    description: str = Field(default="")
    steps: list[StepTemplate] = Field(default_factory=list)
    default_parameters: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = Field(default=True)

    def get_step(self, step_id: str) -> StepTemplate | None:
        """Return the step with *step_id*, or ``None``."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class TriggerRule(BaseModel):
    """Natural-language trigger configuration for one template.

    Attributes:
        template_id: Template the rule selects.
        phrases: Exact phrases; containment scores highest.
        patterns: Regular expressions searched case-insensitively in the
            message; each match scores like a phrase.
        keywords: Single-token keywords counted for partial overlap.
        domains: Domain nouns ("meeting", "email") that boost the score
            when recent conversation topics mention them.
    """

    model_config = ConfigDict(frozen=True)

    template_id: str
    phrases: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    domains: list[str] = Field(default_factory=list)

    @field_validator("patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Reject patterns that do not compile."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid trigger pattern {pattern!r}: {e}") from e
        return v


class ExecutionPlan(BaseModel):
    """Dependency-ordered plan for one template.

    ``order`` is a valid sequential execution order; ``waves`` groups steps
    with no dependency between them so they may be dispatched concurrently.
    ``order`` is always the concatenation of ``waves``.
    """

    model_config = ConfigDict(frozen=True)

    template_id: str
    order: list[str]
    waves: list[list[str]]


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StepExecution(BaseModel):
    """Runtime record of one step."""

    step_id: str
    step_name: str = ""
    executor_ref: str = ""
    optional: bool = False
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    inputs: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None
    outputs: dict[str, Any] = Field(default_factory=dict)
    empty_result: bool = False
    error: str | None = None
    error_kind: StepErrorKind | None = None
    tolerated: bool = False
    retry_delays: list[float] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def execution_time_ms(self) -> int:
        """Wall-clock time between start and completion, 0 if not run."""
        if self.started_at is None or self.completed_at is None:
            return 0
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


class WorkflowExecution(BaseModel):
    """Runtime record of one workflow run for one user request."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    template_id: str
    template_name: str = ""
    user_id: str = ""
    session_id: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    steps: list[StepExecution] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)
    trigger_message: str = ""
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_terminal(self) -> bool:
        """Whether the execution has reached a final state."""
        return self.status in TERMINAL_STATUSES

    @computed_field  # type: ignore[prop-decorator]
    @property
    def progress(self) -> float:
        """Percentage of steps in a terminal step state (0.0 -- 100.0)."""
        if not self.steps:
            return 100.0 if self.is_terminal else 0.0
        done = sum(
            1
            for s in self.steps
            if s.status in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED)
        )
        return (done / len(self.steps)) * 100.0

    def get_step(self, step_id: str) -> StepExecution | None:
        """Return the record for *step_id*, or ``None``."""
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None
