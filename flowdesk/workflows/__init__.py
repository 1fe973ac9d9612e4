"""Cross-plugin workflow orchestration.

Provides immutable workflow templates and their trigger rules, a dependency
planner, a wave-based execution engine with retry and partial-success
semantics, an in-memory execution record store, and the orchestrator facade
the chat layer calls.
"""

from flowdesk.workflows.catalog import WorkflowCatalog, validate_template
from flowdesk.workflows.engine import ExecutionEngine
from flowdesk.workflows.models import (
    ExecutionPlan,
    ExecutionStatus,
    StepCondition,
    StepErrorKind,
    StepExecution,
    StepStatus,
    StepTemplate,
    TriggerRule,
    WorkflowExecution,
    WorkflowTemplate,
)
from flowdesk.workflows.orchestrator import (
    WorkflowOrchestrator,
    build_default_orchestrator,
    get_orchestrator,
)
from flowdesk.workflows.parameters import ParameterExtractor
from flowdesk.workflows.planner import plan_execution
from flowdesk.workflows.prebuilt import build_default_catalog, get_prebuilt_workflows
from flowdesk.workflows.presenter import format_execution_summary
from flowdesk.workflows.registry import FunctionStepExecutor, StepExecutor, StepExecutorRegistry
from flowdesk.workflows.store import ExecutionRecordStore
from flowdesk.workflows.templating import resolve_template
from flowdesk.workflows.triggers import KeywordTriggerDetector, TriggerDetector, TriggerWeights

__all__ = [
    "ExecutionEngine",
    "ExecutionPlan",
    "ExecutionRecordStore",
    "ExecutionStatus",
    "FunctionStepExecutor",
    "KeywordTriggerDetector",
    "ParameterExtractor",
    "StepCondition",
    "StepErrorKind",
    "StepExecution",
    "StepExecutor",
    "StepExecutorRegistry",
    "StepStatus",
    "StepTemplate",
    "TriggerDetector",
    "TriggerRule",
    "TriggerWeights",
    "WorkflowCatalog",
    "WorkflowExecution",
    "WorkflowOrchestrator",
    "WorkflowTemplate",
    "build_default_catalog",
    "build_default_orchestrator",
    "format_execution_summary",
    "get_orchestrator",
    "get_prebuilt_workflows",
    "plan_execution",
    "resolve_template",
    "validate_template",
]
