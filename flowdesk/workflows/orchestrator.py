"""Workflow orchestrator: the inbound entry point for the chat layer.

Ties the catalog, trigger detector, parameter extractor, execution engine and
execution record store together behind a small async API::

    orchestrator = build_default_orchestrator(registry)
    template = orchestrator.detect_trigger(message, recent_topics)
    if template is not None:
        execution = await orchestrator.start_workflow(template, message, user_id)

Executions run as background tasks by default; callers poll
:meth:`WorkflowOrchestrator.get_execution` or await
:meth:`WorkflowOrchestrator.wait_for_completion`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime, timedelta
from typing import Any

from flowdesk.core.config import Settings, get_settings
from flowdesk.core.exceptions import (
    ExecutionCancelledError,
    ExecutionNotFoundError,
    WorkflowLimitExceededError,
)
from flowdesk.workflows.catalog import WorkflowCatalog
from flowdesk.workflows.engine import ExecutionEngine, new_step_records, skip_pending_steps
from flowdesk.workflows.models import (
    ExecutionPlan,
    ExecutionStatus,
    StepErrorKind,
    WorkflowExecution,
    WorkflowTemplate,
)
from flowdesk.workflows.parameters import ParameterExtractor
from flowdesk.workflows.prebuilt import build_default_catalog
from flowdesk.workflows.registry import StepExecutorRegistry
from flowdesk.workflows.store import ExecutionRecordStore
from flowdesk.workflows.triggers import KeywordTriggerDetector, TriggerDetector, TriggerWeights

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """Starts, tracks and cancels workflow executions."""

    def __init__(
        self,
        catalog: WorkflowCatalog,
        registry: StepExecutorRegistry,
        *,
        store: ExecutionRecordStore | None = None,
        detector: TriggerDetector | None = None,
        extractor: ParameterExtractor | None = None,
        engine: ExecutionEngine | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._catalog = catalog
        self._registry = registry
        self._store = store or ExecutionRecordStore()
        self._detector = detector or KeywordTriggerDetector(
            catalog, TriggerWeights.from_settings(self._settings)
        )
        self._extractor = extractor or ParameterExtractor()
        self._engine = engine or ExecutionEngine.from_settings(registry, self._settings)
        self._tasks: dict[str, asyncio.Task[WorkflowExecution]] = {}

    @property
    def catalog(self) -> WorkflowCatalog:
        return self._catalog

    @property
    def registry(self) -> StepExecutorRegistry:
        return self._registry

    @property
    def store(self) -> ExecutionRecordStore:
        return self._store

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def detect_trigger(
        self, message: str, recent_topics: list[str] | None = None
    ) -> WorkflowTemplate | None:
        """Return the template *message* asks for, or ``None``."""
        return self._detector.detect(message, recent_topics or [])

    def list_templates(self) -> list[WorkflowTemplate]:
        """Active templates in catalog order."""
        return self._catalog.list_active()

    def get_template(self, template_id: str) -> WorkflowTemplate | None:
        return self._catalog.get(template_id)

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    async def start_workflow(
        self,
        template: WorkflowTemplate | str,
        message: str,
        user_id: str,
        *,
        session_id: str = "",
        conversation_context: dict[str, Any] | None = None,
        wait: bool | None = None,
    ) -> WorkflowExecution:
        """Create an execution of *template* and run it.

        Args:
            template: Template (or template id) to run.
            message: The triggering user message.
            user_id: Requesting user.
            session_id: Conversation session, recorded on the execution.
            conversation_context: Extra seed values for the context.
            wait: Run to completion before returning. Defaults to the
                inverse of ``WORKFLOW_RUN_IN_BACKGROUND``.

        Returns:
            The finished execution when waiting, otherwise a ``running``
            snapshot.

        Raises:
            WorkflowNotFoundError: If the template is not in the catalog.
            WorkflowLimitExceededError: If the user already has the maximum
                number of active executions.
        """
        template_id = template if isinstance(template, str) else template.id
        template = self._catalog.require(template_id)
        plan = self._catalog.plan_for(template_id)

        self.cleanup_expired()

        limit = self._settings.WORKFLOW_MAX_ACTIVE_PER_USER
        if len(self._store.list_active(user_id)) >= limit:
            logger.warning(
                "User %s hit the active workflow limit",
                user_id,
                extra={"user_id": user_id, "limit": limit, "template_id": template_id},
            )
            raise WorkflowLimitExceededError(user_id, limit)

        context = self._extractor.extract(
            template,
            message,
            user_id=user_id,
            conversation_context=conversation_context,
        )
        execution = WorkflowExecution(
            template_id=template.id,
            template_name=template.name,
            user_id=user_id,
            session_id=session_id,
            status=ExecutionStatus.RUNNING,
            steps=new_step_records(template, plan),
            context=context,
            trigger_message=message,
            started_at=datetime.now(UTC),
        )
        self._store.save(execution)

        deadline = time.monotonic() + self._settings.WORKFLOW_EXECUTION_TIMEOUT_SECONDS
        if wait is None:
            wait = not self._settings.WORKFLOW_RUN_IN_BACKGROUND

        if wait:
            return await self._drive(template, plan, execution, deadline)

        task = asyncio.create_task(
            self._drive(template, plan, execution, deadline),
            name=f"workflow-{execution.id}",
        )
        self._tasks[execution.id] = task
        task.add_done_callback(lambda _t, eid=execution.id: self._tasks.pop(eid, None))

        snapshot = self._store.get(execution.id)
        return snapshot if snapshot is not None else execution

    async def _drive(
        self,
        template: WorkflowTemplate,
        plan: ExecutionPlan,
        execution: WorkflowExecution,
        deadline: float,
    ) -> WorkflowExecution:
        try:
            return await self._engine.run(
                template,
                plan,
                execution,
                cancel_requested=lambda: self._store.is_cancel_requested(execution.id),
                deadline=deadline,
                on_update=self._store.save,
            )
        except asyncio.CancelledError:
            # Task cancelled from outside (shutdown); record it before unwinding
            reason = ExecutionCancelledError(execution.id).message
            skip_pending_steps(execution, StepErrorKind.CANCELLED, reason)
            execution.status = ExecutionStatus.CANCELLED
            execution.error_message = reason
            execution.completed_at = datetime.now(UTC)
            self._store.save(execution)
            raise

    def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        """Latest snapshot of an execution, or ``None`` if unknown."""
        return self._store.get(execution_id)

    def cancel_execution(self, execution_id: str) -> bool:
        """Request cooperative cancellation.

        Returns:
            ``True`` if the execution exists and was still running.
        """
        return self._store.cancel(execution_id)

    def list_active(self, user_id: str) -> list[WorkflowExecution]:
        """Running executions for *user_id*, oldest first."""
        return self._store.list_active(user_id)

    async def wait_for_completion(
        self, execution_id: str, timeout: float | None = None
    ) -> WorkflowExecution:
        """Wait until a background execution finishes.

        Raises:
            ExecutionNotFoundError: If the execution is unknown.
            TimeoutError: If *timeout* elapses first.
        """
        task = self._tasks.get(execution_id)
        if task is not None:
            # asyncio.wait leaves the task running on timeout and does not re-raise its outcome
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                raise TimeoutError(f"Execution {execution_id} still running after {timeout}s")

        execution = self._store.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    def cleanup_expired(self) -> int:
        """Drop finished executions past the retention window."""
        retention = timedelta(minutes=self._settings.WORKFLOW_RETENTION_MINUTES)
        return self._store.cleanup(retention)

    async def shutdown(self) -> None:
        """Cancel any executions still running in the background."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d running workflow execution(s) on shutdown", len(tasks))


# ---------------------------------------------------------------------------
# Default wiring
# ---------------------------------------------------------------------------


def build_default_orchestrator(
    registry: StepExecutorRegistry | None = None,
    settings: Settings | None = None,
) -> WorkflowOrchestrator:
    """Build an orchestrator over the built-in catalog.

    Args:
        registry: Step executors; an empty registry is created if omitted
            and executors can be registered on it afterwards.
        settings: Application settings; defaults to :func:`get_settings`.
    """
    return WorkflowOrchestrator(
        build_default_catalog(),
        registry or StepExecutorRegistry(),
        settings=settings or get_settings(),
    )


_orchestrator: WorkflowOrchestrator | None = None


def get_orchestrator() -> WorkflowOrchestrator:
    """Return the process-wide orchestrator, creating it on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_default_orchestrator()
    return _orchestrator
