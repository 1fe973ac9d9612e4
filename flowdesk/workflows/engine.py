"""Execution engine: runs one workflow execution through its plan.

The engine walks the :class:`ExecutionPlan` wave by wave. Steps in a wave
have no dependency path between them; they are dispatched concurrently
(bounded by a semaphore) or one after another, and the wave is joined before
the next one starts. Each step resolves its parameters against a snapshot of
the context taken at the start of its wave; output mappings are applied after
the join in plan order, so the context is only ever written by the task
driving the execution.

Step failures never escape :meth:`ExecutionEngine.run`. They are recorded on
the :class:`StepExecution` and folded into the final execution status.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from flowdesk.core.config import Settings
from flowdesk.core.exceptions import (
    ExecutionCancelledError,
    MissingPreconditionError,
    TerminalStepFailure,
    sanitize_error,
)
from flowdesk.core.resilience import backoff_delay, is_retryable
from flowdesk.workflows.models import (
    ExecutionPlan,
    ExecutionStatus,
    StepCondition,
    StepErrorKind,
    StepExecution,
    StepStatus,
    StepTemplate,
    WorkflowExecution,
    WorkflowTemplate,
)
from flowdesk.workflows.registry import StepExecutorRegistry
from flowdesk.workflows.templating import is_blank, placeholders, resolve_parameters

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]
UpdateCallback = Callable[[WorkflowExecution], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _never_cancelled() -> bool:
    return False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def new_step_records(template: WorkflowTemplate, plan: ExecutionPlan) -> list[StepExecution]:
    """Create pending step records for *template* in plan order."""
    records = []
    for step_id in plan.order:
        step = template.get_step(step_id)
        if step is None:
            continue
        records.append(
            StepExecution(
                step_id=step.id,
                step_name=step.display_name,
                executor_ref=step.executor_ref,
                optional=step.optional,
            )
        )
    return records


def parse_step_output(raw: str) -> dict[str, Any]:
    """Turn a raw executor result into an output dict.

    The raw string is always available under ``"result"``. If the result is
    a JSON object, its top-level keys are merged in as well so output
    mappings can address individual fields.
    """
    outputs: dict[str, Any] = {"result": raw}
    stripped = raw.strip()
    if not stripped.startswith("{"):
        return outputs
    try:
        parsed = json.loads(stripped)
    except ValueError:
        return outputs
    if isinstance(parsed, dict):
        outputs.update(parsed)
    return outputs


def determine_final_status(execution: WorkflowExecution, cancelled: bool) -> ExecutionStatus:
    """Fold step outcomes into the execution's final status.

    * ``cancelled`` when cancellation was observed;
    * ``completed`` when every step succeeded or was skipped by its condition;
    * ``partially_completed`` when at least one step produced a non-empty
      result;
    * ``failed`` otherwise.
    """
    if cancelled:
        return ExecutionStatus.CANCELLED
    if execution.steps and all(
        s.status == StepStatus.SUCCEEDED or s.error_kind == StepErrorKind.CONDITION_NOT_MET
        for s in execution.steps
    ):
        return ExecutionStatus.COMPLETED
    if any(s.status == StepStatus.SUCCEEDED and not s.empty_result for s in execution.steps):
        return ExecutionStatus.PARTIALLY_COMPLETED
    return ExecutionStatus.FAILED


def _mark_skipped(
    record: StepExecution,
    kind: StepErrorKind,
    reason: str,
    *,
    tolerated: bool = False,
) -> None:
    record.status = StepStatus.SKIPPED
    record.error_kind = kind
    record.error = reason
    record.tolerated = tolerated
    record.completed_at = _utcnow()


def _mark_failed(
    record: StepExecution,
    kind: StepErrorKind,
    error: str,
    *,
    tolerated: bool = False,
) -> None:
    record.status = StepStatus.FAILED
    record.error_kind = kind
    record.error = error
    record.tolerated = tolerated
    record.completed_at = _utcnow()


def skip_pending_steps(execution: WorkflowExecution, kind: StepErrorKind, reason: str) -> None:
    """Mark every step that has not finished as skipped with *kind*."""
    for record in execution.steps:
        if record.status in (StepStatus.PENDING, StepStatus.RUNNING):
            _mark_skipped(record, kind, reason, tolerated=record.optional)


def evaluate_condition(condition: StepCondition, context: dict[str, Any]) -> bool:
    """Check a step guard against *context*.

    A field missing from the context never satisfies the guard. Numeric
    operators compare values as floats and fail when either side is not a
    number.

    Args:
        condition: The guard to evaluate.
        context: Context snapshot the step would resolve against.

    Returns:
        ``True`` if the comparison holds.
    """
    if condition.field not in context:
        return False

    actual = context[condition.field]
    expected = condition.value
    op = condition.operator

    if op == "eq":
        return str(actual) == str(expected)
    if op == "contains":
        return str(expected) in str(actual)

    try:
        left, right = float(actual), float(expected)
    except (TypeError, ValueError):
        return False
    if op == "gt":
        return left > right
    return left < right


def _error_kind(exc: BaseException) -> StepErrorKind:
    if isinstance(exc, TimeoutError):
        return StepErrorKind.TIMEOUT
    if isinstance(exc, TerminalStepFailure):
        return StepErrorKind.TERMINAL
    return StepErrorKind.TRANSIENT


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ExecutionEngine:
    """Drives workflow executions against a :class:`StepExecutorRegistry`."""

    def __init__(
        self,
        registry: StepExecutorRegistry,
        *,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        step_timeout: float = 300.0,
        max_parallel_steps: int = 4,
        parallel: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Executors for every plugin the templates reference.
            retry_base_delay: Backoff delay after the first failed attempt.
            retry_max_delay: Backoff cap.
            step_timeout: Default per-invocation timeout in seconds.
            max_parallel_steps: Concurrency bound within one wave.
            parallel: Dispatch the steps of a wave concurrently.
            sleep: Awaitable used for backoff waits (injectable for tests).
        """
        self._registry = registry
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._step_timeout = step_timeout
        self._max_parallel_steps = max(1, max_parallel_steps)
        self._parallel = parallel
        self._sleep = sleep

    @classmethod
    def from_settings(cls, registry: StepExecutorRegistry, settings: Settings) -> ExecutionEngine:
        """Build an engine configured from application settings."""
        return cls(
            registry,
            retry_base_delay=settings.WORKFLOW_RETRY_BASE_DELAY_SECONDS,
            retry_max_delay=settings.WORKFLOW_RETRY_MAX_DELAY_SECONDS,
            step_timeout=settings.WORKFLOW_STEP_TIMEOUT_SECONDS,
            max_parallel_steps=settings.WORKFLOW_MAX_PARALLEL_STEPS,
            parallel=settings.WORKFLOW_PARALLEL_EXECUTION,
        )

    # ------------------------------------------------------------------
    # Execution loop
    # ------------------------------------------------------------------

    async def run(
        self,
        template: WorkflowTemplate,
        plan: ExecutionPlan,
        execution: WorkflowExecution,
        *,
        cancel_requested: CancelCheck = _never_cancelled,
        deadline: float | None = None,
        on_update: UpdateCallback | None = None,
    ) -> WorkflowExecution:
        """Run *execution* to a terminal state.

        Args:
            template: The template being executed.
            plan: Its dependency plan.
            execution: The execution record; mutated in place.
            cancel_requested: Polled between waves, before each step and
                before each retry.
            deadline: ``time.monotonic()`` value after which no further wave
                or retry is started.
            on_update: Called with the execution after every state change.

        Returns:
            The same *execution*, in a terminal status.
        """

        def publish() -> None:
            if on_update is not None:
                on_update(execution)

        if not execution.steps:
            execution.steps = new_step_records(template, plan)
        records = {record.step_id: record for record in execution.steps}

        execution.status = ExecutionStatus.RUNNING
        execution.started_at = execution.started_at or _utcnow()
        publish()

        logger.info(
            "Starting workflow execution %s (%s)",
            execution.id,
            template.id,
            extra={
                "execution_id": execution.id,
                "template_id": template.id,
                "user_id": execution.user_id,
                "waves": plan.waves,
            },
        )

        # step id -> kind its dependents inherit when it blocks them
        blocking: dict[str, StepErrorKind] = {}
        cancelled = False
        semaphore = asyncio.Semaphore(self._max_parallel_steps)

        try:
            for wave in plan.waves:
                if cancel_requested():
                    cancelled = True
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    execution.error_message = "Workflow exceeded its execution time limit"
                    skip_pending_steps(execution, StepErrorKind.TIMEOUT, execution.error_message)
                    logger.warning(
                        "Workflow execution %s exceeded its deadline",
                        execution.id,
                        extra={"execution_id": execution.id, "template_id": template.id},
                    )
                    break

                runnable: list[StepTemplate] = []
                for step_id in wave:
                    step = template.get_step(step_id)
                    if step is None:
                        continue
                    record = records[step_id]
                    blockers = [dep for dep in dict.fromkeys(step.depends_on) if dep in blocking]
                    if not blockers:
                        runnable.append(step)
                        continue

                    kind = (
                        StepErrorKind.MISSING_PRECONDITION
                        if any(blocking[dep] == StepErrorKind.MISSING_PRECONDITION for dep in blockers)
                        else StepErrorKind.DEPENDENCY_FAILED
                    )
                    _mark_skipped(
                        record,
                        kind,
                        f"Skipped because {', '.join(blockers)} did not complete",
                        tolerated=step.optional,
                    )
                    blocking[step_id] = kind
                    logger.info(
                        "Skipping step %s: blocked by %s",
                        step_id,
                        ", ".join(blockers),
                        extra={"execution_id": execution.id, "step_id": step_id},
                    )

                snapshot = dict(execution.context)
                publish()

                if self._parallel and len(runnable) > 1:
                    await asyncio.gather(
                        *(
                            self._run_step(
                                step,
                                records[step.id],
                                snapshot,
                                execution.id,
                                cancel_requested,
                                deadline,
                                semaphore,
                            )
                            for step in runnable
                        )
                    )
                else:
                    for step in runnable:
                        await self._run_step(
                            step,
                            records[step.id],
                            snapshot,
                            execution.id,
                            cancel_requested,
                            deadline,
                            semaphore,
                        )

                for step in runnable:
                    record = records[step.id]
                    if record.status == StepStatus.SUCCEEDED:
                        self._apply_output_mappings(step, record, execution.context)
                        continue
                    if record.error_kind == StepErrorKind.CANCELLED:
                        cancelled = True
                    if step.optional or record.error_kind == StepErrorKind.CONDITION_NOT_MET:
                        continue
                    blocking[step.id] = (
                        StepErrorKind.MISSING_PRECONDITION
                        if record.error_kind == StepErrorKind.MISSING_PRECONDITION
                        else StepErrorKind.DEPENDENCY_FAILED
                    )

                # A request that arrived while the wave ran takes effect once it joins
                if not cancelled and cancel_requested():
                    cancelled = True

                publish()

                if cancelled:
                    break

            if cancelled:
                reason = ExecutionCancelledError(execution.id).message
                skip_pending_steps(execution, StepErrorKind.CANCELLED, reason)
                execution.error_message = reason

        except Exception as e:
            logger.exception(
                "Workflow execution %s aborted",
                execution.id,
                extra={"execution_id": execution.id, "template_id": template.id},
            )
            skip_pending_steps(execution, StepErrorKind.TERMINAL, sanitize_error(e))
            execution.error_message = sanitize_error(e)
            execution.status = ExecutionStatus.FAILED
        else:
            execution.status = determine_final_status(execution, cancelled)
            if execution.error_message is None and execution.status in (
                ExecutionStatus.FAILED,
                ExecutionStatus.PARTIALLY_COMPLETED,
            ):
                execution.error_message = self._first_failure(execution)

        execution.completed_at = _utcnow()
        publish()

        logger.info(
            "Workflow execution %s finished: %s",
            execution.id,
            execution.status.value,
            extra={
                "execution_id": execution.id,
                "template_id": template.id,
                "status": execution.status.value,
            },
        )
        return execution

    # ------------------------------------------------------------------
    # Single step
    # ------------------------------------------------------------------

    async def _run_step(
        self,
        step: StepTemplate,
        record: StepExecution,
        snapshot: dict[str, Any],
        execution_id: str,
        cancel_requested: CancelCheck,
        deadline: float | None,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Run one step to a terminal step state. Never raises on failure."""
        async with semaphore:
            if cancel_requested():
                _mark_skipped(
                    record,
                    StepErrorKind.CANCELLED,
                    ExecutionCancelledError(execution_id).message,
                    tolerated=step.optional,
                )
                return

            condition = step.condition
            if condition is not None and not evaluate_condition(condition, snapshot):
                reason = (
                    f"Condition not met: {condition.field} {condition.operator} {condition.value!r}"
                )
                _mark_skipped(record, StepErrorKind.CONDITION_NOT_MET, reason)
                logger.info(
                    "Skipping step %s: %s",
                    step.id,
                    reason,
                    extra={"execution_id": execution_id, "step_id": step.id},
                )
                return

            inputs = resolve_parameters(step.parameters, snapshot)
            record.inputs = inputs

            missing = [name for name in step.required_parameters if is_blank(inputs.get(name))]
            if missing:
                error = MissingPreconditionError(step.id, missing)
                unresolved = [
                    key
                    for name in missing
                    if isinstance(step.parameters.get(name), str)
                    for key in placeholders(step.parameters[name])
                ]
                reason = error.message
                if unresolved:
                    reason = f"{reason} (no value for {', '.join(unresolved)})"
                _mark_skipped(
                    record,
                    StepErrorKind.MISSING_PRECONDITION,
                    reason,
                    tolerated=step.optional,
                )
                logger.info(
                    "Skipping step %s: %s",
                    step.id,
                    reason,
                    extra={"execution_id": execution_id, "step_id": step.id, "missing": missing},
                )
                return

            record.status = StepStatus.RUNNING
            record.started_at = _utcnow()
            timeout = step.timeout_seconds or self._step_timeout

            while True:
                record.attempts += 1
                attempt_timeout = timeout
                if deadline is not None:
                    attempt_timeout = min(timeout, max(deadline - time.monotonic(), 0.0))

                try:
                    raw = await asyncio.wait_for(
                        self._registry.invoke_step(step.plugin_name, step.function_name, inputs),
                        timeout=attempt_timeout,
                    )
                except Exception as e:
                    kind = _error_kind(e)
                    message = str(e) or type(e).__name__
                    if kind == StepErrorKind.TIMEOUT:
                        message = f"Step timed out after {attempt_timeout:g}s"

                    if not is_retryable(e) or record.attempts > step.max_retries:
                        _mark_failed(record, kind, message, tolerated=step.optional)
                        logger.warning(
                            "Step %s failed after %d attempt(s): %s",
                            step.id,
                            record.attempts,
                            message,
                            extra={
                                "execution_id": execution_id,
                                "step_id": step.id,
                                "executor": step.executor_ref,
                                "error_kind": kind.value,
                                "optional": step.optional,
                            },
                        )
                        return

                    if cancel_requested():
                        _mark_failed(
                            record,
                            StepErrorKind.CANCELLED,
                            ExecutionCancelledError(execution_id).message,
                            tolerated=step.optional,
                        )
                        return
                    if deadline is not None and time.monotonic() >= deadline:
                        _mark_failed(
                            record,
                            StepErrorKind.TIMEOUT,
                            "Workflow exceeded its execution time limit",
                            tolerated=step.optional,
                        )
                        return

                    delay = backoff_delay(
                        record.attempts, self._retry_base_delay, self._retry_max_delay
                    )
                    record.retry_delays.append(delay)
                    logger.info(
                        "Retrying step %s in %.1fs (attempt %d/%d): %s",
                        step.id,
                        delay,
                        record.attempts + 1,
                        step.max_retries + 1,
                        message,
                        extra={"execution_id": execution_id, "step_id": step.id},
                    )
                    await self._sleep(delay)
                    continue

                record.status = StepStatus.SUCCEEDED
                record.result = raw
                record.outputs = parse_step_output(raw)
                record.empty_result = is_blank(raw)
                record.completed_at = _utcnow()
                logger.info(
                    "Step %s succeeded",
                    step.id,
                    extra={
                        "execution_id": execution_id,
                        "step_id": step.id,
                        "attempts": record.attempts,
                        "empty_result": record.empty_result,
                    },
                )
                return

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_output_mappings(
        step: StepTemplate, record: StepExecution, context: dict[str, Any]
    ) -> None:
        for output_key, context_key in step.output_mappings.items():
            value = record.outputs.get(output_key)
            if not is_blank(value):
                context[context_key] = value

    @staticmethod
    def _first_failure(execution: WorkflowExecution) -> str | None:
        for record in execution.steps:
            if record.status == StepStatus.SUCCEEDED or record.tolerated:
                continue
            if record.error_kind != StepErrorKind.CONDITION_NOT_MET:
                return f"Step '{record.step_name}' did not complete: {record.error}"
        return None
