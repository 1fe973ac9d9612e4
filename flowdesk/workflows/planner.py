"""Dependency planner: topological ordering of template steps.

Kahn's algorithm processed level by level. Each level ("wave") holds the
steps whose dependencies are all in earlier waves, in declaration order, so
the plan for a given template is deterministic. Steps inside one wave have no
dependency path between them and may be dispatched concurrently; the
concatenation of the waves is the sequential fallback order.
"""

import logging

from flowdesk.core.exceptions import ConfigurationError
from flowdesk.workflows.models import ExecutionPlan, StepTemplate, WorkflowTemplate

logger = logging.getLogger(__name__)


def topological_waves(steps: list[StepTemplate], template_id: str | None = None) -> list[list[str]]:
    """Group *steps* into dependency waves.

    Args:
        steps: Steps in declaration order.
        template_id: Owning template, used in error messages.

    Returns:
        Lists of step ids; every step appears in a later wave than each of
        its dependencies.

    Raises:
        ConfigurationError: On duplicate ids, unknown dependencies, or cycles.
    """
    index: dict[str, int] = {}
    for position, step in enumerate(steps):
        if step.id in index:
            raise ConfigurationError(f"Duplicate step id '{step.id}'", template_id=template_id)
        index[step.id] = position

    in_degree: dict[str, int] = {step.id: 0 for step in steps}
    dependents: dict[str, list[str]] = {step.id: [] for step in steps}

    for step in steps:
        for dep in dict.fromkeys(step.depends_on):
            if dep not in index:
                raise ConfigurationError(
                    f"Step '{step.id}' depends on unknown step '{dep}'",
                    template_id=template_id,
                )
            if dep == step.id:
                raise ConfigurationError(
                    f"Step '{step.id}' depends on itself", template_id=template_id
                )
            in_degree[step.id] += 1
            dependents[dep].append(step.id)

    waves: list[list[str]] = []
    ready = [step.id for step in steps if in_degree[step.id] == 0]
    placed = 0

    while ready:
        wave = sorted(ready, key=index.__getitem__)
        waves.append(wave)
        placed += len(wave)
        ready = []
        for step_id in wave:
            for child in dependents[step_id]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    ready.append(child)

    if placed != len(steps):
        cyclic = [sid for sid, degree in in_degree.items() if degree > 0]
        raise ConfigurationError(
            f"Circular dependency detected involving steps: {', '.join(sorted(cyclic))}",
            template_id=template_id,
        )

    return waves


def plan_execution(template: WorkflowTemplate) -> ExecutionPlan:
    """Build the execution plan for *template*.

    Raises:
        ConfigurationError: If the step graph is malformed or cyclic.
    """
    waves = topological_waves(template.steps, template_id=template.id)
    order = [step_id for wave in waves for step_id in wave]

    logger.debug(
        "Planned workflow %s: %d steps in %d waves",
        template.id,
        len(order),
        len(waves),
        extra={"template_id": template.id, "waves": waves},
    )
    return ExecutionPlan(template_id=template.id, order=order, waves=waves)
