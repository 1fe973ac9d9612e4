"""Workflow catalog: validated, immutable templates plus their trigger rules.

Templates are validated and planned when they are registered. A template
that fails validation raises :class:`ConfigurationError` and is never added,
so a malformed template can only fail at startup, not during a user request.
"""

import logging

from flowdesk.core.exceptions import ConfigurationError, WorkflowNotFoundError
from flowdesk.workflows.models import ExecutionPlan, TriggerRule, WorkflowTemplate
from flowdesk.workflows.planner import plan_execution

logger = logging.getLogger(__name__)


def validate_template(template: WorkflowTemplate) -> ExecutionPlan:
    """Check template invariants and return its execution plan.

    Args:
        template: Template to validate.

    Returns:
        The template's dependency-ordered plan.

    Raises:
        ConfigurationError: If the template is malformed or cyclic.
    """
    if not template.steps:
        raise ConfigurationError(f"Workflow '{template.id}' has no steps", template_id=template.id)

    for step in template.steps:
        if not step.plugin_name.strip() or not step.function_name.strip():
            raise ConfigurationError(
                f"Step '{step.id}' must name both a plugin and a function",
                template_id=template.id,
            )
        unknown = [p for p in step.required_parameters if p not in step.parameters]
        if unknown:
            raise ConfigurationError(
                f"Step '{step.id}' requires undeclared parameter(s): {', '.join(unknown)}",
                template_id=template.id,
            )

    # Duplicate ids, unknown dependencies and cycles are detected while planning
    return plan_execution(template)


class WorkflowCatalog:
    """Ordered registry of workflow templates.

    Declaration order is preserved; the trigger detector uses it as the
    tie-breaker between equally scored templates.
    """

    def __init__(self) -> None:
        self._templates: dict[str, WorkflowTemplate] = {}
        self._plans: dict[str, ExecutionPlan] = {}
        self._triggers: dict[str, TriggerRule] = {}

    def register(self, template: WorkflowTemplate, trigger: TriggerRule | None = None) -> None:
        """Validate and add *template* (and its trigger rule).

        Args:
            template: Template to add.
            trigger: Optional trigger rule; must reference *template*.

        Raises:
            ConfigurationError: If the template is invalid, its id is already
                registered, or the trigger rule targets another template.
        """
        if template.id in self._templates:
            raise ConfigurationError(
                f"Workflow '{template.id}' is already registered", template_id=template.id
            )
        if trigger is not None and trigger.template_id != template.id:
            raise ConfigurationError(
                f"Trigger rule for '{trigger.template_id}' registered with '{template.id}'",
                template_id=template.id,
            )

        plan = validate_template(template)

        self._templates[template.id] = template
        self._plans[template.id] = plan
        if trigger is not None:
            self._triggers[template.id] = trigger

        logger.info(
            "Registered workflow template %s (%d steps)",
            template.id,
            len(template.steps),
            extra={"template_id": template.id, "waves": plan.waves},
        )

    def get(self, template_id: str) -> WorkflowTemplate | None:
        """Return the template with *template_id*, or ``None``."""
        return self._templates.get(template_id)

    def require(self, template_id: str) -> WorkflowTemplate:
        """Return the template with *template_id*.

        Raises:
            WorkflowNotFoundError: If no such template is registered.
        """
        template = self._templates.get(template_id)
        if template is None:
            raise WorkflowNotFoundError(template_id)
        return template

    def plan_for(self, template_id: str) -> ExecutionPlan:
        """Return the cached plan for a registered template.

        Raises:
            WorkflowNotFoundError: If no such template is registered.
        """
        plan = self._plans.get(template_id)
        if plan is None:
            raise WorkflowNotFoundError(template_id)
        return plan

    def trigger_for(self, template_id: str) -> TriggerRule | None:
        """Return the trigger rule of a template, if it has one."""
        return self._triggers.get(template_id)

    @property
    def templates(self) -> list[WorkflowTemplate]:
        """All templates in declaration order."""
        return list(self._templates.values())

    def list_active(self) -> list[WorkflowTemplate]:
        """Active templates in declaration order."""
        return [t for t in self.templates if t.is_active]

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def __len__(self) -> int:
        return len(self._templates)
