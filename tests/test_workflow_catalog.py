"""Tests for the workflow catalog and the built-in templates."""

import pytest

from flowdesk.core.exceptions import ConfigurationError, WorkflowNotFoundError
from flowdesk.workflows.catalog import WorkflowCatalog, validate_template
from flowdesk.workflows.models import StepTemplate, TriggerRule, WorkflowTemplate
from flowdesk.workflows.prebuilt import (
    build_default_catalog,
    get_prebuilt_triggers,
    get_prebuilt_workflows,
)


def _template(template_id: str = "wf", **step_kwargs) -> WorkflowTemplate:
    step = {"id": "a", "plugin_name": "Test", "function_name": "Run"}
    step.update(step_kwargs)
    return WorkflowTemplate(id=template_id, name="Workflow", steps=[StepTemplate(**step)])


class TestValidateTemplate:
    """Tests for validate_template."""

    def test_valid_template_returns_plan(self) -> None:
        plan = validate_template(_template())
        assert plan.order == ["a"]

    def test_empty_template_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="no steps"):
            validate_template(WorkflowTemplate(id="empty", name="Empty"))

    def test_blank_plugin_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="plugin"):
            validate_template(_template(plugin_name="  "))

    def test_undeclared_required_parameter_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="undeclared"):
            validate_template(_template(required_parameters=["missing"]))


class TestWorkflowCatalog:
    """Tests for WorkflowCatalog registration and lookup."""

    def test_register_and_lookup(self) -> None:
        catalog = WorkflowCatalog()
        rule = TriggerRule(template_id="wf", phrases=["do it"])

        catalog.register(_template(), rule)

        assert "wf" in catalog
        assert catalog.get("wf").name == "Workflow"
        assert catalog.require("wf").id == "wf"
        assert catalog.plan_for("wf").order == ["a"]
        assert catalog.trigger_for("wf") == rule

    def test_duplicate_id_rejected(self) -> None:
        catalog = WorkflowCatalog()
        catalog.register(_template())

        with pytest.raises(ConfigurationError, match="already registered"):
            catalog.register(_template())

    def test_mismatched_trigger_rejected(self) -> None:
        catalog = WorkflowCatalog()

        with pytest.raises(ConfigurationError):
            catalog.register(_template(), TriggerRule(template_id="other"))

        assert len(catalog) == 0

    def test_unknown_template(self) -> None:
        catalog = WorkflowCatalog()

        assert catalog.get("missing") is None
        with pytest.raises(WorkflowNotFoundError):
            catalog.require("missing")
        with pytest.raises(WorkflowNotFoundError):
            catalog.plan_for("missing")

    def test_inactive_templates_not_listed(self) -> None:
        catalog = WorkflowCatalog()
        catalog.register(_template("on"))
        catalog.register(
            WorkflowTemplate(
                id="off",
                name="Off",
                is_active=False,
                steps=[StepTemplate(id="a", plugin_name="P", function_name="F")],
            )
        )

        assert [t.id for t in catalog.list_active()] == ["on"]
        assert [t.id for t in catalog.templates] == ["on", "off"]


class TestPrebuiltCatalog:
    """Tests for the built-in templates."""

    def test_default_catalog_registers_all_templates(self) -> None:
        catalog = build_default_catalog()

        assert len(catalog) == 5
        for template in get_prebuilt_workflows():
            assert catalog.trigger_for(template.id) is not None

    def test_every_trigger_targets_a_template(self) -> None:
        ids = {t.id for t in get_prebuilt_workflows()}
        assert {rule.template_id for rule in get_prebuilt_triggers()} == ids

    def test_meeting_to_tasks_is_a_linear_chain(self) -> None:
        template = next(t for t in get_prebuilt_workflows() if t.id == "meeting-to-tasks")

        assert [s.id for s in template.steps] == ["get-transcript", "propose-tasks", "create-tasks"]
        assert template.get_step("propose-tasks").depends_on == ["get-transcript"]
        assert template.get_step("create-tasks").depends_on == ["propose-tasks"]

    def test_meeting_follow_up_is_a_diamond(self) -> None:
        catalog = build_default_catalog()

        plan = catalog.plan_for("meeting-follow-up")

        assert plan.waves == [
            ["get-meeting-transcript"],
            ["summarize-meeting", "extract-decisions"],
            ["send-follow-up"],
        ]
