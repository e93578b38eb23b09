"""Tests for validated workflow, node, connection and template changes."""

import pytest

from automation_engine.core.exceptions import ConflictError, NotFoundError, WorkflowValidationError
from automation_engine.core.validator import (
    CIRCULAR_DEPENDENCIES,
    CONNECTION_EXISTS,
    MISSING_TRIGGER,
    TARGET_NOT_FOUND,
)
from automation_engine.models.core import (
    ConditionNodeConfig,
    Workflow,
    WorkflowStatistics,
    WorkflowStatus,
    WorkflowTemplate,
)

from builders import build_workflow, chain, condition, record, trigger


def draft(**fields) -> Workflow:
    return Workflow(name=fields.pop("name", "Draft"), **fields)


class TestWorkflowCrud:
    """Create, read, update and delete workflows."""

    def test_create_and_get(self, workflow_manager):
        workflow = build_workflow([trigger(), record("a")], chain("trigger", "a"), name="Onboarding")

        created = workflow_manager.create_workflow(workflow)
        fetched = workflow_manager.get_workflow(created.id)

        assert fetched.name == "Onboarding"
        assert fetched.status == WorkflowStatus.ACTIVE
        assert [n.id for n in fetched.nodes] == ["trigger", "a"]
        assert fetched.connections[0].source_node_id == "trigger"

    def test_create_resets_statistics(self, workflow_manager):
        workflow = build_workflow([trigger()], [])
        workflow.statistics = WorkflowStatistics(total_executions=99)

        created = workflow_manager.create_workflow(workflow)

        assert created.statistics.total_executions == 0

    def test_create_invalid_active_workflow(self, workflow_manager):
        workflow = build_workflow([record("a")], [])

        with pytest.raises(WorkflowValidationError) as exc_info:
            workflow_manager.create_workflow(workflow)

        assert MISSING_TRIGGER in exc_info.value.validation_errors
        with pytest.raises(NotFoundError):
            workflow_manager.get_workflow(workflow.id)

    def test_create_incomplete_draft(self, workflow_manager):
        workflow = build_workflow([record("a")], [], status=WorkflowStatus.DRAFT)

        created = workflow_manager.create_workflow(workflow)

        warnings = workflow_manager.validate_for_status(created).warnings
        assert MISSING_TRIGGER in warnings

    def test_create_duplicate_id(self, workflow_manager):
        workflow = workflow_manager.create_workflow(draft())

        with pytest.raises(ConflictError):
            workflow_manager.create_workflow(draft(id=workflow.id))

    def test_get_missing(self, workflow_manager):
        with pytest.raises(NotFoundError):
            workflow_manager.get_workflow("workflow_missing")

    def test_update_fields(self, workflow_manager):
        workflow = workflow_manager.create_workflow(draft())

        updated = workflow_manager.update_workflow(workflow.id, {"name": "Renamed", "variables": {"tier": "gold"}})

        assert updated.name == "Renamed"
        assert workflow_manager.get_workflow(workflow.id).variables == {"tier": "gold"}
        assert updated.updated_at >= workflow.updated_at

    def test_update_unknown_field(self, workflow_manager):
        workflow = workflow_manager.create_workflow(draft())

        with pytest.raises(WorkflowValidationError, match="statistics"):
            workflow_manager.update_workflow(workflow.id, {"statistics": {"total_executions": 5}})

    def test_activation_requires_valid_graph(self, workflow_manager):
        workflow = workflow_manager.create_workflow(
            build_workflow([trigger(), record("a")], [], status=WorkflowStatus.DRAFT)
        )

        with pytest.raises(WorkflowValidationError):
            workflow_manager.update_workflow(workflow.id, {"status": "active"})

        workflow_manager.add_connection(workflow.id, "trigger", "a")
        activated = workflow_manager.update_workflow(workflow.id, {"status": "active"})
        assert activated.status == WorkflowStatus.ACTIVE

    def test_update_keeps_statistics(self, workflow_manager, store):
        workflow = workflow_manager.create_workflow(draft())
        store.record_execution_result(workflow.id, success=True, duration_ms=120.0)

        updated = workflow_manager.update_workflow(workflow.id, {"description": "changed"})

        assert updated.statistics.total_executions == 1
        assert updated.statistics.avg_execution_time == 120.0

    def test_delete(self, workflow_manager):
        workflow = workflow_manager.create_workflow(draft())

        workflow_manager.delete_workflow(workflow.id)

        with pytest.raises(NotFoundError):
            workflow_manager.get_workflow(workflow.id)
        with pytest.raises(NotFoundError):
            workflow_manager.delete_workflow(workflow.id)

    def test_list_filters_and_order(self, workflow_manager):
        first = workflow_manager.create_workflow(draft(name="first", created_by="ana"))
        workflow_manager.create_workflow(draft(name="second", created_by="ben"))
        workflow_manager.create_workflow(
            build_workflow([trigger()], [], name="third", created_by="ana")
        )
        workflow_manager.update_workflow(first.id, {"description": "touched"})

        by_ana = workflow_manager.list_workflows(created_by="ana")
        assert [w.name for w in by_ana] == ["first", "third"]

        active = workflow_manager.list_workflows(status=WorkflowStatus.ACTIVE)
        assert [w.name for w in active] == ["third"]

        assert len(workflow_manager.list_workflows()) == 3


class TestNodes:

    def test_add_node(self, workflow_manager):
        workflow = workflow_manager.create_workflow(draft())

        node = workflow_manager.add_node(workflow.id, {"type": "trigger", "name": "Start"})

        assert node.id.startswith("node_")
        assert workflow_manager.get_workflow(workflow.id).get_node(node.id).name == "Start"

    def test_add_invalid_node(self, workflow_manager):
        workflow = workflow_manager.create_workflow(draft())

        with pytest.raises(WorkflowValidationError) as exc_info:
            workflow_manager.add_node(workflow.id, {"type": "action", "config": {}})

        assert "Action node must have an action type" in exc_info.value.validation_errors

    def test_add_duplicate_node_id(self, workflow_manager):
        workflow = workflow_manager.create_workflow(draft())
        workflow_manager.add_node(workflow.id, trigger("t"))

        with pytest.raises(WorkflowValidationError):
            workflow_manager.add_node(workflow.id, record("t"))

    def test_second_trigger_rejected(self, workflow_manager):
        workflow = workflow_manager.create_workflow(draft())
        workflow_manager.add_node(workflow.id, trigger("t1"))

        with pytest.raises(WorkflowValidationError):
            workflow_manager.add_node(workflow.id, trigger("t2"))

    def test_orphan_node_rejected_for_active_workflow(self, workflow_manager):
        workflow = workflow_manager.create_workflow(build_workflow([trigger()], []))

        with pytest.raises(WorkflowValidationError, match="orphaned"):
            workflow_manager.add_node(workflow.id, record("loose"))

    def test_update_node_replaces_config(self, workflow_manager):
        workflow = workflow_manager.create_workflow(
            build_workflow([trigger(), condition("check", "{{a}} == 1")], chain("trigger", "check"))
        )

        node = workflow_manager.update_node(
            workflow.id, "check", {"name": "Check B", "config": {"condition": "{{b}} > 2"}}
        )

        assert node.name == "Check B"
        assert isinstance(node.config, ConditionNodeConfig)
        assert workflow_manager.get_workflow(workflow.id).get_node("check").config.condition == "{{b}} > 2"

    def test_update_node_invalid_config(self, workflow_manager):
        workflow = workflow_manager.create_workflow(
            build_workflow([trigger(), condition("check", "{{a}} == 1")], chain("trigger", "check"))
        )

        with pytest.raises(WorkflowValidationError, match="Condition node must have a condition"):
            workflow_manager.update_node(workflow.id, "check", {"config": {"condition": ""}})

    def test_update_missing_node(self, workflow_manager):
        workflow = workflow_manager.create_workflow(draft())

        with pytest.raises(NotFoundError):
            workflow_manager.update_node(workflow.id, "ghost", {"name": "x"})

    def test_remove_node_drops_its_connections(self, workflow_manager):
        workflow = workflow_manager.create_workflow(
            build_workflow([trigger(), record("a"), record("b")], chain("trigger", "a", "b"), status=WorkflowStatus.DRAFT)
        )

        workflow_manager.remove_node(workflow.id, "a")

        stored = workflow_manager.get_workflow(workflow.id)
        assert [n.id for n in stored.nodes] == ["trigger", "b"]
        assert stored.connections == []


class TestConnections:

    @pytest.fixture
    def workflow(self, workflow_manager):
        return workflow_manager.create_workflow(
            build_workflow([trigger(), record("a"), record("b")], [], status=WorkflowStatus.DRAFT)
        )

    def test_add_connection(self, workflow_manager, workflow):
        connection = workflow_manager.add_connection(workflow.id, "trigger", "a", condition="{{x}} == 1", label="yes")

        stored = workflow_manager.get_workflow(workflow.id).get_connection(connection.id)
        assert stored.condition == "{{x}} == 1"
        assert stored.label == "yes"

    def test_duplicate_connection(self, workflow_manager, workflow):
        workflow_manager.add_connection(workflow.id, "trigger", "a")

        with pytest.raises(ConflictError, match=CONNECTION_EXISTS):
            workflow_manager.add_connection(workflow.id, "trigger", "a")

    def test_missing_target(self, workflow_manager, workflow):
        with pytest.raises(WorkflowValidationError) as exc_info:
            workflow_manager.add_connection(workflow.id, "trigger", "ghost")
        assert TARGET_NOT_FOUND in exc_info.value.validation_errors

    def test_cycle_rejected(self, workflow_manager, workflow):
        workflow_manager.add_connection(workflow.id, "trigger", "a")
        workflow_manager.add_connection(workflow.id, "a", "b")

        with pytest.raises(WorkflowValidationError) as exc_info:
            workflow_manager.add_connection(workflow.id, "b", "a")

        assert CIRCULAR_DEPENDENCIES in exc_info.value.validation_errors
        assert len(workflow_manager.get_workflow(workflow.id).connections) == 2

    def test_remove_connection(self, workflow_manager, workflow):
        connection = workflow_manager.add_connection(workflow.id, "trigger", "a")

        workflow_manager.remove_connection(workflow.id, connection.id)

        assert workflow_manager.get_workflow(workflow.id).connections == []
        with pytest.raises(NotFoundError):
            workflow_manager.remove_connection(workflow.id, connection.id)


class TestTemplates:

    @pytest.fixture
    def template(self, workflow_manager):
        blueprint = build_workflow([trigger(), record("a")], chain("trigger", "a"))
        return workflow_manager.create_template(WorkflowTemplate(
            name="Lead Nurture",
            category="marketing",
            tags=["email"],
            nodes=blueprint.nodes,
            connections=blueprint.connections,
            variables={"tier": "gold"},
        ))

    def test_create_workflow_from_template(self, workflow_manager, store, template):
        workflow = workflow_manager.create_workflow_from_template(template.id)

        assert workflow.name == "Lead Nurture - Copy"
        assert workflow.status == WorkflowStatus.DRAFT
        assert workflow.id != template.id
        assert [n.id for n in workflow.nodes] == ["trigger", "a"]
        assert workflow.variables == {"tier": "gold"}
        assert store.get_template(template.id).usage_count == 1

    def test_customizations_override_template(self, workflow_manager, template):
        workflow = workflow_manager.create_workflow_from_template(
            template.id, {"name": "My Nurture", "created_by": "ana", "status": "active"}
        )

        assert workflow.name == "My Nurture"
        assert workflow.created_by == "ana"
        assert workflow.status == WorkflowStatus.DRAFT

    def test_list_templates_by_usage(self, workflow_manager, template):
        other = workflow_manager.create_template(WorkflowTemplate(name="Other", category="marketing"))
        workflow_manager.create_template(WorkflowTemplate(name="Private", category="marketing", is_public=False))
        workflow_manager.create_template(WorkflowTemplate(name="Sales", category="sales"))
        workflow_manager.create_workflow_from_template(other.id)
        workflow_manager.create_workflow_from_template(other.id)
        workflow_manager.create_workflow_from_template(template.id)

        listed = workflow_manager.list_templates(category="marketing")

        assert [t.name for t in listed] == ["Other", "Lead Nurture"]
        assert len(workflow_manager.list_templates()) == 3

    def test_missing_template(self, workflow_manager):
        with pytest.raises(NotFoundError):
            workflow_manager.create_workflow_from_template("template_missing")

    def test_template_with_cycle_rejected(self, workflow_manager):
        blueprint = build_workflow(
            [trigger(), record("a"), record("b")],
            chain("trigger", "a", "b") + chain("b", "a")
        )
        with pytest.raises(WorkflowValidationError):
            workflow_manager.create_template(WorkflowTemplate(
                name="Loop", nodes=blueprint.nodes, connections=blueprint.connections
            ))
