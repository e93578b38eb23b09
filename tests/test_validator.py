"""Tests for workflow graph validation."""

import pytest

from automation_engine.core.validator import (
    CIRCULAR_DEPENDENCIES,
    CONNECTION_EXISTS,
    MISSING_TRIGGER,
    MULTIPLE_TRIGGERS,
    SOURCE_NOT_FOUND,
    TARGET_NOT_FOUND,
    WorkflowValidator,
)
from automation_engine.models.core import Connection, WorkflowStatus

from builders import build_workflow, chain, condition, connect, record, trigger


@pytest.fixture
def validator():
    return WorkflowValidator()


class TestValidate:
    """Full validation required for execution."""

    def test_valid_workflow(self, validator):
        workflow = build_workflow(
            [trigger(), condition("check", "{{score}} > 50"), record("a")],
            chain("trigger", "check", "a")
        )
        result = validator.validate(workflow)
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_missing_trigger(self, validator):
        workflow = build_workflow([record("a")], [])
        result = validator.validate(workflow)
        assert not result.is_valid
        assert MISSING_TRIGGER in result.errors

    def test_multiple_triggers(self, validator):
        workflow = build_workflow([trigger("t1"), trigger("t2")], [])
        result = validator.validate(workflow)
        assert MULTIPLE_TRIGGERS in result.errors

    def test_orphaned_nodes(self, validator):
        workflow = build_workflow([trigger(), record("a"), record("b")], [connect("trigger", "a")])
        result = validator.validate(workflow)
        assert not result.is_valid
        assert "Found 1 orphaned nodes: b" in result.errors

    def test_broken_reference(self, validator):
        workflow = build_workflow(
            [trigger(), record("a")],
            [connect("trigger", "a"), connect("a", "ghost", connection_id="c-ghost")]
        )
        result = validator.validate(workflow)
        assert not result.is_valid
        assert "Connection c-ghost references non-existent target node: 'ghost'" in result.errors

    def test_duplicate_connection_pair(self, validator):
        workflow = build_workflow(
            [trigger(), record("a")],
            [connect("trigger", "a"), connect("trigger", "a")]
        )
        result = validator.validate(workflow)
        assert "Duplicate connection between 'trigger' and 'a'" in result.errors

    def test_cycle_reachable_from_trigger(self, validator):
        workflow = build_workflow(
            [trigger(), record("a"), record("b")],
            [connect("trigger", "a"), connect("a", "b"), connect("b", "a")]
        )
        result = validator.validate(workflow)
        assert not result.is_valid
        assert CIRCULAR_DEPENDENCIES in result.errors

    def test_self_loop(self, validator):
        workflow = build_workflow([trigger(), record("a")], [connect("trigger", "a"), connect("a", "a")])
        assert CIRCULAR_DEPENDENCIES in validator.validate(workflow).errors

    def test_diamond_is_not_a_cycle(self, validator):
        workflow = build_workflow(
            [trigger(), record("a"), record("b"), record("c")],
            [connect("trigger", "a"), connect("trigger", "b"), connect("a", "c"), connect("b", "c")]
        )
        assert validator.validate(workflow).is_valid

    def test_unreachable_nodes_are_warnings(self, validator):
        # b and c feed each other but nothing reaches them from the trigger
        workflow = build_workflow(
            [trigger(), record("a"), record("b"), record("c")],
            [connect("trigger", "a"), connect("b", "c"), connect("c", "b")]
        )
        result = validator.validate(workflow)
        assert result.is_valid
        assert "Node 'b' is not reachable from the trigger" in result.warnings
        assert "Node 'c' is not reachable from the trigger" in result.warnings

    def test_all_problems_reported_together(self, validator):
        workflow = build_workflow(
            [trigger("t1"), trigger("t2"), record("a")],
            [connect("t1", "missing")]
        )
        result = validator.validate(workflow)
        assert MULTIPLE_TRIGGERS in result.errors
        assert any("orphaned" in error for error in result.errors)
        assert any("non-existent target" in error for error in result.errors)

    def test_long_chain_does_not_recurse(self, validator):
        ids = ["trigger"] + [f"n{i}" for i in range(3000)]
        nodes = [trigger()] + [record(node_id) for node_id in ids[1:]]
        workflow = build_workflow(nodes, chain(*ids))
        assert validator.validate(workflow).is_valid


class TestValidateIntegrity:
    """Rules that hold for unfinished drafts."""

    def test_incomplete_draft_has_only_warnings(self, validator):
        workflow = build_workflow([record("a")], [], status=WorkflowStatus.DRAFT)
        result = validator.validate_integrity(workflow)
        assert result.is_valid
        assert MISSING_TRIGGER in result.warnings
        assert "Found 1 orphaned nodes: a" in result.warnings

    def test_empty_draft(self, validator):
        result = validator.validate_integrity(build_workflow([], [], status=WorkflowStatus.DRAFT))
        assert result.is_valid
        assert result.warnings == []

    def test_cycle_anywhere_is_an_error(self, validator):
        workflow = build_workflow(
            [trigger(), record("b"), record("c")],
            [connect("b", "c"), connect("c", "b")],
            status=WorkflowStatus.DRAFT
        )
        result = validator.validate_integrity(workflow)
        assert CIRCULAR_DEPENDENCIES in result.errors

    def test_multiple_triggers_is_an_error(self, validator):
        workflow = build_workflow([trigger("t1"), trigger("t2")], [], status=WorkflowStatus.DRAFT)
        assert MULTIPLE_TRIGGERS in validator.validate_integrity(workflow).errors


class TestValidateConnection:

    def test_missing_endpoints(self, validator):
        workflow = build_workflow([trigger()], [])
        result = validator.validate_connection(workflow, Connection(source_node_id="x", target_node_id="y"))
        assert result.errors == [SOURCE_NOT_FOUND, TARGET_NOT_FOUND]

    def test_existing_pair_rejected(self, validator):
        workflow = build_workflow([trigger(), record("a")], [connect("trigger", "a")])
        result = validator.validate_connection(workflow, Connection(source_node_id="trigger", target_node_id="a"))
        assert not result.is_valid
        assert CONNECTION_EXISTS in result.errors

    def test_reverse_direction_is_a_new_pair(self, validator):
        workflow = build_workflow([trigger(), record("a")], [connect("trigger", "a")])
        result = validator.validate_connection(workflow, Connection(source_node_id="a", target_node_id="trigger"))
        assert result.is_valid


class TestValidateNode:

    @pytest.mark.parametrize("node,message", [
        ({"type": "action", "config": {}}, "Action node must have an action type"),
        ({"type": "condition", "config": {"condition": "  "}}, "Condition node must have a condition"),
        ({"type": "delay", "config": {"delay_ms": 0}}, "Delay node must have a positive delay_ms"),
        ({"type": "delay", "config": {"delay_ms": "soon"}}, "Delay node must have a positive delay_ms"),
        ({"type": "teleport", "config": {}}, "Unknown node type: teleport"),
    ])
    def test_invalid_nodes(self, validator, node, message):
        result = validator.validate_node(node)
        assert not result.is_valid
        assert message in result.errors

    def test_valid_nodes(self, validator):
        assert validator.validate_node(record("a")).is_valid
        assert validator.validate_node({"type": "delay", "config": {"delay_ms": 250}}).is_valid
        assert validator.validate_node({"type": "split", "config": {}}).is_valid
