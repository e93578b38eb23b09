"""Structural validation of workflow graphs."""

from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from pydantic import ValidationError

from ..models.core import (
    Connection,
    Node,
    NodeType,
    ValidationResult,
    Workflow,
)
from .logging import get_logger


logger = get_logger(__name__)

MISSING_TRIGGER = "Workflow must have at least one trigger node"
MULTIPLE_TRIGGERS = "Workflow can only have one trigger node"
CIRCULAR_DEPENDENCIES = "Workflow contains circular dependencies"
SOURCE_NOT_FOUND = "Source node not found"
TARGET_NOT_FOUND = "Target node not found"
CONNECTION_EXISTS = "Connection already exists between these nodes"


class WorkflowValidator:
    """Validates workflow graphs without mutating them.

    Every check appends to the error or warning list instead of stopping at
    the first problem, so callers get the full picture in one pass.
    """

    def validate(self, workflow: Workflow) -> ValidationResult:
        """
        Validate a workflow for execution.

        Args:
            workflow: The workflow to validate

        Returns:
            ValidationResult: Validation results with errors and warnings
        """
        errors: List[str] = []
        warnings: List[str] = []

        self._validate_unique_ids(workflow, errors)
        self._validate_trigger_count(workflow, errors)
        self._validate_orphans(workflow, errors)
        self._validate_references(workflow, errors)
        self._validate_duplicate_connections(workflow, errors)

        trigger = self._first_trigger(workflow)
        if trigger is not None and self._has_cycle(workflow, [trigger.id]):
            errors.append(CIRCULAR_DEPENDENCIES)

        self._validate_reachability(workflow, warnings)

        logger.debug(
            f"Validated workflow {workflow.id}: valid={not errors}, "
            f"errors={len(errors)}, warnings={len(warnings)}"
        )
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def validate_integrity(self, workflow: Workflow) -> ValidationResult:
        """
        Validate the subset of rules that hold even for an unfinished draft.

        Broken references, duplicate ids or pairs, more than one trigger and
        cycles anywhere in the graph are errors. A missing trigger, orphaned
        nodes and unreachable nodes are reported as warnings.
        """
        errors: List[str] = []
        warnings: List[str] = []

        self._validate_unique_ids(workflow, errors)
        self._validate_references(workflow, errors)
        self._validate_duplicate_connections(workflow, errors)

        if len(workflow.trigger_nodes()) > 1:
            errors.append(MULTIPLE_TRIGGERS)
        elif not workflow.trigger_nodes() and workflow.nodes:
            warnings.append(MISSING_TRIGGER)

        if self._has_cycle(workflow, [node.id for node in workflow.nodes]):
            errors.append(CIRCULAR_DEPENDENCIES)

        self._validate_orphans(workflow, warnings)
        self._validate_reachability(workflow, warnings)

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def validate_connection(self, workflow: Workflow, connection: Connection) -> ValidationResult:
        """
        Check a candidate connection against an existing workflow.

        Args:
            workflow: Workflow the connection would be added to
            connection: The candidate connection

        Returns:
            ValidationResult: Invalid if an endpoint is missing or the pair already exists
        """
        errors = []
        node_ids = {node.id for node in workflow.nodes}

        if connection.source_node_id not in node_ids:
            errors.append(SOURCE_NOT_FOUND)
        if connection.target_node_id not in node_ids:
            errors.append(TARGET_NOT_FOUND)

        for existing in workflow.connections:
            if (existing.source_node_id == connection.source_node_id
                    and existing.target_node_id == connection.target_node_id):
                errors.append(CONNECTION_EXISTS)
                break

        return ValidationResult(is_valid=not errors, errors=errors)

    def validate_node(self, node: Union[Node, Dict[str, Any]]) -> ValidationResult:
        """
        Check a node's type and its type-specific configuration.

        Args:
            node: A Node, or the raw dict a Node would be built from

        Returns:
            ValidationResult: Invalid if the config does not satisfy the node type
        """
        data = node.model_dump() if isinstance(node, Node) else dict(node)
        errors: List[str] = []

        node_type = data.get("type")
        config = data.get("config") or {}
        if not isinstance(config, dict):
            errors.append("Node config must be an object")
            return ValidationResult(is_valid=False, errors=errors)

        valid_types = {t.value for t in NodeType}
        type_value = node_type.value if isinstance(node_type, NodeType) else node_type
        if type_value not in valid_types:
            errors.append(f"Unknown node type: {node_type}")
        elif type_value == NodeType.ACTION.value and not config.get("action_type"):
            errors.append("Action node must have an action type")
        elif type_value == NodeType.CONDITION.value and not str(config.get("condition") or "").strip():
            errors.append("Condition node must have a condition")
        elif type_value == NodeType.DELAY.value and not self._is_positive_int(config.get("delay_ms")):
            errors.append("Delay node must have a positive delay_ms")

        if not errors:
            try:
                Node.model_validate(data)
            except ValidationError as e:
                errors.extend(item["msg"] for item in e.errors())

        return ValidationResult(is_valid=not errors, errors=errors)

    @staticmethod
    def _is_positive_int(value: Any) -> bool:
        if isinstance(value, bool):
            return False
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return isinstance(value, int) and value > 0

    @staticmethod
    def _first_trigger(workflow: Workflow) -> Optional[Node]:
        triggers = workflow.trigger_nodes()
        return triggers[0] if triggers else None

    def _validate_unique_ids(self, workflow: Workflow, errors: List[str]):
        for node_id, count in Counter(node.id for node in workflow.nodes).items():
            if count > 1:
                errors.append(f"Duplicate node id: {node_id}")
        for connection_id, count in Counter(c.id for c in workflow.connections).items():
            if count > 1:
                errors.append(f"Duplicate connection id: {connection_id}")

    def _validate_trigger_count(self, workflow: Workflow, errors: List[str]):
        trigger_count = len(workflow.trigger_nodes())
        if trigger_count == 0:
            errors.append(MISSING_TRIGGER)
        elif trigger_count > 1:
            errors.append(MULTIPLE_TRIGGERS)

    def _validate_orphans(self, workflow: Workflow, problems: List[str]):
        """Every non-trigger node must be the target of at least one connection."""
        targets = {c.target_node_id for c in workflow.connections}
        orphaned = [
            node.id for node in workflow.nodes
            if node.type != NodeType.TRIGGER and node.id not in targets
        ]
        if orphaned:
            problems.append(f"Found {len(orphaned)} orphaned nodes: {', '.join(orphaned)}")

    def _validate_references(self, workflow: Workflow, errors: List[str]):
        node_ids = {node.id for node in workflow.nodes}
        for connection in workflow.connections:
            if connection.source_node_id not in node_ids:
                errors.append(
                    f"Connection {connection.id} references non-existent source node: "
                    f"'{connection.source_node_id}'"
                )
            if connection.target_node_id not in node_ids:
                errors.append(
                    f"Connection {connection.id} references non-existent target node: "
                    f"'{connection.target_node_id}'"
                )

    def _validate_duplicate_connections(self, workflow: Workflow, errors: List[str]):
        pairs = Counter((c.source_node_id, c.target_node_id) for c in workflow.connections)
        for (source, target), count in pairs.items():
            if count > 1:
                errors.append(f"Duplicate connection between '{source}' and '{target}'")

    def _validate_reachability(self, workflow: Workflow, warnings: List[str]):
        trigger = self._first_trigger(workflow)
        if trigger is None:
            return

        reachable = self._reachable_from(workflow, trigger.id)
        for node in workflow.nodes:
            if node.id not in reachable:
                warnings.append(f"Node '{node.label}' is not reachable from the trigger")

    @staticmethod
    def _adjacency(workflow: Workflow) -> Dict[str, List[str]]:
        node_ids = {node.id for node in workflow.nodes}
        graph: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
        for connection in workflow.connections:
            if connection.source_node_id in node_ids and connection.target_node_id in node_ids:
                graph[connection.source_node_id].append(connection.target_node_id)
        return graph

    def _reachable_from(self, workflow: Workflow, start: str) -> Set[str]:
        graph = self._adjacency(workflow)
        reachable = {start}
        stack = [start]
        while stack:
            current = stack.pop()
            for neighbor in graph.get(current, []):
                if neighbor not in reachable:
                    reachable.add(neighbor)
                    stack.append(neighbor)
        return reachable

    def _has_cycle(self, workflow: Workflow, start_nodes: Iterable[str]) -> bool:
        """Depth-first search for a back edge into the current path.

        Uses an explicit stack of (node, child iterator) frames so long
        chains cannot exhaust the interpreter's recursion limit.
        """
        graph = self._adjacency(workflow)
        visited: Set[str] = set()

        for start in start_nodes:
            if start in visited or start not in graph:
                continue

            on_path = {start}
            visited.add(start)
            stack = [(start, iter(graph[start]))]

            while stack:
                current, children = stack[-1]
                advanced = False
                for child in children:
                    if child in on_path:
                        return True
                    if child not in visited:
                        visited.add(child)
                        on_path.add(child)
                        stack.append((child, iter(graph[child])))
                        advanced = True
                        break
                if not advanced:
                    stack.pop()
                    on_path.discard(current)

        return False
