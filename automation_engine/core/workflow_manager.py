"""Workflow Manager for validated workflow, node, connection and template changes."""

import copy
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..models.core import (
    Connection,
    Node,
    ValidationResult,
    Workflow,
    WorkflowStatistics,
    WorkflowStatus,
    WorkflowTemplate,
    generate_id,
)
from ..storage.store import WorkflowStore
from .exceptions import ConflictError, NotFoundError, WorkflowValidationError
from .logging import get_logger
from .validator import CONNECTION_EXISTS, WorkflowValidator

logger = get_logger(__name__)

# Fields callers may change through update_workflow
UPDATABLE_WORKFLOW_FIELDS = {
    "name", "description", "status", "trigger_type", "nodes",
    "connections", "variables", "settings",
}

UPDATABLE_NODE_FIELDS = {"type", "name", "description", "position", "config", "status"}


def _pydantic_errors(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


class WorkflowManager:
    """Manages workflow definitions; every mutation is validated before it is stored.

    Draft workflows only need to pass the integrity checks, so they can be
    built up one node at a time. Saving with any other status requires a
    fully valid graph.
    """

    def __init__(self, store: WorkflowStore, validator: Optional[WorkflowValidator] = None):
        self.store = store
        self.validator = validator or WorkflowValidator()
        self._lock = threading.RLock()

    def validate_workflow(self, workflow: Workflow) -> ValidationResult:
        """Run the full validation used before a workflow may be activated."""
        return self.validator.validate(workflow)

    def validate_for_status(self, workflow: Workflow) -> ValidationResult:
        """Integrity checks for drafts, full validation for every other status."""
        if workflow.status == WorkflowStatus.DRAFT:
            return self.validator.validate_integrity(workflow)
        return self.validator.validate(workflow)

    def create_workflow(self, workflow: Workflow) -> Workflow:
        """
        Store a new workflow.

        Args:
            workflow: The workflow to create; its statistics are reset

        Returns:
            Workflow: The stored workflow

        Raises:
            WorkflowValidationError: If the graph is not savable with its status
            ConflictError: If a workflow with the same id already exists
        """
        logger.info(f"Creating new workflow: {workflow.name}")

        now = datetime.utcnow()
        workflow = workflow.model_copy(deep=True, update={
            "statistics": WorkflowStatistics(),
            "created_at": now,
            "updated_at": now,
        })

        with self._lock:
            if self.store.get_workflow(workflow.id) is not None:
                raise ConflictError(f"Workflow '{workflow.id}' already exists", workflow_id=workflow.id)
            self._check_savable(workflow)
            saved = self.store.upsert_workflow(workflow)

        logger.info(f"Created workflow '{saved.name}' with ID: {saved.id}")
        return saved

    def get_workflow(self, workflow_id: str) -> Workflow:
        """
        Retrieve a workflow by its ID.

        Raises:
            NotFoundError: If the workflow does not exist
        """
        workflow = self.store.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError(
                f"Workflow '{workflow_id}' not found",
                resource_type="workflow",
                resource_id=workflow_id
            )
        return workflow

    def list_workflows(
        self,
        created_by: Optional[str] = None,
        status: Optional[WorkflowStatus] = None
    ) -> List[Workflow]:
        """Workflows filtered by creator and status, most recently updated first."""
        return self.store.list_workflows(created_by=created_by, status=status)

    def update_workflow(self, workflow_id: str, updates: Dict[str, Any]) -> Workflow:
        """
        Apply field updates to a workflow.

        Args:
            workflow_id: ID of the workflow to update
            updates: New values for any of the updatable fields

        Returns:
            Workflow: The stored workflow

        Raises:
            NotFoundError: If the workflow does not exist
            WorkflowValidationError: If a field is not updatable or the result is invalid
        """
        unknown = set(updates) - UPDATABLE_WORKFLOW_FIELDS
        if unknown:
            raise WorkflowValidationError(
                f"Cannot update fields: {', '.join(sorted(unknown))}",
                validation_errors=[f"Field '{name}' is not updatable" for name in sorted(unknown)],
                workflow_id=workflow_id
            )

        with self._lock:
            existing = self.get_workflow(workflow_id)
            data = existing.model_dump()
            data.update(copy.deepcopy(updates))
            data["updated_at"] = datetime.utcnow()
            candidate = self._build_workflow(data)

            self._check_savable(candidate)
            saved = self.store.upsert_workflow(candidate)

        logger.info(f"Updated workflow {workflow_id}: {', '.join(sorted(updates)) or 'no fields'}")
        return saved

    def delete_workflow(self, workflow_id: str) -> None:
        """
        Delete a workflow and its executions.

        Raises:
            NotFoundError: If the workflow does not exist
            ConflictError: If any of its executions is still running
        """
        with self._lock:
            if not self.store.delete_workflow_data(workflow_id):
                raise NotFoundError(
                    f"Workflow '{workflow_id}' not found",
                    resource_type="workflow",
                    resource_id=workflow_id
                )
        logger.info(f"Deleted workflow {workflow_id}")

    def add_node(self, workflow_id: str, node_data: Dict[str, Any]) -> Node:
        """
        Add a node to a workflow.

        Args:
            workflow_id: ID of the workflow
            node_data: Raw node fields; ``id`` is generated when missing

        Returns:
            Node: The stored node

        Raises:
            NotFoundError: If the workflow does not exist
            WorkflowValidationError: If the node or resulting workflow is invalid
        """
        node = self._build_node(workflow_id, node_data)

        with self._lock:
            workflow = self.get_workflow(workflow_id)
            if workflow.get_node(node.id) is not None:
                raise WorkflowValidationError(
                    f"Node '{node.id}' already exists",
                    validation_errors=[f"Duplicate node id: {node.id}"],
                    workflow_id=workflow_id
                )

            workflow.nodes.append(node)
            self._save_changed(workflow)

        logger.info(f"Added {node.type.value} node {node.id} to workflow {workflow_id}")
        return node

    def update_node(self, workflow_id: str, node_id: str, updates: Dict[str, Any]) -> Node:
        """
        Update a node's fields; ``config`` is replaced as a whole.

        Raises:
            NotFoundError: If the workflow or node does not exist
            WorkflowValidationError: If the updated node or workflow is invalid
        """
        unknown = set(updates) - UPDATABLE_NODE_FIELDS
        if unknown:
            raise WorkflowValidationError(
                f"Cannot update node fields: {', '.join(sorted(unknown))}",
                validation_errors=[f"Field '{name}' is not updatable" for name in sorted(unknown)],
                workflow_id=workflow_id
            )

        with self._lock:
            workflow = self.get_workflow(workflow_id)
            existing = self._require_node(workflow, node_id)

            data = existing.model_dump()
            data.update(copy.deepcopy(updates))
            data["id"] = node_id
            data["updated_at"] = datetime.utcnow()
            node = self._build_node(workflow_id, data)

            workflow.nodes = [node if n.id == node_id else n for n in workflow.nodes]
            self._save_changed(workflow)

        logger.info(f"Updated node {node_id} in workflow {workflow_id}")
        return node

    def remove_node(self, workflow_id: str, node_id: str) -> None:
        """
        Remove a node and every connection that references it.

        Raises:
            NotFoundError: If the workflow or node does not exist
            WorkflowValidationError: If the remaining workflow is not savable with its status
        """
        with self._lock:
            workflow = self.get_workflow(workflow_id)
            self._require_node(workflow, node_id)

            workflow.nodes = [n for n in workflow.nodes if n.id != node_id]
            removed = [
                c.id for c in workflow.connections
                if c.source_node_id == node_id or c.target_node_id == node_id
            ]
            workflow.connections = [c for c in workflow.connections if c.id not in removed]
            self._save_changed(workflow)

        logger.info(f"Removed node {node_id} and {len(removed)} connections from workflow {workflow_id}")

    def add_connection(
        self,
        workflow_id: str,
        source_node_id: str,
        target_node_id: str,
        condition: Optional[str] = None,
        label: Optional[str] = None
    ) -> Connection:
        """
        Connect two nodes of a workflow.

        Raises:
            NotFoundError: If the workflow does not exist
            ConflictError: If the two nodes are already connected in this direction
            WorkflowValidationError: If an endpoint is missing or the connection creates a cycle
        """
        try:
            connection = Connection(
                source_node_id=source_node_id,
                target_node_id=target_node_id,
                condition=condition,
                label=label
            )
        except ValidationError as e:
            errors = _pydantic_errors(e)
            raise WorkflowValidationError(
                f"Invalid connection: {'; '.join(errors)}",
                validation_errors=errors,
                workflow_id=workflow_id
            )

        with self._lock:
            workflow = self.get_workflow(workflow_id)

            result = self.validator.validate_connection(workflow, connection)
            if not result.is_valid:
                if CONNECTION_EXISTS in result.errors:
                    raise ConflictError(CONNECTION_EXISTS, workflow_id=workflow_id)
                raise WorkflowValidationError(
                    f"Invalid connection: {'; '.join(result.errors)}",
                    validation_errors=result.errors,
                    workflow_id=workflow_id
                )

            workflow.connections.append(connection)
            self._save_changed(workflow)

        logger.info(f"Connected {source_node_id} -> {target_node_id} in workflow {workflow_id}")
        return connection

    def remove_connection(self, workflow_id: str, connection_id: str) -> None:
        """
        Remove a connection.

        Raises:
            NotFoundError: If the workflow or connection does not exist
            WorkflowValidationError: If the remaining workflow is not savable with its status
        """
        with self._lock:
            workflow = self.get_workflow(workflow_id)
            if workflow.get_connection(connection_id) is None:
                raise NotFoundError(
                    f"Connection '{connection_id}' not found in workflow '{workflow_id}'",
                    resource_type="connection",
                    resource_id=connection_id
                )

            workflow.connections = [c for c in workflow.connections if c.id != connection_id]
            self._save_changed(workflow)

        logger.info(f"Removed connection {connection_id} from workflow {workflow_id}")

    # Templates

    def list_templates(self, category: Optional[str] = None) -> List[WorkflowTemplate]:
        """Public templates, most used first."""
        return self.store.list_templates(category=category)

    def create_template(self, template: WorkflowTemplate) -> WorkflowTemplate:
        """
        Store a workflow template.

        Raises:
            WorkflowValidationError: If the template graph fails the integrity checks
        """
        blueprint = self._build_workflow({
            "name": template.name,
            "trigger_type": template.trigger_type,
            "nodes": [n.model_dump() for n in template.nodes],
            "connections": [c.model_dump() for c in template.connections],
        })
        result = self.validator.validate_integrity(blueprint)
        if not result.is_valid:
            raise WorkflowValidationError(
                f"Template validation failed: {'; '.join(result.errors)}",
                validation_errors=result.errors
            )

        saved = self.store.upsert_template(template)
        logger.info(f"Created template '{saved.name}' ({saved.category}) with ID: {saved.id}")
        return saved

    def create_workflow_from_template(
        self,
        template_id: str,
        customizations: Optional[Dict[str, Any]] = None
    ) -> Workflow:
        """
        Create a draft workflow from a template and count the template use.

        Args:
            template_id: ID of the template
            customizations: Workflow fields overriding the template's

        Returns:
            Workflow: The new draft, named "<template> - Copy" unless overridden

        Raises:
            NotFoundError: If the template does not exist
            WorkflowValidationError: If the customized workflow is invalid
        """
        template = self.store.get_template(template_id)
        if template is None:
            raise NotFoundError(
                f"Template '{template_id}' not found",
                resource_type="template",
                resource_id=template_id
            )

        data = {
            "description": template.description,
            "trigger_type": template.trigger_type,
            "nodes": [n.model_dump() for n in template.nodes],
            "connections": [c.model_dump() for c in template.connections],
            "variables": copy.deepcopy(template.variables),
            "settings": template.settings.model_dump(),
        }
        data.update({
            key: copy.deepcopy(value)
            for key, value in (customizations or {}).items()
            if key in UPDATABLE_WORKFLOW_FIELDS | {"created_by"}
        })
        data["name"] = (customizations or {}).get("name") or f"{template.name} - Copy"
        data["status"] = WorkflowStatus.DRAFT
        data["id"] = generate_id("workflow")

        workflow = self.create_workflow(self._build_workflow(data))
        self.store.increment_template_usage(template_id)

        logger.info(f"Created workflow {workflow.id} from template {template_id}")
        return workflow

    def _build_workflow(self, data: Dict[str, Any]) -> Workflow:
        try:
            return Workflow.model_validate(data)
        except ValidationError as e:
            errors = _pydantic_errors(e)
            raise WorkflowValidationError(
                f"Invalid workflow: {'; '.join(errors)}",
                validation_errors=errors,
                workflow_id=data.get("id")
            )

    def _build_node(self, workflow_id: str, node_data: Dict[str, Any]) -> Node:
        result = self.validator.validate_node(node_data)
        if not result.is_valid:
            raise WorkflowValidationError(
                f"Invalid node: {'; '.join(result.errors)}",
                validation_errors=result.errors,
                workflow_id=workflow_id
            )
        return Node.model_validate(node_data)

    @staticmethod
    def _require_node(workflow: Workflow, node_id: str) -> Node:
        node = workflow.get_node(node_id)
        if node is None:
            raise NotFoundError(
                f"Node '{node_id}' not found in workflow '{workflow.id}'",
                resource_type="node",
                resource_id=node_id
            )
        return node

    def _save_changed(self, workflow: Workflow) -> Workflow:
        workflow.updated_at = datetime.utcnow()
        self._check_savable(workflow)
        return self.store.upsert_workflow(workflow)

    def _check_savable(self, workflow: Workflow) -> ValidationResult:
        """Raises if the workflow must not be stored with its current status."""
        result = self.validate_for_status(workflow)

        if not result.is_valid:
            error_msg = f"Workflow validation failed: {'; '.join(result.errors)}"
            logger.error(error_msg)
            raise WorkflowValidationError(
                error_msg,
                validation_errors=result.errors,
                workflow_id=workflow.id
            )

        if result.warnings:
            logger.warning(f"Workflow {workflow.id} validation warnings: {'; '.join(result.warnings)}")

        return result
