"""Persistence of workflows, executions, templates and contacts."""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.error_recovery import STORE_WRITE_RETRY, with_retry
from ..core.exceptions import ConflictError, NotFoundError, StorageError
from ..core.logging import get_logger
from ..models.core import (
    Execution,
    ExecutionStatusEnum,
    Workflow,
    WorkflowStatistics,
    WorkflowStatus,
    WorkflowTemplate,
    generate_id,
)
from .models import ContactModel, ExecutionModel, WorkflowModel, WorkflowTemplateModel

logger = get_logger(__name__)


class WorkflowStore:
    """SQLAlchemy-backed store.

    Each public method runs in its own short transaction. Records are
    last-writer-wins, except workflow statistics, which only
    ``record_execution_result`` writes.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._stats_lock = threading.Lock()

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error during {operation}: {str(e)}")
            raise StorageError(f"Failed to {operation}: {str(e)}", operation=operation)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> str:
        """Round-trip a trivial query; used by the health check."""
        with self._session("ping database") as session:
            session.execute(text("SELECT 1"))
        return "Database connection OK"

    # Workflows

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        with self._session("get workflow") as session:
            row = session.get(WorkflowModel, workflow_id)
            return self._row_to_workflow(row) if row else None

    def list_workflows(
        self,
        created_by: Optional[str] = None,
        status: Optional[WorkflowStatus] = None
    ) -> List[Workflow]:
        """List workflows, most recently updated first."""
        with self._session("list workflows") as session:
            query = session.query(WorkflowModel)
            if created_by is not None:
                query = query.filter(WorkflowModel.created_by == created_by)
            if status is not None:
                query = query.filter(WorkflowModel.status == WorkflowStatus(status).value)
            rows = query.order_by(WorkflowModel.updated_at.desc()).all()
            return [self._row_to_workflow(row) for row in rows]

    @with_retry(STORE_WRITE_RETRY)
    def upsert_workflow(self, workflow: Workflow) -> Workflow:
        """
        Insert or update a workflow definition.

        Statistics columns are written only on insert; on update the stored
        statistics are kept and returned on the result.

        Returns:
            Workflow: The saved workflow with its stored statistics
        """
        with self._session("save workflow") as session:
            row = session.get(WorkflowModel, workflow.id)
            if row is None:
                row = WorkflowModel(id=workflow.id, created_at=workflow.created_at)
                stats = workflow.statistics
                row.total_executions = stats.total_executions
                row.successful_executions = stats.successful_executions
                row.failed_executions = stats.failed_executions
                row.avg_execution_time = stats.avg_execution_time
                row.last_execution = stats.last_execution
                session.add(row)

            row.name = workflow.name
            row.description = workflow.description
            row.status = workflow.status.value
            row.trigger_type = workflow.trigger_type.value
            row.nodes = [node.model_dump(mode="json") for node in workflow.nodes]
            row.connections = [c.model_dump(mode="json") for c in workflow.connections]
            row.variables = workflow.variables
            row.settings = workflow.settings.model_dump(mode="json")
            row.created_by = workflow.created_by
            row.updated_at = workflow.updated_at

            session.flush()
            saved = self._row_to_workflow(row)

        logger.debug(f"Saved workflow {workflow.id} ({workflow.status.value})")
        return saved

    def delete_workflow_data(self, workflow_id: str) -> bool:
        """
        Delete a workflow and all of its executions.

        Returns:
            bool: True if the workflow existed

        Raises:
            ConflictError: If any execution of the workflow is still running
        """
        with self._session("delete workflow") as session:
            row = session.get(WorkflowModel, workflow_id)
            if row is None:
                return False

            running = (
                session.query(ExecutionModel)
                .filter(ExecutionModel.workflow_id == workflow_id)
                .filter(ExecutionModel.status == ExecutionStatusEnum.RUNNING.value)
                .count()
            )
            if running:
                raise ConflictError(
                    f"Cannot delete workflow with {running} running executions",
                    workflow_id=workflow_id
                )

            deleted = (
                session.query(ExecutionModel)
                .filter(ExecutionModel.workflow_id == workflow_id)
                .delete(synchronize_session=False)
            )
            session.delete(row)

        logger.info(f"Deleted workflow {workflow_id} and {deleted} executions")
        return True

    def record_execution_result(
        self,
        workflow_id: str,
        success: bool,
        duration_ms: float,
        finished_at: Optional[datetime] = None
    ) -> WorkflowStatistics:
        """
        Fold one finished run into the workflow statistics.

        The read-modify-write happens inside one transaction while holding
        the store's statistics lock, so concurrent runs never lose updates.

        Args:
            workflow_id: Workflow the run belongs to
            success: Whether the run completed
            duration_ms: Wall-clock duration of the run
            finished_at: When the run ended; defaults to now

        Returns:
            WorkflowStatistics: The updated statistics

        Raises:
            NotFoundError: If the workflow no longer exists
        """
        with self._stats_lock:
            with self._session("record execution result") as session:
                row = (
                    session.query(WorkflowModel)
                    .filter(WorkflowModel.id == workflow_id)
                    .with_for_update()
                    .first()
                )
                if row is None:
                    raise NotFoundError(
                        f"Workflow '{workflow_id}' not found",
                        resource_type="workflow",
                        resource_id=workflow_id
                    )

                total = (row.total_executions or 0) + 1
                previous_avg = row.avg_execution_time or 0.0
                row.total_executions = total
                if success:
                    row.successful_executions = (row.successful_executions or 0) + 1
                else:
                    row.failed_executions = (row.failed_executions or 0) + 1
                row.avg_execution_time = (previous_avg * (total - 1) + duration_ms) / total
                row.last_execution = finished_at or datetime.utcnow()

                session.flush()
                return self._row_to_statistics(row)

    # Executions

    @with_retry(STORE_WRITE_RETRY)
    def upsert_execution(self, execution: Execution) -> None:
        with self._session("save execution") as session:
            row = session.get(ExecutionModel, execution.id)
            if row is None:
                row = ExecutionModel(id=execution.id, workflow_id=execution.workflow_id)
                session.add(row)

            data = execution.model_dump(mode="json")
            row.status = execution.status.value
            row.trigger_data = data["trigger_data"]
            row.execution_log = data["execution_log"]
            row.start_time = execution.start_time
            row.end_time = execution.end_time
            row.duration_ms = execution.duration_ms
            row.error_message = execution.error_message

    def get_execution(self, execution_id: str) -> Optional[Execution]:
        with self._session("get execution") as session:
            row = session.get(ExecutionModel, execution_id)
            return self._row_to_execution(row) if row else None

    def list_executions(self, workflow_id: str, limit: int = 50) -> List[Execution]:
        """Executions of a workflow, newest first."""
        with self._session("list executions") as session:
            rows = (
                session.query(ExecutionModel)
                .filter(ExecutionModel.workflow_id == workflow_id)
                .order_by(ExecutionModel.start_time.desc())
                .limit(limit)
                .all()
            )
            return [self._row_to_execution(row) for row in rows]

    def list_running_executions(self, workflow_id: Optional[str] = None) -> List[Execution]:
        with self._session("list running executions") as session:
            query = session.query(ExecutionModel).filter(
                ExecutionModel.status == ExecutionStatusEnum.RUNNING.value
            )
            if workflow_id is not None:
                query = query.filter(ExecutionModel.workflow_id == workflow_id)
            return [self._row_to_execution(row) for row in query.all()]

    # Templates

    def get_template(self, template_id: str) -> Optional[WorkflowTemplate]:
        with self._session("get template") as session:
            row = session.get(WorkflowTemplateModel, template_id)
            return self._row_to_template(row) if row else None

    def list_templates(self, category: Optional[str] = None) -> List[WorkflowTemplate]:
        """Public templates, most used first."""
        with self._session("list templates") as session:
            query = session.query(WorkflowTemplateModel).filter(WorkflowTemplateModel.is_public.is_(True))
            if category is not None:
                query = query.filter(WorkflowTemplateModel.category == category)
            rows = query.order_by(WorkflowTemplateModel.usage_count.desc()).all()
            return [self._row_to_template(row) for row in rows]

    @with_retry(STORE_WRITE_RETRY)
    def upsert_template(self, template: WorkflowTemplate) -> WorkflowTemplate:
        with self._session("save template") as session:
            row = session.get(WorkflowTemplateModel, template.id)
            if row is None:
                row = WorkflowTemplateModel(id=template.id, created_at=template.created_at)
                session.add(row)

            row.name = template.name
            row.description = template.description
            row.category = template.category
            row.tags = list(template.tags)
            row.trigger_type = template.trigger_type.value
            row.nodes = [node.model_dump(mode="json") for node in template.nodes]
            row.connections = [c.model_dump(mode="json") for c in template.connections]
            row.variables = template.variables
            row.settings = template.settings.model_dump(mode="json")
            row.usage_count = template.usage_count
            row.is_public = template.is_public
            row.created_by = template.created_by

            session.flush()
            return self._row_to_template(row)

    def increment_template_usage(self, template_id: str) -> None:
        with self._session("increment template usage") as session:
            updated = (
                session.query(WorkflowTemplateModel)
                .filter(WorkflowTemplateModel.id == template_id)
                .update(
                    {WorkflowTemplateModel.usage_count: WorkflowTemplateModel.usage_count + 1},
                    synchronize_session=False
                )
            )
            if not updated:
                raise NotFoundError(
                    f"Template '{template_id}' not found",
                    resource_type="template",
                    resource_id=template_id
                )

    # Contacts

    def create_contact(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a contact; unknown keys are kept in ``attributes``."""
        known = {"email", "first_name", "last_name", "phone"}
        with self._session("create contact") as session:
            row = ContactModel(
                id=generate_id("contact"),
                email=data.get("email"),
                first_name=data.get("first_name"),
                last_name=data.get("last_name"),
                phone=data.get("phone"),
                attributes={k: v for k, v in data.items() if k not in known},
            )
            session.add(row)
            session.flush()
            return self._row_to_contact(row)

    def get_contact(self, contact_id: str) -> Optional[Dict[str, Any]]:
        with self._session("get contact") as session:
            row = session.get(ContactModel, contact_id)
            return self._row_to_contact(row) if row else None

    def update_contact(self, contact_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply field updates to a contact.

        Raises:
            NotFoundError: If the contact does not exist
        """
        with self._session("update contact") as session:
            row = session.get(ContactModel, contact_id)
            if row is None:
                raise NotFoundError(
                    f"Contact '{contact_id}' not found",
                    resource_type="contact",
                    resource_id=contact_id
                )

            attributes = dict(row.attributes or {})
            for key, value in updates.items():
                if key in ("email", "first_name", "last_name", "phone"):
                    setattr(row, key, value)
                else:
                    attributes[key] = value
            row.attributes = attributes
            row.updated_at = datetime.utcnow()

            session.flush()
            return self._row_to_contact(row)

    # Row conversion

    @staticmethod
    def _row_to_statistics(row: WorkflowModel) -> WorkflowStatistics:
        return WorkflowStatistics(
            total_executions=row.total_executions or 0,
            successful_executions=row.successful_executions or 0,
            failed_executions=row.failed_executions or 0,
            avg_execution_time=row.avg_execution_time or 0.0,
            last_execution=row.last_execution,
        )

    def _row_to_workflow(self, row: WorkflowModel) -> Workflow:
        return Workflow.model_validate({
            "id": row.id,
            "name": row.name,
            "description": row.description,
            "status": row.status,
            "trigger_type": row.trigger_type,
            "nodes": row.nodes or [],
            "connections": row.connections or [],
            "variables": row.variables or {},
            "settings": row.settings or {},
            "statistics": self._row_to_statistics(row),
            "created_by": row.created_by,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        })

    @staticmethod
    def _row_to_execution(row: ExecutionModel) -> Execution:
        return Execution.model_validate({
            "id": row.id,
            "workflow_id": row.workflow_id,
            "status": row.status,
            "trigger_data": row.trigger_data or {},
            "execution_log": row.execution_log or [],
            "start_time": row.start_time,
            "end_time": row.end_time,
            "duration_ms": row.duration_ms,
            "error_message": row.error_message,
        })

    @staticmethod
    def _row_to_template(row: WorkflowTemplateModel) -> WorkflowTemplate:
        return WorkflowTemplate.model_validate({
            "id": row.id,
            "name": row.name,
            "description": row.description,
            "category": row.category,
            "tags": row.tags or [],
            "trigger_type": row.trigger_type,
            "nodes": row.nodes or [],
            "connections": row.connections or [],
            "variables": row.variables or {},
            "settings": row.settings or {},
            "usage_count": row.usage_count or 0,
            "is_public": row.is_public,
            "created_by": row.created_by,
            "created_at": row.created_at,
        })

    @staticmethod
    def _row_to_contact(row: ContactModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "email": row.email,
            "first_name": row.first_name,
            "last_name": row.last_name,
            "phone": row.phone,
            "attributes": dict(row.attributes or {}),
            "created_at": row.created_at.isoformat() if row.created_at else None,
            "updated_at": row.updated_at.isoformat() if row.updated_at else None,
        }
