"""Database models and storage layer."""

from .database import (
    Base,
    create_database_engine,
    create_session_factory,
    create_tables,
    drop_tables,
    get_database_engine,
    get_session_factory,
    reset_database_engine,
)
from .models import WorkflowModel, ExecutionModel, WorkflowTemplateModel, ContactModel
from .store import WorkflowStore

__all__ = [
    "Base",
    "create_database_engine",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "get_database_engine",
    "get_session_factory",
    "reset_database_engine",
    "WorkflowModel",
    "ExecutionModel",
    "WorkflowTemplateModel",
    "ContactModel",
    "WorkflowStore",
]
