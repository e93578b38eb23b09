"""SQLAlchemy database models for the automation engine."""

from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Text, JSON, Integer, Float, ForeignKey
from sqlalchemy.orm import relationship
from .database import Base


class WorkflowModel(Base):
    """Database model for workflows."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, index=True)  # draft, active, paused, archived
    trigger_type = Column(String, nullable=False)
    nodes = Column(JSON, nullable=False, default=list)
    connections = Column(JSON, nullable=False, default=list)
    variables = Column(JSON, nullable=False, default=dict)
    settings = Column(JSON, nullable=False, default=dict)
    created_by = Column(String, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    # Statistics live in their own columns so that workflow saves and run
    # bookkeeping never overwrite each other.
    total_executions = Column(Integer, nullable=False, default=0)
    successful_executions = Column(Integer, nullable=False, default=0)
    failed_executions = Column(Integer, nullable=False, default=0)
    avg_execution_time = Column(Float, nullable=False, default=0.0)
    last_execution = Column(DateTime)

    executions = relationship("ExecutionModel", back_populates="workflow")


class ExecutionModel(Base):
    """Database model for workflow executions."""
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    status = Column(String, nullable=False, index=True)  # running, completed, failed, cancelled
    trigger_data = Column(JSON)
    execution_log = Column(JSON)  # Ordered list of log entries
    start_time = Column(DateTime, default=datetime.utcnow)
    end_time = Column(DateTime)
    duration_ms = Column(Float)
    error_message = Column(Text)

    workflow = relationship("WorkflowModel", back_populates="executions")


class WorkflowTemplateModel(Base):
    """Database model for reusable workflow templates."""
    __tablename__ = "workflow_templates"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    category = Column(String, nullable=False, index=True)
    tags = Column(JSON, default=list)
    trigger_type = Column(String, nullable=False)
    nodes = Column(JSON, nullable=False, default=list)
    connections = Column(JSON, nullable=False, default=list)
    variables = Column(JSON, default=dict)
    settings = Column(JSON, default=dict)
    usage_count = Column(Integer, nullable=False, default=0)
    is_public = Column(Boolean, nullable=False, default=True)
    created_by = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)


class ContactModel(Base):
    """Database model for contacts managed by the CRM actions."""
    __tablename__ = "contacts"

    id = Column(String, primary_key=True)
    email = Column(String, index=True)
    first_name = Column(String)
    last_name = Column(String)
    phone = Column(String)
    attributes = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)
