"""Data models for the automation engine."""

from .core import (
    WorkflowStatus,
    TriggerType,
    NodeType,
    NodeStatus,
    ExecutionStatusEnum,
    LogEntryStatus,
    ErrorHandlingMode,
    ValidationResult,
    NodePosition,
    TriggerNodeConfig,
    ConditionNodeConfig,
    ActionNodeConfig,
    DelayNodeConfig,
    StructuralNodeConfig,
    NODE_CONFIG_MODELS,
    Node,
    Connection,
    WorkflowSettings,
    WorkflowStatistics,
    Workflow,
    WorkflowSummary,
    LogEntry,
    Execution,
    TriggerDefinition,
    ActionDefinition,
    WorkflowTemplate,
    generate_id,
)

__all__ = [
    "WorkflowStatus",
    "TriggerType",
    "NodeType",
    "NodeStatus",
    "ExecutionStatusEnum",
    "LogEntryStatus",
    "ErrorHandlingMode",
    "ValidationResult",
    "NodePosition",
    "TriggerNodeConfig",
    "ConditionNodeConfig",
    "ActionNodeConfig",
    "DelayNodeConfig",
    "StructuralNodeConfig",
    "NODE_CONFIG_MODELS",
    "Node",
    "Connection",
    "WorkflowSettings",
    "WorkflowStatistics",
    "Workflow",
    "WorkflowSummary",
    "LogEntry",
    "Execution",
    "TriggerDefinition",
    "ActionDefinition",
    "WorkflowTemplate",
    "generate_id",
]
