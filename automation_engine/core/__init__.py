"""Core automation engine components."""

from .exceptions import (
    AutomationEngineError,
    WorkflowValidationError,
    NotFoundError,
    ConflictError,
    WorkflowNotActiveError,
    ExecutionError,
    ActionError,
    StorageError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .template import interpolate
from .conditions import ConditionEvaluator
from .validator import WorkflowValidator
from .action_registry import ActionRegistry
from .definitions import DefinitionRegistry

__all__ = [
    "AutomationEngineError",
    "WorkflowValidationError",
    "NotFoundError",
    "ConflictError",
    "WorkflowNotActiveError",
    "ExecutionError",
    "ActionError",
    "StorageError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "interpolate",
    "ConditionEvaluator",
    "WorkflowValidator",
    "ActionRegistry",
    "DefinitionRegistry",
]
