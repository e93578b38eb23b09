"""Custom exceptions for the automation engine with detailed error information."""

import traceback
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class AutomationEngineError(Exception):
    """Base exception for all automation engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.utcnow()
        self.traceback_info = traceback.format_stack()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class WorkflowValidationError(AutomationEngineError):
    """Raised when a workflow, node or connection fails validation."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class NotFoundError(AutomationEngineError):
    """Raised when a workflow, node, connection, execution or template id does not resolve."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.NOT_FOUND,
            **kwargs
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        if resource_type:
            self.add_context(resource_type=resource_type)
        if resource_id:
            self.add_context(resource_id=resource_id)


class ConflictError(AutomationEngineError):
    """Raised when an operation conflicts with the current state of a resource."""

    def __init__(self, message: str, workflow_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.CONFLICT)
        super().__init__(message, **kwargs)
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class WorkflowNotActiveError(ConflictError):
    """Raised when a run is requested for a workflow whose status is not active."""

    def __init__(self, message: str, workflow_id: Optional[str] = None, status: Optional[str] = None, **kwargs):
        super().__init__(message, workflow_id=workflow_id, **kwargs)
        if status:
            self.add_details(status=status)


class ExecutionError(AutomationEngineError):
    """Raised when a node executor or action handler fails during a run."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        execution_time_ms: Optional[float] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        self.node_id = node_id
        if node_id:
            self.add_context(node_id=node_id)
        if execution_id:
            self.add_context(execution_id=execution_id)
        if execution_time_ms is not None:
            self.add_details(execution_time_ms=execution_time_ms)


class ExecutionCancelledError(ExecutionError):
    """Raised inside a run when it was cancelled or ran past its deadline."""

    def __init__(self, message: str, timed_out: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.timed_out = timed_out


class ActionError(AutomationEngineError):
    """Raised when an action type is unknown or a handler is misconfigured."""

    def __init__(self, message: str, action_type: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if action_type:
            self.add_context(action_type=action_type)


class StorageError(AutomationEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            retry_after=3,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class ConfigurationError(AutomationEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def get_status_code_for_error(error: AutomationEngineError) -> int:
    """Map an engine error to the HTTP status code reported by the API."""
    if isinstance(error, WorkflowValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, ActionError):
        return 400
    return 500


def create_error_response(error: AutomationEngineError) -> Dict[str, Any]:
    """Create a standardized error response from an AutomationEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
