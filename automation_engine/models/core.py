"""Core Pydantic models for the automation engine."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


def generate_id(prefix: str) -> str:
    """Generate a prefixed identifier such as ``node_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


class WorkflowStatus(str, Enum):
    """Lifecycle status of a workflow."""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class TriggerType(str, Enum):
    """How runs of a workflow are started."""
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"
    WEBHOOK = "webhook"


class NodeType(str, Enum):
    """Enumeration of node types."""
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"
    DELAY = "delay"
    SPLIT = "split"
    MERGE = "merge"


class NodeStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LogEntryStatus(str, Enum):
    """Status of a single node visit in the execution log."""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ErrorHandlingMode(str, Enum):
    """What a run does after a node fails."""
    STOP = "stop"
    CONTINUE = "continue"
    RETRY = "retry"


class ValidationResult(BaseModel):
    """Result of workflow validation."""
    is_valid: bool = Field(..., description="Whether the workflow is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class NodePosition(BaseModel):
    """Canvas position of a node; display only."""
    x: float = 0.0
    y: float = 0.0


class TriggerNodeConfig(BaseModel):
    """Free-form trigger configuration (schedule expression, webhook path, form id...)."""
    model_config = ConfigDict(extra='allow')


class ConditionNodeConfig(BaseModel):
    """Configuration of a condition node."""
    condition: str = Field(..., description="Comparison expression, e.g. '{{score}} > 50'")

    @field_validator('condition')
    @classmethod
    def validate_condition(cls, condition):
        if not condition or not condition.strip():
            raise ValueError("Condition node must have a condition")
        return condition


class ActionNodeConfig(BaseModel):
    """Configuration of an action node."""
    action_type: str = Field(..., description="Key of the handler in the action registry")
    action_config: Dict[str, Any] = Field(default_factory=dict, description="Handler configuration, templates unresolved")

    @field_validator('action_type')
    @classmethod
    def validate_action_type(cls, action_type):
        if not action_type or not action_type.strip():
            raise ValueError("Action node must have an action type")
        return action_type.strip()


class DelayNodeConfig(BaseModel):
    """Configuration of a delay node."""
    delay_ms: int = Field(..., gt=0, description="Milliseconds to wait before continuing")


class StructuralNodeConfig(BaseModel):
    """Configuration of split and merge nodes; they only route data."""
    model_config = ConfigDict(extra='allow')


NodeConfig = Union[
    ConditionNodeConfig,
    ActionNodeConfig,
    DelayNodeConfig,
    TriggerNodeConfig,
    StructuralNodeConfig,
]

NODE_CONFIG_MODELS = {
    NodeType.TRIGGER: TriggerNodeConfig,
    NodeType.CONDITION: ConditionNodeConfig,
    NodeType.ACTION: ActionNodeConfig,
    NodeType.DELAY: DelayNodeConfig,
    NodeType.SPLIT: StructuralNodeConfig,
    NodeType.MERGE: StructuralNodeConfig,
}


def _format_config_errors(node_type: NodeType, error: ValidationError) -> str:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        message = item.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return f"Invalid {node_type.value} node config: " + "; ".join(messages)


class Node(BaseModel):
    """A typed step in a workflow graph."""
    id: str = Field(default_factory=lambda: generate_id("node"), description="Unique identifier within the workflow")
    type: NodeType = Field(..., description="Node type; selects the config model and executor")
    name: str = Field("", description="Display name")
    description: Optional[str] = Field(None, description="Display description")
    position: NodePosition = Field(default_factory=NodePosition)
    config: NodeConfig = Field(..., description="Typed configuration chosen by node type")
    status: NodeStatus = Field(NodeStatus.ACTIVE)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='before')
    @classmethod
    def build_typed_config(cls, data):
        """Parse the raw config dict into the model matching the node type."""
        if not isinstance(data, dict):
            return data

        try:
            node_type = NodeType(data.get('type'))
        except ValueError:
            # Let field validation report the bad type
            return data

        config = data.get('config')
        if config is None:
            config = {}
        elif isinstance(config, BaseModel):
            config = config.model_dump()

        try:
            typed = NODE_CONFIG_MODELS[node_type].model_validate(config)
        except ValidationError as e:
            raise ValueError(_format_config_errors(node_type, e))

        return {**data, 'config': typed}

    @field_validator('id')
    @classmethod
    def validate_id(cls, node_id):
        if not node_id or not node_id.strip():
            raise ValueError("Node ID cannot be empty")
        return node_id.strip()

    @model_validator(mode='after')
    def validate_config_type(self):
        expected = NODE_CONFIG_MODELS[self.type]
        if type(self.config) is not expected:
            raise ValueError(f"{self.type.value} node requires {expected.__name__}")
        return self

    @property
    def label(self) -> str:
        return self.name or self.id


class Connection(BaseModel):
    """Directed edge between two nodes of the same workflow."""
    id: str = Field(default_factory=lambda: generate_id("conn"))
    source_node_id: str = Field(..., description="Source node ID")
    target_node_id: str = Field(..., description="Target node ID")
    condition: Optional[str] = Field(None, description="Guard evaluated against the source node output")
    label: Optional[str] = Field(None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('source_node_id', 'target_node_id')
    @classmethod
    def validate_node_ids(cls, node_id):
        if not node_id or not node_id.strip():
            raise ValueError("Node ID cannot be empty")
        return node_id.strip()

    @field_validator('condition')
    @classmethod
    def blank_condition_is_none(cls, condition):
        if condition is not None and not condition.strip():
            return None
        return condition


class WorkflowSettings(BaseModel):
    """Per-workflow execution settings."""
    timeout_minutes: float = Field(30, gt=0, description="Deadline for a single run")
    retry_attempts: int = Field(0, ge=0, description="Retries an external caller may perform; the engine never retries")
    error_handling: ErrorHandlingMode = Field(ErrorHandlingMode.STOP)
    notifications: Dict[str, Any] = Field(default_factory=dict)


class WorkflowStatistics(BaseModel):
    """Aggregated run statistics; maintained by the store, never by callers."""
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    avg_execution_time: float = Field(0.0, description="Average run duration in milliseconds")
    last_execution: Optional[datetime] = None


class Workflow(BaseModel):
    """Complete definition of an automation workflow."""
    id: str = Field(default_factory=lambda: generate_id("workflow"))
    name: str = Field(..., description="Name of the workflow")
    description: Optional[str] = Field(None)
    status: WorkflowStatus = Field(WorkflowStatus.DRAFT)
    trigger_type: TriggerType = Field(TriggerType.MANUAL)
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)
    statistics: WorkflowStatistics = Field(default_factory=WorkflowStatistics)
    created_by: Optional[str] = Field(None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        if not name or not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        for connection in self.connections:
            if connection.id == connection_id:
                return connection
        return None

    def trigger_nodes(self) -> List[Node]:
        return [node for node in self.nodes if node.type == NodeType.TRIGGER]

    def outgoing_connections(self, node_id: str) -> List[Connection]:
        """Connections leaving ``node_id``, in list order."""
        return [c for c in self.connections if c.source_node_id == node_id]


class WorkflowSummary(BaseModel):
    """Summary information about a workflow."""
    id: str
    name: str
    description: Optional[str] = None
    status: WorkflowStatus
    trigger_type: TriggerType
    node_count: int
    created_by: Optional[str] = None
    statistics: WorkflowStatistics
    updated_at: datetime

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> "WorkflowSummary":
        return cls(
            id=workflow.id,
            name=workflow.name,
            description=workflow.description,
            status=workflow.status,
            trigger_type=workflow.trigger_type,
            node_count=len(workflow.nodes),
            created_by=workflow.created_by,
            statistics=workflow.statistics,
            updated_at=workflow.updated_at,
        )


class LogEntry(BaseModel):
    """One node visit recorded in an execution log."""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    node_id: str
    node_name: str
    node_type: NodeType
    action: Optional[str] = Field(None, description="Action type for action nodes")
    status: LogEntryStatus
    input_data: Dict[str, Any] = Field(default_factory=dict)
    output_data: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None
    error_message: Optional[str] = None


class Execution(BaseModel):
    """A single run of a workflow."""
    id: str = Field(default_factory=lambda: generate_id("exec"))
    workflow_id: str
    status: ExecutionStatusEnum = Field(ExecutionStatusEnum.RUNNING)
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    execution_log: List[LogEntry] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = None
    error_message: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.status != ExecutionStatusEnum.RUNNING


class TriggerDefinition(BaseModel):
    """Editor metadata describing a trigger kind."""
    type: str
    name: str
    description: str
    config_schema: Dict[str, Any] = Field(default_factory=dict)
    output_schema: Dict[str, Any] = Field(default_factory=dict)


class ActionDefinition(BaseModel):
    """Editor metadata describing an action handler."""
    type: str
    name: str
    description: str
    category: str
    config_schema: Dict[str, Any] = Field(default_factory=dict)
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    output_schema: Dict[str, Any] = Field(default_factory=dict)


class WorkflowTemplate(BaseModel):
    """Reusable workflow blueprint."""
    id: str = Field(default_factory=lambda: generate_id("template"))
    name: str
    description: Optional[str] = None
    category: str = Field("general")
    tags: List[str] = Field(default_factory=list)
    trigger_type: TriggerType = Field(TriggerType.MANUAL)
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)
    usage_count: int = Field(0, ge=0)
    is_public: bool = True
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        if not name or not name.strip():
            raise ValueError("Template name cannot be empty")
        return name.strip()
