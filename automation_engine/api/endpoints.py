"""FastAPI REST endpoints for the automation engine."""

from typing import Dict, List, Any, Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from ..core.workflow_manager import WorkflowManager
from ..core.execution_engine import ExecutionEngine
from ..core.definitions import DefinitionRegistry
from ..core.exceptions import (
    AutomationEngineError,
    create_error_response,
    get_status_code_for_error,
)
from ..models.core import (
    ActionDefinition,
    Connection,
    Execution,
    Node,
    TriggerDefinition,
    ValidationResult,
    Workflow,
    WorkflowStatus,
    WorkflowSummary,
    WorkflowTemplate,
)
from ..core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["automation"])

# Wired by the application lifespan handler
_workflow_manager: Optional[WorkflowManager] = None
_execution_engine: Optional[ExecutionEngine] = None
_definition_registry: Optional[DefinitionRegistry] = None
_execution_list_limit = 50


def init_dependencies(
    workflow_manager: WorkflowManager,
    execution_engine: ExecutionEngine,
    definition_registry: DefinitionRegistry,
    execution_list_limit: int = 50
):
    """Initialize the module-level dependencies."""
    global _workflow_manager, _execution_engine, _definition_registry, _execution_list_limit
    _execution_list_limit = execution_list_limit
    _workflow_manager = workflow_manager
    _execution_engine = execution_engine
    _definition_registry = definition_registry


def reset_dependencies():
    global _workflow_manager, _execution_engine, _definition_registry
    _workflow_manager = None
    _execution_engine = None
    _definition_registry = None


def get_workflow_manager() -> WorkflowManager:
    """Dependency to get the workflow manager."""
    if _workflow_manager is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow manager not initialized"
        )
    return _workflow_manager


def get_execution_engine() -> ExecutionEngine:
    """Dependency to get the execution engine."""
    if _execution_engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution engine not initialized"
        )
    return _execution_engine


def get_definition_registry() -> DefinitionRegistry:
    """Dependency to get the trigger and action definition catalog."""
    if _definition_registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Definition registry not initialized"
        )
    return _definition_registry


def _http_error(error: AutomationEngineError, operation: str) -> HTTPException:
    status_code = get_status_code_for_error(error)
    if status_code >= 500:
        logger.error(f"Error during {operation}: {error.message}")
    else:
        logger.warning(f"Rejected {operation}: {error.message}")
    return HTTPException(status_code=status_code, detail=create_error_response(error))


# Request/Response models

class CreateWorkflowRequest(BaseModel):
    """Request model for creating a workflow."""
    workflow: Workflow = Field(..., description="Workflow definition to create")


class WorkflowResponse(BaseModel):
    """A stored workflow together with its non-blocking validation warnings."""
    workflow: Workflow
    message: str
    validation_warnings: List[str] = Field(default_factory=list)


class UpdateWorkflowRequest(BaseModel):
    updates: Dict[str, Any] = Field(..., description="New values for workflow fields")


class ValidateWorkflowRequest(BaseModel):
    workflow: Workflow = Field(..., description="Workflow definition to validate")


class AddNodeRequest(BaseModel):
    node: Dict[str, Any] = Field(..., description="Node definition: type, config and display fields")


class UpdateNodeRequest(BaseModel):
    updates: Dict[str, Any] = Field(..., description="New values for node fields; config is replaced whole")


class AddConnectionRequest(BaseModel):
    source_node_id: str
    target_node_id: str
    condition: Optional[str] = Field(None, description="Guard evaluated against the source node output")
    label: Optional[str] = None


class ExecuteWorkflowRequest(BaseModel):
    """Request model for starting a run."""
    trigger_data: Dict[str, Any] = Field(default_factory=dict, description="Payload for the trigger node")


class ExecuteWorkflowResponse(BaseModel):
    execution_id: str = Field(..., description="Unique identifier of the new execution")
    workflow_id: str
    status: str = Field(..., description="Initial execution status")
    message: str


class CancelExecutionResponse(BaseModel):
    execution_id: str
    cancelled: bool
    message: str


class CreateTemplateRequest(BaseModel):
    template: WorkflowTemplate


class CreateFromTemplateRequest(BaseModel):
    customizations: Dict[str, Any] = Field(default_factory=dict, description="Workflow fields overriding the template's")


# Workflows

@router.post(
    "/workflows",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow",
    description="Store a new workflow; drafts only need a consistent graph, other statuses a fully valid one"
)
async def create_workflow(
    request: CreateWorkflowRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowResponse:
    """
    Create a new workflow.

    Raises:
        HTTPException: 400 if the graph is invalid for its status, 409 if the id is taken
    """
    try:
        logger.info(f"Creating new workflow: {request.workflow.name}")

        workflow = workflow_manager.create_workflow(request.workflow)
        warnings = workflow_manager.validate_for_status(workflow).warnings

        return WorkflowResponse(
            workflow=workflow,
            message=f"Workflow '{workflow.name}' created successfully",
            validation_warnings=warnings
        )
    except AutomationEngineError as e:
        raise _http_error(e, "workflow creation")


@router.get(
    "/workflows",
    response_model=List[WorkflowSummary],
    summary="List workflows",
    description="Workflows filtered by creator and status, most recently updated first"
)
async def list_workflows(
    created_by: Optional[str] = None,
    workflow_status: Optional[WorkflowStatus] = Query(None, alias="status"),
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> List[WorkflowSummary]:
    try:
        workflows = workflow_manager.list_workflows(created_by=created_by, status=workflow_status)
        return [WorkflowSummary.from_workflow(w) for w in workflows]
    except AutomationEngineError as e:
        raise _http_error(e, "workflow listing")


@router.post(
    "/workflows/validate",
    response_model=ValidationResult,
    summary="Validate a workflow",
    description="Run the full validation without storing anything"
)
async def validate_workflow(
    request: ValidateWorkflowRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> ValidationResult:
    result = workflow_manager.validate_workflow(request.workflow)
    logger.debug(f"Workflow validation completed. Valid: {result.is_valid}")
    return result


@router.get(
    "/workflows/{workflow_id}",
    response_model=Workflow,
    summary="Get a workflow"
)
async def get_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> Workflow:
    try:
        return workflow_manager.get_workflow(workflow_id)
    except AutomationEngineError as e:
        raise _http_error(e, f"lookup of workflow {workflow_id}")


@router.put(
    "/workflows/{workflow_id}",
    response_model=WorkflowResponse,
    summary="Update a workflow",
    description="Apply field updates; the result must be valid for its status"
)
async def update_workflow(
    workflow_id: str,
    request: UpdateWorkflowRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowResponse:
    try:
        workflow = workflow_manager.update_workflow(workflow_id, request.updates)
        return WorkflowResponse(
            workflow=workflow,
            message=f"Workflow '{workflow.name}' updated successfully",
            validation_warnings=workflow_manager.validate_for_status(workflow).warnings
        )
    except AutomationEngineError as e:
        raise _http_error(e, f"update of workflow {workflow_id}")


@router.delete(
    "/workflows/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a workflow",
    description="Delete a workflow and its executions; refused while a run is in progress"
)
async def delete_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
):
    try:
        workflow_manager.delete_workflow(workflow_id)
    except AutomationEngineError as e:
        raise _http_error(e, f"deletion of workflow {workflow_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Nodes and connections

@router.post(
    "/workflows/{workflow_id}/nodes",
    response_model=Node,
    status_code=status.HTTP_201_CREATED,
    summary="Add a node"
)
async def add_node(
    workflow_id: str,
    request: AddNodeRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> Node:
    try:
        return workflow_manager.add_node(workflow_id, request.node)
    except AutomationEngineError as e:
        raise _http_error(e, f"node creation in workflow {workflow_id}")


@router.put(
    "/workflows/{workflow_id}/nodes/{node_id}",
    response_model=Node,
    summary="Update a node"
)
async def update_node(
    workflow_id: str,
    node_id: str,
    request: UpdateNodeRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> Node:
    try:
        return workflow_manager.update_node(workflow_id, node_id, request.updates)
    except AutomationEngineError as e:
        raise _http_error(e, f"update of node {node_id}")


@router.delete(
    "/workflows/{workflow_id}/nodes/{node_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a node and its connections"
)
async def remove_node(
    workflow_id: str,
    node_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
):
    try:
        workflow_manager.remove_node(workflow_id, node_id)
    except AutomationEngineError as e:
        raise _http_error(e, f"removal of node {node_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/workflows/{workflow_id}/connections",
    response_model=Connection,
    status_code=status.HTTP_201_CREATED,
    summary="Connect two nodes"
)
async def add_connection(
    workflow_id: str,
    request: AddConnectionRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> Connection:
    """
    Connect two nodes of a workflow.

    Raises:
        HTTPException: 400 for a missing endpoint or a cycle, 409 if the nodes are already connected
    """
    try:
        return workflow_manager.add_connection(
            workflow_id,
            request.source_node_id,
            request.target_node_id,
            condition=request.condition,
            label=request.label
        )
    except AutomationEngineError as e:
        raise _http_error(e, f"connection creation in workflow {workflow_id}")


@router.delete(
    "/workflows/{workflow_id}/connections/{connection_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a connection"
)
async def remove_connection(
    workflow_id: str,
    connection_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
):
    try:
        workflow_manager.remove_connection(workflow_id, connection_id)
    except AutomationEngineError as e:
        raise _http_error(e, f"removal of connection {connection_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Executions

@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=ExecuteWorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Execute a workflow",
    description="Start a run of an active workflow; traversal continues in the background"
)
async def execute_workflow(
    workflow_id: str,
    request: Optional[ExecuteWorkflowRequest] = None,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecuteWorkflowResponse:
    """
    Start a workflow run.

    Raises:
        HTTPException: 404 if the workflow is unknown, 409 if it is not active
    """
    trigger_data = request.trigger_data if request else {}
    try:
        execution = execution_engine.execute_workflow(workflow_id, trigger_data)
    except AutomationEngineError as e:
        raise _http_error(e, f"execution of workflow {workflow_id}")

    return ExecuteWorkflowResponse(
        execution_id=execution.id,
        workflow_id=workflow_id,
        status=execution.status.value,
        message="Workflow execution started successfully"
    )


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=List[Execution],
    summary="List executions of a workflow",
    description="Executions newest first; limit defaults to the configured execution list limit"
)
async def list_executions(
    workflow_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> List[Execution]:
    try:
        return execution_engine.list_executions(workflow_id, limit=limit or _execution_list_limit)
    except AutomationEngineError as e:
        raise _http_error(e, f"execution listing for workflow {workflow_id}")


@router.get(
    "/executions/{execution_id}",
    response_model=Execution,
    summary="Get an execution with its log"
)
async def get_execution(
    execution_id: str,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> Execution:
    try:
        return execution_engine.get_execution(execution_id)
    except AutomationEngineError as e:
        raise _http_error(e, f"lookup of execution {execution_id}")


@router.post(
    "/executions/{execution_id}/cancel",
    response_model=CancelExecutionResponse,
    summary="Cancel a running execution"
)
async def cancel_execution(
    execution_id: str,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> CancelExecutionResponse:
    """
    Request cancellation of a run.

    Raises:
        HTTPException: 404 if the execution does not exist
    """
    try:
        execution_engine.get_execution(execution_id)
        cancelled = execution_engine.cancel_execution(execution_id)
    except AutomationEngineError as e:
        raise _http_error(e, f"cancellation of execution {execution_id}")

    return CancelExecutionResponse(
        execution_id=execution_id,
        cancelled=cancelled,
        message="Cancellation requested" if cancelled else "Execution is not running"
    )


# Definitions

@router.get(
    "/definitions/triggers",
    response_model=List[TriggerDefinition],
    summary="List trigger definitions"
)
async def list_trigger_definitions(
    definitions: DefinitionRegistry = Depends(get_definition_registry)
) -> List[TriggerDefinition]:
    return definitions.get_trigger_definitions()


@router.get(
    "/definitions/actions",
    response_model=List[ActionDefinition],
    summary="List action definitions",
    description="All action definitions, or those of one category"
)
async def list_action_definitions(
    category: Optional[str] = None,
    definitions: DefinitionRegistry = Depends(get_definition_registry)
) -> List[ActionDefinition]:
    if category:
        return definitions.get_action_definitions_by_category(category)
    return definitions.get_action_definitions()


# Templates

@router.get(
    "/templates",
    response_model=List[WorkflowTemplate],
    summary="List public templates",
    description="Public templates, most used first"
)
async def list_templates(
    category: Optional[str] = None,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> List[WorkflowTemplate]:
    try:
        return workflow_manager.list_templates(category=category)
    except AutomationEngineError as e:
        raise _http_error(e, "template listing")


@router.post(
    "/templates",
    response_model=WorkflowTemplate,
    status_code=status.HTTP_201_CREATED,
    summary="Create a template"
)
async def create_template(
    request: CreateTemplateRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowTemplate:
    try:
        return workflow_manager.create_template(request.template)
    except AutomationEngineError as e:
        raise _http_error(e, "template creation")


@router.post(
    "/templates/{template_id}/workflows",
    response_model=Workflow,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft workflow from a template"
)
async def create_workflow_from_template(
    template_id: str,
    request: Optional[CreateFromTemplateRequest] = None,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> Workflow:
    customizations = request.customizations if request else {}
    try:
        return workflow_manager.create_workflow_from_template(template_id, customizations)
    except AutomationEngineError as e:
        raise _http_error(e, f"workflow creation from template {template_id}")
