"""FastAPI REST endpoints for graphflow."""

import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.exceptions import StructuralError, WorkflowEngineError, create_error_response
from ..core.execution_service import ExecutionService
from ..core.logging import get_logger
from ..core.middleware import status_code_for_error
from ..core.registry import NodeExecutorRegistry
from ..models.core import ExecutionRun, LogCategory, LogLevel, ValidationResult, Workflow, WorkflowSummary
from ..scripting import ScriptStrategyRegistry

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Global instances (initialized by the application lifespan)
_workflow_repository = None
_execution_service: Optional[ExecutionService] = None
_variable_store = None
_settings_store = None
_executor_registry: Optional[NodeExecutorRegistry] = None
_strategy_registry: Optional[ScriptStrategyRegistry] = None


def init_dependencies(
    workflow_repository,
    execution_service: ExecutionService,
    variable_store,
    settings_store,
    executor_registry: NodeExecutorRegistry,
    strategy_registry: ScriptStrategyRegistry,
):
    """Initialize the global dependencies."""
    global _workflow_repository, _execution_service, _variable_store
    global _settings_store, _executor_registry, _strategy_registry
    _workflow_repository = workflow_repository
    _execution_service = execution_service
    _variable_store = variable_store
    _settings_store = settings_store
    _executor_registry = executor_registry
    _strategy_registry = strategy_registry


def _require(component, name: str):
    if component is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{name} not initialized"
        )
    return component


def get_workflow_repository():
    return _require(_workflow_repository, "Workflow repository")


def get_execution_service() -> ExecutionService:
    return _require(_execution_service, "Execution service")


def get_variable_store():
    return _require(_variable_store, "Variable store")


def get_settings_store():
    return _require(_settings_store, "Settings store")


def get_executor_registry() -> NodeExecutorRegistry:
    return _require(_executor_registry, "Executor registry")


def get_strategy_registry() -> ScriptStrategyRegistry:
    return _require(_strategy_registry, "Script strategy registry")


def _http_error(error: WorkflowEngineError) -> HTTPException:
    return HTTPException(status_code=status_code_for_error(error), detail=create_error_response(error))


def _run_body(run: ExecutionRun) -> Dict[str, Any]:
    body = run.model_dump(mode="json", exclude={"logs"})
    body["duration_ms"] = run.duration_ms
    return body


# Request/Response models
class CreateWorkflowResponse(BaseModel):
    """Response model for workflow creation."""
    workflow_id: str = Field(..., description="Identifier of the stored workflow")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class ExecuteWorkflowRequest(BaseModel):
    """Request model for running a workflow."""
    input: Dict[str, Any] = Field(default_factory=dict, description="Data handed to the trigger nodes")
    trigger_node_id: Optional[str] = Field(None, description="Start only from this trigger node")
    wait: bool = Field(True, description="Block until the run reaches a terminal status")


class VariableUpdate(BaseModel):
    value: Any = Field(..., description="Variable value")
    workflow_id: Optional[str] = Field(None, description="Scope the variable to one workflow")


class SettingUpdate(BaseModel):
    value: Any = Field(..., description="Setting value")


# Workflows

@router.post(
    "/workflows",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Store a workflow definition",
)
def create_workflow(workflow: Workflow, repository=Depends(get_workflow_repository)) -> CreateWorkflowResponse:
    """Validate a workflow and store it. Structurally invalid workflows are rejected with 400."""
    result = workflow.validate_structure()
    if not result.is_valid:
        error = StructuralError(
            f"Workflow validation failed: {'; '.join(result.errors)}",
            validation_errors=result.errors,
            workflow_id=workflow.id,
        )
        logger.warning(error.message)
        raise _http_error(error)

    try:
        saved = repository.save(workflow)
    except WorkflowEngineError as e:
        raise _http_error(e)

    return CreateWorkflowResponse(
        workflow_id=saved.id,
        message=f"Workflow '{saved.name}' stored successfully",
        validation_warnings=result.warnings,
    )


@router.get("/workflows", response_model=List[WorkflowSummary], summary="List stored workflows")
def list_workflows(repository=Depends(get_workflow_repository)) -> List[WorkflowSummary]:
    try:
        return repository.list()
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.get("/workflows/{workflow_id}", response_model=Workflow, summary="Get a workflow definition")
def get_workflow(workflow_id: str, repository=Depends(get_workflow_repository)) -> Workflow:
    try:
        return repository.get(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.delete("/workflows/{workflow_id}", summary="Delete a workflow")
def delete_workflow(workflow_id: str, repository=Depends(get_workflow_repository)) -> Dict[str, Any]:
    try:
        deleted = repository.delete(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Workflow {workflow_id} not found")
    return {"workflow_id": workflow_id, "deleted": True}


@router.post(
    "/workflows/{workflow_id}/validate",
    response_model=ValidationResult,
    summary="Validate a stored workflow",
)
def validate_workflow(workflow_id: str, repository=Depends(get_workflow_repository)) -> ValidationResult:
    try:
        return repository.get(workflow_id).validate_structure()
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.post("/workflows/{workflow_id}/execute", summary="Execute a stored workflow")
def execute_workflow(
    workflow_id: str,
    request: Optional[ExecuteWorkflowRequest] = None,
    service: ExecutionService = Depends(get_execution_service),
) -> Dict[str, Any]:
    """Run a workflow.

    With ``wait`` (the default) the response is the finished run, whatever its
    status. Without it the run is submitted and only its id is returned.
    """
    request = request or ExecuteWorkflowRequest()
    try:
        if request.wait:
            run = service.execute(workflow_id, request.input, request.trigger_node_id)
            return _run_body(run)

        run_id = str(uuid.uuid4())
        service.execute_async(workflow_id, request.input, request.trigger_node_id, run_id=run_id)
        return {"run_id": run_id, "status": "pending", "message": "Execution submitted"}
    except WorkflowEngineError as e:
        raise _http_error(e)


# Executions

@router.get("/executions", summary="List persisted executions")
def list_executions(
    workflow_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    service: ExecutionService = Depends(get_execution_service),
) -> List[Dict[str, Any]]:
    try:
        return [_run_body(run) for run in service.list_executions(workflow_id, limit)]
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.get("/executions/{run_id}", summary="Get an execution run")
def get_execution(run_id: str, service: ExecutionService = Depends(get_execution_service)) -> Dict[str, Any]:
    try:
        return _run_body(service.get_execution(run_id))
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.get("/executions/{run_id}/logs", summary="Get the log entries of a run")
def get_execution_logs(
    run_id: str,
    min_level: Optional[LogLevel] = None,
    category: Optional[LogCategory] = None,
    service: ExecutionService = Depends(get_execution_service),
) -> Dict[str, Any]:
    try:
        entries = service.get_logs(run_id, min_level, category)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return {
        "run_id": run_id,
        "total_entries": len(entries),
        "entries": [entry.model_dump(mode="json") for entry in entries],
    }


@router.get("/executions/{run_id}/summary", summary="Summarize the log of a run")
def get_execution_summary(run_id: str, service: ExecutionService = Depends(get_execution_service)) -> Dict[str, Any]:
    try:
        return service.get_summary(run_id)
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.post("/executions/{run_id}/cancel", summary="Cancel a running execution")
def cancel_execution(run_id: str, service: ExecutionService = Depends(get_execution_service)) -> Dict[str, Any]:
    cancelled = service.cancel(run_id)
    if not cancelled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Execution {run_id} is not running"
        )
    return {"run_id": run_id, "cancelled": True}


# Variables and settings

@router.get("/variables", summary="List variables")
def list_variables(workflow_id: Optional[str] = None, store=Depends(get_variable_store)) -> Dict[str, Any]:
    try:
        body = {"global": store.get_global_variables()}
        if workflow_id:
            body["workflow"] = store.get_workflow_variables(workflow_id)
        return body
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.put("/variables/{name}", summary="Create or update a variable")
def put_variable(name: str, update: VariableUpdate, store=Depends(get_variable_store)) -> Dict[str, Any]:
    try:
        store.set_variable(name, update.value, update.workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return {"name": name, "value": update.value, "workflow_id": update.workflow_id}


@router.delete("/variables/{name}", summary="Delete a variable")
def delete_variable(name: str, workflow_id: Optional[str] = None, store=Depends(get_variable_store)) -> Dict[str, Any]:
    try:
        deleted = store.delete_variable(name, workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Variable {name} not found")
    return {"name": name, "deleted": True}


@router.get("/settings", summary="List effective settings")
def list_settings(store=Depends(get_settings_store)) -> Dict[str, Any]:
    try:
        return store.all_settings()
    except WorkflowEngineError as e:
        raise _http_error(e)


@router.put("/settings/{key}", summary="Override a setting")
def put_setting(key: str, update: SettingUpdate, store=Depends(get_settings_store)) -> Dict[str, Any]:
    try:
        store.set_value(key, update.value)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return {"key": key, "value": update.value}


# Capability discovery

@router.get("/scripting/languages", summary="Script runtimes and their availability")
def list_script_languages(strategies: ScriptStrategyRegistry = Depends(get_strategy_registry)) -> List[Dict[str, Any]]:
    return strategies.describe()


@router.get("/executors", summary="Registered node executors")
def list_executors(registry: NodeExecutorRegistry = Depends(get_executor_registry)) -> List[Dict[str, Any]]:
    return registry.describe()
