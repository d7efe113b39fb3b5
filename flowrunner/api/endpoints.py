"""FastAPI REST endpoints for workflows and their runs."""

import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.exceptions import WorkflowNotFoundError
from ..core.execution_engine import ExecutionEngine
from ..core.logging import get_logger
from ..core.validator import GraphValidator
from ..models.core import (
    Edge,
    Execution,
    FlowNode,
    ValidationResult,
    Workflow,
    WorkflowStatus,
    WorkflowSummary,
)
from ..storage.repository import WorkflowRepository

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Global instances (initialized by the application factory)
_repository: Optional[WorkflowRepository] = None
_execution_engine: Optional[ExecutionEngine] = None
_validator: Optional[GraphValidator] = None


def init_dependencies(
    repository: WorkflowRepository,
    execution_engine: ExecutionEngine,
    validator: Optional[GraphValidator] = None
):
    """Initialize the global dependencies."""
    global _repository, _execution_engine, _validator
    _repository = repository
    _execution_engine = execution_engine
    _validator = validator or execution_engine.validator


def get_repository() -> WorkflowRepository:
    """Dependency to get the workflow repository."""
    if _repository is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow repository not initialized"
        )
    return _repository


def get_execution_engine() -> ExecutionEngine:
    """Dependency to get the execution engine."""
    if _execution_engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Execution engine not initialized"
        )
    return _execution_engine


def get_validator() -> GraphValidator:
    """Dependency to get the graph validator."""
    if _validator is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Graph validator not initialized"
        )
    return _validator


# Request/Response models
class WorkflowRequest(BaseModel):
    """Editable fields of a workflow, as sent by the editor."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Workflow name")
    description: str = Field(default="", description="Workflow description")
    status: WorkflowStatus = Field(default=WorkflowStatus.DRAFT)
    user_id: Optional[str] = Field(None, alias="userId", description="Owning user")
    last_edited_by: Optional[str] = Field(None, alias="lastEditedBy", description="Editor identity")
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    def to_workflow(self, workflow_id: Optional[str] = None) -> Workflow:
        return Workflow(
            id=workflow_id,
            name=self.name,
            description=self.description,
            status=self.status,
            user_id=self.user_id,
            last_edited_by=self.last_edited_by,
            nodes=self.nodes,
            edges=self.edges,
        )


class SaveWorkflowResponse(BaseModel):
    """Response model for workflow creation and update."""
    id: str = Field(..., description="Workflow identifier")
    message: str = Field(..., description="Success message")
    validation_warnings: List[str] = Field(default_factory=list, description="Validation warnings")


class WorkflowListResponse(BaseModel):
    """Paginated workflow listing."""
    items: List[WorkflowSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


class ExecuteWorkflowResponse(BaseModel):
    """Response model for a synchronous run."""
    execution: Execution
    succeeded: bool
    error: Optional[Dict[str, Any]] = Field(None, description="Error that ended the run")
    persistence_error: Optional[Dict[str, Any]] = Field(
        None, description="Set when the run finished but its execution could not be saved"
    )


class StartRunResponse(BaseModel):
    """Response model for a background run."""
    run_id: str = Field(..., description="Identifier for tracking the run")
    message: str = Field(..., description="Success message")
    state: str = Field(..., description="Initial run state")


def _document(workflow: Workflow) -> Dict[str, Any]:
    return workflow.model_dump(mode="json", by_alias=True)


# Endpoints

@router.post(
    "/workflows",
    response_model=SaveWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow"
)
def create_workflow(
    request: WorkflowRequest,
    repository: WorkflowRepository = Depends(get_repository),
    validator: GraphValidator = Depends(get_validator)
) -> SaveWorkflowResponse:
    """Validate and store a new workflow, returning its identifier."""
    workflow = request.to_workflow()
    validation_result = validator.ensure_valid(workflow)

    workflow_id = repository.save(workflow, edited_by=request.last_edited_by)
    logger.info(f"Created workflow '{workflow.name}' with ID: {workflow_id}")

    return SaveWorkflowResponse(
        id=workflow_id,
        message=f"Workflow '{workflow.name}' created successfully",
        validation_warnings=validation_result.warnings
    )


@router.get(
    "/workflows",
    response_model=WorkflowListResponse,
    response_model_by_alias=True,
    summary="List workflows"
)
def list_workflows(
    user_id: Optional[str] = Query(None, description="Only workflows owned by this user"),
    search: Optional[str] = Query(None, description="Case-insensitive match on name or ID"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    repository: WorkflowRepository = Depends(get_repository)
) -> WorkflowListResponse:
    """List workflow summaries, newest executions reflected in each status."""
    workflows = repository.list(user_id=user_id, search=search)
    total = len(workflows)
    start = (page - 1) * page_size

    return WorkflowListResponse(
        items=[WorkflowSummary.from_workflow(workflow) for workflow in workflows[start:start + page_size]],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0
    )


@router.post(
    "/workflows/validate",
    response_model=ValidationResult,
    summary="Validate a workflow graph without storing it"
)
def validate_workflow(
    request: WorkflowRequest,
    validator: GraphValidator = Depends(get_validator)
) -> ValidationResult:
    return validator.validate(request.to_workflow())


@router.get("/workflows/{workflow_id}", summary="Get a workflow")
def get_workflow(
    workflow_id: str,
    repository: WorkflowRepository = Depends(get_repository)
) -> Dict[str, Any]:
    return _document(repository.get(workflow_id))


@router.put(
    "/workflows/{workflow_id}",
    response_model=SaveWorkflowResponse,
    summary="Update a workflow"
)
def update_workflow(
    workflow_id: str,
    request: WorkflowRequest,
    repository: WorkflowRepository = Depends(get_repository),
    validator: GraphValidator = Depends(get_validator)
) -> SaveWorkflowResponse:
    """Replace the editable fields of a workflow; its execution history is kept."""
    repository.get(workflow_id)

    workflow = request.to_workflow(workflow_id)
    validation_result = validator.ensure_valid(workflow)
    repository.save(workflow, edited_by=request.last_edited_by)

    return SaveWorkflowResponse(
        id=workflow_id,
        message=f"Workflow '{workflow.name}' updated successfully",
        validation_warnings=validation_result.warnings
    )


@router.delete(
    "/workflows/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a workflow"
)
def delete_workflow(
    workflow_id: str,
    repository: WorkflowRepository = Depends(get_repository)
) -> None:
    if not repository.delete(workflow_id):
        raise WorkflowNotFoundError(workflow_id, operation="delete")


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=List[Execution],
    summary="Execution history of a workflow"
)
def list_executions(
    workflow_id: str,
    repository: WorkflowRepository = Depends(get_repository)
) -> List[Execution]:
    return repository.get(workflow_id).executions


@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=ExecuteWorkflowResponse,
    summary="Run a workflow and wait for the result"
)
def execute_workflow(
    workflow_id: str,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> ExecuteWorkflowResponse:
    """
    Run a stored workflow synchronously.

    A failed run is still a 200: the verdict is in ``succeeded`` and the
    sealed execution. ``persistence_error`` is set when the execution could
    not be appended to the workflow's history.
    """
    logger.info(f"Executing workflow: {workflow_id}")
    report = execution_engine.run_workflow(workflow_id)

    return ExecuteWorkflowResponse(
        execution=report.execution,
        succeeded=report.succeeded,
        error=report.error.to_dict() if report.error else None,
        persistence_error=report.persistence_error.to_dict() if report.persistence_error else None
    )


@router.post(
    "/workflows/{workflow_id}/runs",
    response_model=StartRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a background run"
)
def start_run(
    workflow_id: str,
    repository: WorkflowRepository = Depends(get_repository),
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> StartRunResponse:
    repository.get(workflow_id)
    run_id = execution_engine.start_run(workflow_id)
    return StartRunResponse(
        run_id=run_id,
        message="Workflow run started successfully",
        state="pending"
    )


@router.get("/runs/{run_id}", summary="Status of a background run")
def get_run(
    run_id: str,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> Dict[str, Any]:
    return execution_engine.get_run(run_id).to_dict()


@router.post("/runs/{run_id}/cancel", summary="Cancel a background run")
def cancel_run(
    run_id: str,
    execution_engine: ExecutionEngine = Depends(get_execution_engine)
) -> Dict[str, Any]:
    execution_engine.get_run(run_id)
    cancelled = execution_engine.cancel_run(run_id)
    return {
        "run_id": run_id,
        "cancelled": cancelled,
        "message": "Cancellation requested" if cancelled else "Run already finished"
    }
