"""Core Pydantic models for workflow graphs and their executions."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WorkflowStatus(str, Enum):
    """Lifecycle status stored on a workflow."""
    DRAFT = "draft"
    SUCCESS = "success"
    FAILED = "failed"


class NodeKind(str, Enum):
    """Kinds of node a workflow graph can contain."""
    TASK = "task"
    API = "api"
    DECISION = "decision"


class LogStatus(str, Enum):
    """Status recorded on a single log entry."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class ExecutionStatus(str, Enum):
    """Terminal status of a sealed execution."""
    SUCCESS = "success"
    FAILED = "failed"


class RunState(str, Enum):
    """States a single run moves through inside the engine."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LogMarker:
    """Synthetic node ids used for run-level log entries."""
    START = "start"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


class ValidationReason(str, Enum):
    """Distinct reasons a graph can be rejected for."""
    DUPLICATE_NODE_ID = "duplicate_node_id"
    DANGLING_EDGE = "dangling_edge"
    MISSING_BRANCH_EDGE = "missing_branch_edge"


class Position(BaseModel):
    """Presentation-only coordinates of a node on the editor canvas."""
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0


class TaskData(BaseModel):
    """Payload of a task node."""
    model_config = ConfigDict(frozen=True)

    label: str = Field(..., description="Display label of the node")
    description: str = Field(default="", description="Free-text description")


class ApiData(BaseModel):
    """Payload of an API-call node."""
    model_config = ConfigDict(frozen=True)

    label: str = Field(..., description="Display label of the node")
    endpoint: str = Field(..., description="URL fetched when the node runs")
    description: str = Field(default="", description="Free-text description")

    @field_validator('endpoint')
    @classmethod
    def validate_endpoint(cls, endpoint):
        """Ensure the endpoint is not blank."""
        if not endpoint or not endpoint.strip():
            raise ValueError("API node endpoint cannot be empty")
        return endpoint.strip()


class DecisionData(BaseModel):
    """Payload of a decision node."""
    model_config = ConfigDict(frozen=True)

    label: str = Field(..., description="Display label of the node")
    condition: str = Field(default="", description="Condition expression evaluated at run time")


class _NodeBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Identifier of the node, unique within a workflow")
    position: Position = Field(default_factory=Position)

    @field_validator('id')
    @classmethod
    def validate_id(cls, node_id):
        """Ensure node ID is not blank."""
        if not node_id or not str(node_id).strip():
            raise ValueError("Node ID cannot be empty")
        return str(node_id).strip()

    @property
    def kind(self) -> NodeKind:
        return NodeKind(self.type)

    @property
    def label(self) -> str:
        return self.data.label


class TaskNode(_NodeBase):
    """Placeholder for arbitrary business logic."""
    type: Literal["task"] = "task"
    data: TaskData


class ApiNode(_NodeBase):
    """Node that fetches a remote endpoint."""
    type: Literal["api"] = "api"
    data: ApiData


class DecisionNode(_NodeBase):
    """Node that evaluates a condition to a boolean."""
    type: Literal["decision"] = "decision"
    data: DecisionData


FlowNode = Annotated[Union[TaskNode, ApiNode, DecisionNode], Field(discriminator="type")]


class Edge(BaseModel):
    """Directed connection between two nodes."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Edge identifier")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    label: Optional[Literal["true", "false"]] = Field(
        None, description="Branch label, only meaningful when the source is a decision node"
    )

    @field_validator('label', mode='before')
    @classmethod
    def normalize_label(cls, label):
        """Accept booleans and any casing of true/false."""
        if label is None or label == "":
            return None
        if isinstance(label, bool):
            return "true" if label else "false"
        return str(label).strip().lower()


class LogEntry(BaseModel):
    """One append-only line of an execution log."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    node_id: str = Field(..., alias="id", description="Node ID or a synthetic run-level marker")
    status: LogStatus
    message: str
    timestamp: datetime


class Execution(BaseModel):
    """Sealed, immutable record of one run."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Timestamp-derived execution identifier")
    timestamp: datetime = Field(..., description="When the run started")
    status: ExecutionStatus
    logs: Tuple[LogEntry, ...] = Field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS


class Workflow(BaseModel):
    """A named, owned graph definition plus its execution history."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, description="Assigned by persistence on creation")
    name: str = Field(..., description="Workflow name")
    description: str = Field(default="", description="Workflow description")
    status: WorkflowStatus = Field(default=WorkflowStatus.DRAFT)
    user_id: Optional[str] = Field(None, alias="userId", description="Owning user")
    last_edited_by: Optional[str] = Field(None, alias="lastEditedBy")
    last_edited_on: Optional[datetime] = Field(None, alias="lastEditedOn")
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    executions: List[Execution] = Field(default_factory=list)

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, status):
        """Stored documents may carry 'Draft' rather than 'draft'."""
        if isinstance(status, str):
            return status.strip().lower()
        return status

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        """Ensure workflow name is not empty."""
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    def snapshot(self) -> "Workflow":
        """Deep copy used as the private graph of a single run."""
        return self.model_copy(deep=True)

    def find_node(self, node_id: str):
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def latest_execution(self) -> Optional[Execution]:
        if not self.executions:
            return None
        return max(self.executions, key=lambda execution: execution.timestamp)

    def effective_status(self) -> str:
        """Status of the most recent execution, falling back to the stored status."""
        latest = self.latest_execution()
        if latest is not None:
            return latest.status.value
        return self.status.value

    def to_document(self) -> Dict[str, Any]:
        """Serialize using the persisted field names."""
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})


class ValidationIssue(BaseModel):
    """A single structural problem found in a graph."""
    reason: ValidationReason
    message: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None


class ValidationResult(BaseModel):
    """Result of graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")
    issues: List[ValidationIssue] = Field(default_factory=list, description="Errors with reason codes")

    def reasons(self) -> List[ValidationReason]:
        return [issue.reason for issue in self.issues]


class WorkflowSummary(BaseModel):
    """Listing view of a workflow."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str
    status: str
    user_id: Optional[str] = Field(None, alias="userId")
    last_edited_by: Optional[str] = Field(None, alias="lastEditedBy")
    last_edited_on: Optional[datetime] = Field(None, alias="lastEditedOn")
    node_count: int = Field(..., alias="nodeCount")
    edge_count: int = Field(..., alias="edgeCount")
    execution_count: int = Field(..., alias="executionCount")

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> "WorkflowSummary":
        return cls(
            id=workflow.id,
            name=workflow.name,
            description=workflow.description,
            status=workflow.effective_status(),
            user_id=workflow.user_id,
            last_edited_by=workflow.last_edited_by,
            last_edited_on=workflow.last_edited_on,
            node_count=len(workflow.nodes),
            edge_count=len(workflow.edges),
            execution_count=len(workflow.executions),
        )
