"""Node executors, one strategy per node kind, and the registry that dispatches to them."""

import json
from typing import Any, Dict, Optional, Union

import requests
from pydantic import BaseModel, ConfigDict, Field

from ..models.core import ApiNode, DecisionNode, LogStatus, NodeKind, TaskNode
from .conditions import ConditionEvaluator, RandomConditionEvaluator
from .exceptions import ExecutionCancelledError, ExecutorRegistryError, NodeExecutionError
from .http_client import HttpClient, RequestsHttpClient
from .journal import CancellationToken, ExecutionJournal
from .logging import get_logger

logger = get_logger(__name__)


class NodeOutcome(BaseModel):
    """What a node produced when it ran successfully."""
    model_config = ConfigDict(frozen=True)

    node_id: str
    branch: Optional[bool] = Field(None, description="Boolean chosen by a decision node")
    detail: str = Field(default="", description="Short human-readable result")


class ExecutionContext:
    """Per-run context handed to every executor."""

    def __init__(self, run_id: str, cancel_token: Optional[CancellationToken] = None):
        self.run_id = run_id
        self.cancel_token = cancel_token or CancellationToken()
        self.outcomes: Dict[str, NodeOutcome] = {}

    def record(self, outcome: NodeOutcome) -> None:
        self.outcomes[outcome.node_id] = outcome

    def variables(self) -> Dict[str, Any]:
        """Names visible to decision condition expressions."""
        return {
            'outcomes': {node_id: outcome.detail for node_id, outcome in self.outcomes.items()},
            'branches': {
                node_id: outcome.branch
                for node_id, outcome in self.outcomes.items()
                if outcome.branch is not None
            },
        }


class NodeExecutor:
    """Runs one node and records what it did in the journal.

    Implementations return a NodeOutcome on success and raise
    NodeExecutionError on failure.
    """

    description = ""

    def execute(self, node, journal: ExecutionJournal, context: ExecutionContext) -> NodeOutcome:
        raise NotImplementedError


class TaskExecutor(NodeExecutor):
    """Placeholder for business logic; always succeeds."""

    description = "Runs a task node; always succeeds"

    def execute(self, node: TaskNode, journal: ExecutionJournal, context: ExecutionContext) -> NodeOutcome:
        message = f'Task "{node.label}" executed successfully'
        journal.append(node.id, LogStatus.SUCCESS, message)
        return NodeOutcome(node_id=node.id, detail=message)


class ApiExecutor(NodeExecutor):
    """Fetches the node's endpoint and succeeds on a 2xx JSON reply."""

    description = "Fetches the node endpoint; fails on transport errors, non-2xx status or unparsable body"

    def __init__(self, http_client: Optional[HttpClient] = None, timeout: float = 30.0):
        self.http_client = http_client or RequestsHttpClient(default_timeout=timeout)
        self.timeout = timeout

    def execute(self, node: ApiNode, journal: ExecutionJournal, context: ExecutionContext) -> NodeOutcome:
        endpoint = node.data.endpoint
        journal.append(node.id, LogStatus.PENDING, f"Making API call to {endpoint}")

        try:
            response = self.http_client.get(endpoint, timeout=self.timeout, cancel_token=context.cancel_token)
        except ExecutionCancelledError:
            raise
        except requests.Timeout:
            raise self._failure(node, journal, context, f"request timed out after {self.timeout} seconds")
        except requests.RequestException as e:
            raise self._failure(node, journal, context, str(e))

        if not 200 <= response.status_code < 300:
            raise self._failure(node, journal, context, f"API responded with status: {response.status_code}",
                                status_code=response.status_code)

        try:
            payload = json.loads(response.body)
        except ValueError:
            raise self._failure(node, journal, context, "API returned an unparsable body",
                                status_code=response.status_code)

        message = f"API call successful. Received {self._count_items(payload)} items."
        journal.append(node.id, LogStatus.SUCCESS, message)
        return NodeOutcome(node_id=node.id, detail=message)

    @staticmethod
    def _failure(node: ApiNode, journal: ExecutionJournal, context: ExecutionContext,
                 reason: str, **details) -> NodeExecutionError:
        """Journal the failed call and build the error that aborts the run."""
        message = f"API call failed: {reason}"
        journal.append(node.id, LogStatus.FAILED, message)
        return NodeExecutionError(message, node_id=node.id, run_id=context.run_id, **details)

    @staticmethod
    def _count_items(payload: Any) -> int:
        if isinstance(payload, (dict, list)):
            return len(payload)
        return 1


class DecisionExecutor(NodeExecutor):
    """Evaluates the node's condition and logs the boolean. Never fails."""

    description = "Evaluates a decision condition to true or false"

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or RandomConditionEvaluator()

    def execute(self, node: DecisionNode, journal: ExecutionJournal, context: ExecutionContext) -> NodeOutcome:
        condition = node.data.condition
        journal.append(node.id, LogStatus.PENDING, f"Evaluating condition: {condition}")

        result = bool(self.evaluator.evaluate(condition, context.variables()))

        message = f"Condition evaluated to {str(result).lower()}"
        journal.append(node.id, LogStatus.SUCCESS, message)
        return NodeOutcome(node_id=node.id, branch=result, detail=message)


class ExecutorRegistry:
    """Registry mapping node kinds to the executor that runs them."""

    def __init__(self):
        self._executors: Dict[NodeKind, NodeExecutor] = {}

    @classmethod
    def default(
        cls,
        http_client: Optional[HttpClient] = None,
        api_timeout: float = 30.0,
        evaluator: Optional[ConditionEvaluator] = None
    ) -> "ExecutorRegistry":
        """Registry with the standard task, API and decision executors."""
        registry = cls()
        registry.register(NodeKind.TASK, TaskExecutor())
        registry.register(NodeKind.API, ApiExecutor(http_client=http_client, timeout=api_timeout))
        registry.register(NodeKind.DECISION, DecisionExecutor(evaluator=evaluator))
        return registry

    def register(self, kind: Union[NodeKind, str], executor: NodeExecutor, replace: bool = False) -> None:
        """Register an executor for a node kind.

        Args:
            kind: Node kind handled by the executor
            executor: Executor instance
            replace: Allow overriding an existing registration

        Raises:
            ExecutorRegistryError: If the kind is unknown, already registered or the executor is invalid
        """
        node_kind = self._coerce_kind(kind, operation="register")

        if not callable(getattr(executor, "execute", None)):
            raise ExecutorRegistryError(
                f"Executor for '{node_kind.value}' must provide an execute() method",
                node_kind=node_kind.value,
                operation="register"
            )

        if node_kind in self._executors and not replace:
            raise ExecutorRegistryError(
                f"An executor for '{node_kind.value}' nodes is already registered",
                node_kind=node_kind.value,
                operation="register"
            )

        self._executors[node_kind] = executor
        logger.debug(f"Registered {type(executor).__name__} for '{node_kind.value}' nodes")

    def get(self, kind: Union[NodeKind, str]) -> NodeExecutor:
        """Retrieve the executor for a node kind.

        Raises:
            ExecutorRegistryError: If no executor is registered for the kind
        """
        node_kind = self._coerce_kind(kind, operation="get")
        try:
            return self._executors[node_kind]
        except KeyError:
            raise ExecutorRegistryError(
                f"No executor registered for '{node_kind.value}' nodes",
                node_kind=node_kind.value,
                operation="get"
            )

    def exists(self, kind: Union[NodeKind, str]) -> bool:
        try:
            return NodeKind(kind) in self._executors
        except ValueError:
            return False

    def unregister(self, kind: Union[NodeKind, str]) -> bool:
        node_kind = self._coerce_kind(kind, operation="unregister")
        return self._executors.pop(node_kind, None) is not None

    def list_kinds(self) -> Dict[str, str]:
        """Map each registered kind to its executor's description."""
        return {kind.value: executor.description for kind, executor in self._executors.items()}

    @staticmethod
    def _coerce_kind(kind: Union[NodeKind, str], operation: str) -> NodeKind:
        try:
            return NodeKind(kind)
        except ValueError:
            raise ExecutorRegistryError(
                f"Unknown node kind '{kind}'",
                node_kind=str(kind),
                operation=operation
            )
