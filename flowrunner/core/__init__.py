"""Core workflow runner components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    NodeExecutionError,
    ExecutionCancelledError,
    ExecutionEngineError,
    ExecutorRegistryError,
    PersistenceError,
    WorkflowNotFoundError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .journal import ExecutionJournal, CancellationToken
from .validator import GraphValidator
from .conditions import ConditionEvaluator, RandomConditionEvaluator, ExpressionConditionEvaluator
from .http_client import HttpClient, HttpResponse, RequestsHttpClient
from .executors import (
    ExecutionContext,
    NodeExecutor,
    NodeOutcome,
    TaskExecutor,
    ApiExecutor,
    DecisionExecutor,
    ExecutorRegistry,
)
from .execution_engine import ExecutionEngine, ExecutionResult, RunReport, RunHandle

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "NodeExecutionError",
    "ExecutionCancelledError",
    "ExecutionEngineError",
    "ExecutorRegistryError",
    "PersistenceError",
    "WorkflowNotFoundError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "ExecutionJournal",
    "CancellationToken",
    "GraphValidator",
    "ConditionEvaluator",
    "RandomConditionEvaluator",
    "ExpressionConditionEvaluator",
    "HttpClient",
    "HttpResponse",
    "RequestsHttpClient",
    "ExecutionContext",
    "NodeExecutor",
    "NodeOutcome",
    "TaskExecutor",
    "ApiExecutor",
    "DecisionExecutor",
    "ExecutorRegistry",
    "ExecutionEngine",
    "ExecutionResult",
    "RunReport",
    "RunHandle",
]
