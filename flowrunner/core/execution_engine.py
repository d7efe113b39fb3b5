"""Execution Engine: walks a workflow graph, dispatches to node executors and journals every step."""

import logging
import threading
import uuid
from collections import Counter, deque
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional

from ..config import TraversalMode
from ..models.core import (
    Execution,
    ExecutionStatus,
    LogMarker,
    LogStatus,
    NodeKind,
    RunState,
    Workflow,
)
from .exceptions import (
    ExecutionCancelledError,
    ExecutionEngineError,
    NodeExecutionError,
    PersistenceError,
    WorkflowEngineError,
)
from .executors import ExecutionContext, ExecutorRegistry, NodeOutcome
from .journal import CancellationToken, ExecutionJournal
from .logging import get_logger, log_with_context
from .validator import GraphValidator

logger = get_logger(__name__)

StateCallback = Callable[[RunState], None]


class ExecutionResult(NamedTuple):
    """Sealed execution plus the error that ended it, if any."""
    execution: Execution
    error: Optional[WorkflowEngineError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.execution.succeeded


class RunReport(NamedTuple):
    """Outcome of a stored workflow's run, keeping save failures apart from run failures."""
    execution: Execution
    error: Optional[WorkflowEngineError] = None
    persistence_error: Optional[PersistenceError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.execution.succeeded

    @property
    def persisted(self) -> bool:
        return self.persistence_error is None


class RunHandle:
    """Tracks a run started in the background."""

    def __init__(self, run_id: str, workflow_id: str):
        self.run_id = run_id
        self.workflow_id = workflow_id
        self.state = RunState.PENDING
        self.cancel_token = CancellationToken()
        self.future: Optional[Future] = None
        self.report: Optional[RunReport] = None
        self.error: Optional[WorkflowEngineError] = None
        self.submitted_at = datetime.now(timezone.utc)
        self.completed_at: Optional[datetime] = None

    def set_state(self, state: RunState) -> None:
        self.state = state

    @property
    def done(self) -> bool:
        return self.completed_at is not None

    def to_dict(self) -> Dict[str, Any]:
        error = self.error or (self.report.error if self.report else None)
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "state": self.state.value,
            "submitted_at": self.submitted_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "execution": (
                self.report.execution.model_dump(mode="json", by_alias=True) if self.report else None
            ),
            "error": error.to_dict() if error else None,
            "persistence_error": (
                self.report.persistence_error.to_dict()
                if self.report and self.report.persistence_error else None
            ),
        }


class ExecutionEngine:
    """Runs workflows node by node with fail-fast semantics.

    One ``execute`` call is one run: it validates the graph, takes a private
    snapshot of it, creates a fresh journal, and processes nodes strictly
    sequentially. The first node failure ends the run. Independent runs never
    share a snapshot, journal or execution.
    """

    def __init__(
        self,
        executor_registry: ExecutorRegistry,
        validator: Optional[GraphValidator] = None,
        repository=None,
        traversal_mode: TraversalMode = TraversalMode.DECLARATION,
        max_concurrent_runs: int = 10,
        max_node_visits: int = 1000
    ):
        """Initialize the execution engine.

        Args:
            executor_registry: Registry resolving node kinds to executors
            validator: Graph validator run before every execution
            repository: Optional workflow repository for stored-workflow runs
            traversal_mode: Declaration order or edge-following traversal
            max_concurrent_runs: Worker threads for background runs
            max_node_visits: Per-node visit limit for graph traversal
        """
        self.executor_registry = executor_registry
        self.validator = validator or GraphValidator()
        self.repository = repository
        self.traversal_mode = TraversalMode(traversal_mode)
        self.max_node_visits = max_node_visits

        self._runs: Dict[str, RunHandle] = {}
        self._runs_lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent_runs, thread_name_prefix="workflow-run")
        self.max_concurrent_runs = max_concurrent_runs

        logger.info(f"ExecutionEngine initialized with traversal_mode={self.traversal_mode.value}, "
                    f"max_concurrent_runs={max_concurrent_runs}")

    def execute(
        self,
        workflow: Workflow,
        cancel_token: Optional[CancellationToken] = None,
        on_state: Optional[StateCallback] = None
    ) -> ExecutionResult:
        """
        Run a workflow once and return its sealed execution.

        Args:
            workflow: Workflow to run
            cancel_token: Token a caller can use to abort the run
            on_state: Called with every run state transition

        Returns:
            ExecutionResult with the sealed execution and the error that ended the run

        Raises:
            GraphValidationError: If the graph is invalid; nothing is journaled
        """
        self.validator.ensure_valid(workflow)

        graph = workflow.snapshot()
        token = cancel_token or CancellationToken()
        journal = ExecutionJournal()
        run_id = journal.execution_id
        context = ExecutionContext(run_id, token)

        def transition(state: RunState):
            log_with_context(logger, logging.DEBUG, f"Run {run_id} -> {state.value}",
                             run_id=run_id, workflow_id=graph.id, state=state.value)
            if on_state:
                on_state(state)

        transition(RunState.PENDING)
        journal.append(LogMarker.START, LogStatus.SUCCESS, "Workflow execution started")
        log_with_context(logger, logging.INFO, f"Started execution {run_id} of workflow '{graph.name}'",
                         run_id=run_id, workflow_id=graph.id, node_count=len(graph.nodes))

        transition(RunState.RUNNING)
        try:
            for node in self._traverse(graph, context):
                token.raise_if_cancelled(run_id)
                self._execute_node(node, journal, context)
        except ExecutionCancelledError as e:
            journal.append(LogMarker.CANCELLED, LogStatus.FAILED,
                           f"Workflow execution cancelled: {token.reason or e.message}")
            execution = journal.seal(ExecutionStatus.FAILED)
            transition(RunState.CANCELLED)
            log_with_context(logger, logging.WARNING, f"Execution {run_id} cancelled",
                             run_id=run_id, workflow_id=graph.id, reason=token.reason)
            return ExecutionResult(execution, e)
        except WorkflowEngineError as e:
            journal.append(LogMarker.ERROR, LogStatus.FAILED, f"Workflow execution failed: {e.message}")
            execution = journal.seal(ExecutionStatus.FAILED)
            transition(RunState.FAILED)
            log_with_context(logger, logging.ERROR, f"Execution {run_id} failed: {e.message}",
                             run_id=run_id, workflow_id=graph.id, error_code=e.error_code)
            return ExecutionResult(execution, e)

        journal.append(LogMarker.COMPLETE, LogStatus.SUCCESS, "Workflow execution completed successfully")
        execution = journal.seal(ExecutionStatus.SUCCESS)
        transition(RunState.SUCCESS)
        log_with_context(logger, logging.INFO, f"Execution {run_id} completed successfully",
                         run_id=run_id, workflow_id=graph.id, log_entries=len(execution.logs))
        return ExecutionResult(execution)

    def _execute_node(self, node, journal: ExecutionJournal, context: ExecutionContext) -> NodeOutcome:
        """
        Execute a single node, journaling a pending entry before and a failure entry on error.

        Raises:
            NodeExecutionError: If the node's executor fails
            ExecutionCancelledError: If the run is cancelled while the node runs
        """
        journal.append(node.id, LogStatus.PENDING, f"Executing node: {node.label}")

        try:
            executor = self.executor_registry.get(node.kind)
            outcome = executor.execute(node, journal, context)
        except ExecutionCancelledError:
            raise
        except NodeExecutionError as e:
            self._journal_node_failure(node, journal, e.message)
            raise
        except WorkflowEngineError as e:
            self._journal_node_failure(node, journal, e.message)
            raise NodeExecutionError(e.message, node_id=node.id, run_id=context.run_id) from e
        except Exception as e:
            logger.error(f"Unexpected error in node {node.id} for run {context.run_id}: {str(e)}", exc_info=True)
            self._journal_node_failure(node, journal, str(e))
            raise NodeExecutionError(str(e), node_id=node.id, run_id=context.run_id) from e

        context.record(outcome)
        logger.debug(f"Successfully executed node {node.id} for run {context.run_id}")
        return outcome

    @staticmethod
    def _journal_node_failure(node, journal: ExecutionJournal, message: str) -> None:
        journal.append(node.id, LogStatus.FAILED, f"Error executing node {node.label}: {message}")

    def _traverse(self, graph: Workflow, context: ExecutionContext) -> Iterator:
        """Yield nodes in run order. The caller executes each node before the next is chosen."""
        if self.traversal_mode == TraversalMode.DECLARATION:
            yield from list(graph.nodes)
            return
        yield from self._walk_edges(graph, context)

    def _walk_edges(self, graph: Workflow, context: ExecutionContext) -> Iterator:
        """
        Follow edges from the entry nodes, taking only the branch a decision node chose.

        Entry nodes are those without incoming edges, in declaration order; if
        every node has an incoming edge the first declared node is used. A node
        already waiting in the queue is not queued twice. Nodes never reached
        are skipped.
        """
        if not graph.nodes:
            return

        nodes_by_id = {node.id: node for node in graph.nodes}
        targets = {edge.target for edge in graph.edges}
        roots = [node.id for node in graph.nodes if node.id not in targets] or [graph.nodes[0].id]

        queue = deque(roots)
        queued = set(roots)
        visits: Counter = Counter()

        while queue:
            node_id = queue.popleft()
            queued.discard(node_id)

            visits[node_id] += 1
            if visits[node_id] > self.max_node_visits:
                raise ExecutionEngineError(
                    f"Node {node_id} visited more than {self.max_node_visits} times; "
                    "aborting a possible infinite loop",
                    run_id=context.run_id,
                    workflow_id=graph.id
                )

            node = nodes_by_id[node_id]
            yield node

            for target in self._next_nodes(graph, node, context):
                if target not in queued:
                    queue.append(target)
                    queued.add(target)

        skipped = [node.id for node in graph.nodes if node.id not in visits]
        if skipped:
            logger.info(f"Run {context.run_id} skipped unreached nodes: {', '.join(skipped)}")

    @staticmethod
    def _next_nodes(graph: Workflow, node, context: ExecutionContext) -> List[str]:
        outgoing = [edge for edge in graph.edges if edge.source == node.id]
        outcome = context.outcomes.get(node.id)

        if node.kind != NodeKind.DECISION or outcome is None or outcome.branch is None:
            return [edge.target for edge in outgoing]

        chosen = "true" if outcome.branch else "false"
        return [edge.target for edge in outgoing if edge.label is None or edge.label == chosen]

    def run_workflow(
        self,
        workflow_id: str,
        cancel_token: Optional[CancellationToken] = None,
        on_state: Optional[StateCallback] = None
    ) -> RunReport:
        """
        Load a stored workflow, run it and append the sealed execution to its history.

        Persistence failures of the append are reported in the RunReport, not
        raised, so "workflow failed" stays distinguishable from "result could
        not be saved". The append is not retried.

        Raises:
            ExecutionEngineError: If no repository is configured
            PersistenceError: If the workflow cannot be loaded
            GraphValidationError: If the stored graph is invalid
        """
        if self.repository is None:
            raise ExecutionEngineError("No workflow repository configured", workflow_id=workflow_id)

        workflow = self.repository.get(workflow_id)
        result = self.execute(workflow, cancel_token=cancel_token, on_state=on_state)

        try:
            self.repository.append_execution(workflow_id, result.execution)
        except PersistenceError as e:
            logger.error(f"Execution {result.execution.id} finished but could not be saved: {e.message}")
            return RunReport(result.execution, result.error, e)

        logger.info(f"Saved execution {result.execution.id} ({result.execution.status.value}) "
                    f"for workflow {workflow_id}")
        return RunReport(result.execution, result.error)

    def start_run(self, workflow_id: str) -> str:
        """
        Run a stored workflow on a worker thread.

        Returns:
            Run ID for tracking and cancelling the run
        """
        if self.repository is None:
            raise ExecutionEngineError("No workflow repository configured", workflow_id=workflow_id)

        handle = RunHandle(str(uuid.uuid4()), workflow_id)
        with self._runs_lock:
            self._runs[handle.run_id] = handle
            handle.future = self._executor.submit(self._run_in_background, handle)

        logger.info(f"Submitted background run {handle.run_id} for workflow {workflow_id}")
        return handle.run_id

    def _run_in_background(self, handle: RunHandle) -> None:
        try:
            handle.report = self.run_workflow(
                handle.workflow_id,
                cancel_token=handle.cancel_token,
                on_state=handle.set_state
            )
        except WorkflowEngineError as e:
            logger.warning(f"Background run {handle.run_id} could not run: {e.message}")
            handle.error = e
            handle.set_state(RunState.FAILED)
        except Exception as e:
            logger.error(f"Background run {handle.run_id} crashed: {str(e)}", exc_info=True)
            handle.error = ExecutionEngineError(f"Run crashed: {str(e)}", run_id=handle.run_id,
                                                workflow_id=handle.workflow_id)
            handle.set_state(RunState.FAILED)
        finally:
            handle.completed_at = datetime.now(timezone.utc)

    def get_run(self, run_id: str) -> RunHandle:
        """
        Get the handle of a background run.

        Raises:
            ExecutionEngineError: If the run is unknown
        """
        with self._runs_lock:
            handle = self._runs.get(run_id)
        if handle is None:
            raise ExecutionEngineError(f"Run {run_id} not found", run_id=run_id)
        return handle

    def cancel_run(self, run_id: str, reason: str = "Cancelled by user") -> bool:
        """
        Cancel a background run.

        Returns:
            True if the run was still in flight, False if unknown or already finished
        """
        with self._runs_lock:
            handle = self._runs.get(run_id)

        if handle is None or handle.done:
            logger.warning(f"Attempted to cancel non-active run: {run_id}")
            return False

        handle.cancel_token.cancel(reason)
        if handle.future is not None and handle.future.cancel():
            # Never started; nothing was journaled
            handle.error = ExecutionCancelledError(f"Execution cancelled: {reason}", run_id=run_id)
            handle.set_state(RunState.CANCELLED)
            handle.completed_at = datetime.now(timezone.utc)

        logger.info(f"Cancellation requested for run {run_id}: {reason}")
        return True

    def active_runs(self) -> List[str]:
        with self._runs_lock:
            return [run_id for run_id, handle in self._runs.items() if not handle.done]

    def shutdown(self) -> None:
        """Cancel in-flight runs and stop the worker pool."""
        for run_id in self.active_runs():
            self.cancel_run(run_id, reason="Engine shutting down")
        self._executor.shutdown(wait=True)
        logger.info("ExecutionEngine shutdown completed")
