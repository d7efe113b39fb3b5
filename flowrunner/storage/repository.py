"""Workflow repositories: the persistence gateway used by the engine and the API."""

import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..core.exceptions import PersistenceError, WorkflowNotFoundError
from ..core.logging import get_logger
from ..models.core import Execution, Workflow
from .models import ExecutionModel, WorkflowModel

logger = get_logger(__name__)


def _matches(workflow: Workflow, user_id: Optional[str], search: Optional[str]) -> bool:
    if user_id is not None and workflow.user_id != user_id:
        return False
    if search:
        term = search.lower()
        return term in workflow.name.lower() or term in (workflow.id or "").lower()
    return True


class WorkflowRepository:
    """Storage contract for workflows and their execution history.

    ``save`` never writes execution history; executions are only ever added
    through ``append_execution``, and implementations serialise concurrent
    appends to the same workflow.
    """

    def get(self, workflow_id: str) -> Workflow:
        raise NotImplementedError

    def save(self, workflow: Workflow, edited_by: Optional[str] = None) -> str:
        raise NotImplementedError

    def append_execution(self, workflow_id: str, execution: Execution) -> None:
        raise NotImplementedError

    def list(self, user_id: Optional[str] = None, search: Optional[str] = None) -> List[Workflow]:
        raise NotImplementedError

    def delete(self, workflow_id: str) -> bool:
        raise NotImplementedError

    @staticmethod
    def _generate_unique_id() -> str:
        return str(uuid.uuid4())


class InMemoryWorkflowRepository(WorkflowRepository):
    """Process-local repository, used by tests and single-process deployments."""

    def __init__(self):
        self._workflows: Dict[str, Workflow] = {}
        self._lock = threading.RLock()

    def get(self, workflow_id: str) -> Workflow:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id)
            return workflow.model_copy(deep=True)

    def save(self, workflow: Workflow, edited_by: Optional[str] = None) -> str:
        with self._lock:
            workflow_id = workflow.id or self._generate_unique_id()
            existing = self._workflows.get(workflow_id)
            history = list(existing.executions) if existing else []

            stored = workflow.model_copy(deep=True, update={
                "id": workflow_id,
                "executions": history,
                "last_edited_by": edited_by or workflow.last_edited_by or workflow.user_id,
                "last_edited_on": datetime.now(timezone.utc),
            })
            self._workflows[workflow_id] = stored

        logger.info(f"Saved workflow '{workflow.name}' with ID: {workflow_id}")
        return workflow_id

    def append_execution(self, workflow_id: str, execution: Execution) -> None:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id, operation="append_execution")
            self._workflows[workflow_id] = workflow.model_copy(
                update={"executions": [*workflow.executions, execution]}
            )
        logger.debug(f"Appended execution {execution.id} to workflow {workflow_id}")

    def list(self, user_id: Optional[str] = None, search: Optional[str] = None) -> List[Workflow]:
        with self._lock:
            return [
                workflow.model_copy(deep=True)
                for workflow in self._workflows.values()
                if _matches(workflow, user_id, search)
            ]

    def delete(self, workflow_id: str) -> bool:
        with self._lock:
            removed = self._workflows.pop(workflow_id, None) is not None
        if removed:
            logger.info(f"Deleted workflow with ID: {workflow_id}")
        else:
            logger.warning(f"Workflow with ID '{workflow_id}' not found for deletion")
        return removed


class SqlWorkflowRepository(WorkflowRepository):
    """SQLAlchemy-backed repository storing graphs and logs as JSON columns."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._append_lock = threading.Lock()

    def get(self, workflow_id: str) -> Workflow:
        logger.debug(f"Retrieving workflow with ID: {workflow_id}")
        try:
            with self._session_factory() as session:
                model = session.get(WorkflowModel, workflow_id)
                if model is None:
                    raise WorkflowNotFoundError(workflow_id)
                return self._to_workflow(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving workflow: {str(e)}")
            raise PersistenceError(f"Failed to retrieve workflow: {str(e)}",
                                   operation="get", workflow_id=workflow_id)

    def save(self, workflow: Workflow, edited_by: Optional[str] = None) -> str:
        workflow_id = workflow.id or self._generate_unique_id()
        document = workflow.model_dump(mode="json", by_alias=True)

        try:
            with self._session_factory() as session:
                model = session.get(WorkflowModel, workflow_id)
                if model is None:
                    model = WorkflowModel(id=workflow_id)
                    session.add(model)

                model.name = workflow.name
                model.description = workflow.description
                model.status = workflow.status.value
                model.user_id = workflow.user_id
                model.last_edited_by = edited_by or workflow.last_edited_by or workflow.user_id
                model.last_edited_on = datetime.now(timezone.utc)
                model.nodes = document["nodes"]
                model.edges = document["edges"]

                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database error while saving workflow: {str(e)}")
            raise PersistenceError(f"Failed to store workflow: {str(e)}",
                                   operation="save", workflow_id=workflow_id)

        logger.info(f"Saved workflow '{workflow.name}' with ID: {workflow_id}")
        return workflow_id

    def append_execution(self, workflow_id: str, execution: Execution) -> None:
        document = execution.model_dump(mode="json", by_alias=True)

        with self._append_lock:
            try:
                with self._session_factory() as session:
                    with session.begin():
                        if session.get(WorkflowModel, workflow_id) is None:
                            raise WorkflowNotFoundError(workflow_id, operation="append_execution")

                        sequence = session.query(func.count(ExecutionModel.id)).filter(
                            ExecutionModel.workflow_id == workflow_id
                        ).scalar()

                        session.add(ExecutionModel(
                            id=execution.id,
                            workflow_id=workflow_id,
                            sequence=sequence,
                            timestamp=execution.timestamp,
                            status=execution.status.value,
                            logs=document["logs"]
                        ))
            except SQLAlchemyError as e:
                logger.error(f"Database error while appending execution: {str(e)}")
                raise PersistenceError(f"Failed to append execution: {str(e)}",
                                       operation="append_execution", workflow_id=workflow_id)

        logger.debug(f"Appended execution {execution.id} to workflow {workflow_id}")

    def list(self, user_id: Optional[str] = None, search: Optional[str] = None) -> List[Workflow]:
        try:
            with self._session_factory() as session:
                query = session.query(WorkflowModel)
                if user_id is not None:
                    query = query.filter(WorkflowModel.user_id == user_id)
                models = query.order_by(WorkflowModel.created_on, WorkflowModel.id).all()
                workflows = [self._to_workflow(model) for model in models]
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing workflows: {str(e)}")
            raise PersistenceError(f"Failed to list workflows: {str(e)}", operation="list")

        return [workflow for workflow in workflows if _matches(workflow, None, search)]

    def delete(self, workflow_id: str) -> bool:
        try:
            with self._session_factory() as session:
                model = session.get(WorkflowModel, workflow_id)
                if model is None:
                    logger.warning(f"Workflow with ID '{workflow_id}' not found for deletion")
                    return False
                session.delete(model)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database error while deleting workflow: {str(e)}")
            raise PersistenceError(f"Failed to delete workflow: {str(e)}",
                                   operation="delete", workflow_id=workflow_id)

        logger.info(f"Deleted workflow with ID: {workflow_id}")
        return True

    @staticmethod
    def _to_workflow(model: WorkflowModel) -> Workflow:
        return Workflow.model_validate({
            "id": model.id,
            "name": model.name,
            "description": model.description or "",
            "status": model.status,
            "userId": model.user_id,
            "lastEditedBy": model.last_edited_by,
            "lastEditedOn": _as_utc(model.last_edited_on),
            "nodes": model.nodes or [],
            "edges": model.edges or [],
            "executions": [
                {
                    "id": execution.id,
                    "timestamp": _as_utc(execution.timestamp),
                    "status": execution.status,
                    "logs": execution.logs or [],
                }
                for execution in model.executions
            ],
        })


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
