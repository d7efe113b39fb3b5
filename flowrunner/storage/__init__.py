"""Database models and the workflow repository layer."""

from .database import (
    Base,
    create_database_engine,
    create_session_factory,
    create_tables,
    drop_tables,
)
from .models import WorkflowModel, ExecutionModel
from .repository import WorkflowRepository, InMemoryWorkflowRepository, SqlWorkflowRepository

__all__ = [
    "Base",
    "create_database_engine",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "WorkflowModel",
    "ExecutionModel",
    "WorkflowRepository",
    "InMemoryWorkflowRepository",
    "SqlWorkflowRepository",
]
