"""Pytest configuration and fixtures."""

import pytest

from flowrunner.config import TraversalMode
from flowrunner.core.execution_engine import ExecutionEngine
from flowrunner.core.executors import ExecutorRegistry
from flowrunner.core.validator import GraphValidator
from flowrunner.storage.database import create_database_engine, create_session_factory, create_tables, drop_tables
from flowrunner.storage.repository import InMemoryWorkflowRepository, SqlWorkflowRepository

from .factories import USERS_URL, FakeHttpClient, FixedConditionEvaluator, json_response


@pytest.fixture
def http_client():
    """Fake HTTP client with one healthy endpoint."""
    return FakeHttpClient({USERS_URL: json_response([{"id": 1}, {"id": 2}, {"id": 3}])})


@pytest.fixture
def evaluator():
    return FixedConditionEvaluator(True)


@pytest.fixture
def executor_registry(http_client, evaluator):
    return ExecutorRegistry.default(http_client=http_client, api_timeout=2.0, evaluator=evaluator)


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def sql_repository():
    """SQL repository on a private in-memory SQLite database."""
    engine = create_database_engine("sqlite:///:memory:")
    create_tables(engine)
    yield SqlWorkflowRepository(create_session_factory(engine))
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def execution_engine(executor_registry, repository):
    """Engine running in declaration order against the in-memory repository."""
    engine = ExecutionEngine(
        executor_registry=executor_registry,
        validator=GraphValidator(),
        repository=repository,
        max_concurrent_runs=2
    )
    yield engine
    engine.shutdown()


@pytest.fixture
def graph_engine(executor_registry, repository):
    """Engine that follows edges and decision branches."""
    engine = ExecutionEngine(
        executor_registry=executor_registry,
        repository=repository,
        traversal_mode=TraversalMode.GRAPH,
        max_concurrent_runs=2,
        max_node_visits=5
    )
    yield engine
    engine.shutdown()
