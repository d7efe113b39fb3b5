"""Application factory and entry point for the workflow runner API."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.endpoints import init_dependencies, router
from .config import AppConfig, ConditionMode, get_config
from .core.conditions import ConditionEvaluator, ExpressionConditionEvaluator, RandomConditionEvaluator
from .core.execution_engine import ExecutionEngine
from .core.executors import ExecutorRegistry
from .core.http_client import HttpClient, RequestsHttpClient
from .core.logging import setup_logging
from .core.middleware import ErrorHandlingMiddleware
from .core.validator import GraphValidator
from .storage.database import create_database_engine, create_session_factory, create_tables
from .storage.repository import SqlWorkflowRepository, WorkflowRepository


def build_condition_evaluator(config: AppConfig) -> ConditionEvaluator:
    """Pick the decision evaluator configured by ``condition_mode``."""
    if config.condition_mode == ConditionMode.EXPRESSION:
        return ExpressionConditionEvaluator()
    return RandomConditionEvaluator(seed=config.decision_seed)


def initialize_repository(config: AppConfig, logger) -> WorkflowRepository:
    """Create the database schema and a repository bound to it."""
    engine = create_database_engine(
        config.database_url,
        echo=config.database_echo,
        connect_args=config.get_database_connect_args()
    )
    create_tables(engine)
    logger.info("Database tables created")
    return SqlWorkflowRepository(create_session_factory(engine))


def initialize_engine(
    config: AppConfig,
    repository: WorkflowRepository,
    http_client: HttpClient,
    logger
) -> ExecutionEngine:
    """Wire the executor registry, validator and repository into an engine."""
    registry = ExecutorRegistry.default(
        http_client=http_client,
        api_timeout=config.api_timeout,
        evaluator=build_condition_evaluator(config)
    )
    engine = ExecutionEngine(
        executor_registry=registry,
        validator=GraphValidator(),
        repository=repository,
        traversal_mode=config.traversal_mode,
        max_concurrent_runs=config.max_concurrent_runs,
        max_node_visits=config.max_node_visits
    )
    logger.info(f"Registered executors: {', '.join(registry.list_kinds())}")
    return engine


def create_app(
    config: Optional[AppConfig] = None,
    repository: Optional[WorkflowRepository] = None,
    http_client: Optional[HttpClient] = None
) -> FastAPI:
    """
    Create and configure a FastAPI application instance.

    Args:
        config: Application configuration; loaded from the environment if omitted
        repository: Workflow repository; a SQL repository on ``database_url`` if omitted
        http_client: Client used by API nodes; a requests-based client if omitted
    """
    if config is None:
        config = get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        store = repository or initialize_repository(config, logger)
        client = http_client or RequestsHttpClient(
            default_timeout=config.api_timeout,
            max_workers=config.max_concurrent_runs
        )
        execution_engine = initialize_engine(config, store, client, logger)

        init_dependencies(repository=store, execution_engine=execution_engine)
        app.state.repository = store
        app.state.execution_engine = execution_engine
        logger.info("Application startup completed successfully")

        yield

        logger.info(f"Shutting down {config.app_name}")
        try:
            execution_engine.shutdown()
        finally:
            if http_client is None:
                client.close()

    app = FastAPI(
        title=config.app_name,
        description="Design-time workflow runner: validate, execute and journal node graphs",
        version=config.app_version,
        debug=config.debug,
        lifespan=lifespan
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version
        }

    return app


if __name__ == "__main__":
    import uvicorn

    from .config import load_config

    app_config = load_config()
    uvicorn.run(create_app(app_config), **app_config.get_uvicorn_config())
