"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .api.endpoints import init_dependencies, router
from .config import AppConfig, get_config, validate_config
from .core.exceptions import WorkflowEngineError
from .core.execution_engine import ExecutionEngine
from .core.execution_logger import ExecutionLogger, ProcessLogHandler
from .core.execution_service import ExecutionService
from .core.logging import get_logger, setup_logging
from .core.middleware import ErrorHandlingMiddleware, PerformanceMonitoringMiddleware, workflow_error_handler
from .core.registry import NodeExecutorRegistry, register_builtin_executors
from .scripting import ScriptStrategyRegistry, build_default_strategies
from .storage.database import SessionLocal, configure_database, create_tables
from .storage.repositories import (
    DatabaseCredentialStore,
    DatabaseSettingsStore,
    DatabaseVariableStore,
    ExecutionRepository,
    WorkflowRepository,
)


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.settings: Optional[DatabaseSettingsStore] = None
        self.variables: Optional[DatabaseVariableStore] = None
        self.credentials: Optional[DatabaseCredentialStore] = None
        self.workflows: Optional[WorkflowRepository] = None
        self.executions: Optional[ExecutionRepository] = None
        self.strategies: Optional[ScriptStrategyRegistry] = None
        self.executor_registry: Optional[NodeExecutorRegistry] = None
        self.execution_engine: Optional[ExecutionEngine] = None
        self.execution_service: Optional[ExecutionService] = None


# Global application state
app_state = ApplicationState()


def initialize_database(config: AppConfig, logger) -> None:
    """Configure the engine and create database tables."""
    try:
        configure_database(config.database_url, echo=config.database_echo)
        create_tables()
        logger.info("Database tables created")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(config: AppConfig, logger) -> ApplicationState:
    """Build collaborators, registries, engine and service into ``app_state``."""
    try:
        settings = DatabaseSettingsStore(defaults=config.settings_defaults())
        variables = DatabaseVariableStore()
        credentials = DatabaseCredentialStore()
        strategies = build_default_strategies(settings)
        executor_registry = register_builtin_executors(NodeExecutorRegistry(), strategies, settings)

        execution_engine = ExecutionEngine(
            registry=executor_registry,
            variable_store=variables,
            settings=settings,
            credentials=credentials,
            execution_logger=ExecutionLogger(handlers=[ProcessLogHandler()]),
            max_concurrent_executions=config.max_concurrent_executions,
        )
        workflows = WorkflowRepository()
        executions = ExecutionRepository()
        execution_service = ExecutionService(execution_engine, workflows, executions)

        app_state.config = config
        app_state.settings = settings
        app_state.variables = variables
        app_state.credentials = credentials
        app_state.workflows = workflows
        app_state.executions = executions
        app_state.strategies = strategies
        app_state.executor_registry = executor_registry
        app_state.execution_engine = execution_engine
        app_state.execution_service = execution_service

        for description in strategies.describe():
            logger.info(
                f"Script runtime {description['language_id']}: "
                f"{'available' if description['available'] else 'unavailable'} ({description['availability_info']})"
            )
        logger.info("Core components initialized")
        return app_state

    except Exception as e:
        logger.error(f"Core components initialization failed: {e}")
        raise


def graceful_shutdown(execution_engine: Optional[ExecutionEngine], logger) -> None:
    """Cancel active runs and stop the worker pool."""
    logger.info("Shutting down graphflow")
    if execution_engine is None:
        return
    try:
        execution_engine.shutdown()
    except Exception as e:
        logger.error(f"Error during execution engine shutdown: {str(e)}")


def create_lifespan_handler(config: AppConfig):
    """Create the application lifespan handler for ``config``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        try:
            initialize_database(config, logger)
            state = initialize_core_components(config, logger)
            init_dependencies(
                workflow_repository=state.workflows,
                execution_service=state.execution_service,
                variable_store=state.variables,
                settings_store=state.settings,
                executor_registry=state.executor_registry,
                strategy_registry=state.strategies,
            )
        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        logger.info("Application startup completed successfully")
        yield

        graceful_shutdown(app_state.execution_engine, logger)

    return lifespan


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Create and configure FastAPI application instance."""
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Workflow execution engine for DAGs of typed nodes with branch routing and script steps",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(PerformanceMonitoringMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_exception_handler(WorkflowEngineError, workflow_error_handler)

    app.include_router(router)
    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    def health_check():
        """Database connectivity and engine load."""
        checks = {}
        healthy = True

        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
            checks["database"] = {"status": "healthy"}
        except Exception as e:
            get_logger(__name__).error(f"Database health check failed: {e}")
            checks["database"] = {"status": "unhealthy", "error": str(e)}
            healthy = False

        engine = app_state.execution_engine
        if engine is None:
            checks["execution_engine"] = {"status": "unhealthy", "error": "not initialized"}
            healthy = False
        else:
            checks["execution_engine"] = {"status": "healthy", **engine.get_status()}

        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "unhealthy",
                "service": config.app_name,
                "version": config.app_version,
                "checks": checks,
                "timestamp": datetime.utcnow().isoformat(),
            }
        )


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
