"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import Engine

from .config import AppConfig, get_config, validate_config
from .core.logging import setup_logging, get_logger
from .core.action_registry import ActionRegistry
from .core.conditions import ConditionEvaluator
from .core.definitions import DefinitionRegistry
from .core.error_recovery import HealthChecker
from .core.execution_engine import ExecutionEngine
from .core.workflow_manager import WorkflowManager
from .actions.builtin import register_builtin_actions
from .storage.database import create_database_engine, create_session_factory, create_tables
from .storage.store import WorkflowStore
from .api.endpoints import router, init_dependencies, reset_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.database_engine: Optional[Engine] = None
        self.store: Optional[WorkflowStore] = None
        self.action_registry: Optional[ActionRegistry] = None
        self.definition_registry: Optional[DefinitionRegistry] = None
        self.workflow_manager: Optional[WorkflowManager] = None
        self.execution_engine: Optional[ExecutionEngine] = None
        self.health_checker: Optional[HealthChecker] = None
        self.logger = None


# Global application state
app_state = ApplicationState()


def initialize_database(config: AppConfig, logger) -> Engine:
    """Create the database engine and any missing tables."""
    try:
        engine = create_database_engine(config.database_url, echo=config.database_echo)
        create_tables(engine)
        logger.info("Database tables created")
        return engine
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(config: AppConfig, engine: Engine, logger) -> None:
    """Wire the store, registries, manager and execution engine into ``app_state``."""
    store = WorkflowStore(create_session_factory(engine))

    action_registry = ActionRegistry()
    register_builtin_actions(
        action_registry,
        store,
        webhook_timeout_seconds=config.webhook_timeout_seconds
    )

    execution_engine = ExecutionEngine(
        store=store,
        action_registry=action_registry,
        condition_evaluator=ConditionEvaluator(default_result=config.unparsed_condition_default),
        max_concurrent_executions=config.max_concurrent_executions
    )

    recovered = execution_engine.recover_interrupted_executions()
    if recovered:
        logger.warning(f"Recovered {recovered} executions interrupted by a previous shutdown")

    app_state.store = store
    app_state.action_registry = action_registry
    app_state.definition_registry = DefinitionRegistry()
    app_state.workflow_manager = WorkflowManager(store)
    app_state.execution_engine = execution_engine

    logger.info("Core components initialized")


def setup_health_checks(config: AppConfig, logger) -> HealthChecker:
    """Register component health checks."""
    health_checker = HealthChecker()
    store = app_state.store
    execution_engine = app_state.execution_engine
    action_registry = app_state.action_registry

    def check_database():
        return store.ping()

    def check_execution_engine():
        active = execution_engine.active_execution_count()
        return f"Execution engine operational ({active} active executions)"

    def check_action_registry():
        return f"{len(action_registry.action_types())} action handlers registered"

    health_checker.register_check("database", check_database, timeout=config.health_check_timeout)
    health_checker.register_check("execution_engine", check_execution_engine, timeout=3.0)
    health_checker.register_check("action_registry", check_action_registry, timeout=2.0)

    logger.info("Health checks registered")
    return health_checker


def graceful_shutdown(logger) -> None:
    """Stop running executions and release the database."""
    logger.info("Shutting down Workflow Automation Engine")

    if app_state.execution_engine is not None:
        try:
            app_state.execution_engine.shutdown()
        except Exception as e:
            logger.error(f"Error during execution engine shutdown: {str(e)}")

    if app_state.database_engine is not None:
        app_state.database_engine.dispose()
        logger.info("Database connections closed")

    reset_dependencies()


def create_lifespan_handler(config: AppConfig):
    """Create the application lifespan handler for ``config``."""

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

        try:
            database_engine = initialize_database(config, logger)

            app_state.config = config
            app_state.database_engine = database_engine
            app_state.logger = logger

            initialize_core_components(config, database_engine, logger)

            init_dependencies(
                workflow_manager=app_state.workflow_manager,
                execution_engine=app_state.execution_engine,
                definition_registry=app_state.definition_registry,
                execution_list_limit=config.execution_list_limit
            )

            app_state.health_checker = setup_health_checks(config, logger)

            logger.info("Application startup completed successfully")
        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        try:
            yield
        finally:
            graceful_shutdown(logger)

    return lifespan


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Create and configure a FastAPI application instance."""
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Workflow automation engine: validated workflow graphs executed from a trigger",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    from .core.middleware import (
        ErrorHandlingMiddleware,
        RequestLoggingMiddleware,
        PerformanceMonitoringMiddleware
    )

    if config.enable_performance_monitoring:
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
        app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)

    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""
    service_name = config.app_name.lower().replace(" ", "-")

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": service_name,
            "version": config.app_version
        }

    @app.get("/health/detailed")
    async def detailed_health_check():
        """Detailed health check endpoint with component status."""
        health_checker = app_state.health_checker
        if health_checker is None:
            return JSONResponse(
                status_code=503,
                content={
                    "service": service_name,
                    "overall_status": "unhealthy",
                    "error": "Application components not initialized",
                    "timestamp": datetime.utcnow().isoformat()
                }
            )

        results = await health_checker.run_all_checks()
        status_code = 200 if results["overall_status"] == "healthy" else 503

        return JSONResponse(
            status_code=status_code,
            content={
                "service": service_name,
                "version": config.app_version,
                **results
            }
        )


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
