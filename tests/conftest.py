"""Pytest configuration and fixtures."""

import pytest

from automation_engine.actions.builtin import register_builtin_actions
from automation_engine.config import AppConfig, LogLevel, reset_config
from automation_engine.core.action_registry import ActionRegistry
from automation_engine.core.execution_engine import ExecutionEngine
from automation_engine.core.workflow_manager import WorkflowManager
from automation_engine.storage.database import create_database_engine, create_session_factory, create_tables
from automation_engine.storage.store import WorkflowStore


@pytest.fixture
def database_url(tmp_path):
    """URL of a fresh SQLite database file for one test."""
    return f"sqlite:///{tmp_path / 'automation_engine_test.db'}"


@pytest.fixture
def db_engine(database_url):
    engine = create_database_engine(database_url)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    return WorkflowStore(create_session_factory(db_engine))


@pytest.fixture
def recorded_calls():
    """Calls made to the ``record`` test action, in order."""
    return []


@pytest.fixture
def action_registry(store, recorded_calls):
    """Built-in handlers plus ``record`` and ``explode`` test handlers."""
    registry = ActionRegistry()
    register_builtin_actions(registry, store, webhook_timeout_seconds=2.0)

    def record(config, input_data):
        recorded_calls.append(config.get("name"))
        return {"recorded": config.get("name")}

    def explode(config, input_data):
        raise RuntimeError(config.get("message", "boom"))

    registry.register("record", record, "Record the call for assertions")
    registry.register("explode", explode, "Always fail")
    return registry


@pytest.fixture
def execution_engine(store, action_registry):
    engine = ExecutionEngine(store, action_registry, max_concurrent_executions=4)
    yield engine
    engine.shutdown(wait=True)


@pytest.fixture
def workflow_manager(store):
    return WorkflowManager(store)


@pytest.fixture
def app_config(database_url):
    return AppConfig(
        database_url=database_url,
        log_level=LogLevel.WARNING,
        max_concurrent_executions=2,
        webhook_timeout_seconds=2.0
    )


@pytest.fixture
def client(app_config):
    """Test client with the full application lifespan running."""
    from fastapi.testclient import TestClient
    from automation_engine.factory import create_app

    app = create_app(app_config)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def clean_config():
    yield
    reset_config()
