"""Pytest configuration and fixtures."""

import os
import tempfile
from typing import Any, Dict, List, Optional

import pytest

from graphflow.core.credentials import InMemoryCredentials
from graphflow.core.context import ExecutionContext
from graphflow.core.execution_engine import ExecutionEngine
from graphflow.core.execution_logger import ExecutionLogger
from graphflow.core.registry import NodeExecutorRegistry, register_builtin_executors
from graphflow.core.settings import InMemorySettings
from graphflow.core.variables import InMemoryVariableStore
from graphflow.models.core import Connection, ExecutionRun, Node, Workflow
from graphflow.scripting import build_default_strategies
from graphflow.storage.database import configure_database, create_tables, drop_tables, reset_database_engine


def make_workflow(nodes: List[Dict[str, Any]], connections: Optional[List[Any]] = None,
                  workflow_id: str = "wf-test", name: str = "Test workflow") -> Workflow:
    """Build a workflow from node dicts and ``(source, target)`` or ``(source, output, target)`` tuples."""
    built_connections = []
    for conn in connections or []:
        if isinstance(conn, dict):
            built_connections.append(Connection(**conn))
        elif len(conn) == 2:
            built_connections.append(Connection(source_node_id=conn[0], target_node_id=conn[1]))
        else:
            built_connections.append(Connection(
                source_node_id=conn[0], source_output=conn[1], target_node_id=conn[2]
            ))
    return Workflow(
        id=workflow_id,
        name=name,
        nodes=[Node(**node) for node in nodes],
        connections=built_connections,
    )


def make_context(workflow: Optional[Workflow] = None, settings=None, credentials=None) -> ExecutionContext:
    """A standalone run context for calling executors and strategies directly."""
    workflow = workflow or make_workflow([{"id": "start", "type": "noOp"}])
    run = ExecutionRun(workflow_id=workflow.id)
    return ExecutionContext(
        run=run,
        workflow=workflow,
        execution_logger=ExecutionLogger(),
        settings=settings,
        credentials=credentials,
    )


@pytest.fixture
def settings():
    """Settings forcing embedded runtimes with short script timeouts."""
    return InMemorySettings(defaults={
        "python.executionMode": "embedded",
        "javascript.executionMode": "embedded",
        "python.timeout": 10000,
        "advanced.scriptTimeout": 10000,
    })


@pytest.fixture
def variable_store():
    return InMemoryVariableStore()


@pytest.fixture
def credentials():
    return InMemoryCredentials({"cred-1": "secret-token"})


@pytest.fixture
def strategies(settings):
    return build_default_strategies(settings)


@pytest.fixture
def registry(strategies, settings):
    return register_builtin_executors(NodeExecutorRegistry(), strategies, settings)


@pytest.fixture
def execution_logger():
    return ExecutionLogger()


@pytest.fixture
def engine(registry, variable_store, settings, credentials, execution_logger):
    """Execution engine over in-memory collaborators."""
    engine = ExecutionEngine(
        registry=registry,
        variable_store=variable_store,
        settings=settings,
        credentials=credentials,
        execution_logger=execution_logger,
        max_concurrent_executions=2,
    )
    yield engine
    engine.shutdown(wait=True)


@pytest.fixture
def context(settings, credentials):
    return make_context(settings=settings, credentials=credentials)


@pytest.fixture
def test_db():
    """Temporary SQLite database with all tables created."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    configure_database(f"sqlite:///{db_path}")
    create_tables()

    yield db_path

    drop_tables()
    reset_database_engine()
    try:
        os.unlink(db_path)
    except OSError:
        pass
