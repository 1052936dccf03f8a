"""Persistence for workflows, runs, logs and collaborators."""

from .database import (
    Base,
    SessionLocal,
    configure_database,
    get_database_engine,
    reset_database_engine,
    get_db,
    create_tables,
    drop_tables,
)
from .repositories import (
    WorkflowRepository,
    ExecutionRepository,
    DatabaseVariableStore,
    DatabaseSettingsStore,
    DatabaseCredentialStore,
)

__all__ = [
    "Base",
    "SessionLocal",
    "configure_database",
    "get_database_engine",
    "reset_database_engine",
    "get_db",
    "create_tables",
    "drop_tables",
    "WorkflowRepository",
    "ExecutionRepository",
    "DatabaseVariableStore",
    "DatabaseSettingsStore",
    "DatabaseCredentialStore",
]
