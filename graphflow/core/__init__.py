"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    StructuralError,
    NodeExecutionError,
    ScriptExecutionError,
    ScriptTimeoutError,
    AvailabilityError,
    ExecutorRegistryError,
    ExecutionEngineError,
    StorageError,
    ConfigurationError,
    NotFoundError,
)
from .logging import setup_logging, get_logger
from .settings import SettingsProvider, InMemorySettings
from .credentials import CredentialProvider, InMemoryCredentials
from .variables import VariableStore, InMemoryVariableStore, VariableResolver
from .execution_logger import ExecutionLogger
from .registry import NodeExecutorRegistry, register_builtin_executors
from .context import ExecutionContext
from .execution_engine import ExecutionEngine
from .execution_service import ExecutionService

__all__ = [
    "WorkflowEngineError",
    "StructuralError",
    "NodeExecutionError",
    "ScriptExecutionError",
    "ScriptTimeoutError",
    "AvailabilityError",
    "ExecutorRegistryError",
    "ExecutionEngineError",
    "StorageError",
    "ConfigurationError",
    "NotFoundError",
    "setup_logging",
    "get_logger",
    "SettingsProvider",
    "InMemorySettings",
    "CredentialProvider",
    "InMemoryCredentials",
    "VariableStore",
    "InMemoryVariableStore",
    "VariableResolver",
    "ExecutionLogger",
    "NodeExecutorRegistry",
    "register_builtin_executors",
    "ExecutionContext",
    "ExecutionEngine",
    "ExecutionService",
]
