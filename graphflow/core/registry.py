"""Node Executor Registry mapping node type strings to executors."""

import threading
from typing import Dict, List, Optional

from .exceptions import ExecutorRegistryError
from .logging import get_logger

logger = get_logger(__name__)


class NodeExecutorRegistry:
    """Registry of executors keyed by the node type they handle."""

    def __init__(self):
        self._executors: Dict[str, "NodeExecutor"] = {}
        self._lock = threading.RLock()

    def register(self, executor: "NodeExecutor", replace: bool = False) -> None:
        """Register an executor under its ``node_type``.

        Args:
            executor: Executor instance to register
            replace: Allow replacing an executor already registered for the type

        Raises:
            ExecutorRegistryError: If the type is empty or already registered
        """
        node_type = (getattr(executor, "node_type", "") or "").strip()
        if not node_type:
            raise ExecutorRegistryError("Executor must declare a node_type", operation="register")
        if not callable(getattr(executor, "execute", None)):
            raise ExecutorRegistryError(
                f"Executor for '{node_type}' has no execute method",
                node_type=node_type,
                operation="register",
            )

        with self._lock:
            if node_type in self._executors and not replace:
                raise ExecutorRegistryError(
                    f"Executor for node type '{node_type}' is already registered",
                    node_type=node_type,
                    operation="register",
                )
            self._executors[node_type] = executor
        logger.info(f"Registered executor {executor!r}")

    def unregister(self, node_type: str) -> bool:
        """Remove the executor for ``node_type``.

        Returns:
            True if an executor was removed, False if none was registered
        """
        with self._lock:
            removed = self._executors.pop(node_type, None) is not None
        if removed:
            logger.info(f"Unregistered executor for node type '{node_type}'")
        return removed

    def find(self, node_type: str) -> Optional["NodeExecutor"]:
        with self._lock:
            return self._executors.get(node_type)

    def get(self, node_type: str) -> "NodeExecutor":
        """Retrieve the executor for ``node_type``.

        Raises:
            ExecutorRegistryError: If no executor handles the type
        """
        executor = self.find(node_type)
        if executor is None:
            raise ExecutorRegistryError(
                f"No executor registered for node type '{node_type}'",
                node_type=node_type,
                operation="get",
            )
        return executor

    def has(self, node_type: str) -> bool:
        with self._lock:
            return node_type in self._executors

    def node_types(self) -> List[str]:
        with self._lock:
            return sorted(self._executors)

    def describe(self) -> List[Dict[str, object]]:
        with self._lock:
            executors = [self._executors[key] for key in sorted(self._executors)]
        return [
            {
                "node_type": executor.node_type,
                "executor": executor.__class__.__name__,
                "routes_branches": bool(getattr(executor, "routes_branches", False)),
            }
            for executor in executors
        ]


def register_builtin_executors(registry: NodeExecutorRegistry, strategies=None, settings=None) -> NodeExecutorRegistry:
    """Register the built-in executors; the ``code`` executor needs a strategy registry."""
    from ..executors import (
        CodeExecutor,
        IfExecutor,
        ManualTriggerExecutor,
        MergeExecutor,
        NoOpExecutor,
        SetExecutor,
        SwitchExecutor,
    )
    from ..scripting import build_default_strategies

    if strategies is None:
        strategies = build_default_strategies(settings)

    for executor in (
        ManualTriggerExecutor(),
        NoOpExecutor(),
        SetExecutor(),
        MergeExecutor(),
        IfExecutor(),
        SwitchExecutor(),
        CodeExecutor(strategies, settings),
    ):
        registry.register(executor)
    return registry
