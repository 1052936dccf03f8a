"""Script execution strategies: embedded and subprocess runtimes for Python and JavaScript."""

from .base import (
    EMBEDDED,
    EXTERNAL,
    ScriptExecutionStrategy,
    ScriptStrategyRegistry,
    merge_result,
)
from .conversion import guest_to_host, host_to_guest
from .embedded_javascript import EmbeddedJavaScriptStrategy
from .embedded_python import EmbeddedPythonStrategy
from .external_node import ExternalNodeStrategy
from .external_python import ExternalPythonStrategy


def build_default_strategies(settings=None) -> ScriptStrategyRegistry:
    """Registry holding the four built-in runtimes, sharing one settings provider."""
    registry = ScriptStrategyRegistry()
    registry.register(EmbeddedPythonStrategy())
    registry.register(ExternalPythonStrategy(settings))
    registry.register(EmbeddedJavaScriptStrategy(settings))
    registry.register(ExternalNodeStrategy(settings))
    return registry


__all__ = [
    "EMBEDDED",
    "EXTERNAL",
    "ScriptExecutionStrategy",
    "ScriptStrategyRegistry",
    "merge_result",
    "guest_to_host",
    "host_to_guest",
    "EmbeddedJavaScriptStrategy",
    "EmbeddedPythonStrategy",
    "ExternalNodeStrategy",
    "ExternalPythonStrategy",
    "build_default_strategies",
]
