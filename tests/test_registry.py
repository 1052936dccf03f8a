"""Tests for the node executor and script strategy registries."""

import pytest

from graphflow.core.exceptions import ExecutorRegistryError
from graphflow.core.registry import NodeExecutorRegistry, register_builtin_executors
from graphflow.executors.base import NodeExecutor
from graphflow.scripting import EMBEDDED, ScriptExecutionStrategy, ScriptStrategyRegistry


class EchoExecutor(NodeExecutor):
    node_type = "echo"

    def execute(self, node, input_data, context):
        return dict(input_data)


class FakeStrategy(ScriptExecutionStrategy):
    language_id = "fake"
    language = "fake"
    display_name = "Fake runtime"
    family = EMBEDDED

    def __init__(self, available=True):
        super().__init__()
        self.available = available
        self.probes = 0

    def probe_availability(self):
        self.probes += 1
        return self.available, "fake info"

    def execute(self, code, input_data, node, context):
        return dict(input_data)


class TestNodeExecutorRegistry:
    """Test cases for NodeExecutorRegistry."""

    def test_register_and_get(self):
        """A registered executor is returned for its node type."""
        registry = NodeExecutorRegistry()
        executor = EchoExecutor()
        registry.register(executor)
        assert registry.get("echo") is executor
        assert registry.has("echo")
        assert registry.node_types() == ["echo"]

    def test_duplicate_registration_fails(self):
        """Registering the same node type twice is an error unless replacing."""
        registry = NodeExecutorRegistry()
        registry.register(EchoExecutor())
        with pytest.raises(ExecutorRegistryError):
            registry.register(EchoExecutor())

        replacement = EchoExecutor()
        registry.register(replacement, replace=True)
        assert registry.get("echo") is replacement

    def test_missing_type(self):
        """Unknown node types raise from get and return None from find."""
        registry = NodeExecutorRegistry()
        assert registry.find("nothing") is None
        with pytest.raises(ExecutorRegistryError) as exc_info:
            registry.get("nothing")
        assert "nothing" in exc_info.value.message

    def test_executor_without_type_rejected(self):
        """An executor must declare its node type."""
        class Nameless(EchoExecutor):
            node_type = ""

        with pytest.raises(ExecutorRegistryError):
            NodeExecutorRegistry().register(Nameless())

    def test_unregister(self):
        """Unregistering reports whether something was removed."""
        registry = NodeExecutorRegistry()
        registry.register(EchoExecutor())
        assert registry.unregister("echo")
        assert not registry.unregister("echo")
        assert not registry.has("echo")

    def test_builtin_executors(self, strategies):
        """The built-in set covers triggers, data shaping, routing and code."""
        registry = register_builtin_executors(NodeExecutorRegistry(), strategies)
        assert registry.node_types() == sorted(
            ["code", "if", "manualTrigger", "merge", "noOp", "set", "switch"]
        )
        routing = {entry["node_type"] for entry in registry.describe() if entry["routes_branches"]}
        assert routing == {"if", "switch"}


class TestScriptStrategyRegistry:
    """Test cases for ScriptStrategyRegistry."""

    def test_default_strategies(self, strategies):
        """The default registry holds embedded and external runtimes for both languages."""
        assert strategies.languages() == [
            "javascript", "javascript-external", "python", "python-external"
        ]

    def test_duplicate_language_rejected(self):
        """Two strategies cannot share a language id."""
        registry = ScriptStrategyRegistry()
        registry.register(FakeStrategy())
        with pytest.raises(ExecutorRegistryError):
            registry.register(FakeStrategy())

    def test_get_unknown_language(self):
        """Unknown language ids raise."""
        with pytest.raises(ExecutorRegistryError):
            ScriptStrategyRegistry().get("cobol")

    def test_availability_is_probed_once(self):
        """The availability probe result is cached until invalidated."""
        strategy = FakeStrategy(available=False)
        registry = ScriptStrategyRegistry()
        registry.register(strategy)

        assert registry.available_languages() == []
        assert not strategy.is_available()
        assert strategy.probes == 1

        strategy.available = True
        strategy.invalidate_availability()
        assert registry.available_languages() == ["fake"]
        assert strategy.probes == 2

    def test_describe(self):
        """Descriptions carry the id, family and availability."""
        registry = ScriptStrategyRegistry()
        registry.register(FakeStrategy())
        description = registry.describe()[0]
        assert description["language_id"] == "fake"
        assert description["family"] == EMBEDDED
        assert description["available"] is True
        assert description["availability_info"] == "fake info"

    def test_failing_probe_marks_unavailable(self):
        """A probe that raises makes the runtime unavailable."""
        class Broken(FakeStrategy):
            def probe_availability(self):
                raise RuntimeError("no runtime here")

        strategy = Broken()
        assert not strategy.is_available()
        assert "no runtime here" in strategy.availability_info()
