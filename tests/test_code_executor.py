"""Tests for the code node and runtime selection."""

import pytest

from graphflow.core.exceptions import AvailabilityError, NodeExecutionError
from graphflow.core.settings import InMemorySettings
from graphflow.executors.code_executor import CodeExecutor, normalize_language
from graphflow.models.core import Node
from graphflow.scripting import EMBEDDED, EXTERNAL, ScriptExecutionStrategy, ScriptStrategyRegistry
from tests.conftest import make_context


class RecordingStrategy(ScriptExecutionStrategy):
    """Strategy that records calls instead of running code."""

    def __init__(self, language_id, family=EMBEDDED, available=True):
        super().__init__()
        self.language_id = language_id
        self.language = language_id.split("-")[0]
        self.display_name = language_id
        self.family = family
        self.available = available
        self.calls = []

    def probe_availability(self):
        return self.available, "not installed" if not self.available else "ready"

    def execute(self, code, input_data, node, context):
        self.calls.append(code)
        return {**input_data, "ranBy": self.language_id}


def build_registry(embedded_python_available=True):
    registry = ScriptStrategyRegistry()
    registry.register(RecordingStrategy("python", available=embedded_python_available))
    registry.register(RecordingStrategy("python-external", family=EXTERNAL))
    registry.register(RecordingStrategy("javascript"))
    registry.register(RecordingStrategy("javascript-external", family=EXTERNAL))
    return registry


def code_node(language=None, code="return {}"):
    parameters = {"code": code}
    if language is not None:
        parameters["language"] = language
    return Node(id="script", type="code", parameters=parameters)


class TestCodeExecutor:
    """Test cases for CodeExecutor."""

    @pytest.mark.parametrize("alias,expected", [
        ("js", "javascript"),
        ("Node", "javascript"),
        ("py", "python"),
        ("python3", "python"),
        (None, "javascript"),
        ("Ruby", "ruby"),
    ])
    def test_language_aliases(self, alias, expected):
        """Aliases and case are normalized; the default is JavaScript."""
        assert normalize_language(alias) == expected

    def test_embedded_mode_by_default(self):
        """Without settings the embedded runtime is used."""
        executor = CodeExecutor(build_registry())
        output = executor.execute(code_node("python"), {"a": 1}, None)
        assert output == {"a": 1, "ranBy": "python"}

    def test_external_mode_from_settings(self):
        """``python.executionMode=external`` selects the subprocess runtime."""
        settings = InMemorySettings({"python.executionMode": "external"})
        executor = CodeExecutor(build_registry(), settings)
        assert executor.execute(code_node("py"), {}, None)["ranBy"] == "python-external"

    def test_mode_read_from_context_settings(self):
        """Without its own settings the executor reads the run's settings."""
        settings = InMemorySettings({"javascript.executionMode": "external"})
        context = make_context(settings=settings)
        executor = CodeExecutor(build_registry())
        assert executor.execute(code_node("js"), {}, context)["ranBy"] == "javascript-external"

    def test_auto_mode_falls_back_to_external(self):
        """``auto`` prefers embedded but uses external when embedded is unavailable."""
        settings = InMemorySettings({"python.executionMode": "auto"})
        executor = CodeExecutor(build_registry(embedded_python_available=False), settings)
        assert executor.execute(code_node("python"), {}, None)["ranBy"] == "python-external"

    def test_unavailable_runtime(self):
        """An explicitly selected runtime that is unavailable raises AvailabilityError."""
        executor = CodeExecutor(build_registry(embedded_python_available=False))
        with pytest.raises(AvailabilityError) as exc_info:
            executor.execute(code_node("python"), {}, None)
        assert exc_info.value.info == "not installed"
        assert exc_info.value.node_id == "script"

    def test_unknown_language(self):
        """Languages without a strategy fail and list the available ones."""
        executor = CodeExecutor(build_registry())
        with pytest.raises(NodeExecutionError) as exc_info:
            executor.execute(code_node("ruby"), {}, None)
        assert "Unsupported language 'ruby'" in exc_info.value.message
        assert "python-external" in exc_info.value.message

    def test_blank_code_is_pass_through(self):
        """Blank code never reaches a runtime."""
        registry = build_registry()
        output = CodeExecutor(registry).execute(code_node("python", code="  \n"), {"a": 1}, None)
        assert output == {"a": 1}
        assert registry.get("python").calls == []

    def test_unknown_mode_uses_embedded(self):
        """Unrecognised modes fall back to embedded."""
        settings = InMemorySettings({"python.executionMode": "turbo"})
        executor = CodeExecutor(build_registry(), settings)
        assert executor.execute(code_node("python"), {}, None)["ranBy"] == "python"

    def test_real_embedded_python(self, registry):
        """The registered code executor runs real Python end to end."""
        node = code_node("python", code='return {"total": sum(input["values"])}')
        output = registry.get("code").execute(node, {"values": [1, 2, 3]}, make_context())
        assert output["total"] == 6
