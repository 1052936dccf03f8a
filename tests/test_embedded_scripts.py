"""Tests for the in-process Python and JavaScript runtimes."""

import pytest

from graphflow.core.exceptions import ScriptExecutionError, ScriptTimeoutError
from graphflow.core.settings import InMemorySettings
from graphflow.models.core import LogLevel, Node
from graphflow.scripting import EmbeddedJavaScriptStrategy, EmbeddedPythonStrategy, merge_result
from graphflow.scripting.conversion import guest_to_host, host_to_guest


def code_node(**parameters):
    return Node(id="script", type="code", parameters=parameters)


class TestResultConversion:
    """Test cases for host/guest conversion and result merging."""

    def test_map_result_spreads_over_input(self):
        """Map results override input keys; other results land under ``result``."""
        assert merge_result({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}
        assert merge_result({"a": 1}, [1, 2]) == {"a": 1, "result": [1, 2]}
        assert merge_result({"a": 1}, None) == {"a": 1}

    def test_host_values_are_copied(self):
        """Guest data never aliases host containers."""
        original = {"items": [1, 2], "when": None}
        copy = host_to_guest(original)
        copy["items"].append(3)
        assert original["items"] == [1, 2]

    def test_guest_values_become_plain_data(self):
        """Tuples become lists and non-finite floats become null."""
        assert guest_to_host({"t": (1, 2), "nan": float("nan")}) == {"t": [1, 2], "nan": None}


class TestEmbeddedPythonStrategy:
    """Test cases for EmbeddedPythonStrategy."""

    def test_returned_map_is_merged(self, context):
        """Returned keys are added to a copy of the input."""
        strategy = EmbeddedPythonStrategy()
        output = strategy.execute('return {"x": input["y"] + 1}', {"y": 5}, code_node(), context)
        assert output == {"y": 5, "x": 6}

    def test_scalar_result(self, context):
        """A non-map return value is stored under ``result``."""
        output = EmbeddedPythonStrategy().execute("return 40 + 2", {}, code_node(), context)
        assert output["result"] == 42

    def test_input_is_not_aliased(self, context):
        """Changing ``input`` inside the script leaves the host data untouched."""
        data = {"y": 5}
        output = EmbeddedPythonStrategy().execute('input["y"] = 99\nreturn {}', data, code_node(), context)
        assert data == {"y": 5}
        assert output == {"y": 5}

    def test_node_parameters_are_visible(self, context):
        """Node parameters are exposed as ``node``."""
        node = code_node(factor=3)
        output = EmbeddedPythonStrategy().execute('return {"z": node["factor"] * 2}', {}, node, context)
        assert output["z"] == 6

    def test_print_goes_to_run_log(self, context):
        """``print`` output is written to the run log."""
        EmbeddedPythonStrategy().execute('print("hello", 3)\nreturn {}', {}, code_node(), context)
        messages = [entry.message for entry in context.logger.entries(context.run_id)]
        assert "[Python] hello 3" in messages

    def test_safe_modules(self, context):
        """The restricted json and math helpers are available."""
        code = 'return {"text": json.dumps([1]), "root": math.sqrt(16)}'
        output = EmbeddedPythonStrategy().execute(code, {}, code_node(), context)
        assert output["text"] == "[1]"
        assert output["root"] == 4.0

    def test_runtime_error_line_number(self, context):
        """Runtime errors report the failing line of the user code."""
        code = "x = 1\ny = x / 0\nreturn {}"
        with pytest.raises(ScriptExecutionError) as exc_info:
            EmbeddedPythonStrategy().execute(code, {}, code_node(), context)
        error = exc_info.value
        assert error.language == "python"
        assert error.line_number == 2
        assert "ZeroDivisionError" in error.message

    def test_restricted_name_is_a_compile_error(self, context):
        """Names starting with an underscore are rejected at compile time."""
        with pytest.raises(ScriptExecutionError) as exc_info:
            EmbeddedPythonStrategy().execute("_secret = 1\nreturn {}", {}, code_node(), context)
        assert exc_info.value.line_number == 1

    def test_imports_are_blocked(self, context):
        """Scripts cannot import host modules."""
        with pytest.raises(ScriptExecutionError):
            EmbeddedPythonStrategy().execute("import os\nreturn {}", {}, code_node(), context)

    def test_blank_code_returns_input(self, context):
        """Blank code is a pass-through."""
        assert EmbeddedPythonStrategy().execute("   ", {"a": 1}, code_node(), context) == {"a": 1}

    def test_always_available(self):
        """The embedded runtime reports itself available."""
        strategy = EmbeddedPythonStrategy()
        assert strategy.is_available()
        assert "RestrictedPython" in strategy.availability_info()


class TestEmbeddedJavaScriptStrategy:
    """Test cases for EmbeddedJavaScriptStrategy."""

    @pytest.fixture(autouse=True)
    def _requires_v8(self):
        pytest.importorskip("py_mini_racer")

    def test_returned_object_is_merged(self, context, settings):
        """The returned object is spread over the input."""
        strategy = EmbeddedJavaScriptStrategy(settings)
        output = strategy.execute("return {doubled: input.n * 2};", {"n": 21}, code_node(), context)
        assert output == {"n": 21, "doubled": 42}

    def test_dollar_aliases(self, context, settings):
        """``$input`` and ``$node`` alias ``input`` and ``node``."""
        node = code_node(suffix="!")
        output = EmbeddedJavaScriptStrategy(settings).execute(
            "return {text: $input.word + $node.suffix};", {"word": "hi"}, node, context
        )
        assert output["text"] == "hi!"

    def test_console_goes_to_run_log(self, context, settings):
        """Console calls become run log entries with their level."""
        code = 'console.log("hello", {a: 1}); console.warn("careful"); return {};'
        EmbeddedJavaScriptStrategy(settings).execute(code, {}, code_node(), context)
        entries = context.logger.entries(context.run_id)
        assert entries[0].message == '[JS] hello {"a":1}'
        assert entries[0].context["console"] is True
        assert entries[1].level == LogLevel.WARN

    def test_thrown_error(self, context, settings):
        """Thrown errors surface as script errors carrying the message."""
        with pytest.raises(ScriptExecutionError) as exc_info:
            EmbeddedJavaScriptStrategy(settings).execute(
                'throw new Error("nope");', {}, code_node(), context
            )
        assert "nope" in exc_info.value.message
        assert exc_info.value.language == "javascript"

    def test_console_kept_when_script_fails(self, context, settings):
        """Console output written before a failure is still logged."""
        with pytest.raises(ScriptExecutionError):
            EmbeddedJavaScriptStrategy(settings).execute(
                'console.log("before"); throw new Error("after");', {}, code_node(), context
            )
        messages = [entry.message for entry in context.logger.entries(context.run_id)]
        assert "[JS] before" in messages

    def test_timeout(self, context):
        """Endless loops are stopped after the node timeout."""
        strategy = EmbeddedJavaScriptStrategy(InMemorySettings())
        with pytest.raises(ScriptTimeoutError) as exc_info:
            strategy.execute("while (true) {}", {}, code_node(timeout=200), context)
        assert exc_info.value.timeout_ms == 200
