"""Tests for the error taxonomy, retries and process logging helpers."""

import json
import logging

import pytest
from sqlalchemy.exc import OperationalError

from graphflow.core.error_recovery import RetryConfig, with_retry
from graphflow.core.exceptions import (
    AvailabilityError,
    ConfigurationError,
    ExecutionEngineError,
    ExecutionNotFoundError,
    NodeExecutionError,
    ScriptExecutionError,
    ScriptTimeoutError,
    StorageError,
    StructuralError,
    TransientError,
    create_error_response,
)
from graphflow.core.logging import StructuredFormatter, WorkflowContextFilter, logging_context
from graphflow.core.middleware import status_code_for_error


class TestExceptions:
    """Test cases for the exception hierarchy."""

    def test_script_error_detailed_message(self):
        """The detailed message names the language, line and cause."""
        cause = ZeroDivisionError("division by zero")
        error = ScriptExecutionError("ZeroDivisionError", language="python", line_number=4, cause=cause)
        assert error.detailed_message == (
            "python execution error: ZeroDivisionError (line 4)\nCaused by: division by zero"
        )
        assert error.details["line_number"] == 4

    def test_timeout_is_a_script_error(self):
        """Timeouts are script errors carrying the time limit."""
        error = ScriptTimeoutError("javascript", 250, node_id="n1")
        assert isinstance(error, ScriptExecutionError)
        assert error.message == "Script execution timed out after 250ms"
        assert error.node_id == "n1"

    def test_error_response_body(self):
        """The error body carries code, message, details and context."""
        error = StructuralError("cycle", validation_errors=["cycle a -> b -> a"], workflow_id="wf")
        body = create_error_response(error)
        assert body["error"] == "StructuralError"
        assert body["details"]["validation_errors"] == ["cycle a -> b -> a"]
        assert body["details"]["category"] == "validation"
        assert error.to_dict()["exception_type"] == "StructuralError"

    @pytest.mark.parametrize("error,status_code", [
        (ExecutionNotFoundError("r"), 404),
        (StructuralError("bad"), 400),
        (AvailabilityError("python-external", "missing"), 503),
        (NodeExecutionError("failed", node_id="n"), 422),
        (ExecutionEngineError("inactive"), 409),
        (TransientError("busy"), 503),
        (StorageError("disk"), 500),
        (ConfigurationError("bad key", config_key="x"), 500),
    ])
    def test_status_codes(self, error, status_code):
        """Each error family maps to one HTTP status."""
        assert status_code_for_error(error) == status_code


class TestRetry:
    """Test cases for the retry decorator."""

    def test_transient_errors_are_retried(self):
        """Recoverable errors are retried until the call succeeds."""
        calls = []

        @with_retry(RetryConfig(max_attempts=3, base_delay=0.001, jitter=False))
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransientError("locked")
            return "ok"

        assert flaky() == "ok"
        assert len(calls) == 3

    def test_operational_errors_are_retried(self):
        """SQLAlchemy operational errors count as transient."""
        config = RetryConfig(max_attempts=2)
        assert config.should_retry(OperationalError("stmt", {}, Exception("locked")), 1)
        assert not config.should_retry(OperationalError("stmt", {}, Exception("locked")), 2)

    def test_non_recoverable_errors_raise_at_once(self):
        """Errors that are not recoverable are not retried."""
        calls = []

        @with_retry(RetryConfig(max_attempts=5, base_delay=0.001))
        def broken():
            calls.append(1)
            raise NodeExecutionError("permanent")

        with pytest.raises(NodeExecutionError):
            broken()
        assert len(calls) == 1

    def test_gives_up_after_max_attempts(self):
        """The last error is raised once attempts are used up."""
        @with_retry(RetryConfig(max_attempts=2, base_delay=0.001))
        def always_busy():
            raise StorageError("still locked")

        with pytest.raises(StorageError):
            always_busy()


class TestProcessLogging:
    """Test cases for the process logging helpers."""

    def test_context_fields_reach_records(self):
        """Context fields set for a block are copied onto records and restored after."""
        record = logging.LogRecord("graphflow.test", logging.INFO, __file__, 1, "hello", None, None)
        with logging_context(run_id="run-1"):
            WorkflowContextFilter().filter(record)
        assert record.extra_fields["run_id"] == "run-1"

        later = logging.LogRecord("graphflow.test", logging.INFO, __file__, 1, "later", None, None)
        WorkflowContextFilter().filter(later)
        assert "run_id" not in later.extra_fields

    def test_structured_formatter(self):
        """Structured output is one JSON object with the extra fields."""
        record = logging.LogRecord("graphflow.test", logging.WARNING, __file__, 7, "careful", None, None)
        record.extra_fields = {"node_id": "n1"}
        payload = json.loads(StructuredFormatter().format(record))
        assert payload["level"] == "WARNING"
        assert payload["message"] == "careful"
        assert payload["node_id"] == "n1"
