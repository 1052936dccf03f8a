"""Tests for the per-run execution logger."""

import json
import logging
import threading

from graphflow.core.execution_logger import ExecutionLogger, ProcessLogHandler, preview_value
from graphflow.core.exceptions import ScriptExecutionError
from graphflow.models.core import LogCategory, LogLevel, Node


NODE = Node(id="n1", type="noOp")


class TestExecutionLogger:
    """Test cases for ExecutionLogger."""

    def test_entries_keep_emission_order(self):
        """Entries are returned in the order they were logged."""
        log = ExecutionLogger()
        log.start_execution("run", "wf", "Workflow")
        log.node_start("run", NODE)
        log.node_end("run", NODE, 5, success=True)
        log.end_execution("run", success=True, status="success")
        categories = [entry.category for entry in log.entries("run")]
        assert categories == [
            LogCategory.EXECUTION_START,
            LogCategory.NODE_START,
            LogCategory.NODE_END,
            LogCategory.EXECUTION_END,
        ]

    def test_runs_are_isolated(self):
        """Each run has its own entries."""
        log = ExecutionLogger()
        log.custom("a", LogLevel.INFO, "first")
        log.custom("b", LogLevel.INFO, "second")
        assert [entry.message for entry in log.entries("a")] == ["first"]

    def test_filter_by_level_and_category(self):
        """Entries can be filtered by minimum level and category."""
        log = ExecutionLogger()
        log.custom("run", LogLevel.DEBUG, "noise")
        log.custom("run", LogLevel.WARN, "careful")
        log.node_skip("run", NODE, "disabled")
        assert [e.message for e in log.entries("run", min_level=LogLevel.WARN)] == ["careful"]
        assert len(log.entries("run", category="NODE_SKIP")) == 1

    def test_min_level_drops_entries(self):
        """Entries below the logger's minimum level are not stored."""
        log = ExecutionLogger(min_level=LogLevel.INFO)
        assert log.custom("run", LogLevel.DEBUG, "hidden") is None
        assert log.entries("run") == []

    def test_error_entry_carries_script_details(self):
        """Script errors record language and line number."""
        log = ExecutionLogger()
        error = ScriptExecutionError("boom", language="python", line_number=3, node_id="n1")
        log.error("run", error, NODE)
        entry = log.entries("run")[0]
        assert entry.level == LogLevel.ERROR
        assert entry.context["language"] == "python"
        assert entry.context["line_number"] == 3

    def test_failing_handler_does_not_break_logging(self):
        """A handler raising an exception is ignored."""
        def broken(entry):
            raise RuntimeError("handler failure")

        seen = []
        log = ExecutionLogger(handlers=[broken, seen.append])
        log.custom("run", LogLevel.INFO, "still logged")
        assert len(log.entries("run")) == 1
        assert len(seen) == 1

    def test_concurrent_appends(self):
        """Appends from several threads are all kept."""
        log = ExecutionLogger()

        def writer(prefix):
            for index in range(200):
                log.custom("run", LogLevel.INFO, f"{prefix}-{index}")

        threads = [threading.Thread(target=writer, args=(name,)) for name in ("out", "err")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        messages = [entry.message for entry in log.entries("run")]
        assert len(messages) == 400
        out = [m for m in messages if m.startswith("out-")]
        assert out == [f"out-{index}" for index in range(200)]

    def test_summary_and_export(self, tmp_path):
        """Summary counts entries and the export is valid JSON."""
        log = ExecutionLogger()
        log.start_execution("run", "wf", "Workflow")
        log.node_start("run", NODE)
        log.node_end("run", NODE, 1, success=False)
        log.node_skip("run", NODE, "disabled")
        log.custom("run", LogLevel.WARN, "careful")
        log.end_execution("run", success=False, status="failed")

        summary = log.summary("run")
        assert summary["nodes_started"] == 1
        assert summary["nodes_failed"] == 1
        assert summary["nodes_skipped"] == 1
        assert summary["warn_count"] == 1
        assert summary["error_count"] == 2

        path = log.export_to_file("run", tmp_path / "logs" / "run.json")
        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload["run_id"] == "run"
        assert len(payload["entries"]) == 6

        log.clear("run")
        assert log.entries("run") == []

    def test_preview_truncates(self):
        """Previews carry the type name and are capped at 100 characters."""
        preview = preview_value({"text": "x" * 500})
        assert preview.startswith("[dict]")
        assert len(preview) <= 100 + len("[dict] ") + 3


class TestOperationalEntries:
    """Test cases for retry, rate limit and performance entries and handler wiring."""

    def test_retry_and_rate_limit(self):
        """Retries and rate limits are warnings with their numbers in the context."""
        log = ExecutionLogger()
        log.retry("run", "n1", 2, 3, "connection reset")
        log.rate_limit("run", "n1", 500, reason="429 from upstream")
        retry, limited = log.entries("run")
        assert retry.category == LogCategory.RETRY
        assert retry.level == LogLevel.WARN
        assert retry.message == "Retry 2/3: connection reset"
        assert limited.category == LogCategory.RATE_LIMIT
        assert limited.context == {"wait_ms": 500, "reason": "429 from upstream"}

    def test_performance_is_debug(self):
        """Performance entries are debug level and dropped above it."""
        log = ExecutionLogger(min_level=LogLevel.INFO)
        log.performance("run", "script", 12.5, node_id="n1")
        assert log.entries("run") == []

        verbose = ExecutionLogger()
        verbose.performance("run", "script", 12.5, node_id="n1")
        assert verbose.entries("run")[0].context["metric"] == "script"

    def test_removed_handler_is_not_called(self):
        """Handlers stop receiving entries once removed."""
        seen = []
        log = ExecutionLogger()
        log.add_handler(seen.append)
        log.custom("run", LogLevel.INFO, "one")
        log.remove_handler(seen.append)
        log.custom("run", LogLevel.INFO, "two")
        assert [entry.message for entry in seen] == ["one"]

    def test_process_log_handler_mirrors_entries(self):
        """Entries are mirrored to process logging with run and node fields."""
        records = []

        class Collect(logging.Handler):
            def emit(self, record):
                records.append(record)

        mirror = logging.getLogger("graphflow.test.mirror")
        collector = Collect(level=logging.DEBUG)
        mirror.addHandler(collector)
        mirror.setLevel(logging.DEBUG)
        try:
            log = ExecutionLogger(handlers=[ProcessLogHandler("graphflow.test.mirror")])
            log.custom("run-7", LogLevel.WARN, "mirrored", node_id="n1")
        finally:
            mirror.removeHandler(collector)

        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert records[0].getMessage() == "mirrored"
        assert records[0].extra_fields["run_id"] == "run-7"
        assert records[0].extra_fields["category"] == "CUSTOM"
