"""Append-only structured event log for execution runs."""

import json
import logging
import threading
import traceback
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..models.core import LogCategory, LogEntry, LogLevel, Node
from .exceptions import ScriptExecutionError, WorkflowEngineError
from .logging import get_logger, log_with_context

logger = get_logger(__name__)

LogHandler = Callable[[LogEntry], None]

PREVIEW_LENGTH = 100

_PROCESS_LEVELS = {
    LogLevel.TRACE: logging.DEBUG,
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
}


def preview_value(value: Any, limit: int = PREVIEW_LENGTH) -> str:
    """Short "[type] value" rendering used in input/output entries."""
    if value is None:
        return "[null]"
    if isinstance(value, (dict, list)):
        text = json.dumps(value, default=str)
    else:
        text = str(value)
    if len(text) > limit:
        text = text[:limit] + "..."
    return f"[{type(value).__name__}] {text}"


def _root_cause(exc: BaseException) -> BaseException:
    seen = set()
    current = exc
    while id(current) not in seen:
        seen.add(id(current))
        nxt = current.__cause__ or current.__context__
        if nxt is None:
            break
        current = nxt
    return current


class ProcessLogHandler:
    """Mirrors execution log entries into process logging."""

    def __init__(self, logger_name: str = "graphflow.execution"):
        self._logger = get_logger(logger_name)

    def __call__(self, entry: LogEntry) -> None:
        log_with_context(
            self._logger,
            _PROCESS_LEVELS[entry.level],
            entry.message,
            run_id=entry.run_id,
            node_id=entry.node_id,
            category=entry.category.value,
        )


class ExecutionLogger:
    """Thread-safe sink of ``LogEntry`` records keyed by run id.

    Entries are kept in emission order. Handlers are called synchronously
    after each append; a failing handler is logged and otherwise ignored.
    """

    def __init__(
        self,
        handlers: Optional[List[LogHandler]] = None,
        min_level: Union[LogLevel, str] = LogLevel.TRACE
    ):
        self._entries: Dict[str, List[LogEntry]] = {}
        self._handlers: List[LogHandler] = list(handlers or [])
        self._lock = threading.RLock()
        self.min_level = LogLevel(min_level)

    def add_handler(self, handler: LogHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def remove_handler(self, handler: LogHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def log(
        self,
        run_id: str,
        level: LogLevel,
        category: LogCategory,
        message: str,
        node_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Optional[LogEntry]:
        """Append an entry. Returns None when it is below ``min_level``."""
        level = LogLevel(level)
        if not level.at_least(self.min_level):
            return None

        entry = LogEntry(
            run_id=run_id,
            level=level,
            category=LogCategory(category),
            message=message,
            node_id=node_id,
            context=context or {},
        )
        with self._lock:
            self._entries.setdefault(run_id, []).append(entry)
            handlers = list(self._handlers)

        for handler in handlers:
            try:
                handler(entry)
            except Exception as e:
                logger.warning(f"Execution log handler {handler!r} failed: {e}")
        return entry

    # Run lifecycle

    def start_execution(self, run_id: str, workflow_id: str, workflow_name: str,
                        input_data: Optional[Dict[str, Any]] = None) -> None:
        self.log(
            run_id, LogLevel.INFO, LogCategory.EXECUTION_START,
            f"Execution started for workflow '{workflow_name}'",
            context={
                "workflow_id": workflow_id,
                "workflow_name": workflow_name,
                "input": preview_value(input_data or {}),
            },
        )

    def end_execution(self, run_id: str, success: bool, status: str,
                      duration_ms: Optional[int] = None,
                      output: Optional[Dict[str, Any]] = None) -> None:
        self.log(
            run_id,
            LogLevel.INFO if success else LogLevel.ERROR,
            LogCategory.EXECUTION_END,
            f"Execution finished with status {status}",
            context={
                "success": success,
                "status": status,
                "duration_ms": duration_ms,
                "output": preview_value(output) if output is not None else None,
            },
        )

    # Node lifecycle

    def node_start(self, run_id: str, node: Node) -> None:
        self.log(
            run_id, LogLevel.INFO, LogCategory.NODE_START,
            f"Starting node '{node.name}'",
            node_id=node.id,
            context={"node_type": node.type, "node_name": node.name},
        )

    def node_end(self, run_id: str, node: Node, duration_ms: int, success: bool) -> None:
        self.log(
            run_id,
            LogLevel.INFO if success else LogLevel.ERROR,
            LogCategory.NODE_END,
            f"Node '{node.name}' {'completed' if success else 'failed'} in {duration_ms}ms",
            node_id=node.id,
            context={"node_type": node.type, "duration_ms": duration_ms, "success": success},
        )

    def node_skip(self, run_id: str, node: Node, reason: str) -> None:
        self.log(
            run_id, LogLevel.INFO, LogCategory.NODE_SKIP,
            f"Skipping node '{node.name}': {reason}",
            node_id=node.id,
            context={"reason": reason},
        )

    def node_input(self, run_id: str, node: Node, data: Dict[str, Any]) -> None:
        self.log(
            run_id, LogLevel.DEBUG, LogCategory.NODE_INPUT,
            f"Input for node '{node.name}'",
            node_id=node.id,
            context={"keys": sorted(data.keys()), "preview": preview_value(data)},
        )

    def node_output(self, run_id: str, node: Node, data: Dict[str, Any]) -> None:
        self.log(
            run_id, LogLevel.DEBUG, LogCategory.NODE_OUTPUT,
            f"Output of node '{node.name}'",
            node_id=node.id,
            context={"keys": sorted(data.keys()), "preview": preview_value(data)},
        )

    # Data and expressions

    def data_flow(self, run_id: str, source_node_id: str, target_node_id: str,
                  connection_id: str, branch: Optional[str] = None) -> None:
        self.log(
            run_id, LogLevel.TRACE, LogCategory.DATA_FLOW,
            f"Data flows {source_node_id} -> {target_node_id}",
            node_id=source_node_id,
            context={
                "source_node_id": source_node_id,
                "target_node_id": target_node_id,
                "connection_id": connection_id,
                "branch": branch,
            },
        )

    def variable(self, run_id: str, name: str, value: Any, action: str = "resolved",
                 node_id: Optional[str] = None) -> None:
        self.log(
            run_id, LogLevel.DEBUG, LogCategory.VARIABLE,
            f"Variable '{name}' {action}",
            node_id=node_id,
            context={"name": name, "value": preview_value(value), "action": action},
        )

    def expression_eval(self, run_id: str, expression: str, result: Any,
                        node_id: Optional[str] = None, error: Optional[str] = None) -> None:
        self.log(
            run_id,
            LogLevel.WARN if error else LogLevel.DEBUG,
            LogCategory.EXPRESSION_EVAL,
            f"Evaluated expression: {expression}",
            node_id=node_id,
            context={"expression": expression, "result": preview_value(result), "error": error},
        )

    # Failures and throttling

    def error(self, run_id: str, exc: BaseException, node: Optional[Node] = None) -> None:
        cause = _root_cause(exc)
        context: Dict[str, Any] = {
            "error_type": type(exc).__name__,
            "root_cause": f"{type(cause).__name__}: {cause}",
            "stack_trace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        }
        if isinstance(exc, ScriptExecutionError):
            context["language"] = exc.language
            context["line_number"] = exc.line_number
        if isinstance(exc, WorkflowEngineError):
            context["error_code"] = exc.error_code
        message = exc.detailed_message if isinstance(exc, ScriptExecutionError) else str(exc)
        self.log(
            run_id, LogLevel.ERROR, LogCategory.ERROR,
            message,
            node_id=node.id if node else None,
            context=context,
        )

    def retry(self, run_id: str, node_id: str, attempt: int, max_attempts: int,
              reason: str) -> None:
        self.log(
            run_id, LogLevel.WARN, LogCategory.RETRY,
            f"Retry {attempt}/{max_attempts}: {reason}",
            node_id=node_id,
            context={"attempt": attempt, "max_attempts": max_attempts, "reason": reason},
        )

    def rate_limit(self, run_id: str, node_id: str, wait_ms: int, reason: str = "") -> None:
        self.log(
            run_id, LogLevel.WARN, LogCategory.RATE_LIMIT,
            f"Rate limited, waiting {wait_ms}ms",
            node_id=node_id,
            context={"wait_ms": wait_ms, "reason": reason},
        )

    def performance(self, run_id: str, metric: str, value_ms: float,
                    node_id: Optional[str] = None) -> None:
        self.log(
            run_id, LogLevel.DEBUG, LogCategory.PERFORMANCE,
            f"{metric}: {value_ms}ms",
            node_id=node_id,
            context={"metric": metric, "value_ms": value_ms},
        )

    def custom(self, run_id: str, level: Union[LogLevel, str], message: str,
               context: Optional[Dict[str, Any]] = None, node_id: Optional[str] = None) -> None:
        self.log(run_id, LogLevel(level), LogCategory.CUSTOM, message, node_id=node_id, context=context)

    # Queries

    def entries(
        self,
        run_id: str,
        min_level: Optional[Union[LogLevel, str]] = None,
        category: Optional[Union[LogCategory, str]] = None
    ) -> List[LogEntry]:
        with self._lock:
            result = list(self._entries.get(run_id, []))
        return filter_entries(result, min_level, category)

    def summary(self, run_id: str) -> Dict[str, Any]:
        return summarize_entries(run_id, self.entries(run_id))

    def export_json(self, run_id: str) -> str:
        payload = {
            "run_id": run_id,
            "summary": self.summary(run_id),
            "entries": [entry.model_dump(mode="json") for entry in self.entries(run_id)],
        }
        return json.dumps(payload, indent=2, default=str)

    def export_to_file(self, run_id: str, path: Union[str, Path]) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.export_json(run_id), encoding="utf-8")
        logger.info(f"Exported execution log for run {run_id} to {target}")
        return target

    def clear(self, run_id: str) -> None:
        with self._lock:
            self._entries.pop(run_id, None)


def summarize_entries(run_id: str, entries: List[LogEntry]) -> Dict[str, Any]:
    """Counts over a run's entries; also used for persisted logs."""
    by_category: Dict[str, int] = {}
    for entry in entries:
        by_category[entry.category.value] = by_category.get(entry.category.value, 0) + 1

    node_ends = [entry for entry in entries if entry.category == LogCategory.NODE_END]
    starts = [entry for entry in entries if entry.category == LogCategory.EXECUTION_START]
    ends = [entry for entry in entries if entry.category == LogCategory.EXECUTION_END]
    duration_ms = None
    if starts and ends:
        duration_ms = int((ends[-1].timestamp - starts[0].timestamp).total_seconds() * 1000)

    return {
        "run_id": run_id,
        "total_entries": len(entries),
        "error_count": sum(1 for entry in entries if entry.level.at_least(LogLevel.ERROR)),
        "warn_count": sum(1 for entry in entries if entry.level == LogLevel.WARN),
        "nodes_started": by_category.get(LogCategory.NODE_START.value, 0),
        "nodes_completed": sum(1 for entry in node_ends if entry.context.get("success")),
        "nodes_failed": sum(1 for entry in node_ends if not entry.context.get("success")),
        "nodes_skipped": by_category.get(LogCategory.NODE_SKIP.value, 0),
        "duration_ms": duration_ms,
        "by_category": by_category,
    }


def filter_entries(
    entries: List[LogEntry],
    min_level: Optional[Union[LogLevel, str]] = None,
    category: Optional[Union[LogCategory, str]] = None
) -> List[LogEntry]:
    """Entries at or above ``min_level`` and, if given, of one category."""
    if min_level is not None:
        threshold = LogLevel(min_level)
        entries = [entry for entry in entries if entry.level.at_least(threshold)]
    if category is not None:
        wanted = LogCategory(category)
        entries = [entry for entry in entries if entry.category == wanted]
    return entries
