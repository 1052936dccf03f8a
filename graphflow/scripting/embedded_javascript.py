"""In-process JavaScript scripts on V8 through mini-racer."""

import json
import re
from typing import Any, Dict, List, Optional, Tuple

from py_mini_racer import JSEvalException, JSTimeoutException, MiniRacer

from ..core.exceptions import ScriptExecutionError, ScriptTimeoutError
from ..core.logging import get_logger
from ..core.settings import SCRIPT_TIMEOUT
from ..models.core import LogLevel, Node
from .base import EMBEDDED, ScriptExecutionStrategy, merge_result
from .conversion import guest_to_host, host_to_guest

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 60_000
WRAPPER_LINE_OFFSET = 1
_LINE_PATTERN = re.compile(r'<anonymous>:(\d+)')
_LOCATION_PREFIX = re.compile(r'^(?:<anonymous>:\d+(?::\d+)?:\s*)')

CONSOLE_LEVELS = {
    "log": LogLevel.INFO,
    "info": LogLevel.INFO,
    "warn": LogLevel.WARN,
    "error": LogLevel.ERROR,
    "debug": LogLevel.DEBUG,
}

_CONSOLE_SETUP = '''
var __consoleEntries = [];
function __consoleRecorder(level) {
  return function() {
    var parts = [];
    for (var i = 0; i < arguments.length; i++) {
      var arg = arguments[i];
      if (typeof arg === "string") {
        parts.push(arg);
      } else {
        try { parts.push(JSON.stringify(arg)); } catch (e) { parts.push(String(arg)); }
      }
    }
    __consoleEntries.push({level: level, message: parts.join(" ")});
  };
}
var console = {
  log: __consoleRecorder("log"),
  info: __consoleRecorder("info"),
  warn: __consoleRecorder("warn"),
  error: __consoleRecorder("error"),
  debug: __consoleRecorder("debug")
};
'''


def build_bindings(input_data: Dict[str, Any], parameters: Dict[str, Any]) -> str:
    input_json = json.dumps(host_to_guest(input_data))
    node_json = json.dumps(host_to_guest(parameters))
    return (
        f"var input = {input_json};\n"
        f"var node = {node_json};\n"
        "var $input = input;\n"
        "var $node = node;\n"
        + _CONSOLE_SETUP
    )


def build_wrapper(code: str) -> str:
    return "JSON.stringify({value: (function() {\n" + code + "\n})()})"


def extract_line_number(text: str) -> Optional[int]:
    match = _LINE_PATTERN.search(text or "")
    if not match:
        return None
    line = int(match.group(1)) - WRAPPER_LINE_OFFSET
    return line if line > 0 else None


def clean_message(text: str) -> str:
    lines = [line.strip() for line in (text or "").strip().splitlines() if line.strip()]
    for line in lines:
        if "Error" in line or line.startswith("Uncaught"):
            message = _LOCATION_PREFIX.sub("", line)
            return message.replace("Uncaught ", "", 1)
    return lines[0] if lines else "JavaScript evaluation failed"


class EmbeddedJavaScriptStrategy(ScriptExecutionStrategy):
    """Runs JavaScript in a fresh V8 context per call.

    ``input``/``$input`` and ``node``/``$node`` are injected as JSON literals;
    the script body becomes a function whose return value comes back through
    ``JSON.stringify``. ``console`` calls are collected and written to the run
    log once evaluation ends.
    """

    language_id = "javascript"
    language = "javascript"
    display_name = "JavaScript (embedded V8)"
    family = EMBEDDED

    def __init__(self, settings=None):
        super().__init__()
        self.settings = settings

    def probe_availability(self) -> Tuple[bool, str]:
        ctx = MiniRacer()
        if ctx.eval("1 + 1") != 2:
            return False, "V8 runtime returned an unexpected result"
        return True, f"V8 {ctx.v8_version()} via mini-racer"

    def timeout_ms(self, node: Node) -> int:
        override = node.parameters.get("timeout")
        if override not in (None, ""):
            try:
                return int(override)
            except (TypeError, ValueError):
                logger.warning(f"Node {node.id} has invalid timeout {override!r}, using settings")
        if self.settings is None:
            return DEFAULT_TIMEOUT_MS
        return self.settings.get_int(SCRIPT_TIMEOUT, DEFAULT_TIMEOUT_MS)

    def execute(self, code: str, input_data: Dict[str, Any], node: Node, context) -> Dict[str, Any]:
        if not code or not code.strip():
            return dict(input_data)

        timeout_ms = self.timeout_ms(node)
        ctx = MiniRacer()
        try:
            ctx.eval(build_bindings(input_data, node.parameters))
            raw = ctx.eval(build_wrapper(code), timeout=timeout_ms)
        except JSTimeoutException as e:
            raise ScriptTimeoutError(self.language, timeout_ms, code=code, cause=e, node_id=node.id)
        except JSEvalException as e:
            raise ScriptExecutionError(
                clean_message(str(e)),
                language=self.language,
                code=code,
                line_number=extract_line_number(str(e)),
                cause=e,
                node_id=node.id,
            )
        except Exception as e:
            raise ScriptExecutionError(f"JavaScript execution failed: {e}", language=self.language,
                                       code=code, cause=e, node_id=node.id)
        finally:
            self._flush_console(ctx, node, context)

        try:
            envelope = json.loads(raw) if isinstance(raw, str) else {}
        except ValueError as e:
            raise ScriptExecutionError(f"Script result is not serializable: {e}",
                                       language=self.language, code=code, cause=e, node_id=node.id)
        return merge_result(input_data, guest_to_host(envelope.get("value")))

    def _console_entries(self, ctx) -> List[Dict[str, Any]]:
        try:
            raw = ctx.eval("JSON.stringify(__consoleEntries)")
        except Exception as e:
            logger.debug(f"Could not read console output: {e}")
            return []
        try:
            entries = json.loads(raw)
        except (TypeError, ValueError):
            return []
        return entries if isinstance(entries, list) else []

    def _flush_console(self, ctx, node: Node, context) -> None:
        for entry in self._console_entries(ctx):
            message = str(entry.get("message", ""))
            level = CONSOLE_LEVELS.get(entry.get("level"), LogLevel.INFO)
            if context is not None:
                context.log(level, f"[JS] {message}", node_id=node.id,
                            source="javascript", console=True)
            logger.debug(f"[JS Console] {message}")
