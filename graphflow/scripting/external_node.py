"""JavaScript scripts run by an installed Node.js in a child process."""

import json
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import ScriptExecutionError, ScriptTimeoutError
from ..core.logging import get_logger
from ..core.settings import NODE_EXTERNAL_PATH, PYTHON_TIMEOUT, SCRIPT_TIMEOUT
from ..models.core import LogLevel, Node
from .base import EXTERNAL, ScriptExecutionStrategy, indent_code, merge_result
from .conversion import host_to_guest
from .process import remove_temp_dir, run_process

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 60_000
MIN_MAJOR_VERSION = 12
TEMP_DIR_PREFIX = "graphflow-node-"
_VERSION_PATTERN = re.compile(r'v?(\d+)\.(\d+)\.(\d+)')
_SCRIPT_LINE_PATTERN = re.compile(r'script\.js:(\d+)')

_WRAPPER_HEAD = '''"use strict";
const fs = require("fs");
const input = JSON.parse(fs.readFileSync(process.argv[2], "utf8"));
const node = JSON.parse(fs.readFileSync(process.argv[3], "utf8"));
const $input = input;
const $node = node;
function __workflowMain__() {
'''

_WRAPPER_TAIL = '''
}
function __fail__(err) {
  process.stderr.write((err && err.stack ? err.stack : String(err)) + "\\n");
  process.exit(1);
}
let __result__;
try {
  __result__ = __workflowMain__();
} catch (err) {
  __fail__(err);
}
Promise.resolve(__result__).then((value) => {
  let output = value;
  if (output === undefined || output === null) {
    output = {};
  } else if (typeof output !== "object" || Array.isArray(output)) {
    output = { result: output };
  }
  fs.writeFileSync(process.argv[4], JSON.stringify(output));
}).catch(__fail__);
'''

WRAPPER_LINE_OFFSET = _WRAPPER_HEAD.count("\n")


def build_wrapper(code: str) -> str:
    return _WRAPPER_HEAD + indent_code(code, "  ") + _WRAPPER_TAIL


def extract_line_number(text: str) -> Optional[int]:
    matches = _SCRIPT_LINE_PATTERN.findall(text)
    if not matches:
        return None
    line = int(matches[0]) - WRAPPER_LINE_OFFSET
    return line if line > 0 else None


def _error_summary(text: str) -> str:
    for line in text.strip().splitlines():
        stripped = line.strip()
        if re.match(r'^[A-Za-z]*Error\b', stripped) or stripped.startswith("Uncaught"):
            return stripped
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    return lines[0] if lines else "Script exited with an error"


class ExternalNodeStrategy(ScriptExecutionStrategy):
    """Runs JavaScript with Node.js (``node.externalPath`` or ``node`` on PATH).

    Data is exchanged through ``input.json``/``node.json``/``output.json``;
    the script's return value (awaited when it is a promise) becomes the output.
    """

    language_id = "javascript-external"
    language = "javascript"
    display_name = "JavaScript (Node.js)"
    family = EXTERNAL

    def __init__(self, settings=None):
        super().__init__()
        self.settings = settings
        self._executable: Optional[str] = None

    def candidate_executables(self) -> List[str]:
        configured = self.settings.get_str(NODE_EXTERNAL_PATH, "").strip() if self.settings else ""
        if configured:
            return [configured]
        candidates = [found for found in (shutil.which("node"), shutil.which("nodejs")) if found]
        candidates.extend(["/usr/bin/node", "/usr/local/bin/node"])
        return candidates

    def probe_availability(self) -> Tuple[bool, str]:
        self._executable = None
        tried = []
        for candidate in self.candidate_executables():
            if candidate in tried:
                continue
            tried.append(candidate)
            try:
                completed = subprocess.run([candidate, "--version"], capture_output=True,
                                           text=True, timeout=10)
            except (OSError, subprocess.SubprocessError):
                continue
            match = _VERSION_PATTERN.search(completed.stdout)
            if not match or int(match.group(1)) < MIN_MAJOR_VERSION:
                continue
            self._executable = candidate
            return True, f"Node.js {match.group(0).lstrip('v')} at {candidate}"
        return False, (
            f"No Node.js {MIN_MAJOR_VERSION}+ found (tried: {', '.join(tried) or 'nothing on PATH'}). "
            f"Set {NODE_EXTERNAL_PATH} to a node executable."
        )

    def timeout_ms(self, node: Node) -> int:
        override = node.parameters.get("timeout")
        if override not in (None, ""):
            try:
                return int(override)
            except (TypeError, ValueError):
                logger.warning(f"Node {node.id} has invalid timeout {override!r}, using settings")
        if self.settings is None:
            return DEFAULT_TIMEOUT_MS
        return self.settings.get_int(SCRIPT_TIMEOUT, self.settings.get_int(PYTHON_TIMEOUT, DEFAULT_TIMEOUT_MS))

    def execute(self, code: str, input_data: Dict[str, Any], node: Node, context) -> Dict[str, Any]:
        if not self.is_available():
            raise ScriptExecutionError(self.availability_info(), language=self.language, code=code,
                                       node_id=node.id)

        timeout_ms = self.timeout_ms(node)
        temp_dir = tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX)
        try:
            workdir = Path(temp_dir)
            input_path = workdir / "input.json"
            node_path = workdir / "node.json"
            output_path = workdir / "output.json"
            script_path = workdir / "script.js"

            input_path.write_text(json.dumps(host_to_guest(input_data)), encoding="utf-8")
            node_path.write_text(json.dumps(host_to_guest(node.parameters)), encoding="utf-8")
            script_path.write_text(build_wrapper(code), encoding="utf-8")

            env = dict(os.environ)
            env["NODE_NO_WARNINGS"] = "1"
            result = run_process(
                [self._executable, str(script_path), str(input_path), str(node_path), str(output_path)],
                timeout_ms=timeout_ms,
                cwd=temp_dir,
                env=env,
                context=context,
                on_line=self._line_logger(node, context),
            )

            if result.timed_out:
                raise ScriptTimeoutError(self.language, timeout_ms, code=code, node_id=node.id)
            if result.cancelled:
                raise ScriptExecutionError("Script was terminated because the run was cancelled",
                                           language=self.language, code=code, node_id=node.id)
            if result.returncode != 0:
                error_text = result.stderr.strip() or result.stdout.strip()
                raise ScriptExecutionError(
                    _error_summary(error_text),
                    language=self.language,
                    code=code,
                    line_number=extract_line_number(error_text),
                    node_id=node.id,
                ).add_details(stderr=error_text[-4000:])

            try:
                output = json.loads(output_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise ScriptExecutionError(f"Could not read script output: {e}", language=self.language,
                                           code=code, cause=e, node_id=node.id)
            return merge_result(input_data, output)
        except OSError as e:
            raise ScriptExecutionError(f"Failed to run Node.js: {e}", language=self.language,
                                       code=code, cause=e, node_id=node.id)
        finally:
            remove_temp_dir(temp_dir)

    def _line_logger(self, node: Node, context):
        if context is None:
            return None

        def forward(stream: str, line: str) -> None:
            if stream == "stdout" and line:
                context.log(LogLevel.INFO, f"[JS] {line}", node_id=node.id,
                            source="javascript", console=True)

        return forward
