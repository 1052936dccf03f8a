"""Python scripts run by an external interpreter in a child process."""

import json
import os
import re
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import ScriptExecutionError, ScriptTimeoutError
from ..core.logging import get_logger
from ..core.settings import PYTHON_EXTERNAL_PATH, PYTHON_TIMEOUT, PYTHON_VENV_PATH
from ..models.core import Node, LogLevel
from .base import EXTERNAL, ScriptExecutionStrategy, indent_code, merge_result
from .conversion import host_to_guest
from .process import remove_temp_dir, run_process

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 60_000
MIN_VERSION = (3, 8)
TEMP_DIR_PREFIX = "graphflow-python-"
_VERSION_PATTERN = re.compile(r'Python (\d+)\.(\d+)(?:\.(\d+))?')
_SCRIPT_LINE_PATTERN = re.compile(r'File "[^"]*script\.py", line (\d+)')
_ANY_LINE_PATTERN = re.compile(r'line (\d+)')

_WRAPPER_HEAD = '''import json
import sys
import traceback

with open(sys.argv[1], encoding="utf-8") as _handle:
    input = json.load(_handle)
with open(sys.argv[2], encoding="utf-8") as _handle:
    node = json.load(_handle)
globals()["$input"] = input
globals()["$node"] = node


class _WorkflowLocals(dict):
    pass


def __workflow_main__():
'''

_WRAPPER_TAIL = '''
    return _WorkflowLocals(locals())


def _serializable(value):
    try:
        json.dumps(value)
        return True
    except (TypeError, ValueError):
        return False


try:
    _result = __workflow_main__()
    if isinstance(_result, _WorkflowLocals):
        _output = {
            key: value for key, value in _result.items()
            if not key.startswith("_") and _serializable(value)
        }
    elif isinstance(_result, dict):
        _output = _result
    elif _result is None:
        _output = {}
    else:
        _output = {"result": _result}
    with open(sys.argv[3], "w", encoding="utf-8") as _handle:
        json.dump(_output, _handle, default=str)
except SystemExit:
    raise
except BaseException:
    traceback.print_exc()
    sys.exit(1)
'''

WRAPPER_LINE_OFFSET = _WRAPPER_HEAD.count("\n")


def build_wrapper(code: str) -> str:
    body = indent_code(code) if code.strip() else "    pass"
    return _WRAPPER_HEAD + body + _WRAPPER_TAIL


def extract_line_number(text: str) -> Optional[int]:
    """Best-effort user line number from a traceback of the generated script."""
    matches = _SCRIPT_LINE_PATTERN.findall(text) or _ANY_LINE_PATTERN.findall(text)
    if not matches:
        return None
    line = int(matches[-1]) - WRAPPER_LINE_OFFSET
    return line if line > 0 else None


def _error_summary(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return lines[-1].strip() if lines else "Script exited with an error"


def parse_version(text: str) -> Optional[Tuple[int, int]]:
    match = _VERSION_PATTERN.search(text or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


class ExternalPythonStrategy(ScriptExecutionStrategy):
    """Runs code with an installed Python interpreter, exchanging data via JSON files.

    The interpreter comes from ``python.externalPath``, then the virtual
    environment at ``python.venvPath``, then the host interpreter and the
    ``python3``/``python`` executables on PATH. Version 3.8+ is required.
    """

    language_id = "python-external"
    language = "python"
    display_name = "Python (external interpreter)"
    family = EXTERNAL

    def __init__(self, settings=None):
        super().__init__()
        self.settings = settings
        self._interpreter: Optional[str] = None

    # Interpreter discovery

    def _setting(self, key: str) -> str:
        if self.settings is None:
            return ""
        return self.settings.get_str(key, "").strip()

    def _venv_bin(self) -> Optional[Path]:
        venv = self._setting(PYTHON_VENV_PATH)
        if not venv:
            return None
        return Path(venv) / ("Scripts" if os.name == "nt" else "bin")

    def candidate_interpreters(self) -> List[str]:
        configured = self._setting(PYTHON_EXTERNAL_PATH)
        if configured:
            return [configured]
        candidates = []
        venv_bin = self._venv_bin()
        if venv_bin is not None:
            candidates.append(str(venv_bin / ("python.exe" if os.name == "nt" else "python")))
        if sys.executable:
            candidates.append(sys.executable)
        for name in ("python3", "python"):
            found = shutil.which(name)
            if found:
                candidates.append(found)
        candidates.extend(["/usr/bin/python3", "/usr/local/bin/python3"])
        return candidates

    @staticmethod
    def check_interpreter(path: str) -> Optional[Tuple[int, int]]:
        try:
            completed = subprocess.run(
                [path, "--version"], capture_output=True, text=True, timeout=10
            )
        except (OSError, subprocess.SubprocessError):
            return None
        return parse_version(completed.stdout + completed.stderr)

    def probe_availability(self) -> Tuple[bool, str]:
        self._interpreter = None
        tried = []
        for candidate in self.candidate_interpreters():
            if candidate in tried:
                continue
            tried.append(candidate)
            version = self.check_interpreter(candidate)
            if version is None:
                continue
            if version < MIN_VERSION:
                logger.debug(f"Ignoring {candidate}: Python {version[0]}.{version[1]} is too old")
                continue
            self._interpreter = candidate
            return True, f"Python {version[0]}.{version[1]} at {candidate}"
        return False, (
            f"No Python {MIN_VERSION[0]}.{MIN_VERSION[1]}+ interpreter found (tried: {', '.join(tried)}). "
            f"Set {PYTHON_EXTERNAL_PATH} to a valid interpreter."
        )

    def interpreter(self) -> Optional[str]:
        if not self.is_available():
            return None
        return self._interpreter

    def build_environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["PYTHONIOENCODING"] = "utf-8"
        env["PYTHONUNBUFFERED"] = "1"
        venv_bin = self._venv_bin()
        if venv_bin is not None:
            env["PATH"] = str(venv_bin) + os.pathsep + env.get("PATH", "")
            env["VIRTUAL_ENV"] = str(venv_bin.parent)
            env.pop("PYTHONHOME", None)
        return env

    def timeout_ms(self, node: Node) -> int:
        override = node.parameters.get("timeout")
        if override not in (None, ""):
            try:
                return int(override)
            except (TypeError, ValueError):
                logger.warning(f"Node {node.id} has invalid timeout {override!r}, using settings")
        if self.settings is None:
            return DEFAULT_TIMEOUT_MS
        return self.settings.get_int(PYTHON_TIMEOUT, DEFAULT_TIMEOUT_MS)

    # Execution

    def execute(self, code: str, input_data: Dict[str, Any], node: Node, context) -> Dict[str, Any]:
        interpreter = self.interpreter()
        if interpreter is None:
            raise ScriptExecutionError(self.availability_info(), language=self.language, code=code,
                                       node_id=node.id)

        timeout_ms = self.timeout_ms(node)
        temp_dir = tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX)
        try:
            workdir = Path(temp_dir)
            input_path = workdir / "input.json"
            node_path = workdir / "node.json"
            output_path = workdir / "output.json"
            script_path = workdir / "script.py"

            input_path.write_text(json.dumps(host_to_guest(input_data), default=str), encoding="utf-8")
            node_path.write_text(json.dumps(host_to_guest(node.parameters), default=str), encoding="utf-8")
            script_path.write_text(build_wrapper(code), encoding="utf-8")

            result = run_process(
                [interpreter, str(script_path), str(input_path), str(node_path), str(output_path)],
                timeout_ms=timeout_ms,
                cwd=temp_dir,
                env=self.build_environment(),
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
            raise ScriptExecutionError(f"Failed to run external Python: {e}", language=self.language,
                                       code=code, cause=e, node_id=node.id)
        finally:
            remove_temp_dir(temp_dir)

    def _line_logger(self, node: Node, context):
        if context is None:
            return None

        def forward(stream: str, line: str) -> None:
            if stream == "stdout" and line:
                context.log(LogLevel.INFO, f"[Python] {line}", node_id=node.id,
                            source="python", stream=stream)

        return forward
