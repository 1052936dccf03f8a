"""In-process Python scripts compiled and run under RestrictedPython."""

import json
import math
import operator
import re
import traceback
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Callable, Dict, Optional, Tuple

from RestrictedPython import compile_restricted_exec, limited_builtins, safe_builtins, utility_builtins
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

from ..core.exceptions import ScriptExecutionError
from ..core.logging import get_logger
from ..models.core import LogLevel, Node
from .base import EMBEDDED, ScriptExecutionStrategy, indent_code, merge_result
from .conversion import guest_to_host, host_to_guest

logger = get_logger(__name__)

SCRIPT_FILENAME = "<script>"
ENTRY_POINT = "workflow_main"
WRAPPER_LINE_OFFSET = 1
_COMPILE_LINE_PATTERN = re.compile(r'Line (\d+)')


class _SafeMath:
    """Restricted math interface."""
    ceil = staticmethod(math.ceil)
    floor = staticmethod(math.floor)
    sqrt = staticmethod(math.sqrt)
    pow = staticmethod(math.pow)
    log = staticmethod(math.log)
    log10 = staticmethod(math.log10)
    exp = staticmethod(math.exp)
    fabs = staticmethod(math.fabs)
    isclose = staticmethod(math.isclose)
    pi = math.pi
    e = math.e
    inf = math.inf

    def __getattr__(self, name):
        raise AttributeError(f"Access to 'math.{name}' is not allowed in scripts")


class _SafeJson:
    """Restricted JSON interface."""

    @staticmethod
    def loads(s):
        return json.loads(s)

    @staticmethod
    def dumps(obj, indent=None, sort_keys=False):
        return json.dumps(obj, indent=indent, sort_keys=sort_keys, default=str)

    def __getattr__(self, name):
        raise AttributeError(f"Access to 'json.{name}' is not allowed in scripts")


class _SafeRegex:
    """Restricted regex interface."""
    IGNORECASE = re.IGNORECASE
    MULTILINE = re.MULTILINE
    DOTALL = re.DOTALL

    @staticmethod
    def search(pattern, string, flags=0):
        return re.search(pattern, string, flags)

    @staticmethod
    def match(pattern, string, flags=0):
        return re.match(pattern, string, flags)

    @staticmethod
    def fullmatch(pattern, string, flags=0):
        return re.fullmatch(pattern, string, flags)

    @staticmethod
    def findall(pattern, string, flags=0):
        return re.findall(pattern, string, flags)

    @staticmethod
    def sub(pattern, repl, string, count=0, flags=0):
        return re.sub(pattern, repl, string, count=count, flags=flags)

    @staticmethod
    def split(pattern, string, maxsplit=0, flags=0):
        return re.split(pattern, string, maxsplit=maxsplit, flags=flags)

    def __getattr__(self, name):
        raise AttributeError(f"Access to 're.{name}' is not allowed in scripts")


class _SafeDatetime:
    """Restricted datetime interface."""

    @staticmethod
    def now():
        return datetime.now()

    @staticmethod
    def utcnow():
        return datetime.utcnow()

    @staticmethod
    def fromisoformat(s):
        return datetime.fromisoformat(s)

    @staticmethod
    def strptime(date_string, fmt):
        return datetime.strptime(date_string, fmt)

    def __getattr__(self, name):
        raise AttributeError(f"Access to 'datetime.{name}' is not allowed in scripts")


_INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
}


def _inplacevar(op: str, target, value):
    handler = _INPLACE_OPERATORS.get(op)
    if handler is None:
        raise SyntaxError(f"Unsupported in-place operator {op}")
    return handler(target, value)


def _apply(func, *args, **kwargs):
    return func(*args, **kwargs)


def _print_factory(emit: Callable[[str], None]):
    """Build the ``_print_`` hook RestrictedPython calls for ``print``."""

    class _ScriptPrint:
        def __init__(self, _getattr_=None):
            self.chunks = []

        def _call_print(self, *objects, **kwargs):
            sep = kwargs.get("sep", " ")
            end = kwargs.get("end", "\n")
            text = (" " if sep is None else str(sep)).join(str(item) for item in objects)
            self.chunks.append(text + ("\n" if end is None else str(end)))
            emit(text)

        def __call__(self):
            return "".join(self.chunks)

    return _ScriptPrint


def _script_builtins() -> Dict[str, Any]:
    builtins = dict(safe_builtins)
    builtins.update(limited_builtins)
    builtins.update(utility_builtins)
    builtins.update({
        "dict": dict,
        "list": list,
        "set": set,
        "sum": sum,
        "min": min,
        "max": max,
        "enumerate": enumerate,
        "any": any,
        "all": all,
        "map": map,
        "filter": filter,
        "reversed": reversed,
    })
    return builtins


def build_wrapper(code: str) -> str:
    return f"def {ENTRY_POINT}():\n" + indent_code(code) + "\n"


def clean_message(exc: BaseException) -> str:
    message = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
    return message.replace(f"{ENTRY_POINT}()", "script").replace(ENTRY_POINT, "script")


def runtime_line_number(exc: BaseException) -> Optional[int]:
    frames = [frame for frame in traceback.extract_tb(exc.__traceback__) if frame.filename == SCRIPT_FILENAME]
    if not frames:
        return None
    line = frames[-1].lineno - WRAPPER_LINE_OFFSET
    return line if line > 0 else None


def compile_line_number(errors) -> Optional[int]:
    for error in errors:
        match = _COMPILE_LINE_PATTERN.search(error)
        if match:
            line = int(match.group(1)) - WRAPPER_LINE_OFFSET
            return line if line > 0 else None
    return None


def compile_message(errors) -> str:
    def shift(match):
        return f"Line {max(int(match.group(1)) - WRAPPER_LINE_OFFSET, 1)}"

    text = "; ".join(_COMPILE_LINE_PATTERN.sub(shift, error) for error in errors)
    return text.replace(ENTRY_POINT, "script")


class EmbeddedPythonStrategy(ScriptExecutionStrategy):
    """Runs Python inside the host process with RestrictedPython guards.

    Each call gets fresh globals: ``input`` and ``node`` as plain data copies,
    guarded attribute/item/iteration access, and restricted ``json``, ``math``,
    ``re`` and ``datetime`` wrappers. The script body becomes a function, so
    ``return`` delivers the result; ``print`` goes to the run log.
    """

    language_id = "python"
    language = "python"
    display_name = "Python (embedded, RestrictedPython)"
    family = EMBEDDED

    def probe_availability(self) -> Tuple[bool, str]:
        try:
            release = version("RestrictedPython")
        except PackageNotFoundError:
            release = "unknown version"
        return True, f"RestrictedPython {release}"

    def _globals(self, input_data: Dict[str, Any], node: Node, context) -> Dict[str, Any]:
        def emit(text: str) -> None:
            if context is not None:
                context.log(LogLevel.INFO, f"[Python] {text}", node_id=node.id, source="python")
            else:
                logger.info(f"[Python] {text}")

        return {
            "__builtins__": _script_builtins(),
            "__name__": "workflow_script",
            "__metaclass__": type,
            "_getattr_": safer_getattr,
            "_getitem_": default_guarded_getitem,
            "_getiter_": default_guarded_getiter,
            "_write_": full_write_guard,
            "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
            "_unpack_sequence_": guarded_unpack_sequence,
            "_inplacevar_": _inplacevar,
            "_apply_": _apply,
            "_print_": _print_factory(emit),
            "json": _SafeJson(),
            "math": _SafeMath(),
            "re": _SafeRegex(),
            "datetime": _SafeDatetime(),
            "input": host_to_guest(input_data),
            "node": host_to_guest(node.parameters),
        }

    def execute(self, code: str, input_data: Dict[str, Any], node: Node, context) -> Dict[str, Any]:
        if not code or not code.strip():
            return dict(input_data)

        compiled = compile_restricted_exec(build_wrapper(code), filename=SCRIPT_FILENAME)
        if compiled.errors or compiled.code is None:
            errors = list(compiled.errors) or ["Script could not be compiled"]
            raise ScriptExecutionError(
                compile_message(errors),
                language=self.language,
                code=code,
                line_number=compile_line_number(errors),
                node_id=node.id,
            )

        script_globals = self._globals(input_data, node, context)
        try:
            exec(compiled.code, script_globals)
            result = script_globals[ENTRY_POINT]()
        except Exception as e:
            raise ScriptExecutionError(
                clean_message(e),
                language=self.language,
                code=code,
                line_number=runtime_line_number(e),
                cause=e,
                node_id=node.id,
            )
        return merge_result(input_data, guest_to_host(result))
