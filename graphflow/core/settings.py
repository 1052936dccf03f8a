"""Settings collaborator: typed key/value lookups consumed during dispatch."""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .logging import get_logger

logger = get_logger(__name__)

# Dotted keys read by the engine and script runtimes
EXECUTION_DEFAULT_TIMEOUT = "execution.defaultTimeout"
EXECUTION_MAX_PARALLEL = "execution.maxParallel"
EXECUTION_LOG_LEVEL = "execution.logLevel"
PYTHON_EXECUTION_MODE = "python.executionMode"
PYTHON_EXTERNAL_PATH = "python.externalPath"
PYTHON_VENV_PATH = "python.venvPath"
PYTHON_TIMEOUT = "python.timeout"
JAVASCRIPT_EXECUTION_MODE = "javascript.executionMode"
NODE_EXTERNAL_PATH = "node.externalPath"
SCRIPT_TIMEOUT = "advanced.scriptTimeout"

_TRUE_VALUES = ('true', '1', 'yes', 'on')


class SettingsProvider(ABC):
    """Read-only view over application settings."""

    @abstractmethod
    def get_value(self, key: str, default: Any = None) -> Any:
        """Return the raw value for ``key`` or ``default`` when unset."""

    def get_str(self, key: str, default: str = "") -> str:
        value = self.get_value(key, default)
        return default if value is None else str(value)

    def get_int(self, key: str, default: int) -> int:
        value = self.get_value(key, default)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Setting {key}={value!r} is not an integer, using {default}")
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get_value(key, default)
        if isinstance(value, bool):
            return value
        if value is None or value == "":
            return default
        return str(value).strip().lower() in _TRUE_VALUES


class InMemorySettings(SettingsProvider):
    """Dictionary-backed settings with a defaults layer underneath."""

    def __init__(self, values: Optional[Dict[str, Any]] = None,
                 defaults: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(values or {})
        self._defaults: Dict[str, Any] = dict(defaults or {})
        self._lock = threading.RLock()

    def get_value(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key in self._values:
                return self._values[key]
            return self._defaults.get(key, default)

    def set_value(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def all_settings(self) -> Dict[str, Any]:
        with self._lock:
            merged = dict(self._defaults)
            merged.update(self._values)
            return merged
