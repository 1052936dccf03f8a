"""Script execution strategy contract and registry."""

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Tuple

from ..core.exceptions import ExecutorRegistryError
from ..core.logging import get_logger
from ..models.core import Node

logger = get_logger(__name__)

EMBEDDED = "embedded"
EXTERNAL = "external"


class ScriptExecutionStrategy(ABC):
    """One language runtime behind a uniform contract.

    Subclasses set ``language_id`` (registry key), ``language`` (the language
    name reported in errors), ``display_name`` and ``family``. Availability is
    probed lazily once and cached until ``invalidate_availability``.
    """

    language_id: str = ""
    language: str = ""
    display_name: str = ""
    family: str = EMBEDDED

    def __init__(self):
        self._availability: Optional[Tuple[bool, str]] = None
        self._availability_lock = threading.Lock()

    @abstractmethod
    def execute(self, code: str, input_data: Dict[str, Any], node: Node, context) -> Dict[str, Any]:
        """Run ``code`` against ``input_data`` and return the merged output map."""

    def probe_availability(self) -> Tuple[bool, str]:
        return True, f"{self.display_name} is available"

    def _availability_state(self) -> Tuple[bool, str]:
        with self._availability_lock:
            if self._availability is None:
                try:
                    self._availability = self.probe_availability()
                except Exception as e:
                    logger.warning(f"Availability probe for {self.language_id} failed: {e}")
                    self._availability = (False, f"Availability probe failed: {e}")
                logger.info(
                    f"Script runtime {self.language_id} available={self._availability[0]}: "
                    f"{self._availability[1]}"
                )
            return self._availability

    def is_available(self) -> bool:
        return self._availability_state()[0]

    def availability_info(self) -> str:
        return self._availability_state()[1]

    def invalidate_availability(self) -> None:
        with self._availability_lock:
            self._availability = None

    def describe(self) -> Dict[str, Any]:
        available, info = self._availability_state()
        return {
            "language_id": self.language_id,
            "language": self.language,
            "display_name": self.display_name,
            "family": self.family,
            "available": available,
            "availability_info": info,
        }


def merge_result(input_data: Dict[str, Any], result: Any) -> Dict[str, Any]:
    """Copy of the input with a map result spread over it, or any other result under ``result``."""
    output = dict(input_data)
    if result is None:
        return output
    if isinstance(result, Mapping):
        output.update({str(key): value for key, value in result.items()})
    else:
        output["result"] = result
    return output


def indent_code(code: str, prefix: str = "    ") -> str:
    """Indent every line so user code can sit inside a generated function."""
    lines = code.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(prefix + line if line.strip() else line for line in lines)


class ScriptStrategyRegistry:
    """Registry of script strategies keyed by ``language_id``."""

    def __init__(self):
        self._strategies: Dict[str, ScriptExecutionStrategy] = {}
        self._lock = threading.RLock()

    def register(self, strategy: ScriptExecutionStrategy) -> None:
        if not strategy.language_id:
            raise ExecutorRegistryError("Script strategy must declare a language_id", operation="register")
        with self._lock:
            if strategy.language_id in self._strategies:
                raise ExecutorRegistryError(
                    f"Script strategy '{strategy.language_id}' is already registered",
                    node_type=strategy.language_id,
                    operation="register",
                )
            self._strategies[strategy.language_id] = strategy
        logger.info(f"Registered script strategy '{strategy.language_id}' ({strategy.display_name})")

    def unregister(self, language_id: str) -> bool:
        with self._lock:
            return self._strategies.pop(language_id, None) is not None

    def find(self, language_id: str) -> Optional[ScriptExecutionStrategy]:
        with self._lock:
            return self._strategies.get(language_id)

    def get(self, language_id: str) -> ScriptExecutionStrategy:
        strategy = self.find(language_id)
        if strategy is None:
            raise ExecutorRegistryError(
                f"No script strategy registered for '{language_id}'",
                node_type=language_id,
                operation="get",
            )
        return strategy

    def languages(self) -> List[str]:
        with self._lock:
            return sorted(self._strategies)

    def available_languages(self) -> List[str]:
        with self._lock:
            strategies = list(self._strategies.values())
        return sorted(s.language_id for s in strategies if s.is_available())

    def describe(self) -> List[Dict[str, Any]]:
        with self._lock:
            strategies = [self._strategies[key] for key in sorted(self._strategies)]
        return [strategy.describe() for strategy in strategies]
