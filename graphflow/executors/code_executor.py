"""Script node: runs user code through the configured script strategy."""

from typing import Any, Dict, Optional, Tuple

from ..core.exceptions import AvailabilityError, NodeExecutionError
from ..core.logging import get_logger
from ..core.settings import JAVASCRIPT_EXECUTION_MODE, PYTHON_EXECUTION_MODE
from ..models.core import Node
from ..scripting.base import ScriptExecutionStrategy, ScriptStrategyRegistry
from .base import NodeExecutor

logger = get_logger(__name__)

DEFAULT_LANGUAGE = "javascript"
LANGUAGE_ALIASES = {
    "js": "javascript",
    "node": "javascript",
    "py": "python",
    "python3": "python",
}

# language -> (embedded strategy id, external strategy id, mode setting key)
_MODE_SELECTION: Dict[str, Tuple[str, str, str]] = {
    "python": ("python", "python-external", PYTHON_EXECUTION_MODE),
    "javascript": ("javascript", "javascript-external", JAVASCRIPT_EXECUTION_MODE),
}

EXECUTION_MODES = ("embedded", "external", "auto")


class CodeExecutor(NodeExecutor):
    """Node type ``code`` with parameters ``code``, ``language`` and ``timeout``.

    For Python and JavaScript the ``<language>.executionMode`` setting picks
    the embedded or external runtime (``auto`` prefers embedded when it is
    available). Any other language id is looked up in the strategy registry
    as given.
    """

    node_type = "code"

    def __init__(self, strategies: ScriptStrategyRegistry, settings=None):
        self.strategies = strategies
        self.settings = settings

    def execute(self, node: Node, input_data: Dict[str, Any], context) -> Dict[str, Any]:
        code = node.parameters.get("code") or ""
        if not isinstance(code, str):
            raise NodeExecutionError("Parameter 'code' must be a string", node_id=node.id)
        if not code.strip():
            return dict(input_data)

        language = normalize_language(node.parameters.get("language"))
        strategy = self.select_strategy(language, node, context)
        logger.debug(f"Node {node.id} runs {language} with strategy {strategy.language_id}")
        return strategy.execute(code, input_data, node, context)

    def _mode(self, key: str, context) -> str:
        settings = self.settings
        if settings is None and context is not None:
            settings = context.settings
        mode = settings.get_str(key, "embedded") if settings is not None else "embedded"
        mode = mode.strip().lower()
        if mode not in EXECUTION_MODES:
            logger.warning(f"Unknown execution mode {mode!r} for {key}, using embedded")
            return "embedded"
        return mode

    def select_strategy(self, language: str, node: Node, context=None) -> ScriptExecutionStrategy:
        selection = _MODE_SELECTION.get(language)
        if selection is None:
            return self._require(self.strategies.find(language), language, node)

        embedded_id, external_id, mode_key = selection
        mode = self._mode(mode_key, context)
        if mode == "external":
            return self._require(self.strategies.find(external_id), language, node)
        if mode == "auto":
            embedded = self.strategies.find(embedded_id)
            if embedded is not None and embedded.is_available():
                return embedded
            return self._require(self.strategies.find(external_id), language, node)
        return self._require(self.strategies.find(embedded_id), language, node)

    def _require(self, strategy: Optional[ScriptExecutionStrategy], language: str,
                 node: Node) -> ScriptExecutionStrategy:
        if strategy is None:
            available = ", ".join(self.strategies.languages()) or "none"
            raise NodeExecutionError(
                f"Unsupported language '{language}'. Available languages: {available}",
                node_id=node.id,
            )
        if not strategy.is_available():
            raise AvailabilityError(strategy.language_id, strategy.availability_info(), node_id=node.id)
        return strategy


def normalize_language(language: Any) -> str:
    name = str(language or DEFAULT_LANGUAGE).strip().lower()
    return LANGUAGE_ALIASES.get(name, name)
