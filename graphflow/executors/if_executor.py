"""Two-way conditional router."""

import re
from typing import Any, Dict

from simpleeval import EvalWithCompoundTypes

from ..core.logging import get_logger
from ..models.core import Node
from .base import BRANCH_KEY, NodeExecutor
from .conditions import evaluate_condition, evaluate_conditions, get_path

logger = get_logger(__name__)

_TEMPLATE_PATTERN = re.compile(r'\{\{\s*([^}]+?)\s*\}\}')
_JS_OPERATORS = (("===", "=="), ("!==", "!="), ("&&", " and "), ("||", " or "))


class IfExecutor(NodeExecutor):
    """Evaluates one condition and emits ``_branch`` = "true" or "false".

    ``condition`` may be a boolean, a structured condition map
    (``{"field", "operator", "value"}``), a list of such maps combined with
    ``combineWith``, or an expression string. Strings get ``{{ path }}``
    placeholders filled from the input and are then evaluated with the input
    fields available as names. Any evaluation failure yields false.
    """

    node_type = "if"
    routes_branches = True

    def execute(self, node: Node, input_data: Dict[str, Any], context) -> Dict[str, Any]:
        condition = node.parameters.get("condition", "true")
        result = self.evaluate(condition, input_data, node, context)

        output = dict(input_data)
        output["conditionResult"] = result
        output[BRANCH_KEY] = "true" if result else "false"
        return output

    def evaluate(self, condition: Any, data: Dict[str, Any], node: Node, context) -> bool:
        if isinstance(condition, bool):
            return condition
        if isinstance(condition, dict):
            if "conditions" in condition:
                return evaluate_conditions(
                    condition.get("conditions") or [], data, condition.get("combineWith", "and")
                )
            return evaluate_condition(condition, data)
        if isinstance(condition, list):
            return evaluate_conditions(condition, data, node.parameters.get("combineWith", "and"))
        return self._evaluate_expression(str(condition), data, node, context)

    def _evaluate_expression(self, expression: str, data: Dict[str, Any], node: Node, context) -> bool:
        interpolated = _TEMPLATE_PATTERN.sub(
            lambda match: str(get_path(data, match.group(1))), expression
        )
        for js_op, py_op in _JS_OPERATORS:
            interpolated = interpolated.replace(js_op, py_op)

        names = {"true": True, "false": False, "null": None, "None": None, "input": data}
        names.update({key: value for key, value in data.items() if isinstance(key, str)})

        try:
            result = bool(EvalWithCompoundTypes(names=names).eval(interpolated.strip()))
            error = None
        except Exception as e:
            result = False
            error = f"{type(e).__name__}: {e}"
            logger.debug(f"If condition '{expression}' on node {node.id} failed: {error}")

        if context is not None:
            context.logger.expression_eval(
                context.run_id, interpolated, result, node_id=node.id, error=error
            )
        return result
