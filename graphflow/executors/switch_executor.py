"""Multi-way conditional router with first-match rule semantics."""

import json
from typing import Any, Dict, List

from ..core.exceptions import NodeExecutionError
from ..models.core import Node
from .base import BRANCH_KEY, NodeExecutor
from .conditions import evaluate_conditions

DEFAULT_FALLBACK = "fallback"


class SwitchExecutor(NodeExecutor):
    """Routes to the first rule whose conditions hold.

    Parameters:
        rules: list of ``{"name", "conditions": [...], "combineWith": "and"|"or"}``.
            ``name`` defaults to ``output<index>``.
        fallbackOutput: branch used when no rule matches (default "fallback").

    The output is a copy of the input plus ``_branch``, ``_matched`` and
    ``_matchedRuleIndex`` (-1 when nothing matched).
    """

    node_type = "switch"
    routes_branches = True

    def execute(self, node: Node, input_data: Dict[str, Any], context) -> Dict[str, Any]:
        rules = self._load_rules(node)
        fallback = node.parameters.get("fallbackOutput") or DEFAULT_FALLBACK

        branch = fallback
        matched_index = -1
        for index, rule in enumerate(rules):
            if evaluate_conditions(rule.get("conditions") or [], input_data,
                                   rule.get("combineWith", "and")):
                branch = rule.get("name") or f"output{index}"
                matched_index = index
                break

        output = dict(input_data)
        output[BRANCH_KEY] = branch
        output["_matched"] = matched_index >= 0
        output["_matchedRuleIndex"] = matched_index
        return output

    @staticmethod
    def _load_rules(node: Node) -> List[Dict[str, Any]]:
        rules = node.parameters.get("rules") or []
        if isinstance(rules, str):
            try:
                rules = json.loads(rules)
            except ValueError as e:
                raise NodeExecutionError(f"Switch rules are not valid JSON: {e}", node_id=node.id)
        if not isinstance(rules, list) or not all(isinstance(rule, dict) for rule in rules):
            raise NodeExecutionError("Switch rules must be a list of rule objects", node_id=node.id)
        return rules
