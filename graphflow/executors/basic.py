"""Small built-in executors: triggers, data shaping and joins."""

import json
from datetime import datetime
from typing import Any, Dict

from ..core.exceptions import NodeExecutionError
from ..models.core import Node
from .base import NodeExecutor
from .conditions import get_path


class ManualTriggerExecutor(NodeExecutor):
    """Entry point for manually started runs."""

    node_type = "manualTrigger"

    def execute(self, node: Node, input_data: Dict[str, Any], context) -> Dict[str, Any]:
        output = dict(input_data)
        output["triggeredAt"] = datetime.utcnow().isoformat()
        output["triggerType"] = "manual"
        return output


class NoOpExecutor(NodeExecutor):
    node_type = "noOp"

    def execute(self, node: Node, input_data: Dict[str, Any], context) -> Dict[str, Any]:
        return dict(input_data)


class SetExecutor(NodeExecutor):
    """Writes fixed values onto the data.

    ``values`` is a map (or a JSON object string). A value of the form
    ``$input.a.b`` copies that path from the input. With ``keepOnlySet`` the
    original input keys are dropped.
    """

    node_type = "set"

    def execute(self, node: Node, input_data: Dict[str, Any], context) -> Dict[str, Any]:
        values = node.parameters.get("values") or {}
        if isinstance(values, str):
            try:
                values = json.loads(values)
            except ValueError as e:
                raise NodeExecutionError(f"Set values are not valid JSON: {e}", node_id=node.id)
        if not isinstance(values, dict):
            raise NodeExecutionError("Set values must be an object", node_id=node.id)

        keep_only_set = node.parameters.get("keepOnlySet", False)
        if isinstance(keep_only_set, str):
            keep_only_set = keep_only_set.strip().lower() == "true"

        output = {} if keep_only_set else dict(input_data)
        for key, value in values.items():
            if isinstance(value, str) and value.startswith("$input."):
                value = get_path(input_data, value[len("$input."):])
            output[key] = value
        return output


class MergeExecutor(NodeExecutor):
    """Joins the data delivered by every incoming connection.

    The engine already waits for all live inputs before dispatch. Mode
    ``merge`` (default) returns the merged map; ``append`` returns the list
    of individual inputs under ``outputKey``.
    """

    node_type = "merge"

    def execute(self, node: Node, input_data: Dict[str, Any], context) -> Dict[str, Any]:
        mode = str(node.parameters.get("mode", "merge")).lower()
        inputs = context.inputs_for(node.id) if context is not None else [input_data]

        if mode == "append":
            output_key = node.parameters.get("outputKey") or "merged"
            return {
                output_key: [dict(item) for item in inputs],
                "_mergeMode": "append",
                "_inputsReceived": len(inputs),
            }
        if mode != "merge":
            raise NodeExecutionError(f"Unknown merge mode '{mode}'", node_id=node.id)

        output = dict(input_data)
        output["_mergeMode"] = "merge"
        output["_inputsReceived"] = len(inputs)
        return output
