"""Variable stores and ``${name}`` substitution in node parameters."""

import re
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


VARIABLE_PATTERN = re.compile(r'\$\{([^}]+)\}')


class VariableStore(ABC):
    """Global and workflow-scoped variable lookup."""

    @abstractmethod
    def get_global_variables(self) -> Dict[str, Any]:
        ...

    @abstractmethod
    def get_workflow_variables(self, workflow_id: str) -> Dict[str, Any]:
        ...

    def get_variables_for_workflow(self, workflow_id: Optional[str]) -> Dict[str, Any]:
        """Globals overlaid by the workflow's own variables."""
        variables = dict(self.get_global_variables())
        if workflow_id:
            variables.update(self.get_workflow_variables(workflow_id))
        return variables


class InMemoryVariableStore(VariableStore):
    """Variables kept in dictionaries; ``workflow_id=None`` means global scope."""

    def __init__(self, global_variables: Optional[Dict[str, Any]] = None,
                 workflow_variables: Optional[Dict[str, Dict[str, Any]]] = None):
        self._globals: Dict[str, Any] = dict(global_variables or {})
        self._scoped: Dict[str, Dict[str, Any]] = {
            wf_id: dict(values) for wf_id, values in (workflow_variables or {}).items()
        }
        self._lock = threading.RLock()

    def get_global_variables(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._globals)

    def get_workflow_variables(self, workflow_id: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._scoped.get(workflow_id, {}))

    def set_variable(self, name: str, value: Any, workflow_id: Optional[str] = None) -> None:
        with self._lock:
            if workflow_id is None:
                self._globals[name] = value
            else:
                self._scoped.setdefault(workflow_id, {})[name] = value

    def delete_variable(self, name: str, workflow_id: Optional[str] = None) -> bool:
        with self._lock:
            scope = self._globals if workflow_id is None else self._scoped.get(workflow_id, {})
            return scope.pop(name, None) is not None


class VariableResolver:
    """Substitutes ``${name}`` tokens in strings, recursing into dicts and lists.

    Workflow-scoped variables win over globals. Unknown names are left as the
    literal ``${name}`` token; non-string leaves pass through unchanged.
    """

    def __init__(self, store: Optional[VariableStore] = None):
        self.store = store or InMemoryVariableStore()

    def variables_for(self, workflow_id: Optional[str]) -> Dict[str, Any]:
        return self.store.get_variables_for_workflow(workflow_id)

    def resolve(self, value: Any, variables: Dict[str, Any]) -> Any:
        if isinstance(value, str):
            return self.resolve_string(value, variables)
        if isinstance(value, dict):
            return {key: self.resolve(item, variables) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve(item, variables) for item in value]
        return value

    def resolve_string(self, text: str, variables: Dict[str, Any]) -> str:
        if '${' not in text:
            return text

        def substitute(match):
            name = match.group(1).strip()
            if name not in variables:
                return match.group(0)
            return str(variables[name])

        return VARIABLE_PATTERN.sub(substitute, text)

    def resolve_parameters(self, parameters: Dict[str, Any], workflow_id: Optional[str]) -> Dict[str, Any]:
        """Resolve every string in a node's parameter map for the given workflow."""
        if not parameters:
            return {}
        return self.resolve(parameters, self.variables_for(workflow_id))

    @staticmethod
    def referenced_names(value: Any) -> set:
        """All ``${name}`` names appearing anywhere in ``value``."""
        names = set()
        if isinstance(value, str):
            names.update(match.strip() for match in VARIABLE_PATTERN.findall(value))
        elif isinstance(value, dict):
            for item in value.values():
                names |= VariableResolver.referenced_names(item)
        elif isinstance(value, list):
            for item in value:
                names |= VariableResolver.referenced_names(item)
        return names
