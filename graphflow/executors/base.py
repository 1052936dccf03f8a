"""Node executor plugin contract."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict

from ..models.core import Node

if TYPE_CHECKING:
    from ..core.context import ExecutionContext

BRANCH_KEY = "_branch"


class NodeExecutor(ABC):
    """Executes one node type.

    ``execute`` must not mutate the workflow; it returns the node's output map
    and signals failure by raising ``NodeExecutionError`` (or a subclass).
    Executors that set ``routes_branches`` put the selected branch name under
    ``_branch`` in their output and the engine only follows matching edges.
    """

    node_type: str = ""
    routes_branches: bool = False

    @abstractmethod
    def execute(self, node: Node, input_data: Dict[str, Any],
                context: "ExecutionContext") -> Dict[str, Any]:
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(node_type={self.node_type!r})"
