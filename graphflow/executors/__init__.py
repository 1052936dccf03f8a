"""Built-in node executors."""

from .base import BRANCH_KEY, NodeExecutor
from .basic import ManualTriggerExecutor, MergeExecutor, NoOpExecutor, SetExecutor
from .code_executor import CodeExecutor
from .if_executor import IfExecutor
from .switch_executor import SwitchExecutor

__all__ = [
    "BRANCH_KEY",
    "NodeExecutor",
    "ManualTriggerExecutor",
    "MergeExecutor",
    "NoOpExecutor",
    "SetExecutor",
    "CodeExecutor",
    "IfExecutor",
    "SwitchExecutor",
]
