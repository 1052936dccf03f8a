"""Core Pydantic models for workflows, runs and execution logs."""

import re
import uuid
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator, model_validator


MAIN_HANDLE = "main"

_NODE_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_.:-]+$')


def _new_id() -> str:
    return str(uuid.uuid4())


class ExecutionStatusEnum(str, Enum):
    """Lifecycle states of an execution run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatusEnum.SUCCESS,
            ExecutionStatusEnum.FAILED,
            ExecutionStatusEnum.CANCELLED,
        )


class NodeExecutionStatus(str, Enum):
    """Outcome of a single node within a run."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class LogLevel(str, Enum):
    """Severity of an execution log entry, ordered TRACE < ... < FATAL."""
    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"

    @property
    def severity(self) -> int:
        return _LEVEL_ORDER[self]

    def at_least(self, other: "LogLevel") -> bool:
        return self.severity >= other.severity


_LEVEL_ORDER = {level: index for index, level in enumerate(LogLevel)}


class LogCategory(str, Enum):
    """Category of an execution log entry."""
    EXECUTION_START = "EXECUTION_START"
    EXECUTION_END = "EXECUTION_END"
    NODE_START = "NODE_START"
    NODE_END = "NODE_END"
    NODE_SKIP = "NODE_SKIP"
    NODE_INPUT = "NODE_INPUT"
    NODE_OUTPUT = "NODE_OUTPUT"
    DATA_FLOW = "DATA_FLOW"
    VARIABLE = "VARIABLE"
    EXPRESSION_EVAL = "EXPRESSION_EVAL"
    ERROR = "ERROR"
    RETRY = "RETRY"
    RATE_LIMIT = "RATE_LIMIT"
    PERFORMANCE = "PERFORMANCE"
    CUSTOM = "CUSTOM"


class ValidationResult(BaseModel):
    """Result of workflow structure validation."""
    is_valid: bool = Field(..., description="Whether the workflow is executable")
    errors: List[str] = Field(default_factory=list, description="Structural errors")
    warnings: List[str] = Field(default_factory=list, description="Non-fatal findings")


class Position(BaseModel):
    """Canvas position of a node. Ignored by the engine."""
    x: float = 0.0
    y: float = 0.0


class Node(BaseModel):
    """A typed step of a workflow."""
    id: str = Field(..., description="Identifier, unique within the workflow")
    type: str = Field(..., description="Executor registry key")
    name: Optional[str] = Field(None, description="Display name, defaults to the type")
    position: Position = Field(default_factory=Position)
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Executor parameters")
    credential_id: Optional[str] = Field(None, description="Referenced credential")
    disabled: bool = Field(False, description="Disabled nodes forward their input unchanged")
    notes: Optional[str] = None

    @field_validator('id')
    @classmethod
    def validate_id_format(cls, id_value):
        """Ensure node ID is non-empty and uses a safe character set."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        if not _NODE_ID_PATTERN.match(id_value.strip()):
            raise ValueError(
                "Node ID must contain only alphanumeric characters, '.', ':', '_' and '-'"
            )
        return id_value.strip()

    @field_validator('type')
    @classmethod
    def validate_type(cls, node_type):
        if not node_type or not node_type.strip():
            raise ValueError("Node type cannot be empty")
        return node_type.strip()

    @model_validator(mode='after')
    def default_name(self):
        if not self.name:
            self.name = self.type
        return self


class Connection(BaseModel):
    """A data-flow edge between an output handle and an input handle."""
    id: str = Field(default_factory=_new_id)
    source_node_id: str = Field(..., description="Source node ID")
    source_output: str = Field(MAIN_HANDLE, description="Named output handle on the source")
    target_node_id: str = Field(..., description="Target node ID")
    target_input: str = Field(MAIN_HANDLE, description="Named input handle on the target")

    @field_validator('source_node_id', 'target_node_id')
    @classmethod
    def validate_node_ids(cls, node_id):
        if not node_id or not node_id.strip():
            raise ValueError("Node ID cannot be empty")
        return node_id.strip()

    @field_validator('source_output', 'target_input', mode='before')
    @classmethod
    def default_handle(cls, handle):
        return handle or MAIN_HANDLE

    @model_validator(mode='after')
    def validate_not_self_connection(self):
        if self.source_node_id == self.target_node_id:
            raise ValueError(f"Self-connection not allowed on node {self.source_node_id}")
        return self

    @property
    def is_unlabelled(self) -> bool:
        return self.source_output == MAIN_HANDLE and self.target_input == MAIN_HANDLE

    def matches_branch(self, branch: str) -> bool:
        return branch in (self.source_output, self.target_input)


class Workflow(BaseModel):
    """Immutable-during-run description of a workflow graph.

    Structural problems (cycles, dangling connections, duplicate node ids) are
    not rejected at construction; they are reported by ``validate_structure``
    so that the engine can refuse the run with a structural error.
    """
    id: str = Field(default_factory=_new_id)
    name: str = Field(..., description="Workflow name")
    description: str = Field("", description="Free-text description")
    nodes: List[Node] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict, description="Workflow-level settings")
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        if not name or not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    def find_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing_connections(self, node_id: str) -> List[Connection]:
        return [conn for conn in self.connections if conn.source_node_id == node_id]

    def incoming_connections(self, node_id: str) -> List[Connection]:
        return [conn for conn in self.connections if conn.target_node_id == node_id]

    def trigger_nodes(self) -> List[Node]:
        """Nodes that no connection targets, in declaration order."""
        targeted = {conn.target_node_id for conn in self.connections}
        return [node for node in self.nodes if node.id not in targeted]

    def validate_structure(self) -> ValidationResult:
        """Check the graph is an executable DAG with consistent references."""
        errors = []
        warnings = []

        seen: Set[str] = set()
        duplicates = []
        for node in self.nodes:
            if node.id in seen:
                duplicates.append(node.id)
            seen.add(node.id)
        if duplicates:
            errors.append(f"Duplicate node IDs: {', '.join(sorted(set(duplicates)))}")

        for conn in self.connections:
            if conn.source_node_id not in seen:
                errors.append(
                    f"Connection {conn.id} references non-existent source node: {conn.source_node_id}"
                )
            if conn.target_node_id not in seen:
                errors.append(
                    f"Connection {conn.id} references non-existent target node: {conn.target_node_id}"
                )

        cycle = self.find_cycle()
        if cycle:
            errors.append(f"Workflow contains a cycle: {' -> '.join(cycle)}")

        if self.nodes and not self.trigger_nodes():
            errors.append("Workflow has no trigger node")

        isolated = self._find_isolated_nodes()
        if isolated and len(self.nodes) > 1:
            warnings.append(f"Isolated nodes detected: {', '.join(sorted(isolated))}")

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)

    def find_cycle(self) -> Optional[List[str]]:
        """Return one cycle as a list of node ids (first id repeated last), or None.

        Kahn's algorithm strips every node that can be ordered; whatever keeps
        a nonzero in-degree lies on or behind a cycle.
        """
        successors: Dict[str, List[str]] = {}
        predecessors: Dict[str, List[str]] = {}
        in_degree: Dict[str, int] = {node.id: 0 for node in self.nodes}
        for conn in self.connections:
            successors.setdefault(conn.source_node_id, []).append(conn.target_node_id)
            predecessors.setdefault(conn.target_node_id, []).append(conn.source_node_id)
            in_degree.setdefault(conn.source_node_id, 0)
            in_degree[conn.target_node_id] = in_degree.get(conn.target_node_id, 0) + 1

        ready = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
        while ready:
            node_id = ready.popleft()
            for target in successors.get(node_id, []):
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    ready.append(target)

        remaining = {node_id for node_id, degree in in_degree.items() if degree > 0}
        if not remaining:
            return None

        # Every remaining node has a remaining predecessor; walk back until one repeats.
        path: List[str] = []
        position: Dict[str, int] = {}
        current = min(remaining)
        while current not in position:
            position[current] = len(path)
            path.append(current)
            current = next(p for p in predecessors[current] if p in remaining)
        cycle = list(reversed(path[position[current]:]))
        first = cycle.index(min(cycle))
        cycle = cycle[first:] + cycle[:first]
        return cycle + [cycle[0]]

    def _find_isolated_nodes(self) -> Set[str]:
        connected = set()
        for conn in self.connections:
            connected.add(conn.source_node_id)
            connected.add(conn.target_node_id)
        return {node.id for node in self.nodes} - connected


class NodeExecution(BaseModel):
    """Record of one node's dispatch within a run."""
    node_id: str
    node_name: Optional[str] = None
    node_type: Optional[str] = None
    status: NodeExecutionStatus = NodeExecutionStatus.RUNNING
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class LogEntry(BaseModel):
    """Structured, append-only execution log entry."""
    id: str = Field(default_factory=_new_id)
    run_id: str = Field(..., description="ID of the execution run")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    level: LogLevel = LogLevel.INFO
    category: LogCategory = LogCategory.CUSTOM
    message: str = Field(..., description="Human-readable message")
    node_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class ExecutionRun(BaseModel):
    """A single execution of a workflow. Only the engine driving it mutates it."""
    id: str = Field(default_factory=_new_id)
    workflow_id: str
    status: ExecutionStatusEnum = ExecutionStatusEnum.PENDING
    trigger_node_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    error_node_id: Optional[str] = None
    node_executions: List[NodeExecution] = Field(default_factory=list)
    logs: List[LogEntry] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_ms(self) -> Optional[int]:
        if not self.started_at or not self.finished_at:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def node_execution(self, node_id: str) -> Optional[NodeExecution]:
        for record in self.node_executions:
            if record.node_id == node_id:
                return record
        return None


class WorkflowSummary(BaseModel):
    """Listing view of a stored workflow."""
    id: str
    name: str
    description: str = ""
    node_count: int = 0
    is_active: bool = True
    created_at: Optional[datetime] = None
