"""Execution Engine for workflow processing."""

import threading
import time
import uuid
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from ..executors.base import BRANCH_KEY
from ..models.core import (
    Connection,
    ExecutionRun,
    ExecutionStatusEnum,
    Node,
    NodeExecution,
    NodeExecutionStatus,
    Workflow,
)
from .context import ExecutionContext
from .credentials import CredentialProvider
from .exceptions import (
    ExecutionEngineError,
    NodeExecutionError,
    ScriptExecutionError,
    StructuralError,
    WorkflowEngineError,
)
from .execution_logger import ExecutionLogger, ProcessLogHandler
from .logging import get_logger, logging_context
from .registry import NodeExecutorRegistry
from .settings import SettingsProvider
from .variables import VariableResolver, VariableStore

logger = get_logger(__name__)

RunListener = Callable[[ExecutionRun], None]

DISABLED_REASON = "Node is disabled"
CANCELLED_MESSAGE = "Execution cancelled"


class _RunCancelled(Exception):
    """Raised inside a run when the cooperative cancellation flag is observed."""


class _Traversal:
    """Dependency bookkeeping for one run over the workflow DAG.

    A node becomes ready once every incoming connection is settled and at
    least one of them delivered data. A node whose incoming connections were
    all pruned is pruned too, and so are its outgoing connections.
    """

    def __init__(self, workflow: Workflow, start_node_ids: List[str]):
        self.nodes: Dict[str, Node] = {node.id: node for node in workflow.nodes}
        self.incoming: Dict[str, List[Connection]] = {node_id: [] for node_id in self.nodes}
        self.outgoing: Dict[str, List[Connection]] = {node_id: [] for node_id in self.nodes}
        for conn in workflow.connections:
            self.outgoing[conn.source_node_id].append(conn)
            self.incoming[conn.target_node_id].append(conn)

        self.start_node_ids = set(start_node_ids)
        self.remaining = {node_id: len(conns) for node_id, conns in self.incoming.items()}
        self.delivered: Dict[str, Dict[str, Any]] = {}
        self.pruned: Set[str] = set()
        self.ready = deque()
        self._to_prune = deque()

        for node in workflow.nodes:
            if self.remaining[node.id]:
                continue
            if node.id in self.start_node_ids:
                self.ready.append(node.id)
            else:
                self._to_prune.append(node.id)

    def settle(self, conn: Connection, data: Optional[Dict[str, Any]]) -> None:
        if data is not None:
            self.delivered[conn.id] = data
        target = conn.target_node_id
        self.remaining[target] -= 1
        if self.remaining[target] == 0:
            if any(c.id in self.delivered for c in self.incoming[target]):
                self.ready.append(target)
            else:
                self._to_prune.append(target)

    def propagate_pruning(self) -> None:
        while self._to_prune:
            node_id = self._to_prune.popleft()
            self.pruned.add(node_id)
            for conn in self.outgoing[node_id]:
                self.settle(conn, None)

    def next_ready(self) -> Optional[str]:
        self.propagate_pruning()
        return self.ready.popleft() if self.ready else None

    def inputs_for(self, node_id: str) -> List[Dict[str, Any]]:
        """Delivered maps for ``node_id`` in connection declaration order."""
        return [self.delivered[c.id] for c in self.incoming[node_id] if c.id in self.delivered]


class ExecutionEngine:
    """Engine executing workflow DAGs: dependency order, branch pruning, cancellation.

    Runs started with ``run`` execute on the calling thread; ``run_async``
    submits them to a thread pool of ``max_concurrent_executions`` workers.
    Every run gets its own ``ExecutionContext``; the execution logger is the
    only object shared between runs.
    """

    def __init__(
        self,
        registry: NodeExecutorRegistry,
        variable_store: Optional[VariableStore] = None,
        settings: Optional[SettingsProvider] = None,
        credentials: Optional[CredentialProvider] = None,
        execution_logger: Optional[ExecutionLogger] = None,
        max_concurrent_executions: int = 10,
        history_limit: int = 1000,
    ):
        """Initialize the execution engine.

        Args:
            registry: Node executor registry used for dispatch
            variable_store: Source of global and workflow variables
            settings: Settings collaborator handed to executors
            credentials: Credential collaborator, consulted at dispatch time
            execution_logger: Run log sink (a process-logging one is created if omitted)
            max_concurrent_executions: Worker threads for asynchronous runs
            history_limit: Finished runs kept in memory for ``get_run``
        """
        self.registry = registry
        self.resolver = VariableResolver(variable_store)
        self.settings = settings
        self.credentials = credentials
        self.execution_logger = execution_logger or ExecutionLogger(handlers=[ProcessLogHandler()])

        self._max_concurrent_executions = max_concurrent_executions
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_executions,
            thread_name_prefix="graphflow-run",
        )
        self._contexts: Dict[str, ExecutionContext] = {}
        self._futures: Dict[str, Future] = {}
        self._runs: Dict[str, ExecutionRun] = {}
        self._finished_order = deque()
        self._history_limit = history_limit
        self._listeners: List[RunListener] = []
        self._lock = threading.RLock()
        self._shutdown = False

        logger.info(f"ExecutionEngine initialized with max_concurrent_executions={max_concurrent_executions}")

    # Public API

    def validate(self, workflow: Workflow) -> None:
        """Raise ``StructuralError`` unless the workflow is an executable DAG."""
        result = workflow.validate_structure()
        if not result.is_valid:
            raise StructuralError(
                f"Workflow {workflow.id} is not executable: {'; '.join(result.errors)}",
                validation_errors=result.errors,
                workflow_id=workflow.id,
            )

    def run(
        self,
        workflow: Workflow,
        input_data: Optional[Dict[str, Any]] = None,
        trigger_node_id: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> ExecutionRun:
        """Execute ``workflow`` on the calling thread and return the finished run.

        Raises:
            StructuralError: If the workflow is not a valid DAG (the run never starts)
            ExecutionEngineError: If ``trigger_node_id`` is not a trigger node
        """
        context = self._prepare(workflow, input_data, trigger_node_id, run_id)
        return self._execute(context, input_data or {})

    def run_async(
        self,
        workflow: Workflow,
        input_data: Optional[Dict[str, Any]] = None,
        trigger_node_id: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> "Future[ExecutionRun]":
        """Submit a run to the worker pool; the future resolves to the finished run."""
        if self._shutdown:
            raise ExecutionEngineError("Execution engine is shut down", workflow_id=workflow.id)
        context = self._prepare(workflow, input_data, trigger_node_id, run_id)
        future = self._executor.submit(self._execute, context, dict(input_data or {}))
        with self._lock:
            self._futures[context.run_id] = future
        future.add_done_callback(lambda _: self._forget_future(context.run_id))
        return future

    def cancel(self, run_id: str) -> bool:
        """Request cancellation. Returns False when the run is unknown or already finished."""
        with self._lock:
            context = self._contexts.get(run_id)
        if context is None or context.run.is_terminal:
            logger.warning(f"Attempted to cancel non-active execution: {run_id}")
            return False
        logger.info(f"Cancelling execution {run_id}")
        context.cancel()
        return True

    def get_run(self, run_id: str) -> Optional[ExecutionRun]:
        with self._lock:
            return self._runs.get(run_id)

    def active_runs(self) -> List[str]:
        with self._lock:
            return [run_id for run_id, context in self._contexts.items() if not context.run.is_terminal]

    def is_active(self, run_id: str) -> bool:
        return run_id in self.active_runs()

    def add_run_listener(self, listener: RunListener) -> None:
        """Call ``listener(run)`` after every run reaches a terminal status."""
        with self._lock:
            self._listeners.append(listener)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            active = [run_id for run_id, context in self._contexts.items() if not context.run.is_terminal]
            return {
                "active_executions": len(active),
                "active_run_ids": active,
                "max_concurrent_executions": self._max_concurrent_executions,
                "pending_futures": sum(1 for future in self._futures.values() if not future.running()),
                "runs_in_history": len(self._runs),
            }

    def shutdown(self, wait: bool = True) -> None:
        """Cancel active runs and stop the worker pool."""
        self._shutdown = True
        for run_id in self.active_runs():
            self.cancel(run_id)
        self._executor.shutdown(wait=wait)
        logger.info("ExecutionEngine shutdown completed")

    # Run setup

    def _prepare(
        self,
        workflow: Workflow,
        input_data: Optional[Dict[str, Any]],
        trigger_node_id: Optional[str],
        run_id: Optional[str],
    ) -> ExecutionContext:
        self.validate(workflow)
        if trigger_node_id is not None:
            trigger_ids = {node.id for node in workflow.trigger_nodes()}
            if trigger_node_id not in trigger_ids:
                raise ExecutionEngineError(
                    f"Node {trigger_node_id} is not a trigger node of workflow {workflow.id}",
                    workflow_id=workflow.id,
                )

        run = ExecutionRun(
            id=run_id or str(uuid.uuid4()),
            workflow_id=workflow.id,
            trigger_node_id=trigger_node_id,
            input=dict(input_data or {}),
        )
        context = ExecutionContext(
            run=run,
            workflow=workflow,
            execution_logger=self.execution_logger,
            settings=self.settings,
            credentials=self.credentials,
            resolver=self.resolver,
        )
        with self._lock:
            if run.id in self._runs or run.id in self._contexts:
                raise ExecutionEngineError(f"Run id {run.id} is already in use", run_id=run.id)
            self._contexts[run.id] = context
            self._runs[run.id] = run
        return context

    # Run body

    def _execute(self, context: ExecutionContext, input_data: Dict[str, Any]) -> ExecutionRun:
        """Drive one run to a terminal status. No exception escapes this method."""
        run = context.run
        workflow = context.workflow
        run.status = ExecutionStatusEnum.RUNNING
        run.started_at = datetime.utcnow()

        with logging_context(run_id=run.id, workflow_id=workflow.id):
            self.execution_logger.start_execution(run.id, workflow.id, workflow.name, input_data)
            try:
                run.output = self._traverse(context, input_data)
                run.status = ExecutionStatusEnum.SUCCESS
            except _RunCancelled:
                run.status = ExecutionStatusEnum.CANCELLED
                run.error_message = CANCELLED_MESSAGE
            except NodeExecutionError as e:
                if context.is_cancelled():
                    run.status = ExecutionStatusEnum.CANCELLED
                    run.error_message = CANCELLED_MESSAGE
                else:
                    run.status = ExecutionStatusEnum.FAILED
                    run.error_message = error_text(e)
                run.error_node_id = e.node_id
            except Exception as e:
                logger.exception(f"Workflow execution failed for run {run.id}")
                run.status = ExecutionStatusEnum.FAILED
                run.error_message = f"{type(e).__name__}: {e}"
                self.execution_logger.error(run.id, e)
            finally:
                run.finished_at = datetime.utcnow()
                self.execution_logger.end_execution(
                    run.id,
                    success=run.status == ExecutionStatusEnum.SUCCESS,
                    status=run.status.value,
                    duration_ms=run.duration_ms,
                    output=run.output,
                )
                run.logs = self.execution_logger.entries(run.id)
                self._finish(context)

        logger.info(f"Workflow execution {run.id} finished with status {run.status.value}")
        return run

    def _traverse(self, context: ExecutionContext, input_data: Dict[str, Any]) -> Dict[str, Any]:
        workflow = context.workflow
        if context.run.trigger_node_id is not None:
            start_ids = [context.run.trigger_node_id]
        else:
            start_ids = [node.id for node in workflow.trigger_nodes()]

        traversal = _Traversal(workflow, start_ids)
        executed: List[str] = []
        outputs: Dict[str, Dict[str, Any]] = {}
        forwarded: Set[str] = set()

        while True:
            node_id = traversal.next_ready()
            if node_id is None:
                break
            if context.is_cancelled():
                raise _RunCancelled()

            node = traversal.nodes[node_id]
            if node_id in traversal.start_node_ids:
                node_input = dict(input_data)
                context.record_input(node_id, node_input)
            else:
                node_input = {}
                for data in traversal.inputs_for(node_id):
                    context.record_input(node_id, data)
                    node_input.update(data)

            output, routes = self._dispatch(context, node, node_input)
            executed.append(node_id)
            outputs[node_id] = output

            branch = output.get(BRANCH_KEY) if routes else None
            for conn in traversal.outgoing[node_id]:
                if branch is None or conn.is_unlabelled or conn.matches_branch(str(branch)):
                    self.execution_logger.data_flow(
                        context.run_id, node_id, conn.target_node_id, conn.id,
                        branch=str(branch) if branch is not None else None,
                    )
                    traversal.settle(conn, output)
                    forwarded.add(node_id)
                else:
                    traversal.settle(conn, None)

        # Terminal nodes: executed nodes that passed data to nobody
        result: Dict[str, Any] = {}
        for node_id in executed:
            if node_id not in forwarded:
                result.update(outputs[node_id])
        return result

    def _dispatch(self, context: ExecutionContext, node: Node, node_input: Dict[str, Any]):
        """Run one node. Returns ``(output, routes_branches)``."""
        run_id = context.run_id
        record = NodeExecution(node_id=node.id, node_name=node.name, node_type=node.type)
        context.run.node_executions.append(record)

        if node.disabled:
            self.execution_logger.node_skip(run_id, node, DISABLED_REASON)
            record.status = NodeExecutionStatus.SKIPPED
            record.output = dict(node_input)
            record.finished_at = datetime.utcnow()
            return dict(node_input), False

        self.execution_logger.node_start(run_id, node)
        self.execution_logger.node_input(run_id, node, node_input)
        started = time.monotonic()
        with logging_context(run_id=run_id, workflow_id=context.workflow_id, node_id=node.id):
            try:
                executor = self._executor_for(node)
                resolved = node.model_copy(update={"parameters": self._resolve_parameters(context, node)})
                # Fetched and cached before dispatch so a missing credential fails here
                context.credential_for(resolved)
                output = executor.execute(resolved, dict(node_input), context)
                if output is None:
                    output = {}
                if not isinstance(output, dict):
                    raise NodeExecutionError(
                        f"Executor for '{node.type}' returned {type(output).__name__}, expected a map",
                        node_id=node.id,
                    )
            except Exception as e:
                error = as_node_error(e, node, run_id)
                duration_ms = int((time.monotonic() - started) * 1000)
                record.status = NodeExecutionStatus.FAILED
                record.error = error_text(error)
                record.finished_at = datetime.utcnow()
                self.execution_logger.node_end(run_id, node, duration_ms, success=False)
                self.execution_logger.error(run_id, error, node)
                if error is e:
                    raise
                raise error from e

        duration_ms = int((time.monotonic() - started) * 1000)
        record.status = NodeExecutionStatus.SUCCESS
        record.output = output
        record.finished_at = datetime.utcnow()
        self.execution_logger.node_output(run_id, node, output)
        self.execution_logger.node_end(run_id, node, duration_ms, success=True)
        self.execution_logger.performance(run_id, "node_duration", duration_ms, node_id=node.id)
        return output, bool(getattr(executor, "routes_branches", False))

    def _executor_for(self, node: Node):
        try:
            return self.registry.get(node.type)
        except WorkflowEngineError as e:
            raise NodeExecutionError(e.message, node_id=node.id) from e

    def _resolve_parameters(self, context: ExecutionContext, node: Node) -> Dict[str, Any]:
        names = VariableResolver.referenced_names(node.parameters)
        if not names:
            return dict(node.parameters)
        variables = self.resolver.variables_for(context.workflow_id)
        for name in sorted(names):
            if name in variables:
                self.execution_logger.variable(context.run_id, name, variables[name], "resolved", node.id)
            else:
                self.execution_logger.variable(context.run_id, name, None, "unresolved", node.id)
        return self.resolver.resolve(node.parameters, variables)

    # Run teardown

    def _finish(self, context: ExecutionContext) -> None:
        run = context.run
        with self._lock:
            self._contexts.pop(run.id, None)
            self._finished_order.append(run.id)
            while len(self._finished_order) > self._history_limit:
                self._runs.pop(self._finished_order.popleft(), None)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(run)
            except Exception as e:
                logger.error(f"Run listener {listener!r} failed for run {run.id}: {e}")

    def _forget_future(self, run_id: str) -> None:
        with self._lock:
            self._futures.pop(run_id, None)


def as_node_error(exc: BaseException, node: Node, run_id: str) -> NodeExecutionError:
    """The ``NodeExecutionError`` recorded for a node that raised ``exc``."""
    if isinstance(exc, NodeExecutionError):
        if exc.node_id is None:
            exc.node_id = node.id
            exc.add_context(node_id=node.id)
        exc.add_context(run_id=run_id)
        return exc
    if isinstance(exc, WorkflowEngineError):
        return NodeExecutionError(exc.message, node_id=node.id, run_id=run_id, details=dict(exc.details))
    return NodeExecutionError(f"{type(exc).__name__}: {exc}", node_id=node.id, run_id=run_id)


def error_text(error: BaseException) -> str:
    """Message recorded on the run: the error message plus the script line when known."""
    message = error.message if isinstance(error, WorkflowEngineError) else str(error)
    if isinstance(error, ScriptExecutionError) and error.line_number is not None:
        return f"{message} (line {error.line_number})"
    return message
