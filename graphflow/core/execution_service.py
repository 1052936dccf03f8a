"""Execution service: runs stored workflows and persists what they produce."""

from concurrent.futures import Future
from typing import Any, Dict, List, Optional

from ..models.core import ExecutionRun, LogEntry
from .exceptions import ExecutionEngineError, StorageError
from .execution_engine import ExecutionEngine
from .execution_logger import filter_entries, summarize_entries
from .logging import get_logger

logger = get_logger(__name__)


class ExecutionService:
    """Binds an engine to a workflow repository and an execution repository.

    Every run that reaches a terminal status is written to the execution
    repository together with its log; the run's in-memory log is then released.
    """

    def __init__(self, engine: ExecutionEngine, workflows, executions):
        self.engine = engine
        self.workflows = workflows
        self.executions = executions
        engine.add_run_listener(self._persist)

    def execute(self, workflow_id: str, input_data: Optional[Dict[str, Any]] = None,
                trigger_node_id: Optional[str] = None) -> ExecutionRun:
        """Run a stored workflow to completion on the calling thread."""
        workflow = self._runnable_workflow(workflow_id)
        logger.info(f"Executing workflow {workflow_id} synchronously")
        return self.engine.run(workflow, input_data, trigger_node_id)

    def execute_async(self, workflow_id: str, input_data: Optional[Dict[str, Any]] = None,
                      trigger_node_id: Optional[str] = None,
                      run_id: Optional[str] = None) -> "Future[ExecutionRun]":
        """Submit a stored workflow; the run id is available via ``get_execution`` at once."""
        workflow = self._runnable_workflow(workflow_id)
        logger.info(f"Executing workflow {workflow_id} in the background")
        return self.engine.run_async(workflow, input_data, trigger_node_id, run_id)

    def cancel(self, run_id: str) -> bool:
        return self.engine.cancel(run_id)

    def get_execution(self, run_id: str) -> ExecutionRun:
        run = self.engine.get_run(run_id)
        if run is not None:
            return run
        return self.executions.get(run_id)

    def list_executions(self, workflow_id: Optional[str] = None, limit: int = 50) -> List[ExecutionRun]:
        return self.executions.list_for_workflow(workflow_id, limit)

    def get_logs(self, run_id: str, min_level: Optional[str] = None,
                 category: Optional[str] = None) -> List[LogEntry]:
        return filter_entries(self._entries(run_id), min_level, category)

    def get_summary(self, run_id: str) -> Dict[str, Any]:
        return summarize_entries(run_id, self._entries(run_id))

    def _entries(self, run_id: str) -> List[LogEntry]:
        run = self.engine.get_run(run_id)
        if run is None:
            return self.executions.logs(run_id)
        if run.is_terminal:
            return list(run.logs)
        return self.engine.execution_logger.entries(run_id)

    def _runnable_workflow(self, workflow_id: str):
        workflow = self.workflows.get(workflow_id)
        if not workflow.is_active:
            raise ExecutionEngineError(f"Workflow {workflow_id} is not active", workflow_id=workflow_id)
        return workflow

    def _persist(self, run: ExecutionRun) -> None:
        try:
            self.executions.save_run(run)
        except StorageError as e:
            logger.error(f"Could not persist execution {run.id}: {e.message}")
            return
        self.engine.execution_logger.clear(run.id)

