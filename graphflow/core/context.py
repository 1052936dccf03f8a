"""Per-run context handed to every executor."""

import threading
from typing import Any, Dict, List, Optional

from ..models.core import LogLevel, Workflow, ExecutionRun
from .credentials import CredentialProvider
from .exceptions import CredentialNotFoundError, NodeExecutionError
from .execution_logger import ExecutionLogger
from .logging import get_logger
from .settings import SettingsProvider
from .variables import VariableResolver

logger = get_logger(__name__)


class ExecutionContext:
    """Context for node execution: the run, its log, collaborators and cancellation.

    The log and the cancellation flag are the only members touched from more
    than one thread; everything else belongs to the worker driving the run.
    """

    def __init__(
        self,
        run: ExecutionRun,
        workflow: Workflow,
        execution_logger: ExecutionLogger,
        settings: Optional[SettingsProvider] = None,
        credentials: Optional[CredentialProvider] = None,
        resolver: Optional[VariableResolver] = None,
    ):
        self.run = run
        self.workflow = workflow
        self.logger = execution_logger
        self.settings = settings
        self.credentials = credentials
        self.resolver = resolver or VariableResolver()

        self._cancelled = threading.Event()
        self._processes: List[Any] = []
        self._process_lock = threading.Lock()
        self._node_inputs: Dict[str, List[Dict[str, Any]]] = {}
        self._node_credentials: Dict[str, str] = {}

    @property
    def run_id(self) -> str:
        return self.run.id

    @property
    def workflow_id(self) -> str:
        return self.workflow.id

    # Cancellation

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Raise the cooperative flag and kill any script process still running."""
        self._cancelled.set()
        with self._process_lock:
            processes = list(self._processes)
        for process in processes:
            self._kill(process)

    def register_process(self, process) -> None:
        with self._process_lock:
            self._processes.append(process)
        if self.is_cancelled():
            self._kill(process)

    def unregister_process(self, process) -> None:
        with self._process_lock:
            if process in self._processes:
                self._processes.remove(process)

    def _kill(self, process) -> None:
        # Imported here: scripting depends on core, not the other way round
        from ..scripting.process import kill_process
        logger.info(f"Killing script process {process.pid} of cancelled run {self.run_id}")
        kill_process(process)

    # Collaborators

    def get_decrypted_credential(self, credential_id: str) -> str:
        if self.credentials is None:
            raise CredentialNotFoundError(credential_id)
        return self.credentials.get_decrypted_data(credential_id)

    def credential_for(self, node) -> Optional[str]:
        """Decrypted credential data for ``node``, or None when it references none."""
        if not node.credential_id:
            return None
        if node.id in self._node_credentials:
            return self._node_credentials[node.id]
        try:
            data = self.get_decrypted_credential(node.credential_id)
        except CredentialNotFoundError as e:
            raise NodeExecutionError(
                f"Credential {node.credential_id} referenced by node {node.id} was not found",
                node_id=node.id,
                run_id=self.run_id,
            ) from e
        self._node_credentials[node.id] = data
        return data

    def log(self, level, message: str, node_id: Optional[str] = None, **context) -> None:
        """Custom run-log entry, as written by scripts and executors."""
        self.logger.custom(self.run_id, LogLevel(level), message, context=context, node_id=node_id)

    # Data delivered to nodes

    def record_input(self, node_id: str, data: Dict[str, Any]) -> None:
        self._node_inputs.setdefault(node_id, []).append(data)

    def inputs_for(self, node_id: str) -> List[Dict[str, Any]]:
        """Each map delivered to ``node_id`` by an incoming connection, in edge order."""
        return list(self._node_inputs.get(node_id, []))
