"""Exception hierarchy for graphflow with structured error details."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    SCRIPT = "script"
    STORAGE = "storage"
    CONFIGURATION = "configuration"
    RESOURCE = "resource"
    NOT_FOUND = "not_found"


class WorkflowEngineError(Exception):
    """Base exception for all graphflow errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class StructuralError(WorkflowEngineError):
    """Raised when a workflow is not an executable DAG. The run never starts."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class NodeExecutionError(WorkflowEngineError):
    """Raised by an executor when a node fails."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        run_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        super().__init__(message, **kwargs)
        self.node_id = node_id
        if node_id:
            self.add_context(node_id=node_id)
        if run_id:
            self.add_context(run_id=run_id)


class ScriptExecutionError(NodeExecutionError):
    """Raised when user script code fails in any script runtime.

    ``line_number`` is best effort and already adjusted for wrapper lines.
    """

    def __init__(
        self,
        message: str,
        language: str,
        code: Optional[str] = None,
        line_number: Optional[int] = None,
        cause: Optional[BaseException] = None,
        **kwargs
    ):
        kwargs.setdefault("category", ErrorCategory.SCRIPT)
        super().__init__(message, **kwargs)
        self.language = language
        self.code = code
        self.line_number = line_number
        self.cause = cause
        self.add_details(language=language)
        if line_number is not None:
            self.add_details(line_number=line_number)

    @property
    def detailed_message(self) -> str:
        text = f"{self.language} execution error: {self.message}"
        if self.line_number is not None:
            text += f" (line {self.line_number})"
        if self.cause is not None and str(self.cause) and str(self.cause) != self.message:
            text += f"\nCaused by: {self.cause}"
        return text


class ScriptTimeoutError(ScriptExecutionError):
    """Raised when a subprocess script exceeds its time limit and is killed."""

    def __init__(self, language: str, timeout_ms: int, code: Optional[str] = None, **kwargs):
        super().__init__(
            f"Script execution timed out after {timeout_ms}ms",
            language=language,
            code=code,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.RESOURCE,
            **kwargs
        )
        self.timeout_ms = timeout_ms
        self.add_details(timeout_ms=timeout_ms)


class AvailabilityError(NodeExecutionError):
    """Raised when a requested script runtime is not usable on this host."""

    def __init__(self, language: str, info: str, **kwargs):
        super().__init__(
            f"Script runtime '{language}' is not available: {info}",
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        self.language = language
        self.info = info
        self.add_details(language=language, availability_info=info)


class ExecutorRegistryError(WorkflowEngineError):
    """Raised when executor or strategy registry operations fail."""

    def __init__(
        self,
        message: str,
        node_type: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if node_type:
            self.add_context(node_type=node_type)
        if operation:
            self.add_context(operation=operation)


class ExecutionEngineError(WorkflowEngineError):
    """Raised when execution engine operations fail outside a run."""

    def __init__(
        self,
        message: str,
        run_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        if run_id:
            self.add_context(run_id=run_id)
        if workflow_id:
            self.add_context(workflow_id=workflow_id)


class StorageError(WorkflowEngineError):
    """Raised when storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class TransientError(WorkflowEngineError):
    """Raised for transient errors that should be retried."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            **kwargs
        )


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


class NotFoundError(WorkflowEngineError):
    """Base class for lookups that found nothing."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.NOT_FOUND,
            **kwargs
        )


class WorkflowNotFoundError(NotFoundError):
    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow {workflow_id} not found", context={"workflow_id": workflow_id})


class ExecutionNotFoundError(NotFoundError):
    def __init__(self, run_id: str):
        super().__init__(f"Execution {run_id} not found", context={"run_id": run_id})


class CredentialNotFoundError(NotFoundError):
    def __init__(self, credential_id: str):
        super().__init__(
            f"Credential {credential_id} not found",
            context={"credential_id": credential_id}
        )


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
