"""SQLAlchemy-backed repositories and collaborator stores."""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.credentials import CredentialProvider
from ..core.error_recovery import RetryConfig, with_retry
from ..core.exceptions import (
    CredentialNotFoundError,
    ExecutionNotFoundError,
    StorageError,
    WorkflowNotFoundError,
)
from ..core.logging import get_logger
from ..core.settings import SettingsProvider
from ..core.variables import VariableStore
from ..models.core import (
    ExecutionRun,
    ExecutionStatusEnum,
    LogCategory,
    LogEntry,
    LogLevel,
    NodeExecution,
    Workflow,
    WorkflowSummary,
)
from .database import SessionLocal, get_database_engine
from .models import (
    CredentialModel,
    ExecutionLogModel,
    ExecutionModel,
    SettingModel,
    VariableModel,
    WorkflowModel,
)

logger = get_logger(__name__)

_WRITE_RETRY = RetryConfig(max_attempts=3, base_delay=0.05)


class _Repository:
    """Session handling shared by the repositories.

    A repository either borrows a caller-owned session (request scope) or opens
    a short-lived one per operation, which keeps it usable from run threads.
    """

    table = ""

    def __init__(self, db_session: Optional[Session] = None, session_factory=None):
        self._db_session = db_session
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str):
        if self._db_session is not None:
            session, owned = self._db_session, False
        else:
            if self._session_factory is None:
                get_database_engine()
            session, owned = (self._session_factory or SessionLocal)(), True
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error during {operation} on {self.table}: {e}")
            raise StorageError(f"Failed to {operation}: {e}", operation=operation, table=self.table) from e
        except Exception:
            session.rollback()
            raise
        finally:
            if owned:
                session.close()


class WorkflowRepository(_Repository):
    """Stores workflow definitions as JSON documents."""

    table = "workflows"

    @with_retry(_WRITE_RETRY)
    def save(self, workflow: Workflow) -> Workflow:
        now = datetime.utcnow()
        definition = workflow.model_dump(mode="json", exclude={"created_at", "updated_at"})
        with self._session("save workflow") as db:
            model = db.get(WorkflowModel, workflow.id)
            if model is None:
                model = WorkflowModel(id=workflow.id, created_at=now)
                db.add(model)
            model.name = workflow.name
            model.description = workflow.description
            model.definition = definition
            model.is_active = workflow.is_active
            model.updated_at = now
            db.flush()
            saved = self._to_workflow(model)
        logger.info(f"Saved workflow '{workflow.name}' ({workflow.id})")
        return saved

    def get(self, workflow_id: str) -> Workflow:
        with self._session("get workflow") as db:
            model = db.get(WorkflowModel, workflow_id)
            if model is None:
                raise WorkflowNotFoundError(workflow_id)
            return self._to_workflow(model)

    def list(self) -> List[WorkflowSummary]:
        with self._session("list workflows") as db:
            models = db.query(WorkflowModel).order_by(WorkflowModel.created_at.desc()).all()
            return [
                WorkflowSummary(
                    id=model.id,
                    name=model.name,
                    description=model.description or "",
                    node_count=len((model.definition or {}).get("nodes", [])),
                    is_active=bool(model.is_active),
                    created_at=model.created_at,
                )
                for model in models
            ]

    @with_retry(_WRITE_RETRY)
    def delete(self, workflow_id: str) -> bool:
        with self._session("delete workflow") as db:
            model = db.get(WorkflowModel, workflow_id)
            if model is None:
                return False
            db.delete(model)
        logger.info(f"Deleted workflow {workflow_id}")
        return True

    @staticmethod
    def _to_workflow(model: WorkflowModel) -> Workflow:
        definition = dict(model.definition or {})
        definition.update(
            id=model.id,
            name=model.name,
            description=model.description or "",
            is_active=bool(model.is_active),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )
        return Workflow(**definition)


class ExecutionRepository(_Repository):
    """Stores finished execution runs and their log entries."""

    table = "executions"

    @with_retry(_WRITE_RETRY)
    def save_run(self, run: ExecutionRun) -> None:
        with self._session("save execution") as db:
            model = db.get(ExecutionModel, run.id)
            if model is None:
                model = ExecutionModel(id=run.id, workflow_id=run.workflow_id)
                db.add(model)
            model.status = run.status.value
            model.trigger_node_id = run.trigger_node_id
            model.input_data = run.input
            model.output_data = run.output
            model.node_executions = [record.model_dump(mode="json") for record in run.node_executions]
            model.error_message = run.error_message
            model.error_node_id = run.error_node_id
            model.started_at = run.started_at
            model.finished_at = run.finished_at

            db.query(ExecutionLogModel).filter(ExecutionLogModel.run_id == run.id).delete()
            for sequence, entry in enumerate(run.logs):
                db.add(ExecutionLogModel(
                    id=entry.id,
                    sequence=sequence,
                    run_id=run.id,
                    timestamp=entry.timestamp,
                    level=entry.level.value,
                    category=entry.category.value,
                    node_id=entry.node_id,
                    message=entry.message,
                    context=entry.context,
                ))
        logger.debug(f"Persisted execution {run.id} with {len(run.logs)} log entries")

    def get(self, run_id: str, include_logs: bool = True) -> ExecutionRun:
        with self._session("get execution") as db:
            model = db.get(ExecutionModel, run_id)
            if model is None:
                raise ExecutionNotFoundError(run_id)
            return self._to_run(model, include_logs)

    def list_for_workflow(self, workflow_id: Optional[str] = None, limit: int = 50) -> List[ExecutionRun]:
        with self._session("list executions") as db:
            query = db.query(ExecutionModel)
            if workflow_id:
                query = query.filter(ExecutionModel.workflow_id == workflow_id)
            models = query.order_by(ExecutionModel.started_at.desc()).limit(limit).all()
            return [self._to_run(model, include_logs=False) for model in models]

    def logs(self, run_id: str) -> List[LogEntry]:
        with self._session("get execution logs") as db:
            if db.get(ExecutionModel, run_id) is None:
                raise ExecutionNotFoundError(run_id)
            models = (
                db.query(ExecutionLogModel)
                .filter(ExecutionLogModel.run_id == run_id)
                .order_by(ExecutionLogModel.sequence)
                .all()
            )
            return [self._to_entry(model) for model in models]

    def _to_run(self, model: ExecutionModel, include_logs: bool) -> ExecutionRun:
        return ExecutionRun(
            id=model.id,
            workflow_id=model.workflow_id,
            status=ExecutionStatusEnum(model.status),
            trigger_node_id=model.trigger_node_id,
            started_at=model.started_at,
            finished_at=model.finished_at,
            input=model.input_data or {},
            output=model.output_data or {},
            error_message=model.error_message,
            error_node_id=model.error_node_id,
            node_executions=[NodeExecution(**record) for record in (model.node_executions or [])],
            logs=[self._to_entry(entry) for entry in model.logs] if include_logs else [],
        )

    @staticmethod
    def _to_entry(model: ExecutionLogModel) -> LogEntry:
        return LogEntry(
            id=model.id,
            run_id=model.run_id,
            timestamp=model.timestamp,
            level=LogLevel(model.level),
            category=LogCategory(model.category),
            node_id=model.node_id,
            message=model.message,
            context=model.context or {},
        )


class DatabaseVariableStore(_Repository, VariableStore):
    """Variables table; ``workflow_id`` NULL marks a global variable."""

    table = "variables"

    def get_global_variables(self) -> Dict[str, Any]:
        with self._session("read variables") as db:
            rows = db.query(VariableModel).filter(VariableModel.workflow_id.is_(None)).all()
            return {row.name: row.value for row in rows}

    def get_workflow_variables(self, workflow_id: str) -> Dict[str, Any]:
        with self._session("read variables") as db:
            rows = db.query(VariableModel).filter(VariableModel.workflow_id == workflow_id).all()
            return {row.name: row.value for row in rows}

    @with_retry(_WRITE_RETRY)
    def set_variable(self, name: str, value: Any, workflow_id: Optional[str] = None) -> None:
        with self._session("write variable") as db:
            row = self._find(db, name, workflow_id)
            if row is None:
                db.add(VariableModel(name=name, workflow_id=workflow_id, value=value))
            else:
                row.value = value
                row.updated_at = datetime.utcnow()

    @with_retry(_WRITE_RETRY)
    def delete_variable(self, name: str, workflow_id: Optional[str] = None) -> bool:
        with self._session("delete variable") as db:
            row = self._find(db, name, workflow_id)
            if row is None:
                return False
            db.delete(row)
            return True

    @staticmethod
    def _find(db: Session, name: str, workflow_id: Optional[str]) -> Optional[VariableModel]:
        query = db.query(VariableModel).filter(VariableModel.name == name)
        if workflow_id is None:
            query = query.filter(VariableModel.workflow_id.is_(None))
        else:
            query = query.filter(VariableModel.workflow_id == workflow_id)
        return query.first()


class DatabaseSettingsStore(_Repository, SettingsProvider):
    """Settings overrides in the database over a defaults map."""

    table = "settings"

    def __init__(self, defaults: Optional[Dict[str, Any]] = None,
                 db_session: Optional[Session] = None, session_factory=None):
        super().__init__(db_session=db_session, session_factory=session_factory)
        self._defaults = dict(defaults or {})

    def get_value(self, key: str, default: Any = None) -> Any:
        with self._session("read setting") as db:
            row = db.get(SettingModel, key)
            if row is not None:
                return row.value
        return self._defaults.get(key, default)

    @with_retry(_WRITE_RETRY)
    def set_value(self, key: str, value: Any) -> None:
        with self._session("write setting") as db:
            row = db.get(SettingModel, key)
            if row is None:
                db.add(SettingModel(key=key, value=value))
            else:
                row.value = value
                row.updated_at = datetime.utcnow()
        logger.info(f"Setting {key} updated")

    def all_settings(self) -> Dict[str, Any]:
        merged = dict(self._defaults)
        with self._session("read settings") as db:
            merged.update({row.key: row.value for row in db.query(SettingModel).all()})
        return merged


class DatabaseCredentialStore(_Repository, CredentialProvider):
    """Credential payloads stored as provided."""

    table = "credentials"

    @with_retry(_WRITE_RETRY)
    def add(self, credential_id: str, data: str, name: Optional[str] = None,
            credential_type: Optional[str] = None) -> None:
        try:
            with self._session("store credential") as db:
                row = db.get(CredentialModel, credential_id)
                if row is None:
                    db.add(CredentialModel(id=credential_id, name=name or credential_id,
                                           credential_type=credential_type, data=data))
                else:
                    row.data = data
                    row.updated_at = datetime.utcnow()
        except StorageError as e:
            if isinstance(e.__cause__, IntegrityError):
                e.recoverable = False
            raise

    def get_decrypted_data(self, credential_id: str) -> str:
        with self._session("read credential") as db:
            row = db.get(CredentialModel, credential_id)
            if row is None:
                raise CredentialNotFoundError(credential_id)
            return row.data
