"""SQLAlchemy database models for graphflow."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .database import Base


class WorkflowModel(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    definition = Column(JSON, nullable=False)  # nodes, connections and settings
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    executions = relationship("ExecutionModel", back_populates="workflow", cascade="all, delete-orphan")


class ExecutionModel(Base):
    """Database model for execution runs."""
    __tablename__ = "executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    status = Column(String, nullable=False)  # pending, running, success, failed, cancelled
    trigger_node_id = Column(String)
    input_data = Column(JSON)
    output_data = Column(JSON)
    node_executions = Column(JSON)
    error_message = Column(Text)
    error_node_id = Column(String)
    started_at = Column(DateTime, default=datetime.utcnow)
    finished_at = Column(DateTime)

    workflow = relationship("WorkflowModel", back_populates="executions")
    logs = relationship("ExecutionLogModel", back_populates="execution", cascade="all, delete-orphan",
                        order_by="ExecutionLogModel.sequence")


class ExecutionLogModel(Base):
    """Database model for execution log entries."""
    __tablename__ = "execution_logs"

    id = Column(String, primary_key=True)
    sequence = Column(Integer, nullable=False)  # emission order within the run
    run_id = Column(String, ForeignKey("executions.id"), nullable=False, index=True)
    timestamp = Column(DateTime, default=datetime.utcnow)
    level = Column(String, nullable=False)
    category = Column(String, nullable=False)
    node_id = Column(String)
    message = Column(Text, nullable=False)
    context = Column(JSON)

    execution = relationship("ExecutionModel", back_populates="logs")


class VariableModel(Base):
    """Global (workflow_id is NULL) or workflow-scoped variable."""
    __tablename__ = "variables"
    __table_args__ = (UniqueConstraint("name", "workflow_id", name="uq_variable_scope"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    workflow_id = Column(String, nullable=True)
    value = Column(JSON)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SettingModel(Base):
    """Database model for settings overrides."""
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(JSON)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CredentialModel(Base):
    """Database model for credentials."""
    __tablename__ = "credentials"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    credential_type = Column(String)
    data = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
