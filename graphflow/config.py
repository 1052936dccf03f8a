"""Configuration management for graphflow."""

import os
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Process logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class ExecutionMode(str, Enum):
    """How a script language is run."""
    EMBEDDED = "embedded"
    EXTERNAL = "external"
    AUTO = "auto"


ENV_PREFIX = "GRAPHFLOW_"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="graphflow", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./graphflow.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Execution engine settings
    max_concurrent_executions: int = Field(
        default=10,
        description="Maximum number of concurrent workflow executions"
    )
    default_node_timeout_ms: int = Field(
        default=30000,
        description="Default node timeout in milliseconds"
    )

    # Scripting settings
    python_execution_mode: ExecutionMode = Field(default=ExecutionMode.EMBEDDED)
    javascript_execution_mode: ExecutionMode = Field(default=ExecutionMode.EMBEDDED)
    python_external_path: str = Field(default="", description="Interpreter for external Python scripts")
    python_venv_path: str = Field(default="", description="Virtual environment activated for external Python")
    node_external_path: str = Field(default="", description="Node.js executable for external JavaScript")
    python_timeout_ms: int = Field(default=60000, description="External Python timeout in milliseconds")
    script_timeout_ms: int = Field(default=60000, description="JavaScript timeout in milliseconds")

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")
    log_structured: bool = Field(default=False, description="Emit JSON log lines")

    # Security settings
    cors_origins: list = Field(
        default=["*"],
        description="CORS allowed origins"
    )

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('max_concurrent_executions')
    @classmethod
    def validate_max_concurrent_executions(cls, v):
        if v < 1:
            raise ValueError("Maximum concurrent executions must be at least 1")
        return v

    @field_validator('default_node_timeout_ms', 'python_timeout_ms', 'script_timeout_ms')
    @classmethod
    def validate_timeouts(cls, v):
        if v < 1:
            raise ValueError("Timeout must be at least 1 millisecond")
        return v

    @property
    def database_type(self) -> DatabaseType:
        scheme = self.database_url.split('://')[0].lower()
        if scheme.startswith('sqlite'):
            return DatabaseType.SQLITE
        elif scheme.startswith('postgresql'):
            return DatabaseType.POSTGRESQL
        elif scheme.startswith('mysql'):
            return DatabaseType.MYSQL
        raise ValueError(f"Unknown database type: {scheme}")

    @property
    def is_sqlite(self) -> bool:
        return self.database_type == DatabaseType.SQLITE

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    def settings_defaults(self) -> Dict[str, Any]:
        """Dotted settings keys read by the engine, seeded from this configuration."""
        return {
            "execution.defaultTimeout": self.default_node_timeout_ms,
            "execution.maxParallel": self.max_concurrent_executions,
            "python.executionMode": self.python_execution_mode.value,
            "python.externalPath": self.python_external_path,
            "python.venvPath": self.python_venv_path,
            "python.timeout": self.python_timeout_ms,
            "javascript.executionMode": self.javascript_execution_mode.value,
            "node.externalPath": self.node_external_path,
            "advanced.scriptTimeout": self.script_timeout_ms,
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from ``GRAPHFLOW_*`` environment variables."""
        def get_env(key: str, default=None, type_func=str):
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return value.split(',') if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "graphflow"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            database_url=get_env("DATABASE_URL", "sqlite:///./graphflow.db"),
            database_echo=get_env("DATABASE_ECHO", False, bool),
            max_concurrent_executions=get_env("MAX_CONCURRENT_EXECUTIONS", 10, int),
            default_node_timeout_ms=get_env("DEFAULT_NODE_TIMEOUT_MS", 30000, int),
            python_execution_mode=ExecutionMode(get_env("PYTHON_EXECUTION_MODE", "embedded").lower()),
            javascript_execution_mode=ExecutionMode(get_env("JAVASCRIPT_EXECUTION_MODE", "embedded").lower()),
            python_external_path=get_env("PYTHON_EXTERNAL_PATH", ""),
            python_venv_path=get_env("PYTHON_VENV_PATH", ""),
            node_external_path=get_env("NODE_EXTERNAL_PATH", ""),
            python_timeout_ms=get_env("PYTHON_TIMEOUT_MS", 60000, int),
            script_timeout_ms=get_env("SCRIPT_TIMEOUT_MS", 60000, int),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=get_env("LOG_FILE", None),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            log_structured=get_env("LOG_STRUCTURED", False, bool),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
        )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load a ``.env`` file (if present) into the environment, then build the configuration."""
    global _config
    from dotenv import load_dotenv

    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = AppConfig.from_env()
    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """Create missing database and log directories; raise ValueError on problems."""
    errors = []

    if config.is_sqlite and ":memory:" not in config.database_url:
        db_path = config.database_url.split(":///", 1)[-1]
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create database directory {db_dir}: {e}")

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.python_venv_path and not os.path.isdir(config.python_venv_path):
        errors.append(f"Python virtual environment {config.python_venv_path} does not exist")

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


# Environment-specific configurations
def get_development_config() -> AppConfig:
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        database_echo=True,
    )


def get_production_config() -> AppConfig:
    return AppConfig(
        debug=False,
        reload=False,
        log_level=LogLevel.INFO,
        database_echo=False,
        cors_origins=[]
    )


def get_testing_config() -> AppConfig:
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        max_concurrent_executions=2,
        python_timeout_ms=10000,
        script_timeout_ms=10000,
    )
