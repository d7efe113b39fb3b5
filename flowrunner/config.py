"""Configuration management for the workflow runner."""

import os
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TraversalMode(str, Enum):
    """How the engine chooses the next node to run.

    ``declaration`` visits nodes in list order and ignores edges.
    ``graph`` follows edges, taking the branch chosen by each decision node.
    """
    DECLARATION = "declaration"
    GRAPH = "graph"


class ConditionMode(str, Enum):
    """How decision nodes turn their condition into a boolean."""
    RANDOM = "random"
    EXPRESSION = "expression"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="Flowrunner", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Origins allowed to call the API")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./flowrunner.db",
        description="Database connection URL"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Execution engine settings
    max_concurrent_runs: int = Field(
        default=10,
        description="Maximum number of background runs executing at once"
    )
    api_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for the outbound call of an API node"
    )
    traversal_mode: TraversalMode = Field(
        default=TraversalMode.DECLARATION,
        description="Node traversal policy"
    )
    condition_mode: ConditionMode = Field(
        default=ConditionMode.RANDOM,
        description="Decision node condition evaluation policy"
    )
    decision_seed: Optional[int] = Field(
        default=None,
        description="Seed for random decision evaluation"
    )
    max_node_visits: int = Field(
        default=1000,
        description="Visits allowed per node before a graph traversal is treated as a runaway loop"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: Optional[str] = Field(default=None, description="Log message format")
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")
    log_structured: bool = Field(default=False, description="Emit JSON log lines")

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
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('max_concurrent_runs', 'max_node_visits')
    @classmethod
    def validate_positive(cls, v):
        """Validate limits are at least one."""
        if v < 1:
            raise ValueError("Limit must be at least 1")
        return v

    @field_validator('api_timeout')
    @classmethod
    def validate_api_timeout(cls, v):
        """Validate the API node timeout."""
        if v <= 0:
            raise ValueError("API timeout must be positive")
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.lower().startswith("sqlite")

    def get_database_connect_args(self) -> Dict[str, Any]:
        """Get database connection arguments based on database type."""
        if self.is_sqlite:
            return {"check_same_thread": False}
        return {}

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level.value.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """
        Create configuration from environment variables.

        Raises:
            ConfigurationError: If a FLOWRUNNER_* variable holds an invalid value
        """
        from .core.exceptions import ConfigurationError

        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"FLOWRUNNER_{key}")
            if value is None or value == "":
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            try:
                return type_func(value)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for FLOWRUNNER_{key}: {value!r}",
                    config_key=f"FLOWRUNNER_{key}"
                )

        def split_list(value: str) -> List[str]:
            return [item.strip() for item in value.split(",") if item.strip()]

        try:
            return cls(
                app_name=get_env("APP_NAME", "Flowrunner"),
                app_version=get_env("APP_VERSION", "1.0.0"),
                debug=get_env("DEBUG", False, bool),
                host=get_env("HOST", "0.0.0.0"),
                port=get_env("PORT", 8000, int),
                cors_origins=get_env("CORS_ORIGINS", ["*"], split_list),
                database_url=get_env("DATABASE_URL", "sqlite:///./flowrunner.db"),
                database_echo=get_env("DATABASE_ECHO", False, bool),
                max_concurrent_runs=get_env("MAX_CONCURRENT_RUNS", 10, int),
                api_timeout=get_env("API_TIMEOUT", 30.0, float),
                traversal_mode=get_env("TRAVERSAL_MODE", TraversalMode.DECLARATION,
                                       lambda v: TraversalMode(v.lower())),
                condition_mode=get_env("CONDITION_MODE", ConditionMode.RANDOM,
                                       lambda v: ConditionMode(v.lower())),
                decision_seed=get_env("DECISION_SEED", None, int),
                max_node_visits=get_env("MAX_NODE_VISITS", 1000, int),
                log_level=get_env("LOG_LEVEL", LogLevel.INFO, lambda v: LogLevel(v.upper())),
                log_format=get_env("LOG_FORMAT", None),
                log_file=get_env("LOG_FILE", None),
                log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
                log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
                log_structured=get_env("LOG_STRUCTURED", False, bool),
            )
        except ValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else "config"
            raise ConfigurationError(
                f"Invalid configuration for {field}: {error['msg']}",
                config_key=f"FLOWRUNNER_{field.upper()}"
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
    """Load configuration from a .env file and environment variables."""
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


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        max_concurrent_runs=2,
        api_timeout=2.0,
        decision_seed=0
    )
