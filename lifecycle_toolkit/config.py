"""
Configuration module for Lifecycle Toolkit.

Provides centralized configuration for the soft delete engine, the retention
sweeper and the event trail.
"""

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union, get_args, get_origin

import yaml
from pydantic import BaseModel, Field, field_validator


class EventBackend(str, Enum):
    """Supported sinks for lifecycle events."""

    LOGGING = "logging"
    MEMORY = "memory"
    FILE = "file"
    SQL = "sql"


class LifecycleConfig(BaseModel):
    """Central configuration for the lifecycle engine.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (highest priority)
        2. Environment variables (LIFECYCLE_ prefix)
        3. Configuration files (JSON or YAML)
        4. Default values (lowest priority)

    Example:
        >>> config = LifecycleConfig(default_retention_days=30)
        >>> os.environ['LIFECYCLE_CONCURRENT_CASCADES'] = 'true'
        >>> config = LifecycleConfig.from_env()
        >>> config = LifecycleConfig.from_file('lifecycle.yaml')
    """

    # General settings
    application_name: str = Field(
        "Lifecycle Toolkit", description="Name of the application for event trails"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )
    database_url: Optional[str] = Field(
        None, description="Connection string for the entity store"
    )
    log_level: str = Field("INFO", description="Logging level for the toolkit")

    # Cascade settings
    cascade_delete_enabled: bool = Field(
        True, description="Cascade soft deletes unless the caller opts out"
    )
    max_cascade_depth: int = Field(
        16, description="Maximum depth of a cascade walk", gt=0, le=64
    )
    concurrent_cascades: bool = Field(
        False, description="Dispatch sibling cascade branches concurrently"
    )
    max_conflict_retries: int = Field(
        3, description="Re-reads allowed after a version conflict", ge=0, le=20
    )

    # Retention settings
    default_retention_days: int = Field(
        30, description="Days a soft-deleted record is kept before purge", ge=0
    )
    cleanup_batch_size: int = Field(
        100, description="Records purged per cleanup batch", gt=0, le=10000
    )
    sweep_interval_seconds: int = Field(
        3600, description="Seconds between scheduled sweeps", gt=0
    )

    # Event trail settings
    event_backend: EventBackend = Field(
        EventBackend.LOGGING, description="Sink for lifecycle events"
    )
    event_file_path: str = Field(
        "./lifecycle_events", description="Directory for file-based event storage"
    )
    event_database_url: Optional[str] = Field(
        None, description="Connection string for the SQL event sink"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "staging", "production", "test"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure the log level is one ``logging`` knows."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_env(cls, prefix: str = "LIFECYCLE_") -> "LifecycleConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var in os.environ:
                value = os.environ[env_var]

                field_type = field_info.annotation

                # Handle Optional types
                if get_origin(field_type) is Union:
                    args = get_args(field_type)
                    field_type = next(
                        (arg for arg in args if arg is not type(None)), str
                    )

                try:
                    if field_type == bool:
                        config_dict[field_name] = value.lower() in (
                            "true",
                            "1",
                            "yes",
                            "on",
                        )
                    elif field_type == int:
                        config_dict[field_name] = int(value)
                    elif isinstance(field_type, type) and issubclass(field_type, Enum):
                        config_dict[field_name] = field_type(value.lower())
                    else:
                        config_dict[field_name] = value
                except (ValueError, TypeError):
                    # Leave the raw value for pydantic to report
                    config_dict[field_name] = value

        return cls.model_validate(config_dict)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LifecycleConfig":
        """
        Load configuration from a JSON or YAML file.

        Args:
            path: Path to the configuration file

        Returns:
            Configuration instance
        """
        path = Path(path)
        with open(path, "r") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
        return cls.model_validate(data)

    def get_sink_config(self) -> Dict[str, Any]:
        """Keyword arguments for ``get_event_sink``."""
        return {
            "backend": self.event_backend.value,
            "storage_path": self.event_file_path,
            "connection_string": self.event_database_url or self.database_url,
        }


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the ``lifecycle_toolkit`` logger hierarchy.

    Args:
        level: Level name; defaults to the configured ``log_level``
    """
    logger = logging.getLogger("lifecycle_toolkit")
    logger.setLevel(level or get_config().log_level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(handler)


# Global configuration instance
_config: Optional[LifecycleConfig] = None


def get_config() -> LifecycleConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = LifecycleConfig.from_env()

    return _config


def set_config(config: Optional[LifecycleConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload from the environment
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> LifecycleConfig:
    """
    Configure the toolkit with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = LifecycleConfig(**kwargs)
    else:
        config_dict = _config.to_dict()
        config_dict.update(kwargs)
        _config = LifecycleConfig(**config_dict)

    return _config
