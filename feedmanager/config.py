"""
Feed Manager Configuration Management.

Handles loading and validating configuration from various sources:
- Default values
- Configuration file (TOML)
- Environment variables
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "feedmanager"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "feedmanager"

_TRUE_VALUES = ("true", "1", "yes", "on")


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class SchedulerConfig:
    """Configuration for the feed fetch scheduler and completion poller."""

    enabled: bool = True

    # Arm timers for every auto-fetchable feed source at daemon start
    auto_fetch_on_start: bool = True

    misfire_grace_time: int = 60 * 5  # seconds
    history_size: int = 500

    # FeedUpdater tick interval
    updater_interval_seconds: int = 60 * 5


@dataclass
class FetchConfig:
    """Configuration for downloading feeds from their source URL."""

    timeout: float = 60.0
    user_agent: str = "feedmanager/0.1"
    follow_redirects: bool = True


@dataclass
class PublisherConfig:
    """Configuration for the external publishing pipeline (object storage)."""

    enabled: bool = False
    bucket: str = ""
    completed_prefix: str = "completed/"
    endpoint_url: Optional[str] = None
    region: str = "us-east-1"

    # External feed source property holding the agency identifier
    resource_type: str = "MTC"
    agency_property: str = "AgencyId"


@dataclass
class DeployConfig:
    """Configuration for triggering deployments on target servers."""

    timeout: float = 30.0


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class FeedManagerConfig:
    """Main configuration container."""

    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    publisher: PublisherConfig = field(default_factory=PublisherConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    database_url: str = ""

    def __post_init__(self) -> None:
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir}/feedmanager.db"

    @property
    def feeds_dir(self) -> Path:
        """Directory where fetched feed files are stored."""
        return self.data_dir / "feeds"


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "FEEDMANAGER_",
) -> FeedManagerConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/feedmanager/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = FeedManagerConfig()

    if config_path is None:
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    default_database_url = config.database_url

    if config_path.exists():
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)

    # The default database lives in data_dir, which may have been overridden
    if config.database_url == default_database_url:
        config.database_url = f"sqlite:///{config.data_dir}/feedmanager.db"

    return config


_SECTIONS = ("scheduler", "fetch", "publisher", "deploy", "logging")


def _load_from_file(path: Path, config: FeedManagerConfig) -> FeedManagerConfig:
    """Load configuration from a TOML file."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return config

    for section in _SECTIONS:
        if section in data:
            section_obj = getattr(config, section)
            for key, value in data[section].items():
                if hasattr(section_obj, key):
                    setattr(section_obj, key, value)
                else:
                    logger.warning(f"Unknown configuration key: {section}.{key}")

    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"])
    if "database_url" in data:
        config.database_url = data["database_url"]

    if config.logging.file is not None:
        config.logging.file = Path(config.logging.file)

    return config


def _load_from_env(config: FeedManagerConfig, prefix: str) -> FeedManagerConfig:
    """Load configuration from environment variables."""

    # Scheduler settings
    if env_val := os.environ.get(f"{prefix}SCHEDULER_ENABLED"):
        config.scheduler.enabled = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}AUTO_FETCH_ON_START"):
        config.scheduler.auto_fetch_on_start = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}UPDATER_INTERVAL"):
        config.scheduler.updater_interval_seconds = int(env_val)

    # Fetch settings
    if env_val := os.environ.get(f"{prefix}FETCH_TIMEOUT"):
        config.fetch.timeout = float(env_val)

    # Publisher settings
    if env_val := os.environ.get(f"{prefix}PUBLISHER_ENABLED"):
        config.publisher.enabled = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}PUBLISHER_BUCKET"):
        config.publisher.bucket = env_val
    if env_val := os.environ.get(f"{prefix}PUBLISHER_ENDPOINT_URL"):
        config.publisher.endpoint_url = env_val
    if env_val := os.environ.get(f"{prefix}PUBLISHER_REGION"):
        config.publisher.region = env_val

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        config.data_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATABASE_URL"):
        config.database_url = env_val

    return config


def ensure_directories(config: FeedManagerConfig) -> None:
    """Ensure all required directories exist."""
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)
    config.feeds_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance (lazy-loaded)
_global_config: Optional[FeedManagerConfig] = None


def get_config() -> FeedManagerConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: FeedManagerConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the global configuration cache."""
    global _global_config
    _global_config = None


def validate_config(config: Optional[FeedManagerConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    if config.publisher.enabled and not config.publisher.bucket:
        errors.append(ValidationError(
            field="publisher.bucket",
            message="Publisher is enabled but no bucket is configured.",
            severity="error",
        ))

    if config.publisher.enabled and not config.publisher.completed_prefix:
        errors.append(ValidationError(
            field="publisher.completed_prefix",
            message="No completed prefix set; every object in the bucket is treated as a completion marker.",
            severity="warning",
        ))

    if config.scheduler.updater_interval_seconds <= 0:
        errors.append(ValidationError(
            field="scheduler.updater_interval_seconds",
            message="Updater interval must be a positive number of seconds.",
            severity="error",
        ))

    if config.fetch.timeout <= 0:
        errors.append(ValidationError(
            field="fetch.timeout",
            message="Fetch timeout must be positive.",
            severity="error",
        ))

    if config.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        errors.append(ValidationError(
            field="logging.level",
            message=f"Unknown log level: {config.logging.level}",
            severity="error",
        ))

    if not config.data_dir.exists():
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory does not exist: {config.data_dir}",
            severity="warning",
        ))

    return errors


def config_to_dict(config: FeedManagerConfig) -> dict[str, Any]:
    """Convert configuration to a plain dictionary."""
    return {
        "config_dir": str(config.config_dir),
        "data_dir": str(config.data_dir),
        "database_url": config.database_url,
        "scheduler": {
            "enabled": config.scheduler.enabled,
            "auto_fetch_on_start": config.scheduler.auto_fetch_on_start,
            "misfire_grace_time": config.scheduler.misfire_grace_time,
            "history_size": config.scheduler.history_size,
            "updater_interval_seconds": config.scheduler.updater_interval_seconds,
        },
        "fetch": {
            "timeout": config.fetch.timeout,
            "user_agent": config.fetch.user_agent,
            "follow_redirects": config.fetch.follow_redirects,
        },
        "publisher": {
            "enabled": config.publisher.enabled,
            "bucket": config.publisher.bucket,
            "completed_prefix": config.publisher.completed_prefix,
            "endpoint_url": config.publisher.endpoint_url,
            "region": config.publisher.region,
            "resource_type": config.publisher.resource_type,
            "agency_property": config.publisher.agency_property,
        },
        "deploy": {
            "timeout": config.deploy.timeout,
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "file": str(config.logging.file) if config.logging.file else None,
        },
    }


def export_config_yaml(config: FeedManagerConfig) -> str:
    """Export configuration as a YAML string."""
    return yaml.dump(config_to_dict(config), default_flow_style=False, sort_keys=False)


def export_config_json(config: FeedManagerConfig) -> str:
    """Export configuration as a JSON string."""
    return json.dumps(config_to_dict(config), indent=2)
