"""
Job keeper configuration management.

Handles loading, saving, and validating keeper configuration. Settings
live in a JSON file; the database URL may also come from the
environment (or a .env file).
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "JOBKEEPER_CONFIG_PATH"
ENV_DATABASE_URL = "JOBKEEPER_DATABASE_URL"
ENV_DATA_DIR = "JOBKEEPER_DATA_DIR"
ENV_LOG_DIR = "JOBKEEPER_LOG_DIR"


def _get_data_dir() -> Path:
    """Get the data directory for keeper files."""
    data_dir = os.environ.get(ENV_DATA_DIR)
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".jobkeeper"


def _get_default_database_url() -> str:
    return f"sqlite:///{_get_data_dir() / 'jobs.db'}"


def _get_default_log_file() -> str:
    """Get default log file path from environment or default."""
    if os.environ.get(ENV_LOG_DIR):
        return str(Path(os.environ[ENV_LOG_DIR]).expanduser() / "jobkeeper.log")
    return str(_get_data_dir() / "logs" / "jobkeeper.log")


def get_config_path(config_path: Optional[str] = None) -> Path:
    """
    Resolve the configuration file path.

    Priority:
    1. Explicit config_path argument
    2. JOBKEEPER_CONFIG_PATH environment variable
    3. Default: ~/.jobkeeper/config.json
    """
    if config_path:
        return Path(config_path).expanduser()
    if os.environ.get(ENV_CONFIG_PATH):
        return Path(os.environ[ENV_CONFIG_PATH]).expanduser()
    return _get_data_dir() / "config.json"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = None  # Set dynamically in __post_init__

    def __post_init__(self):
        if self.file is None:
            self.file = _get_default_log_file()


@dataclass
class TimerConfig:
    """Timer primitive (APScheduler) configuration."""
    max_workers: int = 5
    misfire_grace_time: Optional[int] = None  # None = fire no matter how late
    coalesce: bool = True
    timezone: Optional[str] = None  # None = local time


@dataclass
class KeeperConfig:
    """
    Job keeper configuration.

    ``database_url`` is the storage connection. It is required by the
    keeper but may be left unset here and passed to ``JobKeeper``
    directly.
    """
    database_url: Optional[str] = None
    default_delay_seconds: int = 60
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    timer: TimerConfig = field(default_factory=TimerConfig)
    config_path: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> 'KeeperConfig':
        """
        Load configuration from the JSON file, falling back to defaults.

        The JOBKEEPER_DATABASE_URL environment variable overrides the
        file's database URL.
        """
        path = get_config_path(config_path)
        config = cls(config_path=path)

        if path.exists():
            try:
                with open(path, 'r') as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load config from {path}: {e}")
                raise
            config._apply(data)
            logger.info(f"Loaded configuration from {path}")
        else:
            logger.info(f"No config found at {path}, using defaults")

        env_url = os.environ.get(ENV_DATABASE_URL)
        if env_url:
            config.database_url = env_url
        elif not config.database_url:
            config.database_url = _get_default_database_url()

        return config

    def _apply(self, data: Dict[str, Any]):
        if 'database_url' in data:
            self.database_url = data['database_url']
        if 'default_delay_seconds' in data:
            self.default_delay_seconds = int(data['default_delay_seconds'])
        if 'logging' in data:
            self.logging = LoggingConfig(**data['logging'])
        if 'timer' in data:
            self.timer = TimerConfig(**data['timer'])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'database_url': self.database_url,
            'default_delay_seconds': self.default_delay_seconds,
            'logging': asdict(self.logging),
            'timer': asdict(self.timer),
        }

    def save(self, config_path: Optional[str] = None) -> Path:
        """Save configuration to JSON file."""
        path = Path(config_path).expanduser() if config_path else (self.config_path or get_config_path())
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        self.config_path = path
        logger.info(f"Saved configuration to {path}")
        return path

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.database_url:
            errors.append("'database_url' is required")
        if self.default_delay_seconds < 0:
            errors.append("'default_delay_seconds' cannot be negative")
        if self.timer.max_workers <= 0:
            errors.append("'timer.max_workers' must be positive")
        if self.timer.misfire_grace_time is not None and self.timer.misfire_grace_time <= 0:
            errors.append("'timer.misfire_grace_time' must be positive or null")
        if self.logging.level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"Unknown logging level '{self.logging.level}'")

        return errors

    def __repr__(self):
        return f"KeeperConfig(database_url={self.database_url}, path={self.config_path})"
