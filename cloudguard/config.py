"""Configuration.

Built once at startup and passed into every component constructor. Values come
from defaults, then ~/.cloudguard/config.yaml, then environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".cloudguard"

# Environment overrides: variable -> (field, converter)
_ENV_OVERRIDES = {
    "CLOUDGUARD_HOME": ("home", Path),
    "CLOUDGUARD_LOG_LEVEL": ("log_level", str),
    "CLOUDGUARD_LOCK_TIMEOUT": ("lock_timeout", float),
    "CLOUDGUARD_LOCK_POLL_INTERVAL": ("lock_poll_interval", float),
    "CLOUDGUARD_MAX_RETRIES": ("max_retries", int),
    "AWS_PROFILE": ("aws_profile", str),
    "AWS_DEFAULT_REGION": ("region", str),
}


@dataclass
class Config:
    """Runtime configuration.

    Directory fields left as None are derived from ``home``.

    Attributes:
        home: Base directory for all persisted data
        lock_dir: Directory holding one entry per held lock
        state_file: Path of the JSON state document
        diagnostics_dir: Directory holding one report per handled error
        log_dir: Directory for log files
        lock_timeout: Default seconds to wait for a lock
        lock_poll_interval: Seconds between lock attempts
        max_retries: Retry budget for rate-limited/unavailable provider calls
        backoff_base: First backoff interval in seconds
        backoff_max: Upper bound for a single backoff interval
        log_level: Logging level name
        log_tail_lines: Log lines captured into each error report
        operation_log_limit: Operation log entries kept in the state document
        aws_profile: AWS profile for the AWS provider
        region: AWS region for the AWS provider
    """

    home: Path = DEFAULT_HOME
    lock_dir: Optional[Path] = None
    state_file: Optional[Path] = None
    diagnostics_dir: Optional[Path] = None
    log_dir: Optional[Path] = None
    lock_timeout: float = 30.0
    lock_poll_interval: float = 0.5
    max_retries: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    log_level: str = "INFO"
    log_tail_lines: int = 20
    operation_log_limit: int = 500
    aws_profile: Optional[str] = None
    region: Optional[str] = None

    def __post_init__(self) -> None:
        self.home = Path(self.home).expanduser()
        if self.lock_dir is None:
            self.lock_dir = self.home / "locks"
        if self.state_file is None:
            self.state_file = self.home / "state" / "current_state.json"
        if self.diagnostics_dir is None:
            self.diagnostics_dir = self.home / "diagnostics"
        if self.log_dir is None:
            self.log_dir = self.home / "logs"
        self.lock_dir = Path(self.lock_dir)
        self.state_file = Path(self.state_file)
        self.diagnostics_dir = Path(self.diagnostics_dir)
        self.log_dir = Path(self.log_dir)
        self.validate()

    def validate(self) -> bool:
        """Validate configuration values.

        Raises:
            ValueError: If any value is out of range
        """
        if self.lock_timeout < 0:
            raise ValueError("lock_timeout cannot be negative")
        if self.lock_poll_interval <= 0:
            raise ValueError("lock_poll_interval must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.backoff_base < 0 or self.backoff_max < self.backoff_base:
            raise ValueError("backoff_max must be >= backoff_base >= 0")
        if self.log_tail_lines < 0 or self.operation_log_limit < 1:
            raise ValueError("log_tail_lines must be >= 0 and operation_log_limit >= 1")
        return True

    @classmethod
    def load(cls, path: Optional[str] = None, env: Optional[dict[str, str]] = None) -> Config:
        """Load configuration from file and environment.

        Args:
            path: Config file path (default: $CLOUDGUARD_HOME/config.yaml or ~/.cloudguard/config.yaml)
            env: Environment mapping (default: os.environ)

        Returns:
            Config instance

        Raises:
            ValueError: If the file is not a YAML mapping or a value is invalid
        """
        env = dict(os.environ) if env is None else env
        values: dict[str, Any] = {}

        if path is None:
            home = Path(env.get("CLOUDGUARD_HOME", str(DEFAULT_HOME))).expanduser()
            config_path = home / "config.yaml"
        else:
            config_path = Path(path).expanduser()

        if config_path.exists():
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {config_path} must contain a mapping")
            known = {f.name for f in fields(cls)}
            for key, value in data.items():
                if key in known:
                    values[key] = value
                else:
                    logger.warning(f"Ignoring unknown config key '{key}' in {config_path}")
            logger.debug(f"Loaded configuration from {config_path}")

        for var, (name, convert) in _ENV_OVERRIDES.items():
            raw = env.get(var)
            if raw:
                try:
                    values[name] = convert(raw)
                except ValueError as e:
                    raise ValueError(f"Invalid value for {var}: {raw!r}") from e

        return cls(**values)

    def ensure_directories(self) -> None:
        """Create the persisted layout with owner/group-only permissions."""
        for directory in (self.home, self.lock_dir, self.state_file.parent, self.diagnostics_dir, self.log_dir):
            Path(directory).mkdir(parents=True, exist_ok=True, mode=0o750)
