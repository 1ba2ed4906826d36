"""
Configuration management for infraplan.

Loads and validates config.yaml from the infraplan home directory
($INFRAPLAN_HOME, default ~/.config/infraplan).

Example config.yaml:

    declarations_dir: ~/infra/declarations
    state_dir: ~/.config/infraplan/state
    provider:
      name: local
      options:
        path: ~/.config/infraplan/local-cloud.json
    concurrency: 4
    max_attempts: 5
    call_timeout_s: 120
    stages:
      prod:
        domain_names: "example.com,www.example.com"
        certificate_arn: "arn:aws:acm:us-east-1:123456789012:certificate/abc"
    logging:
      level: INFO
      format: pretty
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml

from infraplan.errors import ConfigError

CONFIG_FILE = "config.yaml"


def get_infraplan_home() -> Path:
    """Infraplan home directory: $INFRAPLAN_HOME or ~/.config/infraplan."""
    home = os.environ.get("INFRAPLAN_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/infraplan").expanduser()


@dataclass
class InfraplanConfig:
    """Complete engine configuration."""
    declarations_dir: str = "declarations"
    state_dir: str = "~/.config/infraplan/state"
    provider: dict[str, Any] = field(default_factory=lambda: {"name": "memory", "options": {}})
    concurrency: int = 4
    max_attempts: int = 5
    backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    call_timeout_s: Optional[float] = 120.0
    stages: dict[str, dict[str, Any]] = field(default_factory=dict)
    logging: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.validate()

    @property
    def provider_name(self) -> str:
        return self.provider.get("name", "memory")

    @property
    def provider_options(self) -> dict[str, Any]:
        return dict(self.provider.get("options") or {})

    def get_declarations_dir(self) -> Path:
        return Path(self.declarations_dir).expanduser()

    def get_state_dir(self) -> Path:
        return Path(self.state_dir).expanduser()

    def settings_for(self, stage: Optional[str]) -> dict[str, Any]:
        """
        Settings used for @ctx.* resolution.

        Args:
            stage: Stage name, or None for no settings

        Raises:
            ConfigError: If the stage is not configured
        """
        if stage is None:
            return {}
        if stage not in self.stages:
            raise ConfigError(
                f"Unknown stage: {stage}. Configured stages: {sorted(self.stages)}"
            )
        return dict(self.stages[stage] or {})

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation (None if file logging is off)."""
        log_output = self.logging.get("output")
        if not log_output:
            return None
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        return Path(log_output).expanduser()

    def get_log_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        return self.logging.get("console", True)

    def validate(self) -> None:
        """Validate configuration values."""
        if not isinstance(self.provider, dict) or not self.provider.get("name"):
            raise ConfigError("provider.name is required")
        if int(self.concurrency) < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if int(self.max_attempts) < 1:
            raise ConfigError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.call_timeout_s is not None and float(self.call_timeout_s) <= 0:
            raise ConfigError(f"call_timeout_s must be positive, got {self.call_timeout_s}")
        if self.get_log_format() not in ("structured", "pretty"):
            raise ConfigError("logging.format must be 'structured' or 'pretty'")
        if not isinstance(self.stages, dict):
            raise ConfigError("stages must be a mapping of stage name to settings")

    def to_dict(self) -> dict[str, Any]:
        return {
            "declarations_dir": self.declarations_dir,
            "state_dir": self.state_dir,
            "provider": self.provider,
            "concurrency": self.concurrency,
            "max_attempts": self.max_attempts,
            "backoff_seconds": self.backoff_seconds,
            "backoff_multiplier": self.backoff_multiplier,
            "call_timeout_s": self.call_timeout_s,
            "stages": self.stages,
            "logging": self.logging,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InfraplanConfig":
        """Build a config from a parsed YAML mapping, rejecting unknown keys."""
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {unknown}")
        return cls(**data)


def default_config(home: Path) -> dict[str, Any]:
    """Default config.yaml contents for `infraplan init`."""
    return {
        "declarations_dir": str(home / "declarations"),
        "state_dir": str(home / "state"),
        "provider": {
            "name": "local",
            "options": {"path": str(home / "local-cloud.json")},
        },
        "concurrency": 4,
        "max_attempts": 5,
        "backoff_seconds": 1.0,
        "backoff_multiplier": 2.0,
        "call_timeout_s": 120,
        "stages": {
            "dev": {
                "domain_names": "dev.example.com",
                "certificate_arn": "arn:aws:acm:us-east-1:000000000000:certificate/dev",
            },
        },
        "logging": {"level": "INFO", "format": "pretty", "console": True},
    }


def load_config(config_path: Optional[Path] = None) -> InfraplanConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $INFRAPLAN_HOME/config.yaml

    Returns:
        InfraplanConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If config is invalid
    """
    if config_path is None:
        config_path = get_infraplan_home() / CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(f"infraplan config.yaml not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not data:
        raise ConfigError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    return InfraplanConfig.from_dict(data)
