"""
Configuration management for the file cleanup system.

This module handles loading, validation, and management of cleanup configurations.
Both YAML files and the legacy JSON layout (``delete_config`` entries) are accepted.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from .retention_models import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "FILECLEANUP_CONFIG"
DEFAULT_CONFIG_DIR = Path.home() / ".fileCleanup"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "fileCleanup.yaml"

# Legacy JSON key -> current key
_LEGACY_TARGET_KEYS = {
    'target_folder': 'path',
    'delete_interval_seconds': 'retention_check_interval_seconds',
    'max_folder_size_mb': 'max_size_mb',
    'max_folder_size_percent': 'max_size_percent',
    'max_folder_percent_enabled': 'percent_mode_enabled',
    'max_folder_percent_from_available_size': 'percent_relative_to_available',
    'check_size_interval_secs': 'size_check_interval_seconds',
}


class TargetConfig(BaseModel):
    """Retention and quota settings for one watched directory."""
    path: str
    retention_days: float = 30.0
    retention_check_interval_seconds: int = 24 * 60 * 60
    max_size_mb: int = 1000
    max_size_percent: int = 0
    percent_mode_enabled: bool = False
    percent_relative_to_available: bool = False
    size_check_interval_seconds: int = 12 * 60 * 60
    stop_at_limit: bool = False

    @field_validator('path')
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("target path must not be empty")
        return os.path.abspath(os.path.expanduser(value))

    @field_validator('retention_check_interval_seconds', 'size_check_interval_seconds')
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("check intervals must be positive")
        return value

    @field_validator('retention_days')
    @classmethod
    def _non_negative_days(cls, value: float) -> float:
        if value < 0:
            raise ValueError("retention_days must not be negative")
        return value

    @model_validator(mode='after')
    def _check_size_bound(self) -> 'TargetConfig':
        if self.percent_mode_enabled:
            if not 0 <= self.max_size_percent <= 100:
                raise ValueError("max_size_percent must be between 0 and 100")
        elif self.max_size_mb < 0:
            raise ValueError("max_size_mb must not be negative")
        return self

    @property
    def size_limit(self) -> int:
        """The active size bound: percent in percentage mode, MB otherwise."""
        return self.max_size_percent if self.percent_mode_enabled else self.max_size_mb

    @property
    def size_unit(self) -> str:
        return '%' if self.percent_mode_enabled else 'MB'


class CleanupConfig(BaseModel):
    """Top-level configuration of the cleanup daemon."""
    targets: List[TargetConfig] = []
    detailed_log: bool = False
    log_file_path: Optional[str] = None
    log_level: str = 'INFO'
    metrics_port: Optional[int] = None
    skip_overlapping_runs: bool = True

    @field_validator('log_level')
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"unknown log level: {value}")
        return level

    @property
    def uses_percent_mode(self) -> bool:
        return any(target.percent_mode_enabled for target in self.targets)


def resolve_config_path(config_path: Optional[str] = None) -> Path:
    """Pick the config file: explicit argument, then environment, then default."""
    if config_path:
        return Path(config_path).expanduser()

    load_dotenv()
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()

    return DEFAULT_CONFIG_PATH


class RetentionConfigManager:
    """Manages cleanup system configuration."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = resolve_config_path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> CleanupConfig:
        """Load configuration from a YAML or JSON file."""
        if not self.config_path.exists():
            logger.warning(f"Config file not found at {self.config_path}. Writing defaults.")
            config_data = self.get_default_config()
            self.save_config(config_data)
            return self._parse_config(config_data)

        try:
            with open(self.config_path, 'r') as f:
                if self.config_path.suffix.lower() == '.json':
                    config_data = json.load(f)
                else:
                    config_data = yaml.safe_load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read config {self.config_path}: {e}") from e

        return self._parse_config(config_data or {})

    def _parse_config(self, config_data: Dict[str, Any]) -> CleanupConfig:
        """Parse configuration data into a CleanupConfig object."""
        if not isinstance(config_data, dict):
            raise ConfigError(f"Config {self.config_path} must contain a mapping")

        data = dict(config_data)
        if 'delete_config' in data:
            data['targets'] = [self._upgrade_legacy_target(t) for t in data.pop('delete_config') or []]

        try:
            return CleanupConfig(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid config {self.config_path}: {e}") from e

    @staticmethod
    def _upgrade_legacy_target(target_data: Dict[str, Any]) -> Dict[str, Any]:
        return {_LEGACY_TARGET_KEYS.get(key, key): value for key, value in target_data.items()}

    @staticmethod
    def get_default_config() -> Dict[str, Any]:
        """Get default configuration."""
        return {
            'detailed_log': False,
            'log_file_path': str(DEFAULT_CONFIG_DIR),
            'log_level': 'INFO',
            'metrics_port': None,
            'skip_overlapping_runs': True,
            'targets': [
                {
                    'path': '/path/to/reference/folder',
                    'retention_days': 5,
                    'retention_check_interval_seconds': 24 * 60 * 60,
                    'max_size_mb': 1000,
                    'max_size_percent': 0,
                    'percent_mode_enabled': False,
                    'percent_relative_to_available': False,
                    'size_check_interval_seconds': 12 * 60 * 60,
                    'stop_at_limit': False,
                }
            ],
        }

    def save_config(self, config_data: Dict[str, Any]):
        """Save configuration to a YAML file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.dump(config_data, f, default_flow_style=False, indent=2, sort_keys=False)
            logger.info(f"Created configuration file at {self.config_path}")
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_targets(self) -> List[TargetConfig]:
        """Get all configured targets."""
        return self.config.targets

    def get_target(self, path: str) -> Optional[TargetConfig]:
        """Get the target configured for a directory, if any."""
        wanted = os.path.abspath(os.path.expanduser(path))
        for target in self.config.targets:
            if target.path == wanted:
                return target
        return None
