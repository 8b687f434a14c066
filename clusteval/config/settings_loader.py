"""
settings_loader.py

Configuration management for the clusteval repository.
Loads and validates settings from YAML configuration with environment variable substitution.

Features:
- YAML configuration loading with validation
- Environment variable substitution (${VAR_NAME} syntax)
- Singleton pattern for global settings access
- Type-safe configuration with Pydantic models
- Default values and validation
"""

import os
import re
import yaml
import logging
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_validator
from pathlib import Path

from clusteval.core.categories import ExtensionCategory

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models (Pydantic)
# =============================================================================

class ServiceSettings(BaseModel):
    """General service settings."""
    name: str = Field(default="clusteval", description="Service name")
    version: str = Field(default="1.0.0", description="Service version")
    environment: str = Field(default="production", description="Environment (development, staging, production)")


class RepositorySettings(BaseModel):
    """Repository location and layout."""
    root: str = Field(default="repository", description="Repository root directory")
    paths: Dict[str, str] = Field(
        default_factory=dict,
        description="Per-category base path overrides (absolute or relative to root)",
    )
    sweep_missing: bool = Field(default=True, description="Unregister artifacts whose files disappeared")
    create_missing_dirs: bool = Field(default=False, description="Create missing category directories on startup")

    @field_validator("paths")
    @classmethod
    def validate_paths(cls, v):
        for key in v:
            ExtensionCategory.parse(key)
        return v

    def get_path_overrides(self) -> Dict[ExtensionCategory, str]:
        return {ExtensionCategory.parse(k): p for k, p in self.paths.items()}


class ThreadingSettings(BaseModel):
    """Finder task scheduling."""
    default_sleep_seconds: float = Field(default=30.0, gt=0.0, description="Sleep between two scan passes")
    sleep_seconds: Dict[str, float] = Field(
        default_factory=dict,
        description="Per-category sleep overrides",
    )
    check_once: bool = Field(default=False, description="Scan every category exactly once")
    wait_timeout_seconds: Optional[float] = Field(
        default=300.0,
        gt=0.0,
        description="Maximum time a task waits for a dependency (null = wait forever)",
    )

    @field_validator("sleep_seconds")
    @classmethod
    def validate_sleep_seconds(cls, v):
        for key, seconds in v.items():
            ExtensionCategory.parse(key)
            if seconds <= 0:
                raise ValueError(f"sleep_seconds.{key} must be positive")
        return v

    def get_sleep_time(self, category: ExtensionCategory) -> float:
        for key, seconds in self.sleep_seconds.items():
            if ExtensionCategory.parse(key) is category:
                return seconds
        return self.default_sleep_seconds


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json or console)")
    file: Optional[str] = Field(default=None, description="Log file path (null = stdout only)")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        valid = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid:
            raise ValueError(f"level must be one of {valid}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError("format must be 'json' or 'console'")
        return v


class Settings(BaseModel):
    """Root configuration model."""
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    repository: RepositorySettings = Field(default_factory=RepositorySettings)
    threading: ThreadingSettings = Field(default_factory=ThreadingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# =============================================================================
# Configuration Manager (Singleton)
# =============================================================================

class ConfigManager:
    """
    Singleton configuration manager that loads and caches settings.

    Features:
    - Loads YAML configuration from file
    - Substitutes environment variables using ${VAR_NAME} syntax
    - Validates configuration using Pydantic models
    - Provides global access to settings
    """

    _instance: Optional['ConfigManager'] = None
    _settings: Optional[Settings] = None

    def __new__(cls):
        """Ensure singleton pattern."""
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
        return cls._instance

    @classmethod
    def load_config(cls, config_path: Optional[str] = None) -> Settings:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to configuration file. If None, uses default path.

        Returns:
            Settings object with validated configuration

        Raises:
            FileNotFoundError: If configuration file not found
            ValueError: If configuration is invalid
        """
        if cls._settings is not None:
            return cls._settings

        if config_path is None:
            possible_paths = [
                Path(os.getenv("CONFIG_PATH", "config/settings.yaml")),
                Path("config/settings.yaml"),
                Path("../config/settings.yaml"),
            ]

            config_path_obj = None
            for path in possible_paths:
                if path.exists():
                    config_path_obj = path
                    break

            if config_path_obj is None:
                raise FileNotFoundError(
                    f"Configuration file not found in any of: {[str(p) for p in possible_paths]}"
                )
        else:
            config_path_obj = Path(config_path)
            if not config_path_obj.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")

        logger.info(f"Loading configuration from: {config_path_obj}")

        try:
            with open(config_path_obj, 'r') as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to load YAML configuration: {e}")
            raise ValueError(f"Invalid YAML configuration: {e}")

        config_dict = cls._substitute_env_vars(raw_config)

        try:
            cls._settings = Settings(**config_dict)
            logger.info("Configuration loaded and validated successfully")
            return cls._settings
        except Exception as e:
            logger.error(f"Configuration validation failed: {e}")
            raise ValueError(f"Invalid configuration: {e}")

    @classmethod
    def get_settings(cls) -> Settings:
        """
        Get cached settings. Loads from default path if not already loaded.

        Returns:
            Settings object
        """
        if cls._settings is None:
            cls.load_config()
        return cls._settings

    @classmethod
    def _substitute_env_vars(cls, config: Any) -> Any:
        """
        Recursively substitute environment variables in configuration.

        Supports ${VAR_NAME} and ${VAR_NAME:default_value} syntax.

        Args:
            config: Configuration dictionary or value

        Returns:
            Configuration with substituted values
        """
        if isinstance(config, dict):
            return {k: cls._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [cls._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            pattern = r'\$\{([^}:]+)(?::([^}]*))?\}'

            def replace_var(match):
                var_name = match.group(1)
                default_value = match.group(2) if match.group(2) is not None else ""
                return os.getenv(var_name, default_value)

            return re.sub(pattern, replace_var, config)
        else:
            return config

    @classmethod
    def reload_config(cls, config_path: Optional[str] = None) -> Settings:
        """
        Reload configuration from file.

        Args:
            config_path: Path to configuration file

        Returns:
            Reloaded Settings object
        """
        cls._settings = None
        return cls.load_config(config_path)

    @classmethod
    def reset(cls) -> None:
        """Forget cached settings."""
        cls._settings = None


# =============================================================================
# Convenience Functions
# =============================================================================

def get_settings() -> Settings:
    """
    Get application settings (convenience function).

    Returns:
        Settings object
    """
    return ConfigManager.get_settings()
