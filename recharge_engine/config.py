"""Configuration management - loads engine.yaml and environment variables."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from recharge_engine.models import (
    EngineConfigFile,
    EngineSettings,
    PlanDefinition,
    SchedulerConfig,
    StorageConfig,
    WhatsAppConfig,
)

DEFAULT_CONFIG_PATH = Path("config/engine.yaml")
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Environment variables that override the whatsapp section
WHATSAPP_ENV_OVERRIDES = {
    "WHATSAPP_API_KEY": "api_key",
    "WHATSAPP_INSTANCE_ID": "instance_id",
    "WHATSAPP_CLIENT_TOKEN": "client_token",
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader.

    Loads engine.yaml and provides validated access to:
    - Plan catalogue
    - Engine, storage and scheduler settings
    - WhatsApp integration settings
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to engine.yaml. Falls back to the CONFIG_PATH env var,
                        then ./config/engine.yaml, then the copy next to the package.
        """
        self._config_path = self._resolve_config_path(config_path)
        self._file: Optional[EngineConfigFile] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        if DEFAULT_CONFIG_PATH.exists():
            return DEFAULT_CONFIG_PATH
        return PROJECT_ROOT / DEFAULT_CONFIG_PATH

    def _load_config(self) -> None:
        """Load and validate engine.yaml."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/engine.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")

        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self._config_path}")

        self._apply_env_overrides(raw_config)

        try:
            self._file = EngineConfigFile(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    @staticmethod
    def _apply_env_overrides(raw_config: dict) -> None:
        whatsapp = raw_config.setdefault("whatsapp", {}) or {}
        for env_name, key in WHATSAPP_ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                whatsapp[key] = value
        raw_config["whatsapp"] = whatsapp

    @property
    def file(self) -> EngineConfigFile:
        """Get the validated configuration file."""
        if self._file is None:
            raise ConfigurationError("Configuration not loaded")
        return self._file

    @property
    def config_path(self) -> Path:
        return self._config_path

    @property
    def company_name(self) -> str:
        return self.file.company_name

    @property
    def plans(self) -> list[PlanDefinition]:
        return self.file.plans

    @property
    def engine_settings(self) -> EngineSettings:
        return self.file.engine

    @property
    def storage_settings(self) -> StorageConfig:
        return self.file.storage

    @property
    def scheduler_settings(self) -> SchedulerConfig:
        return self.file.scheduler

    @property
    def whatsapp_settings(self) -> WhatsAppConfig:
        return self.file.whatsapp

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()


_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()
