"""
Configuration Manager Module

Loads simulation preferences (integration method, step size, autosave and
adaptive-step settings) from YAML files.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, Optional

from compartsim.utils.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "configs" / "config.yaml"


class ConfigManager:
    """Manages project configuration from YAML files."""

    _instance: Optional['ConfigManager'] = None
    _config: Dict[str, Any] = {}

    def __new__(cls) -> 'ConfigManager':
        """Singleton pattern to ensure single config instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def load(self, config_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to configuration file (defaults to configs/config.yaml)

        Returns:
            Dict containing configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If config file is not a YAML mapping
        """
        path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, 'r') as f:
            try:
                loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(str(path), f"invalid YAML ({e})") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(str(path), "top level must be a mapping")

        self._config = loaded
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'simulation.method')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self._config

        try:
            for k in keys:
                value = value[k]
            return default if value is None else value
        except (KeyError, TypeError):
            return default

    def get_all(self) -> Dict[str, Any]:
        """Get a copy of the entire configuration dictionary."""
        return self._config.copy()

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value (runtime only, not persisted).

        Args:
            key: Configuration key (dot notation)
            value: Value to set
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def clear(self) -> None:
        """Drop every loaded value."""
        self._config = {}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    manager = ConfigManager()
    return manager.load(config_path)


def get_config() -> ConfigManager:
    """Get the singleton ConfigManager instance."""
    return ConfigManager()
