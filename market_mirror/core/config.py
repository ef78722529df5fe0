"""
Two-tier configuration system with YAML defaults and environment overrides.

Configuration is loaded from the packaged ``default.yaml``, optional
``config.yaml`` and ``<ENVIRONMENT>.yaml`` files in the configuration
directory, an optional explicit file, and finally ``MARKET_MIRROR_*``
environment variables (``.env`` files are honoured through python-dotenv).
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union
import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class ConfigError(Exception):
    """Configuration-related errors."""
    pass


class ConfigManager:
    """
    Hierarchical configuration management.

    Later sources override earlier ones key by key; nested sections are
    merged rather than replaced.
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        config_file: Optional[Union[str, Path]] = None,
        env_prefix: str = "MARKET_MIRROR"
    ):
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.config_file = Path(config_file) if config_file else None
        self.env_prefix = env_prefix

        self._config: Dict[str, Any] = {}
        self._loaded = False

    def initialize(self) -> None:
        """Initialize the configuration manager."""
        logger.debug("Initializing configuration manager")

        # Load environment variables
        load_dotenv()

        self.load_config()

        self._loaded = True
        logger.debug("Configuration manager initialized")

    def load_config(self) -> None:
        """Load configuration from all sources."""
        self._config = {}
        self._load_yaml_config()
        self._apply_env_overrides()

        logger.info(f"Loaded configuration with {len(self._config)} top-level keys")

    def _load_yaml_config(self) -> None:
        """Load configuration from YAML files."""
        config_files = [
            self.config_dir / "default.yaml",
            self.config_dir / "config.yaml",
        ]

        # Also check for environment-specific config
        env = os.getenv("ENVIRONMENT", "development")
        env_config = self.config_dir / f"{env}.yaml"
        if env_config.exists():
            config_files.append(env_config)

        for config_file in config_files:
            if config_file.exists():
                try:
                    self._merge_config(self._config, self._read_yaml(config_file))
                    logger.debug(f"Loaded config from {config_file}")
                except ConfigError as e:
                    logger.error(f"Failed to load config from {config_file}: {e}")

        # An explicitly requested file must load
        if self.config_file is not None:
            if not self.config_file.exists():
                raise ConfigError(f"Configuration file not found: {self.config_file}")
            self._merge_config(self._config, self._read_yaml(self.config_file))
            logger.debug(f"Loaded config from {self.config_file}")

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Top level of {path} must be a mapping")
        return data

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides.

        ``MARKET_MIRROR_SYNC__SNAPSHOT_LIMIT=50`` sets ``sync.snapshot_limit``;
        a double underscore separates nesting levels.
        """
        prefix = f"{self.env_prefix}_"

        for key, value in os.environ.items():
            if key.startswith(prefix):
                config_key = key[len(prefix):].lower().replace('__', '.')
                self._set_nested_value(self._config, config_key, value)
                logger.debug(f"Applied env override: {config_key}")

    def _merge_config(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        """Recursively merge configuration dictionaries."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_config(target[key], value)
            else:
                target[key] = value

    def _set_nested_value(self, config: Dict[str, Any], key_path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert_value(value)

    def _convert_value(self, value: Any) -> Any:
        """Convert string value to appropriate type."""
        if not isinstance(value, str):
            return value

        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value using dot notation."""
        if not self._loaded:
            raise ConfigError("Configuration not loaded")

        keys = key.split('.')
        current = self._config

        for k in keys:
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default

        return current

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value using dot notation."""
        self._set_nested_value(self._config, key, value)

    def get_all(self) -> Dict[str, Any]:
        """Get a deep copy of the whole configuration."""
        return copy.deepcopy(self._config)

    def has(self, key: str) -> bool:
        """Check if a configuration key exists."""
        if not self._loaded:
            return False

        keys = key.split('.')
        current = self._config

        for k in keys:
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return False

        return True
