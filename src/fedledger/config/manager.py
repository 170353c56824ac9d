"""Configuration file handling for submission runs"""

import yaml
import json
import os
from typing import Any, Dict, Optional

from fedledger.errors import ConfigurationError


ENV_PREFIX = "FEDLEDGER_"


class ConfigManager:
    """Manages run configuration from files and environment"""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager"""
        self.config: Dict[str, Any] = {}
        if config_path:
            self.load_config(config_path)

    def load_config(self, config_path: str) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file"""
        if config_path.endswith('.json'):
            return self.load_json_config(config_path)

        try:
            with open(config_path, 'r') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e

        self.config = self._require_mapping(loaded, config_path)
        return self.config

    def load_json_config(self, config_path: str) -> Dict[str, Any]:
        """Load configuration from JSON file"""
        try:
            with open(config_path, 'r') as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e

        self.config = self._require_mapping(loaded, config_path)
        return self.config

    def load_env(self, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Overlay FEDLEDGER_* environment variables.

        ``FEDLEDGER_ORCHESTRATOR__MAX_RETRIES=3`` sets
        ``orchestrator.max_retries``. Values are parsed as YAML scalars.
        """
        environ = os.environ if environ is None else environ
        for name, raw in environ.items():
            if not name.startswith(ENV_PREFIX):
                continue
            key = name[len(ENV_PREFIX):].lower().replace('__', '.')
            self.set(key, yaml.safe_load(raw))
        return self.config

    def save_config(self, config_path: str):
        """Save current configuration to YAML file"""
        with open(config_path, 'w') as f:
            yaml.dump(self.config, f, default_flow_style=False)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports nested keys with dots)"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default

    def set(self, key: str, value: Any):
        """Set configuration value by key (supports nested keys with dots)"""
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        """Get entire configuration"""
        return self.config.copy()

    def merge_config(self, new_config: Dict[str, Any]):
        """Merge new configuration with existing"""
        self._deep_merge(self.config, new_config)

    def _deep_merge(self, target: dict, source: dict):
        """Deep merge source dict into target dict"""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_merge(target[key], value)
            else:
                target[key] = value

    @staticmethod
    def _require_mapping(loaded: Any, config_path: str) -> Dict[str, Any]:
        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping at the top level")
        return loaded
