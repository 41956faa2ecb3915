"""
Covenant PSBT - Configuration

Hierarchical configuration for callers of the transaction builders:
defaults, then an optional profile, then the first configuration file
found, then ``COVENANT_`` environment variables. Builders themselves take
explicit parameters; configuration only supplies the defaults a caller
passes in (network, fee rate, fee model) and the logging level.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .address import NETWORKS


# Configuration file locations in order of precedence (highest to lowest)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / '.covenant.yml',
    Path.cwd() / '.covenant.json',
    Path.home() / '.covenant' / 'config.yml',
    Path.home() / '.covenant' / 'config.json',
]

# Environment variable prefix; nested keys are separated by a double
# underscore, e.g. COVENANT_FEES__DEFAULT_FEE_RATE=5
ENV_PREFIX = 'COVENANT_'
ENV_NESTING_SEPARATOR = '__'

FEE_MODELS = ('heuristic', 'script_aware')

DEFAULT_CONFIG = {
    'network': {
        'type': 'testnet',
    },
    'fees': {
        'default_fee_rate': 1,
        'model': 'heuristic',
        'min_fee_rate': 1,
        'max_fee_rate': 500,
    },
    'logging': {
        'level': 'WARNING',
    },
}

PROFILES = {
    'production': {
        'network': {'type': 'bitcoin'},
        'fees': {'default_fee_rate': 10},
        'logging': {'level': 'WARNING'},
    },
    'testnet': {
        'network': {'type': 'testnet'},
        'logging': {'level': 'INFO'},
    },
    'development': {
        'network': {'type': 'regtest'},
        'logging': {'level': 'DEBUG'},
    },
}

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ConfigurationError(Exception):
    """Raised when a configuration file cannot be read."""
    pass


class ConfigurationManager:
    """Manages hierarchical configuration with environment variable support."""

    def __init__(
        self,
        config_file: Optional[str] = None,
        profile: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None
    ):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
            profile: Configuration profile (production, testnet, development)
            environ: Environment mapping (defaults to ``os.environ``)
        """
        self.logger = logging.getLogger(__name__)
        self.config_file = config_file
        self.profile = profile
        self.environ = os.environ if environ is None else environ
        self._config_cache: Optional[Dict[str, Any]] = None
        self.sources: List[str] = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in hierarchical order.

        Returns:
            Merged configuration dictionary
        """
        if self._config_cache is not None:
            return self._config_cache

        configs = [DEFAULT_CONFIG]
        self.sources = ['defaults']

        if self.profile:
            if self.profile not in PROFILES:
                raise ConfigurationError(f"Unknown profile: {self.profile}")
            configs.append(PROFILES[self.profile])
            self.sources.append(f"profile:{self.profile}")

        if self.config_file:
            configs.append(self._load_config_file(Path(self.config_file)))
            self.sources.append(f"file:{self.config_file}")
        else:
            for config_path in CONFIG_SEARCH_PATHS:
                if config_path.exists():
                    configs.append(self._load_config_file(config_path))
                    self.sources.append(f"file:{config_path}")
                    self.logger.debug(f"Loaded config from {config_path}")
                    break

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self.sources.append("environment")

        self._config_cache = self._deep_merge(*configs)
        return self._config_cache

    def _load_config_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file."""
        try:
            with open(path, 'r') as f:
                if path.suffix in ('.yml', '.yaml'):
                    data = yaml.safe_load(f)
                elif path.suffix == '.json':
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unknown config file format: {path}")
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load config from {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config: Dict[str, Any] = {}

        for key, value in self.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTING_SEPARATOR)
            current = env_config
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool]:
        """Parse environment variable value to appropriate type."""
        if value.lower() in ('true', 'yes'):
            return True
        if value.lower() in ('false', 'no'):
            return False

        try:
            if '.' in value:
                return float(value)
            return int(value)
        except ValueError:
            return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries."""
        result: Dict[str, Any] = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                elif isinstance(value, dict):
                    result[key] = self._deep_merge(value)
                else:
                    result[key] = value

        return result

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'fees.default_fee_rate')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        current = self.load()
        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value by dot-notation path."""
        config = self.load()
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = value

    def save(self, path: str) -> None:
        """Save current configuration as YAML."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.load(), f, default_flow_style=False, sort_keys=False)
        self.logger.info(f"Configuration saved to {path}")

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        network_type = self.get('network.type')
        if network_type not in NETWORKS:
            errors.append(f"Invalid network type: {network_type}")

        model = self.get('fees.model')
        if model not in FEE_MODELS:
            errors.append(f"Invalid fee model: {model}")

        min_fee = self.get('fees.min_fee_rate')
        max_fee = self.get('fees.max_fee_rate')
        default_fee = self.get('fees.default_fee_rate')
        for name, value in (('min_fee_rate', min_fee), ('max_fee_rate', max_fee),
                            ('default_fee_rate', default_fee)):
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                errors.append(f"fees.{name} must be a positive integer")
        if not errors and min_fee > max_fee:
            errors.append("Minimum fee rate cannot exceed maximum fee rate")
        if not errors and not min_fee <= default_fee <= max_fee:
            errors.append("Default fee rate must be between minimum and maximum fee rate")

        level = self.get('logging.level')
        if not isinstance(level, str) or not isinstance(logging.getLevelName(level.upper()), int):
            errors.append(f"Invalid logging level: {level}")

        return errors


def configure_logging(level: Union[int, str] = logging.WARNING) -> logging.Logger:
    """
    Send package log records to stderr.

    Nothing is configured on import; applications opt in by calling this.

    Args:
        level: Logging level name or number

    Returns:
        The configured package logger
    """
    if isinstance(level, str):
        level = level.upper()

    formatter = logging.Formatter(LOG_FORMAT)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logger = logging.getLogger('covenant_psbt')
    logger.setLevel(level)
    for existing in list(logger.handlers):
        if getattr(existing, '_covenant_handler', False):
            logger.removeHandler(existing)
    handler._covenant_handler = True
    logger.addHandler(handler)
    return logger


__all__ = [
    'ConfigurationManager',
    'ConfigurationError',
    'DEFAULT_CONFIG',
    'PROFILES',
    'FEE_MODELS',
    'configure_logging',
]
