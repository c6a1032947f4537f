"""
Configuration loading and management for ldap7.

This module handles loading configuration and desired-state files from YAML,
with environment variable overrides, validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from ldap7.models import DesiredState
from ldap7.uid import UID_MAX, UID_MIN

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


def _read_yaml(path: str, what: str) -> Any:
    try:
        with open(path, 'r') as f:
            return yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"{what} file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {what.lower()} file: {e}")


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'sync.data_file': 'LDAP7_DATA_FILE',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        self.config = _read_yaml(self.config_path, 'Configuration') or {}
        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        ldap_config = self.config.get('ldap') or {}
        required_ldap_fields = ['server_url', 'bind_dn', 'bind_password', 'base_dn']
        for field in required_ldap_fields:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        server_url = str(ldap_config.get('server_url', ''))
        if server_url and not server_url.lower().startswith(('ldap://', 'ldaps://')):
            errors.append(f"LDAP server_url must start with ldap:// or ldaps://: {server_url}")

        if ldap_config.get('use_ssl') and ldap_config.get('start_tls'):
            errors.append("LDAP use_ssl and start_tls are mutually exclusive")

        page_size = ldap_config.get('page_size', 500)
        if not isinstance(page_size, int) or page_size < 1:
            errors.append(f"LDAP page_size must be a positive integer: {page_size}")

        sync_config = self.config.get('sync') or {}
        uid_min = sync_config.get('uid_min', UID_MIN)
        uid_max = sync_config.get('uid_max', UID_MAX)
        if not isinstance(uid_min, int) or not isinstance(uid_max, int):
            errors.append("sync.uid_min and sync.uid_max must be integers")
        elif uid_min > uid_max:
            errors.append(f"sync.uid_min ({uid_min}) is greater than sync.uid_max ({uid_max})")
        elif uid_max > UID_MAX:
            errors.append(f"sync.uid_max cannot exceed {UID_MAX}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'start_tls': False,
            'verify_ssl': True,
            'connection_timeout': 10,
            'receive_timeout': 10,
            'page_size': 500,
        }
        ldap_config = self.config.setdefault('ldap', {})
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'WARNING',
            'audit_file': 'audit.log',
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        sync_defaults = {
            'data_file': 'directory.yaml',
            'uid_min': UID_MIN,
            'uid_max': UID_MAX,
        }
        sync_config = self.config.setdefault('sync', {})
        for key, value in sync_defaults.items():
            sync_config.setdefault(key, value)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()


def load_desired_state(data_path: str) -> DesiredState:
    """
    Load the schools, groups and users the directory should contain.

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    data = _read_yaml(data_path, 'Data') or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Data file must contain a mapping: {data_path}")

    try:
        state = DesiredState.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid entry in data file {data_path}: {e!r}")

    logger.info(f"Desired state loaded from {data_path}: {len(state.schools)} schools, "
                f"{len(state.groups)} groups, {len(state.users)} users")
    return state
