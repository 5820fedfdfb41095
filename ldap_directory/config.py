"""
Configuration loading and management for LDAP Directory Integration.

This module handles loading configuration from YAML files and environment variables,
validating the directory settings once and turning them into immutable
DirectoryConfig records that the rest of the package consumes.
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

ENCRYPTION_NONE = 'none'
ENCRYPTION_STARTTLS = 'starttls'
ENCRYPTION_TYPES = (ENCRYPTION_NONE, ENCRYPTION_STARTTLS)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass(frozen=True)
class AttributeMapping:
    """
    Names of the directory attributes that feed each user field.

    An empty string means the field is not mapped and is never populated.
    """
    user_rdn: str = 'uid'
    user_firstname: str = 'givenName'
    user_lastname: str = 'sn'
    user_email: str = 'mail'
    user_display_name: str = ''
    user_group_name: str = ''
    group_member: str = 'member'

    def user_attributes(self) -> List[str]:
        """Attributes requested for user entries, without duplicates."""
        names = [self.user_rdn, self.user_firstname, self.user_lastname,
                 self.user_email, self.user_display_name, 'cn']
        attributes = []
        for name in names:
            if name and name.lower() not in [a.lower() for a in attributes]:
                attributes.append(name)
        return attributes

    def group_attributes(self) -> List[str]:
        """Attributes requested for group entries."""
        if self.group_member and self.group_member.lower() != 'cn':
            return ['cn', self.group_member]
        return ['cn']


@dataclass(frozen=True)
class DirectoryConfig:
    """Immutable per-operation directory configuration."""
    server_host: str
    base_dn: str
    bind_dn: str
    bind_password: str = field(default='', repr=False)
    server_port: int = 389
    encryption_type: str = ENCRYPTION_NONE
    user_filter: str = ''
    group_filter: str = ''
    attributes: AttributeMapping = field(default_factory=AttributeMapping)
    default_permission_add_space: bool = False
    disable_logout: bool = False
    verify_ssl: bool = True
    ca_cert_file: Optional[str] = None
    connection_timeout: int = 10
    receive_timeout: int = 10

    @property
    def address(self) -> str:
        return f"{self.server_host}:{self.server_port}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DirectoryConfig':
        """
        Build a validated configuration from a parsed mapping.

        Args:
            data: The ``ldap`` section of the YAML file, or an equivalent
                payload already decoded by the caller

        Returns:
            DirectoryConfig instance

        Raises:
            ConfigurationError: If any field is missing or invalid
        """
        if not isinstance(data, dict):
            raise ConfigurationError("LDAP configuration must be a mapping")

        errors = validate_directory_settings(data)
        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

        mapping_data = data.get('attributes') or {}
        attributes = AttributeMapping(**{
            key: (value or '').strip() for key, value in mapping_data.items()
        })

        return cls(
            server_host=data['server_host'].strip(),
            server_port=int(data.get('server_port', 389)),
            encryption_type=str(data.get('encryption_type', ENCRYPTION_NONE)).lower(),
            base_dn=data['base_dn'].strip(),
            bind_dn=data['bind_dn'].strip(),
            bind_password=str(data.get('bind_password') or ''),
            user_filter=(data.get('user_filter') or '').strip(),
            group_filter=(data.get('group_filter') or '').strip(),
            attributes=attributes,
            default_permission_add_space=bool(data.get('default_permission_add_space', False)),
            disable_logout=bool(data.get('disable_logout', False)),
            verify_ssl=bool(data.get('verify_ssl', True)),
            ca_cert_file=data.get('ca_cert_file'),
            connection_timeout=int(data.get('connection_timeout', 10)),
            receive_timeout=int(data.get('receive_timeout', 10)),
        )


def validate_directory_settings(data: Dict[str, Any]) -> List[str]:
    """Return every problem found in an ``ldap`` configuration mapping."""
    errors = []

    for name in ['server_host', 'base_dn', 'bind_dn']:
        value = data.get(name)
        if not value or not isinstance(value, str) or not value.strip():
            errors.append(f"Missing required LDAP field: {name}")

    port = data.get('server_port', 389)
    try:
        port = int(port)
        if not 0 < port < 65536:
            errors.append(f"Invalid server_port: {port}")
    except (TypeError, ValueError):
        errors.append(f"Invalid server_port: {port!r}")

    encryption = str(data.get('encryption_type', ENCRYPTION_NONE)).lower()
    if encryption not in ENCRYPTION_TYPES:
        errors.append(f"Invalid encryption_type '{encryption}', expected one of: {', '.join(ENCRYPTION_TYPES)}")

    for name in ['connection_timeout', 'receive_timeout']:
        if name in data:
            try:
                if int(data[name]) <= 0:
                    errors.append(f"{name} must be positive")
            except (TypeError, ValueError):
                errors.append(f"Invalid {name}: {data[name]!r}")

    for name in ['default_permission_add_space', 'disable_logout', 'verify_ssl']:
        if name in data and not isinstance(data[name], bool):
            errors.append(f"{name} must be true or false, got {data[name]!r}")

    mapping = data.get('attributes') or {}
    if not isinstance(mapping, dict):
        errors.append("attributes must be a mapping")
        return errors

    known = set(AttributeMapping.__dataclass_fields__)
    for key, value in mapping.items():
        if key not in known:
            errors.append(f"Unknown attribute mapping: {key}")
        elif value is not None and not isinstance(value, str):
            errors.append(f"Attribute mapping {key} must be a string")

    defaults = AttributeMapping()
    for required in ['user_rdn', 'user_email']:
        value = mapping.get(required, getattr(defaults, required))
        if not value or not str(value).strip():
            errors.append(f"Attribute mapping {required} must not be empty")

    return errors


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
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
            Parsed configuration dictionary; the ``ldap`` section is replaced
            by a DirectoryConfig instance

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._apply_defaults()

        if 'ldap' not in self.config:
            raise ConfigurationError("Missing required section: ldap")
        self.config['ldap'] = DirectoryConfig.from_dict(self.config['ldap'])

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

    def _apply_defaults(self):
        """Apply default values for optional configuration sections."""
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)


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
