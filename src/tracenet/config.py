"""
Configuration for tracenet

Loads config.yaml with ${VAR:default} environment substitution and validates
it into a Settings model. Event ids are provider specific and can be
overridden per deployment.
"""

import logging
import os
import re
from pathlib import Path
from typing import Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

TCPIP_PROVIDER = "2f07e2ee-15db-40f1-90ef-9d7ba282188a"
DNS_CLIENT_PROVIDER = "1c95126e-7eea-49a9-a3fe-a378b03ddb4d"

# Event kind -> event id
DEFAULT_TCP_EVENTS = {
    "connect": 1002,
    "accept_listener_complete": 1017,
    "close": 1038,
    "template_changed": 1039,
    "receive": 1074,
    "retransmit": 1185,
    "connection_rundown": 1300,
    "send": 1332,
    "tail_loss_probe": 1391,
    "connection_summary": 1477,
}

DEFAULT_DNS_EVENTS = {
    "server_timeout": 1015,
    "query_start": 3006,
    "query_complete": 3008,
    "server_attempt": 3009,
    "adapter_query_start": 3019,
}


class ConfigError(ValueError):
    """Configuration file is unreadable or invalid."""


def normalize_provider(value: str) -> str:
    """Lower-case GUID without braces."""
    return value.strip().strip('{}').lower()


class Settings(BaseModel):
    """Effective engine settings"""
    tcp_provider: str = TCPIP_PROVIDER
    dns_provider: str = DNS_CLIENT_PROVIDER
    tcp_events: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_TCP_EVENTS))
    dns_events: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_DNS_EVENTS))
    db_path: str = "data/tracenet.duckdb"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator('tcp_provider', 'dns_provider')
    @classmethod
    def normalize_guid(cls, v):
        return normalize_provider(v)

    @field_validator('tcp_events')
    @classmethod
    def merge_tcp_defaults(cls, v):
        unknown = set(v) - set(DEFAULT_TCP_EVENTS)
        if unknown:
            raise ValueError(f"unknown TCP event kinds: {sorted(unknown)}")
        return {**DEFAULT_TCP_EVENTS, **v}

    @field_validator('dns_events')
    @classmethod
    def merge_dns_defaults(cls, v):
        unknown = set(v) - set(DEFAULT_DNS_EVENTS)
        if unknown:
            raise ValueError(f"unknown DNS event kinds: {sorted(unknown)}")
        return {**DEFAULT_DNS_EVENTS, **v}

    @field_validator('log_level')
    @classmethod
    def check_level(cls, v):
        v = v.upper()
        if v not in ('DEBUG', 'INFO', 'WARNING', 'ERROR'):
            raise ValueError(f"invalid log level {v}")
        return v


def _substitute_env(content: str) -> str:
    # Replace ${VAR:default} patterns
    def replace_env(match):
        var_expr = match.group(1)
        if ':' in var_expr:
            var_name, default = var_expr.split(':', 1)
        else:
            var_name = var_expr
            default = ''
        return os.environ.get(var_name, default)

    return re.sub(r'\$\{([^}]+)\}', replace_env, content)


def load_config(config_path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load settings from a YAML file.

    Args:
        config_path: Path to config.yaml; None or a missing file gives defaults

    Returns:
        Validated Settings

    Raises:
        ConfigError: file cannot be parsed or fails validation
    """
    if config_path is None:
        return Settings()

    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Configuration file not found: {path}, using defaults")
        return Settings()

    try:
        with open(path, 'r') as f:
            content = _substitute_env(f.read())
        raw = yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    try:
        settings = Settings(**raw)
    except ValidationError as e:
        raise ConfigError(f"{path}: {e}") from e

    logger.info(f"Loaded configuration from {path}")
    return settings
