#!/usr/bin/env python3
"""
Configuration - Instances and exporter settings

Loads the YAML configuration file and builds one Instance per entry of the
'instances' list. Global settings default to the values the exporter
has always used when run without a config section for them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError

DEFAULT_HOST = '127.0.0.1'
DEFAULT_PORT = 11211

INSTANCE_KEYS = ('name', 'socket', 'host', 'port')

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Instance:
    """One memcached daemon to poll"""

    name: str
    socket: Optional[str] = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @property
    def address(self) -> str:
        if self.socket:
            return f"unix:{self.socket}"
        return f"{self.host}:{self.port}"


@dataclass
class ExporterConfig:
    """Global settings plus the configured instances"""

    instances: List[Instance]
    exporter_port: int = 9150
    collect_interval: float = 10.0
    max_concurrent: int = 10
    buffer_size: int = 4096
    region: Optional[str] = None
    default_labels: Dict[str, str] = field(default_factory=dict)


def parse_port(value: Any) -> int:
    """Port as given in the config; an empty string means the default port"""
    if value is None:
        return DEFAULT_PORT
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return DEFAULT_PORT
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port: {value!r}")
    if not 0 < port < 65536:
        raise ConfigError(f"Port out of range: {port}")
    return port


def build_instance(entry: Dict[str, Any]) -> Instance:
    """Create an Instance from one entry of the 'instances' list"""
    if not isinstance(entry, dict):
        raise ConfigError(f"Instance entry must be a mapping, got {type(entry).__name__}")

    for key in entry:
        if key not in INSTANCE_KEYS:
            raise ConfigError(f"Option '{key}' not allowed in instance {entry.get('name')!r}")

    name = entry.get('name')
    if not isinstance(name, str) or not name:
        raise ConfigError("Every instance needs a non-empty 'name'")

    socket_path = entry.get('socket') or None
    host = entry.get('host') or DEFAULT_HOST
    port = parse_port(entry.get('port'))

    if socket_path and ('host' in entry or 'port' in entry):
        logger.warning(f"Instance {name}: 'socket' is set, ignoring host/port")

    return Instance(name=name, socket=socket_path, host=str(host), port=port)


def build_config(raw: Dict[str, Any]) -> ExporterConfig:
    """Validate a parsed config document"""
    if not raw or 'instances' not in raw:
        raise ConfigError("Configuration file must contain 'instances' section")

    entries = raw['instances']
    if not isinstance(entries, list) or not entries:
        raise ConfigError("'instances' must be a non-empty list")

    instances = []
    seen = set()
    for entry in entries:
        instance = build_instance(entry)
        if instance.name in seen:
            raise ConfigError(f"Duplicate instance name: {instance.name}")
        seen.add(instance.name)
        instances.append(instance)

    try:
        collect_interval = float(raw.get('collect_interval', 10.0))
        exporter_port = int(raw.get('exporter_port', 9150))
        max_concurrent = int(raw.get('max_concurrent', 10))
        buffer_size = int(raw.get('buffer_size', 4096))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid global setting: {e}")

    if collect_interval <= 0:
        raise ConfigError("'collect_interval' must be positive")
    if max_concurrent < 1:
        raise ConfigError("'max_concurrent' must be at least 1")
    if buffer_size < 16:
        raise ConfigError("'buffer_size' is too small")

    region = raw.get('region')
    default_labels = {}
    if region:
        default_labels['region'] = str(region)

    return ExporterConfig(
        instances=instances,
        exporter_port=exporter_port,
        collect_interval=collect_interval,
        max_concurrent=max_concurrent,
        buffer_size=buffer_size,
        region=region,
        default_labels=default_labels,
    )


def load_config(config_file: str) -> ExporterConfig:
    """Read and validate a YAML configuration file"""
    try:
        with open(config_file, 'r') as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {config_file}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML configuration: {e}")

    if raw is not None and not isinstance(raw, dict):
        raise ConfigError("Configuration file must contain a mapping")

    return build_config(raw)
