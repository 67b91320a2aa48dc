#!/usr/bin/env python3
"""
Zone Manager Configuration

Default settings for zone generation, deployment, backup and monitoring, plus
loading of an optional YAML (or JSON) configuration file. Command line flags
are applied on top of the loaded configuration by the CLI.

Configuration file format (YAML):

    zone_dir: /etc/bind/zones
    forward_zone: devops.lab
    reverse_zone: 1.168.192.in-addr.arpa
    primary_ns: ns1.devops.lab.
    admin_contact: admin.devops.lab.
    default_ttl: 86400
    backup_root: /backup
    dns_server: 127.0.0.1
    latency_threshold_ms: 100
    reload_command: [systemctl, restart, bind9]
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from zone_errors import ConfigError

DEFAULT_CONFIG: Dict[str, Any] = {
    # Zones
    'zone_dir': '/etc/bind/zones',
    'forward_zone': 'devops.lab',
    'reverse_zone': '1.168.192.in-addr.arpa',
    'forward_zone_file': None,   # derived from zone_dir + forward_zone when unset
    'reverse_zone_file': None,   # derived from zone_dir + reverse_zone when unset
    'primary_ns': 'ns1.devops.lab.',
    'admin_contact': 'admin.devops.lab.',
    'default_ttl': 86400,

    # Validation
    'checker': 'named-checkzone',
    'checkzone_command': ['named-checkzone'],
    'checker_timeout': 30,

    # Deployment
    'zone_file_mode': 0o640,
    'zone_owner': 'root',
    'zone_group': 'bind',
    'reload_command': ['systemctl', 'restart', 'bind9'],
    'reload_timeout': 60,

    # Backup
    'backup_root': '/backup',
    'dns_backup_category': 'dns',
    'bind_config_dir': '/etc/bind',
    'dns_retention_days': 30,

    # Monitoring
    'dns_server': '127.0.0.1',
    'latency_threshold_ms': 100,
    'query_timeout': 2.0,

    # Logging
    'log_file': 'logs/zone_manager.log',
}

CHECKERS = ('named-checkzone', 'dnspython')


def reverse_zone_file_name(reverse_zone: str) -> str:
    """Return the conventional file name for a reverse zone

    1.168.192.in-addr.arpa -> db.192.168.1
    """
    name = reverse_zone.rstrip('.')
    suffix = '.in-addr.arpa'
    if name.lower().endswith(suffix):
        octets = name[:-len(suffix)].split('.')
        return 'db.' + '.'.join(reversed(octets))
    return f"db.{name}"


def zone_file_paths(config: Dict[str, Any]) -> Dict[str, Path]:
    """Resolve the live forward and reverse zone file paths"""
    zone_dir = Path(config['zone_dir'])
    forward = config.get('forward_zone_file') or zone_dir / f"db.{config['forward_zone'].rstrip('.')}"
    reverse = config.get('reverse_zone_file') or zone_dir / reverse_zone_file_name(config['reverse_zone'])
    return {'forward': Path(forward), 'reverse': Path(reverse)}


def _validate_config(config: Dict[str, Any]):
    """Check value types that would otherwise fail deep inside a run"""
    if config['checker'] not in CHECKERS:
        raise ConfigError(f"Unknown checker '{config['checker']}' (expected one of: {', '.join(CHECKERS)})")

    for key in ('checkzone_command', 'reload_command'):
        value = config[key]
        if isinstance(value, str):
            config[key] = value.split()
        elif not isinstance(value, list) or not value:
            raise ConfigError(f"'{key}' must be a command string or a non-empty list")

    for key in ('default_ttl', 'dns_retention_days', 'latency_threshold_ms'):
        try:
            config[key] = int(config[key])
        except (TypeError, ValueError):
            raise ConfigError(f"'{key}' must be an integer, got {config[key]!r}")
        if config[key] < 0:
            raise ConfigError(f"'{key}' must not be negative")

    for key in ('query_timeout', 'checker_timeout', 'reload_timeout'):
        try:
            config[key] = float(config[key])
        except (TypeError, ValueError):
            raise ConfigError(f"'{key}' must be a number, got {config[key]!r}")
        if config[key] <= 0:
            raise ConfigError(f"'{key}' must be positive")

    # YAML users may write the mode as a string such as "0640"
    if isinstance(config['zone_file_mode'], str):
        try:
            config['zone_file_mode'] = int(config['zone_file_mode'], 8)
        except ValueError:
            raise ConfigError(f"'zone_file_mode' is not an octal mode: {config['zone_file_mode']!r}")


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a YAML or JSON file merged over the defaults"""
    config = dict(DEFAULT_CONFIG)

    if config_file:
        if not os.path.exists(config_file):
            raise ConfigError(f"Config file '{config_file}' not found")
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file {config_file}: {e}")

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {config_file} must contain a mapping")

        unknown = sorted(set(loaded) - set(DEFAULT_CONFIG))
        if unknown:
            raise ConfigError(f"Unknown config keys in {config_file}: {', '.join(unknown)}")

        config.update(loaded)

    _validate_config(config)
    return config
