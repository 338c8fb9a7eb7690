"""
Configuration management and loading.

Handles the database location and the subject to meter mapping.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from power_bill_tracker.core.meters import DEFAULT_METER_MAPPING, MeterMapping
from power_bill_tracker.storage.db import DEFAULT_DB_PATH

CONFIG_ENV_VAR = "POWER_BILL_TRACKER_CONFIG"


@dataclass(frozen=True)
class DatabaseConfig:
    """Where records live and how strictly periods are kept unique."""
    path: str = DEFAULT_DB_PATH
    enforce_unique_period: bool = False

    def __post_init__(self):
        """Validate the database path is set."""
        if not self.path or not self.path.strip():
            raise ValueError("database path cannot be empty")


@dataclass(frozen=True)
class TrackerConfig:
    """Complete tracker configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    meters: MeterMapping = DEFAULT_METER_MAPPING


def load_tracker_config(path: Optional[str] = None) -> TrackerConfig:
    """Load and validate tracker configuration from a YAML file.

    Without `path`, the file named by POWER_BILL_TRACKER_CONFIG is used; if
    that isn't set either, the defaults are returned.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated TrackerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return TrackerConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Tracker config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        return TrackerConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'database', 'meters'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    database = _parse_database_config(raw_config.get('database') or {})
    meters = _parse_meter_mapping(raw_config.get('meters'))

    return TrackerConfig(database=database, meters=meters)


def _parse_database_config(data: Dict) -> DatabaseConfig:
    """Parse and validate the database section."""
    if not isinstance(data, dict):
        raise ValueError("'database' must be a dictionary")

    allowed_keys = {'path', 'enforce_unique_period'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown database keys: {unknown_keys}")

    db_path = data.get('path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str):
        raise ValueError("'database.path' must be a string")

    enforce_unique = data.get('enforce_unique_period', False)
    if not isinstance(enforce_unique, bool):
        raise ValueError("'database.enforce_unique_period' must be true or false")

    return DatabaseConfig(path=db_path, enforce_unique_period=enforce_unique)


def _parse_meter_mapping(data) -> MeterMapping:
    """Parse the subject -> meter section.

    Subject numbers must be quoted in YAML: an unquoted 012892858 would be
    read as a number and lose its leading zero.
    """
    if data is None:
        return DEFAULT_METER_MAPPING
    if not isinstance(data, dict):
        raise ValueError("'meters' must be a dictionary")

    meters = {}
    for subject, meter in data.items():
        if not isinstance(subject, str):
            raise ValueError(f"Subject number {subject!r} must be a quoted string")
        if not isinstance(meter, (str, int)) or isinstance(meter, bool) or str(meter).strip() == "":
            raise ValueError(f"Meter code for subject '{subject}' must be a non-empty string")
        meters[subject.strip()] = str(meter).strip()

    return MeterMapping(meters)
