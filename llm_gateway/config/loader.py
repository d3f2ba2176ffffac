"""
Configuration management and loading.

Handles gateway settings read from an optional YAML file.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.pricing import REFRESH_INTERVAL
from ..sdk.gateway import DEFAULT_ENDPOINT, DEFAULT_TIMEOUT
from ..storage.db import DEFAULT_DB_PATH

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class GatewaySettings:
    """Settings for storage, provider requests, pricing and logging."""
    db_path: str = DEFAULT_DB_PATH
    default_endpoint: str = DEFAULT_ENDPOINT
    request_timeout: float = DEFAULT_TIMEOUT
    refresh_interval_hours: float = REFRESH_INTERVAL.total_seconds() / 3600
    price_feed_url: Optional[str] = None
    price_feed_timeout: float = 10.0
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate settings values."""
        if not self.db_path:
            raise ValueError("database.path cannot be empty")
        if not self.default_endpoint:
            raise ValueError("gateway.default_endpoint cannot be empty")
        if self.request_timeout <= 0:
            raise ValueError("gateway.request_timeout must be > 0")
        if self.refresh_interval_hours <= 0:
            raise ValueError("pricing.refresh_interval_hours must be > 0")
        if self.price_feed_timeout <= 0:
            raise ValueError("pricing.feed_timeout must be > 0")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {list(LOG_LEVELS)}")


# section -> {yaml key: settings field}
_SECTIONS: Dict[str, Dict[str, str]] = {
    "database": {"path": "db_path"},
    "gateway": {"default_endpoint": "default_endpoint", "request_timeout": "request_timeout"},
    "pricing": {
        "refresh_interval_hours": "refresh_interval_hours",
        "feed_url": "price_feed_url",
        "feed_timeout": "price_feed_timeout",
    },
    "logging": {"level": "log_level"},
}

_NUMERIC_FIELDS = {"request_timeout", "refresh_interval_hours", "price_feed_timeout"}


def load_settings(path: Optional[str] = None) -> GatewaySettings:
    """Load and validate gateway settings from a YAML file.

    Strict validation ensures no silent misconfigurations: unknown keys and
    wrongly typed values are rejected rather than ignored.

    Args:
        path: Path to YAML settings file, or None for the defaults

    Returns:
        Validated GatewaySettings object

    Raises:
        FileNotFoundError: If the settings file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If settings are invalid
    """
    if path is None:
        return GatewaySettings()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in settings file {path}: {e}")

    if raw_config is None:
        return GatewaySettings()
    if not isinstance(raw_config, dict):
        raise ValueError("Settings file must contain a mapping")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown settings sections: {unknown_keys}")

    values: Dict[str, Any] = {}
    for section, data in raw_config.items():
        if data is None:
            continue
        if not isinstance(data, dict):
            raise ValueError(f"'{section}' must be a dictionary")

        allowed = _SECTIONS[section]
        unknown = set(data.keys()) - set(allowed)
        if unknown:
            raise ValueError(f"Unknown keys in {section}: {unknown}")

        for key, value in data.items():
            values[allowed[key]] = _parse_value(allowed[key], value, f"{section}.{key}")

    return GatewaySettings(**values)


def _parse_value(field_name: str, value: Any, path: str) -> Any:
    """Check the type of a single settings value.

    Raises:
        ValueError: If the value has the wrong type
    """
    if field_name in _NUMERIC_FIELDS:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{path}' must be a number")
        return float(value)

    if field_name == "price_feed_url" and value is None:
        return None

    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")

    if field_name == "log_level":
        return value.upper()
    return value
