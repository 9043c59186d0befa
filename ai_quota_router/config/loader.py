"""
Configuration management and loading.

Loads the quota catalog, selection thresholds and database settings
from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from ai_quota_router.core.catalog import (
    DEFAULT_CATALOG,
    Backend,
    BackendQuota,
    QuotaCatalog,
    SelectionPolicy,
)
from ai_quota_router.storage.db import DEFAULT_DB_PATH, DEFAULT_TIMEOUT


@dataclass(frozen=True)
class RouterConfig:
    """Complete router configuration."""
    catalog: QuotaCatalog = DEFAULT_CATALOG
    policy: SelectionPolicy = field(default_factory=SelectionPolicy)
    db_path: str = DEFAULT_DB_PATH
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self):
        """Validate database settings."""
        if self.timeout <= 0:
            raise ValueError("database timeout must be > 0")


def load_router_config(path: str) -> RouterConfig:
    """Load and validate router configuration from YAML file.

    Strict validation ensures a misspelled backend or threshold fails at
    startup instead of silently changing which backends get traffic.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated RouterConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Router config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'backends', 'fast_priority', 'selection', 'database'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    # Parse and validate backends
    if 'backends' not in raw_config:
        raise ValueError("Missing required 'backends' section")

    backends_data = raw_config['backends']
    if not isinstance(backends_data, dict) or not backends_data:
        raise ValueError("'backends' must be a non-empty dictionary")

    quotas = [
        _parse_backend_quota(backend_id, data)
        for backend_id, data in backends_data.items()
    ]

    fast_order = _parse_fast_priority(raw_config.get('fast_priority', []))

    try:
        catalog = QuotaCatalog.from_quotas(quotas, fast_order)
    except ValueError as e:
        raise ValueError(f"Invalid 'backends' section: {e}")

    policy = _parse_selection(raw_config.get('selection', {}))

    database_data = raw_config.get('database', {})
    if not isinstance(database_data, dict):
        raise ValueError("'database' must be a dictionary")

    unknown_db_keys = set(database_data.keys()) - {'path', 'timeout'}
    if unknown_db_keys:
        raise ValueError(f"Unknown database keys: {unknown_db_keys}")

    db_path = database_data.get('path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str) or not db_path.strip():
        raise ValueError("'database.path' must be a non-empty string")

    timeout = database_data.get('timeout', DEFAULT_TIMEOUT)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError("'database.timeout' must be > 0")

    return RouterConfig(
        catalog=catalog,
        policy=policy,
        db_path=db_path,
        timeout=float(timeout)
    )


def _require_int(data: Dict, key: str, path: str, optional: bool = False) -> Optional[int]:
    """Read a positive integer, or None for an optional/null value."""
    if key not in data:
        if optional:
            return None
        raise ValueError(f"Missing required '{key}' in {path}")

    value = data[key]
    if value is None and optional:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"'{key}' in {path} must be a positive integer")
    return value


def _parse_backend_quota(backend_id: str, data: Dict) -> BackendQuota:
    """Parse and validate one backend's quota.

    Args:
        backend_id: Provider model id used as the YAML key
        data: Backend configuration data

    Returns:
        Validated BackendQuota

    Raises:
        ValueError: If configuration is invalid
    """
    path = f"backends.{backend_id}"
    backend = Backend.from_id(backend_id)

    if not isinstance(data, dict):
        raise ValueError(f"Backend '{backend_id}' must be a dictionary")

    allowed_keys = {
        'daily_token_limit', 'daily_request_limit', 'priority',
        'tokens_per_minute', 'requests_per_minute'
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    # null daily_token_limit means no daily token ceiling, but it must be explicit
    if 'daily_token_limit' not in data:
        raise ValueError(f"Missing required 'daily_token_limit' in {path}")

    return BackendQuota(
        backend=backend,
        daily_token_limit=_require_int(data, 'daily_token_limit', path, optional=True),
        daily_request_limit=_require_int(data, 'daily_request_limit', path),
        priority_rank=_require_int(data, 'priority', path),
        tokens_per_minute=_require_int(data, 'tokens_per_minute', path, optional=True),
        requests_per_minute=_require_int(data, 'requests_per_minute', path, optional=True)
    )


def _parse_fast_priority(data) -> List[Backend]:
    if not isinstance(data, list):
        raise ValueError("'fast_priority' must be a list of backend ids")
    for backend_id in data:
        if not isinstance(backend_id, str):
            raise ValueError("'fast_priority' must be a list of backend ids")
    return [Backend.from_id(backend_id) for backend_id in data]


def _parse_selection(data: Dict) -> SelectionPolicy:
    """Parse selection thresholds, falling back to defaults per key."""
    if not isinstance(data, dict):
        raise ValueError("'selection' must be a dictionary")

    defaults = SelectionPolicy()
    allowed_keys = {
        'headroom_margin_percent', 'rate_limit_threshold',
        'error_threshold', 'minute_threshold_percent'
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in selection: {unknown_keys}")

    for key in ('headroom_margin_percent', 'minute_threshold_percent'):
        value = data.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' in selection must be a number")
    for key in ('rate_limit_threshold', 'error_threshold'):
        value = data.get(key, 1)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{key}' in selection must be an integer")

    return SelectionPolicy(
        headroom_margin_percent=float(
            data.get('headroom_margin_percent', defaults.headroom_margin_percent)
        ),
        rate_limit_threshold=data.get('rate_limit_threshold', defaults.rate_limit_threshold),
        error_threshold=data.get('error_threshold', defaults.error_threshold),
        minute_threshold_percent=float(
            data.get('minute_threshold_percent', defaults.minute_threshold_percent)
        )
    )
