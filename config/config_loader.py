"""YAML loading and merge helpers.

Run configuration is hierarchical:
1. config/defaults.yml (strategy, risk, cost and Monte Carlo defaults)
2. A user run file (symbols, dates, capital, parameter overrides)
3. Command-line overrides
"""

from pathlib import Path
from typing import Dict, Any
import yaml
import copy


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Values in override take precedence. Nested dicts are merged recursively.

    Args:
        base: Base configuration dictionary
        override: Override configuration dictionary

    Returns:
        Merged configuration dictionary
    """
    result = copy.deepcopy(base)

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_yaml_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration file."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        return yaml.safe_load(f) or {}


def drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    """Remove None leaves so unset CLI flags don't override file values."""
    cleaned = {}
    for key, value in values.items():
        if isinstance(value, dict):
            nested = drop_none(value)
            if nested:
                cleaned[key] = nested
        elif value is not None:
            cleaned[key] = value
    return cleaned
