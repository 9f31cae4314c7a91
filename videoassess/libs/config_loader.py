"""Configuration loading utilities for videoassess."""

import copy
import os
from typing import Any, Optional
import logging

import yaml

LOG = logging.getLogger(__name__)

ConfigType = dict[str, Any]


def _config_dir() -> str:
    # libs -> videoassess -> project root
    current_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(os.path.dirname(current_dir))
    return os.environ.get("VIDEOASSESS_CONFIG_DIR", os.path.join(project_root, "config"))


def merge_configs(orig_conf: Any, new_conf: Any) -> Any:
    """Recursively merge new_conf over orig_conf, leaving both untouched."""
    if isinstance(orig_conf, dict) and isinstance(new_conf, dict):
        result = copy.deepcopy(orig_conf)
        for k, v in new_conf.items():
            if k in orig_conf:
                result[k] = merge_configs(orig_conf[k], v)
            else:
                result[k] = copy.deepcopy(v)
        return result
    return copy.deepcopy(new_conf)


def load_configs(*path_configs: str) -> ConfigType:
    """Load and merge YAML configuration files.

    Later files override earlier ones key by key.

    Args:
        *path_configs: Paths to YAML configuration files

    Returns:
        Merged configuration dictionary

    Raises:
        TypeError: If a config file doesn't contain a dict
        ValueError: If no configs are loaded
    """
    result: ConfigType = {}
    for path in path_configs:
        LOG.info("loading config from %s", path)
        if os.path.isfile(path):
            with open(path, "r", encoding="utf-8") as f:
                c = yaml.safe_load(f)
                if not isinstance(c, dict):
                    raise TypeError(f"YAML config file {path} must be a dict")
                result = merge_configs(result, c)
        else:
            LOG.warning("Skipping missing config file %s", repr(path))
    if not result:
        raise ValueError("No configs loaded")
    return result


def load_default_configs() -> ConfigType:
    """Load config/default.yaml, then config/local.yaml (local overrides, not committed)."""
    config_dir = _config_dir()
    return load_configs(
        os.path.join(config_dir, "default.yaml"),
        os.path.join(config_dir, "local.yaml"),
    )


def load_all_configs(extra_paths: Optional[list[str]] = None) -> ConfigType:
    """Load and merge all YAML configuration files in the config directory.

    Files are loaded in alphabetical order, with later files overriding earlier
    ones. Any ``extra_paths`` are applied last.

    Returns:
        Merged configuration from all YAML files in config/
    """
    config_dir = _config_dir()
    if not os.path.exists(config_dir):
        raise ValueError(f"Config directory not found: {config_dir}")

    yaml_files = [
        os.path.join(config_dir, filename)
        for filename in sorted(os.listdir(config_dir))
        if filename.endswith(('.yaml', '.yml'))
    ]
    if not yaml_files:
        raise ValueError("No YAML files found in config directory")

    yaml_files.extend(extra_paths or [])
    LOG.info("Loading configs from: %s", yaml_files)
    return load_configs(*yaml_files)


def get_config(key: str, config: Optional[ConfigType] = None) -> Any:
    """Get a configuration value by dot-separated key.

    Args:
        key: Dot-separated path to config value (e.g., "grading.fairness_bonus.enabled")
        config: Configuration dict (if None, loads default configs)

    Returns:
        Configuration value

    Raises:
        KeyError: If key not found in configuration
    """
    if config is None:
        config = load_default_configs()

    keys = key.split('.')
    value: Any = config
    for i, k in enumerate(keys):
        if not isinstance(value, dict):
            raise KeyError(f"Cannot access {k} in non-dict value at {'.'.join(keys[:i])}")
        if k not in value:
            raise KeyError(f"Key {key} not found in configuration")
        value = value[k]
    return value
