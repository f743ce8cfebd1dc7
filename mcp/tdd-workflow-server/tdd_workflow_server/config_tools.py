"""
Configuration Tools for the TDD Workflow Server

Handles YAML configuration cascade merge:
  1. Built-in defaults (DEFAULT_CONFIG)
  2. Global config:   ~/.claude/ or ~/.copilot/ or ~/.gemini/tdd-workflow.yaml
  3. Project config:  <repo>/.claude/ or .copilot/ or .gemini/tdd-workflow.yaml

Each level overrides the previous. Platform directories are checked
in order (.claude first, then .copilot, then .gemini), using whichever exists.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Optional

import yaml


logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "tdd-workflow.yaml"

DEFAULT_CONFIG = {
    "state_file": ".tasks/workflow-state.json",
    "history_file": ".tasks/workflow-history.jsonl",
    "max_attempts": 3,
    "default_tag": "master",
    "branch_prefix": "tdd/",
    "lock_timeout": 10,
    "abort": {
        "policy": "archive"
    },
    "logging": {
        "level": "INFO"
    }
}

ABORT_POLICIES = ["archive", "delete"]

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _validate_config(config: dict, defaults: dict, prefix: str = "") -> list[str]:
    """Validate config against defaults, returning warnings for unknown keys."""
    warnings = []
    for key, value in config.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if key not in defaults:
            warnings.append(f"Unknown config key: '{full_key}'")
        elif isinstance(value, dict) and isinstance(defaults.get(key), dict):
            warnings.extend(_validate_config(value, defaults[key], full_key))
        elif value is not None:
            expected_type = type(defaults.get(key))
            if expected_type is not type(None) and not isinstance(value, expected_type):
                if not (expected_type in (int, float) and isinstance(value, (int, float))
                        and not isinstance(value, bool)):
                    warnings.append(
                        f"Invalid type for '{full_key}': expected {expected_type.__name__}, got {type(value).__name__}"
                    )
    return warnings


def _deep_merge(base: dict, override: dict) -> dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> Optional[dict]:
    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return None

    if data is not None and not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level must be a mapping", path)
        return None
    return data


PLATFORM_DIRS = [".claude", ".copilot", ".gemini"]


def _get_global_config_path() -> Path:
    """Return global config path, checking multiple platform directories."""
    for platform_dir in PLATFORM_DIRS:
        path = Path.home() / platform_dir / CONFIG_FILE_NAME
        if path.exists():
            return path
    return Path.home() / ".claude" / CONFIG_FILE_NAME


def _get_project_config_path(project_dir: Optional[str] = None) -> Path:
    """Return project config path, checking multiple platform directories."""
    base = Path(project_dir) if project_dir else Path.cwd()
    for platform_dir in PLATFORM_DIRS:
        path = base / platform_dir / CONFIG_FILE_NAME
        if path.exists():
            return path
    return base / ".claude" / CONFIG_FILE_NAME


def _fall_back(config: dict, key: str, warnings: list[str], message: str) -> None:
    warnings.append(f"{message}, using default")
    config[key] = copy.deepcopy(DEFAULT_CONFIG[key])


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_values(config: dict) -> list[str]:
    """Replace values the server cannot run with by their defaults."""
    warnings = []

    for key in ("abort", "logging"):
        if not isinstance(config.get(key), dict):
            _fall_back(config, key, warnings, f"Invalid value for '{key}': {config.get(key)!r}")

    for key in ("state_file", "history_file", "default_tag"):
        value = config.get(key)
        if not isinstance(value, str) or not value.strip():
            _fall_back(config, key, warnings, f"Invalid value for '{key}': {value!r}")

    if not isinstance(config.get("branch_prefix"), str):
        _fall_back(config, "branch_prefix", warnings,
                   f"Invalid value for 'branch_prefix': {config.get('branch_prefix')!r}")

    if not _is_number(config.get("lock_timeout")):
        _fall_back(config, "lock_timeout", warnings,
                   f"Invalid value for 'lock_timeout': {config.get('lock_timeout')!r}")

    max_attempts = config.get("max_attempts")
    if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 1:
        _fall_back(config, "max_attempts", warnings,
                   f"Invalid value for 'max_attempts': {max_attempts!r}")

    policy = config["abort"].get("policy")
    if policy not in ABORT_POLICIES:
        warnings.append(
            f"Invalid value for 'abort.policy': {policy!r}, expected one of {ABORT_POLICIES}"
        )
        config["abort"]["policy"] = DEFAULT_CONFIG["abort"]["policy"]

    level = config["logging"].get("level")
    if isinstance(level, str) and level.upper() in LOG_LEVELS:
        config["logging"]["level"] = level.upper()
    else:
        warnings.append(
            f"Invalid value for 'logging.level': {level!r}, expected one of {LOG_LEVELS}"
        )
        config["logging"]["level"] = DEFAULT_CONFIG["logging"]["level"]
    return warnings


def config_get_effective(project_dir: Optional[str] = None) -> dict[str, Any]:
    config = copy.deepcopy(DEFAULT_CONFIG)
    warnings = []

    global_path = _get_global_config_path()
    global_config = _load_yaml(global_path)
    if global_config:
        warnings.extend(_validate_config(global_config, DEFAULT_CONFIG))
        config = _deep_merge(config, global_config)

    project_path = _get_project_config_path(project_dir)
    project_config = _load_yaml(project_path)
    if project_config:
        warnings.extend(_validate_config(project_config, DEFAULT_CONFIG))
        config = _deep_merge(config, project_config)

    warnings.extend(_check_values(config))

    sources = []
    if global_config:
        sources.append(str(global_path))
    if project_config:
        sources.append(str(project_path))

    return {
        "config": config,
        "sources": sources,
        "warnings": warnings,
        "has_global": global_config is not None,
        "has_project": project_config is not None,
    }


def config_get_paths(project_dir: Optional[str] = None) -> dict[str, Path]:
    """Resolve the state and history files against the project directory."""
    base = Path(project_dir) if project_dir else Path.cwd()
    config = config_get_effective(project_dir)["config"]
    return {
        "state_file": base / config["state_file"],
        "history_file": base / config["history_file"],
    }
