"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from .models import EngineConfig

logger = logging.getLogger(__name__)

# Cache for the CLI process; the engine itself always receives config explicitly
_config_cache: EngineConfig | None = None

_TRUE_VALUES = ("true", "1", "yes", "on")


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """
    Get path to user configuration file.

    Returns:
        Path to ~/.config/imgauto/config.json (or XDG equivalent)
    """
    return get_xdg_config_home() / "imgauto" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """
    Get path to project configuration file.

    Args:
        cwd: Working directory to search from (defaults to current directory)

    Returns:
        Path to .imgauto.json in the project root
    """
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".imgauto.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`. Nested dicts
    are merged, not replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10}}, {"b": {"y": 2}})
        {'a': 1, 'b': {'x': 10, 'y': 2}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dict, or None if file doesn't exist or can't be parsed
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            return None
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None


def _set_nested(config: dict[str, Any], section: str, key: str, value: Any) -> None:
    config.setdefault(section, {})
    config[section][key] = value


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_VALUES


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Env vars have the highest precedence and override all config files.

    Supported env vars:
        IMGAUTO_FORCE_PUSH_BRANCH - features.git_force_push_branch
        IMGAUTO_SHALLOW_CLONE - features.git_shallow_clone
        IMGAUTO_ALL_BRANCH_REFERENCES - features.git_all_branch_references
        IMGAUTO_NO_CROSS_NAMESPACE_REFS - features.no_cross_namespace_refs
        IMGAUTO_DEFAULT_BRANCH - git.default_branch
        IMGAUTO_GIT_TIMEOUT - git.default_timeout_seconds
        IMGAUTO_LOG_LEVEL - log_level
        IMGAUTO_SECRETS_DIR - secrets_dir

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    feature_vars = {
        "IMGAUTO_FORCE_PUSH_BRANCH": "git_force_push_branch",
        "IMGAUTO_SHALLOW_CLONE": "git_shallow_clone",
        "IMGAUTO_ALL_BRANCH_REFERENCES": "git_all_branch_references",
        "IMGAUTO_NO_CROSS_NAMESPACE_REFS": "no_cross_namespace_refs",
    }
    for env_name, field in feature_vars.items():
        if (raw := os.environ.get(env_name)) is not None and raw != "":
            _set_nested(result, "features", field, _parse_bool(raw))

    if branch := os.environ.get("IMGAUTO_DEFAULT_BRANCH"):
        _set_nested(result, "git", "default_branch", branch)

    if timeout_str := os.environ.get("IMGAUTO_GIT_TIMEOUT"):
        try:
            timeout = float(timeout_str)
            if timeout <= 0:
                logger.warning("IMGAUTO_GIT_TIMEOUT must be > 0, got %s, ignoring", timeout)
            else:
                _set_nested(result, "git", "default_timeout_seconds", timeout)
        except ValueError:
            logger.warning("Invalid IMGAUTO_GIT_TIMEOUT value '%s', ignoring", timeout_str)

    if level := os.environ.get("IMGAUTO_LOG_LEVEL"):
        result["log_level"] = level

    if secrets_dir := os.environ.get("IMGAUTO_SECRETS_DIR"):
        result["secrets_dir"] = secrets_dir

    return result


def get_default_config() -> dict[str, Any]:
    """
    Get hardcoded default configuration.

    Returns:
        Dictionary with default configuration values
    """
    return {
        "features": {
            "git_force_push_branch": True,
            "git_shallow_clone": True,
            "git_all_branch_references": True,
            "no_cross_namespace_refs": False,
        },
        "git": {"default_branch": "master", "default_timeout_seconds": 60.0},
    }


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> EngineConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (IMGAUTO_*)
        2. Project config (.imgauto.json)
        3. User config (~/.config/imgauto/config.json)
        4. Hardcoded defaults

    Args:
        project_dir: Project directory to load .imgauto.json from (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated EngineConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    config = EngineConfig(**merged)
    _config_cache = config
    return config


def clear_cache() -> None:
    """Clear the cached configuration."""
    global _config_cache
    _config_cache = None
