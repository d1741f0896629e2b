"""
Engine configuration models and loading.

Pydantic models for imgauto configuration with multi-layer merging:
defaults < user < project < env vars.
"""

from .env import load_layered_env
from .loader import (
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import EngineConfig, FeatureGates, GitConfig, TokenCacheConfig

__all__ = [
    # Models
    "EngineConfig",
    "FeatureGates",
    "GitConfig",
    "TokenCacheConfig",
    # Loader functions
    "clear_cache",
    "get_project_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_layered_env",
]
