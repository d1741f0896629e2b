"""
Configuration data models for imgauto.

These models define the structure of .imgauto.json and
~/.config/imgauto/config.json files, with validation and type safety via
Pydantic. Feature gates live here and are handed to the resolvers
explicitly; nothing in the engine reads them from global state.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FeatureGates(BaseModel):
    """
    Feature gates controlling git behaviour.

    The defaults match the opt-out behaviour of the automation engine:
    force push, shallow clone and all-branch fetch are on.
    """
    git_force_push_branch: bool = Field(
        default=True,
        description="Force push when the push branch differs from the checkout branch"
    )
    git_shallow_clone: bool = Field(
        default=True,
        description="Use shallow clones when pulling the source repository"
    )
    git_all_branch_references: bool = Field(
        default=True,
        description=(
            "Fetch all branch heads when a push branch is configured, so the "
            "switch to the push branch sees its remote history"
        )
    )
    no_cross_namespace_refs: bool = Field(
        default=False,
        description="Reject automations that reference a source in another namespace"
    )


class GitConfig(BaseModel):
    """Git defaults used when the source descriptor is silent."""
    default_branch: str = Field(
        default="master",
        min_length=1,
        description="Branch name assumed when no checkout reference is given"
    )
    default_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for git network operations when the source has none"
    )
    create_missing_push_branch: bool = Field(
        default=True,
        description="Create the push branch from HEAD when it is absent on the remote"
    )


class TokenCacheConfig(BaseModel):
    """Short-lived credential cache settings."""
    enabled: bool = Field(
        default=True,
        description="Cache exchanged provider tokens between cycles"
    )
    max_ttl_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Upper bound on how long a cached token is reused"
    )
    expiry_buffer_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Treat tokens as expired this many seconds before their expiry"
    )


class EngineConfig(BaseModel):
    """
    Top-level imgauto configuration.

    Loaded from defaults, user config, project config, and env vars.

    Example:
        >>> config = EngineConfig(features=FeatureGates(git_force_push_branch=False))
        >>> config.features.git_all_branch_references
        True
    """
    features: FeatureGates = Field(
        default_factory=FeatureGates,
        description="Feature gates"
    )
    git: GitConfig = Field(
        default_factory=GitConfig,
        description="Git defaults"
    )
    token_cache: TokenCacheConfig = Field(
        default_factory=TokenCacheConfig,
        description="Provider token cache"
    )
    log_level: str = Field(
        default="WARNING",
        description="Logging level for the CLI"
    )
    secrets_dir: Optional[str] = Field(
        default=None,
        description="Directory holding <namespace>/<name>/<key> secret files"
    )

    model_config = ConfigDict(
        extra="allow",  # Allow extra fields for forward compatibility
        validate_assignment=True,
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept lowercase level names."""
        if isinstance(v, str):
            v = v.upper()
            if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
                raise ValueError(f"unknown log level: {v}")
        return v
