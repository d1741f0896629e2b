"""
Data models for automation targets and their git sources.

An automation target pairs a source repository (SourceDescriptor) with the
automation-level git settings (AutomationSpec). Both are read-only inputs to
the engine.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

GIT_REPOSITORY_KIND = "GitRepository"
AUTOMATION_KIND = "ImageUpdateAutomation"


class NamespacedName(BaseModel):
    """Name + namespace key for an object."""

    model_config = ConfigDict(frozen=True)

    namespace: str = Field(default="", description="Namespace of the object")
    name: str = Field(description="Name of the object")

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class GitReference(BaseModel):
    """
    A tag, branch, commit, or semver range selecting what to clone.

    When several fields are set, cloning uses the precedence
    tag > semver > commit > branch.
    """

    model_config = ConfigDict(frozen=True)

    branch: str = Field(default="", description="Branch to check out")
    tag: str = Field(default="", description="Tag to check out")
    semver: str = Field(default="", description="Semver range selecting a tag")
    commit: str = Field(default="", description="Commit SHA to check out")


class GitProvider(str, Enum):
    """How credentials for the source are obtained."""

    GENERIC = "generic"
    GITHUB = "github"
    AZURE = "azure"


class LocalObjectReference(BaseModel):
    """Reference to an object in the same namespace."""

    model_config = ConfigDict(frozen=True)

    name: str


class SourceDescriptor(BaseModel):
    """
    A git source repository (the GitRepository object).

    Example:
        >>> src = SourceDescriptor(
        ...     name="fleet", namespace="flux-system",
        ...     url="https://github.com/org/fleet",
        ...     reference=GitReference(branch="main"),
        ... )
        >>> str(src.key)
        'flux-system/fleet'
    """

    model_config = ConfigDict(frozen=True)

    kind: str = Field(default=GIT_REPOSITORY_KIND)
    name: str
    namespace: str = ""
    url: str
    reference: GitReference | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)
    secret_ref: LocalObjectReference | None = None
    proxy_secret_ref: LocalObjectReference | None = None
    provider: GitProvider = GitProvider.GENERIC

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)


class SourceReference(BaseModel):
    """Reference from an automation to its source, possibly cross-namespace."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(default=GIT_REPOSITORY_KIND)
    name: str
    namespace: str = ""


class CheckoutSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    reference: GitReference = Field(alias="ref")


class CommitUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    email: str


class SigningKey(BaseModel):
    """Reference to a secret holding an ASCII-armored OpenPGP key."""

    model_config = ConfigDict(frozen=True)

    secret_ref: LocalObjectReference


class CommitSpec(BaseModel):
    """How to commit changes to the repository."""

    model_config = ConfigDict(frozen=True)

    author: CommitUser
    signing_key: SigningKey | None = None
    message_template: str = ""
    message_template_values: dict[str, str] = Field(default_factory=dict)


class PushSpec(BaseModel):
    """
    Where to push automation commits.

    When both branch and refspec are set, the commit is pushed to the branch
    and additionally using the refspec.
    """

    model_config = ConfigDict(frozen=True)

    branch: str = ""
    refspec: str = ""
    options: dict[str, str] = Field(default_factory=dict)


class GitSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    checkout: CheckoutSpec | None = None
    commit: CommitSpec
    push: PushSpec | None = None

    def has_refspec(self) -> bool:
        """Return True if an extra push refspec is configured."""
        return self.push is not None and self.push.refspec != ""


class AutomationSpec(BaseModel):
    """The automation target (the ImageUpdateAutomation object)."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str = ""
    source_ref: SourceReference
    git: GitSpec | None = None
    update_path: str = Field(
        default="",
        description="Directory, relative to the repository root, the policies are applied under",
    )

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)

    def source_key(self) -> NamespacedName:
        """Key of the referenced source; defaults to the automation namespace."""
        return NamespacedName(
            namespace=self.source_ref.namespace or self.namespace,
            name=self.source_ref.name,
        )
