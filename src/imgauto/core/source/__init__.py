"""
Source management: checkout configuration, git operations, commit and push.

Import the operations from their modules (``imgauto.core.source.manager``,
``imgauto.core.source.config``); this package only re-exports the models.
"""

from imgauto.core.source.models import (
    AutomationSpec,
    CheckoutSpec,
    CommitSpec,
    CommitUser,
    GitProvider,
    GitReference,
    GitSpec,
    LocalObjectReference,
    NamespacedName,
    PushSpec,
    SigningKey,
    SourceDescriptor,
    SourceReference,
)

__all__ = [
    "AutomationSpec",
    "CheckoutSpec",
    "CommitSpec",
    "CommitUser",
    "GitProvider",
    "GitReference",
    "GitSpec",
    "LocalObjectReference",
    "NamespacedName",
    "PushSpec",
    "SigningKey",
    "SourceDescriptor",
    "SourceReference",
]
