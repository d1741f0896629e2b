"""
Structured diff types and the policy applier boundary.
"""

from imgauto.core.update.applier import PolicyApplier, resolve_update_path
from imgauto.core.update.result import (
    Change,
    FileResult,
    ImageRef,
    ImageUpdateResult,
    ObjectIdentifier,
    UpdateResult,
)

__all__ = [
    "Change",
    "FileResult",
    "ImageRef",
    "ImageUpdateResult",
    "ObjectIdentifier",
    "PolicyApplier",
    "UpdateResult",
    "resolve_update_path",
]
