"""
Boundary to the policy applier that rewrites manifests in a working copy.

The applier is an external collaborator: given the checked-out directory and
the automation, it edits files in place and reports what it changed. An
empty result means nothing to commit.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from imgauto.core.errors import ConfigurationError
from imgauto.core.source.models import AutomationSpec
from imgauto.core.update.result import UpdateResult


class PolicyApplier(Protocol):
    def __call__(self, workdir: Path, automation: AutomationSpec) -> UpdateResult:
        """Apply policies to files under workdir and return the changes made."""
        ...


def resolve_update_path(workdir: Path, path: str) -> Path:
    """
    Join a relative update path onto workdir, refusing to leave it.

    Raises:
        ConfigurationError: If path escapes workdir.
    """
    root = Path(workdir).resolve()
    if not path:
        return root
    target = (root / path.lstrip("/")).resolve()
    if target != root and root not in target.parents:
        raise ConfigurationError(f"update path '{path}' escapes the working directory")
    return target
