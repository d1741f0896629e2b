"""
imgauto - Image Update Automation

Keeps a git configuration repository in sync with the desired container
image versions: checks out the source, lets a policy applier rewrite
manifests, then commits and pushes the result.
"""

__version__ = "0.4.0.dev0"

# Re-export core models for convenience
from imgauto.core.config.models import EngineConfig
from imgauto.core.source.models import AutomationSpec, GitReference, SourceDescriptor

__all__ = ["EngineConfig", "AutomationSpec", "GitReference", "SourceDescriptor", "__version__"]
