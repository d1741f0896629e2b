"""Environment loading helpers.

imgauto reads its overrides (IMGAUTO_*) and the ambient workload identity
settings (AZURE_*) from the process environment. For local runs these can
also live in .env files:

  os.environ (pre-existing) > project .env > user .env

Files never override a variable that is already exported in the shell.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values

ENV_PREFIXES = ("IMGAUTO_", "AZURE_")


def _read_env(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    out: dict[str, str] = {}
    for k, v in dotenv_values(path).items():
        if k is None or v is None:
            continue
        if not k.startswith(ENV_PREFIXES):
            continue
        out[str(k)] = str(v)
    return out


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """Load IMGAUTO_* and AZURE_* variables from user + project .env files.

    Args:
        project_dir: base directory for project env paths (defaults to cwd)
        user_env_paths: explicit user env file paths
        project_env_paths: explicit project env file paths

    Returns:
        Names of the variables that were set from files.
    """
    if project_dir is None:
        project_dir = Path.cwd()

    if user_env_paths is None:
        xdg_home = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
        user_env_paths = [xdg_home / "imgauto" / ".env"]

    if project_env_paths is None:
        project_env_paths = [project_dir / ".env"]

    from_files: set[str] = set()
    for p in user_env_paths:
        for k, v in _read_env(Path(p)).items():
            if k not in os.environ:
                os.environ[k] = v
                from_files.add(k)

    # project values may replace user values, never the shell's
    for p in project_env_paths:
        for k, v in _read_env(Path(p)).items():
            if k not in os.environ or k in from_files:
                os.environ[k] = v
                from_files.add(k)

    return from_files
