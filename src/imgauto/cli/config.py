"""
Show the effective engine configuration.
"""

import typer
from rich.console import Console

from imgauto.core.config import get_project_config_path, get_user_config_path, load_config

console = Console()


def show(
    sources: bool = typer.Option(False, "--sources", help="Also list the config files read"),
) -> None:
    """
    Print the merged configuration (defaults < user < project < env).
    """
    config = load_config()
    console.print_json(data=config.model_dump(mode="json"))

    if sources:
        for label, path in (
            ("user", get_user_config_path()),
            ("project", get_project_config_path()),
        ):
            state = "found" if path.exists() else "absent"
            console.print(f"[dim]{label}: {path} ({state})[/dim]")
