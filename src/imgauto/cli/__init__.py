"""
imgauto CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys

import typer
from rich.console import Console

from imgauto import __version__
from imgauto.cli import automation, config
from imgauto.core.config import load_config
from imgauto.core.config.env import load_layered_env

app = typer.Typer(
    name="imgauto",
    help="Keep a git configuration repository in sync with desired image versions",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def setup_logging(debug: bool = False, level_name: str = "WARNING") -> None:
    """
    Configure logging for all commands.

    Args:
        debug: If True, enable DEBUG level logging
        level_name: Level to use otherwise (from config)
    """
    level = logging.DEBUG if debug else getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"imgauto version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """
    imgauto - Image Update Automation.

    Resolves automation targets into git execution plans, checks sources
    out, and commits and pushes manifest updates.

    Examples:
        imgauto plan automation.yaml          # Show the resolved plan
        imgauto checkout automation.yaml ./w  # Clone per plan
        imgauto config                        # Show effective config
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()
    setup_logging(debug=debug, level_name=load_config().log_level)
    ctx.obj = {"debug": debug}


app.command(name="plan")(automation.plan)
app.command(name="checkout")(automation.checkout)
app.command(name="config")(config.show)


@app.command()
def version() -> None:
    """Show imgauto version and exit."""
    console.print(f"imgauto version {__version__}")


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
