"""
Standardized error handling and exit codes for the imgauto CLI.
"""

from enum import IntEnum

from rich.console import Console

from imgauto.core.errors import AutomationError

console = Console()


class ExitCode(IntEnum):
    """Standard exit codes for imgauto CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Generic error, including auth and transient git failures."""

    USER_ERROR = 2
    """Configuration or input error (actionable by the user)."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def exit_code_for(error: BaseException) -> ExitCode:
    """Map an engine error to an exit code by its category."""
    if isinstance(error, AutomationError) and error.category in ("configuration", "data"):
        return ExitCode.USER_ERROR
    return ExitCode.GENERAL_ERROR


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Cannot resolve plan",
        ...     reason="secret 'flux-system/git-auth' not found",
        ...     solution="imgauto plan automation.yaml --secrets-dir ./secrets",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_automation_error(problem: str, error: AutomationError) -> None:
    """Print an engine error with a hint matching its category."""
    solutions = {
        "configuration": "fix the automation or source definition",
        "data": "check the referenced secret contents",
        "auth": "check the credentials referenced by the source",
        "transient": "retry; the remote may be unreachable or slow",
    }
    print_error(problem, reason=str(error), solution=solutions.get(error.category))
