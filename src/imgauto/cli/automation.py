"""
Automation commands: resolve a plan, check a source out.

Automation files are YAML documents with two mappings:

    automation:
      name: podinfo-update
      namespace: apps
      source_ref: {name: fleet}
      git:
        checkout: {ref: {branch: main}}
        commit: {author: {name: fluxbot, email: fluxbot@example.com}}
        push: {branch: auto-updates}
    source:
      name: fleet
      namespace: apps
      url: https://github.com/org/fleet
      secret_ref: {name: git-auth}
"""

from pathlib import Path
from typing import Any

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from imgauto.cli.errors import ExitCode, exit_code_for, print_automation_error, print_error
from imgauto.core.automation import new_token_cache
from imgauto.core.config import load_config
from imgauto.core.errors import AutomationError
from imgauto.core.secrets import DirectorySecretStore, MemorySecretStore, SecretStore
from imgauto.core.source.config import GitSourceConfig, build_git_config
from imgauto.core.source.manager import SourceManager, validate_automation, with_shallow_clone
from imgauto.core.source.models import AutomationSpec, SourceDescriptor

console = Console()


def load_automation_file(path: Path) -> tuple[AutomationSpec, SourceDescriptor]:
    """
    Read an automation file.

    Raises:
        ValueError: If the file is not valid YAML or is missing a section.
        ValidationError: If a section does not match its model.
    """
    try:
        with path.open() as f:
            document = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"invalid YAML in {path}: {e}") from e

    if not isinstance(document, dict):
        raise ValueError(f"{path} must contain a mapping")
    for section in ("automation", "source"):
        if not isinstance(document.get(section), dict):
            raise ValueError(f"{path} is missing the '{section}' mapping")

    automation = AutomationSpec.model_validate(document["automation"])
    source = SourceDescriptor.model_validate(document["source"])
    return automation, source


def _load_inputs(
    automation_file: Path, secrets_dir: Path | None
) -> tuple[AutomationSpec, SourceDescriptor, SecretStore]:
    try:
        automation, source = load_automation_file(automation_file)
    except (OSError, ValueError, ValidationError) as e:
        print_error(f"Cannot read automation file {automation_file}", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)

    configured = load_config().secrets_dir
    if secrets_dir is None and configured:
        secrets_dir = Path(configured)
    secrets: SecretStore = (
        DirectorySecretStore(secrets_dir) if secrets_dir is not None else MemorySecretStore()
    )
    return automation, source, secrets


def _plan_dict(plan: GitSourceConfig) -> dict[str, Any]:
    client = plan.client_options
    return {
        "source": str(plan.src_key),
        "url": plan.url,
        "push_branch": plan.push_branch,
        "switch_branch": plan.switch_branch,
        "timeout_seconds": plan.timeout_seconds,
        "checkout_ref": plan.checkout_ref.model_dump() if plan.checkout_ref else None,
        "transport": plan.auth_options.transport.value,
        "username": plan.auth_options.username,
        "has_credentials": plan.auth_options.has_credentials(),
        "proxy": client.proxy.address if client.proxy else None,
        "single_branch": client.single_branch,
        "insecure_http_credentials": client.insecure_http_credentials,
        "signing_key": plan.signing_entity.fingerprint if plan.signing_entity else None,
    }


def plan(
    automation_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Automation YAML file"),
    secrets_dir: Path | None = typer.Option(
        None, "--secrets-dir", "-s", help="Directory of mounted secrets (<ns>/<name>/<key>)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """
    Resolve and show the execution plan for an automation.

    Provider token exchanges are performed, nothing is cloned.

    Examples:
        imgauto plan automation.yaml
        imgauto plan automation.yaml --secrets-dir /var/secrets --json
    """
    automation, source, secrets = _load_inputs(automation_file, secrets_dir)
    config = load_config()

    try:
        validate_automation(automation, source, config)
        resolved = build_git_config(
            automation, source, secrets, config, token_cache=new_token_cache(config)
        )
    except AutomationError as e:
        print_automation_error(f"Cannot resolve plan for {automation.key}", e)
        raise typer.Exit(exit_code_for(e))

    data = _plan_dict(resolved)
    if json_output:
        console.print_json(data=data)
        return

    table = Table(title=f"Plan for {automation.key}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


def checkout(
    automation_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Automation YAML file"),
    dest: Path = typer.Argument(..., help="Directory to check the source out into"),
    secrets_dir: Path | None = typer.Option(
        None, "--secrets-dir", "-s", help="Directory of mounted secrets (<ns>/<name>/<key>)"
    ),
    shallow: bool = typer.Option(False, "--shallow", help="Fetch only the tip commit"),
) -> None:
    """
    Check the source out into DEST, switching to the push branch if needed.

    DEST is kept afterwards; it must be empty or not exist.

    Examples:
        imgauto checkout automation.yaml ./work
    """
    if dest.exists() and any(dest.iterdir()):
        print_error(f"Destination {dest} is not empty")
        raise typer.Exit(ExitCode.USER_ERROR)

    automation, source, secrets = _load_inputs(automation_file, secrets_dir)
    config = load_config()

    manager = None
    try:
        manager = SourceManager.create(
            automation,
            source,
            secrets,
            config,
            token_cache=new_token_cache(config),
            workdir=dest,
        )
        commit = manager.checkout_source(*([with_shallow_clone()] if shallow else []))
    except AutomationError as e:
        if manager is not None:
            manager.cleanup()
        print_automation_error(f"Checkout of {source.key} failed", e)
        raise typer.Exit(exit_code_for(e))

    manager.cleanup(remove_workdir=False)
    console.print(f"[green]Checked out[/green] {commit.reference} ({commit.short()}) into {dest}")
    if manager.switch_branch:
        console.print(f"[dim]Switched to push branch {manager.plan.push_branch}[/dim]")
