"""
Commit message templating.

Templates are Jinja2, rendered in a sandbox whose globals are limited to
functions that always give the same output for the same input, so an
unchanged diff always renders the same message. Undefined names are errors.

Example template:

    Automated update by {{ automation_object }}

    {% for file, objects in changed.file_changes.items() -%}
    - {{ file }}
    {% endfor %}
"""

from __future__ import annotations

from dataclasses import dataclass, field

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from imgauto.core.errors import ConfigurationError
from imgauto.core.source.models import NamespacedName
from imgauto.core.update.result import ImageUpdateResult, UpdateResult

DEFAULT_MESSAGE_TEMPLATE = "Update from image update automation"

# globals that depend on randomness
_IMPURE_GLOBALS = ("lipsum",)


class CommitTemplateError(ConfigurationError):
    """The commit message template cannot be parsed or rendered."""

    pass


@dataclass
class TemplateData:
    """Values available to the commit message template."""

    automation_object: NamespacedName
    updated: ImageUpdateResult
    changed: UpdateResult
    values: dict[str, str] = field(default_factory=dict)


def _environment() -> SandboxedEnvironment:
    env = SandboxedEnvironment(
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    for name in _IMPURE_GLOBALS:
        env.globals.pop(name, None)
    return env


def render_commit_message(template: str, data: TemplateData) -> str:
    """
    Render the commit message; an empty template uses the default message.

    Raises:
        CommitTemplateError: On a syntax error or a failure while rendering.
    """
    source = template or DEFAULT_MESSAGE_TEMPLATE
    env = _environment()
    try:
        compiled = env.from_string(source)
    except TemplateError as e:
        raise CommitTemplateError(f"unable to create commit message template: {e}") from e

    try:
        return compiled.render(
            automation_object=data.automation_object,
            updated=data.updated,
            changed=data.changed,
            values=data.values,
        )
    except TemplateError as e:
        raise CommitTemplateError(f"failed to render commit message template: {e}") from e
