"""Record of a completed push."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from imgauto.core.errors import PushResultError

SHORT_REVISION_LENGTH = 7


class PushedCommit(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    reference: str = ""
    message: str = ""


class PushResult(BaseModel):
    """
    What was pushed, for status reporting.

    Example:
        >>> result = new_push_result("main", "a47b32f4814810acac804df5054ec37cbfdbfb53", "")
        >>> result.summary()
        "pushed commit 'a47b32f' to branch 'main'"
    """

    model_config = ConfigDict(frozen=True)

    branch: str
    commit: PushedCommit
    refspecs: tuple[str, ...] = ()
    switch_branch: bool = False
    creation_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def summary(self) -> str:
        revision = self.commit.hash
        if len(revision) >= SHORT_REVISION_LENGTH:
            revision = revision[:SHORT_REVISION_LENGTH]

        text = f"pushed commit '{revision}' to branch '{self.branch}'"
        if self.refspecs:
            text += " and refspecs " + ", ".join(f"'{r}'" for r in self.refspecs)
        if self.commit.message:
            text += f"\n{self.commit.message}"
        return text


def extract_hash(revision: str) -> str:
    """Return the hash from a revision, accepting the ``<ref>@sha1:<hash>`` form."""
    if "@" in revision and ":" in revision:
        return revision.rsplit(":", 1)[-1]
    return revision


def new_push_result(
    branch: str,
    revision: str,
    message: str,
    *,
    refspecs: list[str] | tuple[str, ...] = (),
    switch_branch: bool = False,
) -> PushResult:
    """
    Build a push result.

    Raises:
        PushResultError: If revision is empty.
    """
    if not revision:
        raise PushResultError("empty revision")
    return PushResult(
        branch=branch,
        commit=PushedCommit(
            hash=extract_hash(revision),
            reference=f"refs/heads/{branch}",
            message=message,
        ),
        refspecs=tuple(refspecs),
        switch_branch=switch_branch,
    )
