"""
Semver range matching for tag checkout.

Supported range syntax:
    1.2.3, =1.2.3         exact
    >1.2, >=1.2, <2, <=2, !=1.2.3
    ^1.2.3                compatible (same leftmost non-zero component)
    ~1.2.3                same major.minor
    1.2.x, 1.*, *         wildcards
    1.2.3 - 2.0.0         inclusive hyphen range
    Comparators separated by spaces or commas must all match; ``||`` joins
    alternatives.

Pre-release versions only match when a comparator in the same alternative
carries a pre-release.
"""

from __future__ import annotations

import logging
import operator
import re
from typing import Callable, Iterable

import semver

from imgauto.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

_WILDCARDS = {"x", "X", "*"}

_OPS: dict[str, Callable[[semver.Version, semver.Version], bool]] = {
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}

_COMPARATOR_RE = re.compile(r"^(\^|~|>=|<=|!=|==|>|<|=)?\s*v?(.+)$")
_HYPHEN_RE = re.compile(r"^\s*(\S+)\s+-\s+(\S+)\s*$")

Comparator = tuple[Callable[[semver.Version, semver.Version], bool], semver.Version]


class InvalidSemverRangeError(ConfigurationError):
    """The semver range expression cannot be parsed."""

    pass


def parse_version(tag: str) -> semver.Version | None:
    """Parse a tag as a semantic version, allowing a ``v`` prefix and partial versions."""
    text = tag[1:] if tag[:1] in ("v", "V") else tag
    try:
        return semver.Version.parse(text, optional_minor_and_patch=True)
    except (ValueError, TypeError):
        return None


def _parse_partial(text: str) -> tuple[semver.Version, int]:
    """Parse a possibly partial version; returns the version and how many parts were given."""
    text, _, build = text.partition("+")
    core, sep, rest = text.partition("-")
    parts = core.split(".")
    given = 0
    numbers = [0, 0, 0]
    for i, part in enumerate(parts[:3]):
        if part in _WILDCARDS:
            break
        if not part.isdigit():
            raise InvalidSemverRangeError(f"invalid version '{text}' in semver range")
        numbers[i] = int(part)
        given += 1
    prerelease = rest if sep and given == 3 else None
    version = semver.Version(*numbers, prerelease=prerelease, build=build or None)
    return version, given


def _bump(version: semver.Version, given: int) -> semver.Version:
    """Smallest version past the range fixed by the first ``given`` parts."""
    if given <= 1:
        return semver.Version(version.major + 1, 0, 0)
    return semver.Version(version.major, version.minor + 1, 0)


def _expand(op: str, text: str) -> list[Comparator]:
    if text in _WILDCARDS:
        return []
    version, given = _parse_partial(text)

    if op == "^":
        if version.major > 0 or given == 1:
            upper = semver.Version(version.major + 1, 0, 0)
        elif version.minor > 0 or given == 2:
            upper = semver.Version(0, version.minor + 1, 0)
        else:
            upper = semver.Version(0, 0, version.patch + 1)
        return [(operator.ge, version), (operator.lt, upper)]

    if op == "~":
        return [(operator.ge, version), (operator.lt, _bump(version, min(given, 2)))]

    if given == 3:
        return [(_OPS[op or "="], version)]

    # partial versions behave like wildcards
    if given == 0:
        return []
    upper = _bump(version, given)
    if op in ("", "=", "=="):
        return [(operator.ge, version), (operator.lt, upper)]
    if op == ">":
        return [(operator.ge, upper)]
    if op == "<=":
        return [(operator.lt, upper)]
    if op == "!=":
        raise InvalidSemverRangeError(f"'!=' needs a full version, got '{text}'")
    return [(_OPS[op], version)]


def _parse_alternative(expr: str) -> list[Comparator]:
    hyphen = _HYPHEN_RE.match(expr)
    if hyphen:
        low, _ = _parse_partial(hyphen.group(1).lstrip("vV"))
        high, given = _parse_partial(hyphen.group(2).lstrip("vV"))
        if given == 3:
            return [(operator.ge, low), (operator.le, high)]
        return [(operator.ge, low), (operator.lt, _bump(high, given))]

    # glue operators to their operand: ">= 1.2" -> ">=1.2"
    expr = re.sub(r"(\^|~|>=|<=|!=|==|>|<|=)\s+", r"\1", expr)
    comparators: list[Comparator] = []
    for token in re.split(r"[\s,]+", expr.strip()):
        if not token:
            continue
        match = _COMPARATOR_RE.match(token)
        if match is None:
            raise InvalidSemverRangeError(f"invalid semver range token '{token}'")
        comparators.extend(_expand(match.group(1) or "", match.group(2)))
    return comparators


class SemverRange:
    """
    A parsed semver range.

    Example:
        >>> SemverRange.parse(">=1.0.0 <2.0.0").matches("v1.4.2")
        True
    """

    def __init__(self, expression: str, alternatives: list[list[Comparator]]):
        self.expression = expression
        self._alternatives = alternatives

    @classmethod
    def parse(cls, expression: str) -> SemverRange:
        if not expression.strip():
            raise InvalidSemverRangeError("semver range is empty")
        alternatives = [_parse_alternative(part) for part in expression.split("||")]
        return cls(expression, alternatives)

    def matches_version(self, version: semver.Version) -> bool:
        for comparators in self._alternatives:
            if version.prerelease and not any(v.prerelease for _, v in comparators):
                continue
            if all(op(version, bound) for op, bound in comparators):
                return True
        return False

    def matches(self, tag: str) -> bool:
        version = parse_version(tag)
        return version is not None and self.matches_version(version)

    def __repr__(self) -> str:
        return f"SemverRange({self.expression!r})"


def select_tag(tags: Iterable[str], expression: str) -> str | None:
    """
    Pick the tag with the highest version that satisfies the range.

    Tags that are not semantic versions are ignored. Returns None when no
    tag matches.
    """
    constraint = SemverRange.parse(expression)
    best: tuple[semver.Version, str] | None = None
    for tag in tags:
        version = parse_version(tag)
        if version is None or not constraint.matches_version(version):
            continue
        if best is None or version > best[0]:
            best = (version, tag)
    if best is None:
        logger.debug("No tag matches semver range %s", expression)
        return None
    return best[1]
