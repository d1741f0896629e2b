"""
Structured diff produced by the policy applier.

Nested as file -> object -> ordered changes. The legacy image view
(ImageUpdateResult) is derived from it for commit message templates that
list updated images.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"


@dataclass(frozen=True)
class ObjectIdentifier:
    """Identity of an object inside a manifest file. Name may be empty."""

    api_version: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""

    def __str__(self) -> str:
        ident = f"{self.kind}/{self.name}" if self.kind else self.name
        return f"{self.namespace}/{ident}" if self.namespace else ident


@dataclass(frozen=True)
class Change:
    """One field update: old value, new value, and the setter marker that drove it."""

    old_value: str
    new_value: str
    setter: str


@dataclass(frozen=True)
class ImageRef:
    """
    A container image reference as written in a manifest.

    Example:
        >>> ref = ImageRef.parse("helloworld:v1.0.1")
        >>> ref.repository, ref.registry, ref.identifier
        ('library/helloworld', 'index.docker.io', 'v1.0.1')
    """

    raw: str
    registry: str
    repository: str
    tag: str = ""
    digest: str = ""
    policy: str = ""

    @classmethod
    def parse(cls, ref: str, policy: str = "") -> ImageRef | None:
        """Parse an image reference; returns None if ref is not one."""
        if not ref or any(c.isspace() for c in ref):
            return None
        name, _, digest = ref.partition("@")
        tag = ""
        slash = name.rfind("/")
        colon = name.rfind(":")
        if colon > slash:
            name, tag = name[:colon], name[colon + 1:]
        if not name or (not tag and not digest):
            return None

        first, sep, rest = name.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            registry, repository = first, rest
        else:
            registry, repository = DEFAULT_REGISTRY, name
            if "/" not in repository:
                repository = f"library/{repository}"
        if not repository or repository != repository.lower():
            return None
        return cls(raw=ref, registry=registry, repository=repository, tag=tag, digest=digest, policy=policy)

    @property
    def identifier(self) -> str:
        """Digest if present, else tag."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def name(self) -> str:
        """Fully-qualified reference, e.g. ``index.docker.io/library/helloworld:v1.0.1``."""
        full = f"{self.registry}/{self.repository}"
        if self.tag:
            full += f":{self.tag}"
        if self.digest:
            full += f"@{self.digest}"
        return full

    def __str__(self) -> str:
        return self.raw


@dataclass
class FileResult:
    objects: dict[ObjectIdentifier, list[ImageRef]] = field(default_factory=dict)


@dataclass
class ImageUpdateResult:
    """Legacy view: which images were written into which objects of which files."""

    files: dict[str, FileResult] = field(default_factory=dict)

    def images(self) -> list[ImageRef]:
        """All image refs, deduplicated, in first-seen order."""
        seen: set[str] = set()
        images: list[ImageRef] = []
        for file_result in self.files.values():
            for refs in file_result.objects.values():
                for ref in refs:
                    if ref.raw not in seen:
                        seen.add(ref.raw)
                        images.append(ref)
        return images

    def objects(self) -> dict[ObjectIdentifier, list[ImageRef]]:
        """Image refs per object, regardless of the file they appear in."""
        result: dict[ObjectIdentifier, list[ImageRef]] = {}
        for file_result in self.files.values():
            result.update(file_result.objects)
        return result


def _image_policy(setter: str) -> str | None:
    """Policy name for a whole-image setter (``ns:policy``); None for ``:tag``/``:name`` setters."""
    parts = setter.split(":")
    if len(parts) != 2 or not all(parts):
        return None
    return setter


@dataclass
class UpdateResult:
    """
    Changes made to files by the policy applier.

    Example:
        >>> result = UpdateResult()
        >>> obj = ObjectIdentifier(kind="Deployment", namespace="apps", name="web")
        >>> result.add_change("web.yaml", obj, Change("web:1.0", "web:1.1", "apps:web"))
        >>> result.is_empty()
        False
    """

    file_changes: dict[str, dict[ObjectIdentifier, list[Change]]] = field(default_factory=dict)

    def add_change(self, file: str, obj: ObjectIdentifier, *changes: Change) -> None:
        self.file_changes.setdefault(file, {}).setdefault(obj, []).extend(changes)

    def is_empty(self) -> bool:
        return not self.file_changes

    def changes(self) -> list[Change]:
        """All distinct changes in first-seen order."""
        seen: set[Change] = set()
        result: list[Change] = []
        for objects in self.file_changes.values():
            for changes in objects.values():
                for change in changes:
                    if change not in seen:
                        seen.add(change)
                        result.append(change)
        return result

    def objects(self) -> dict[ObjectIdentifier, list[Change]]:
        """Changes per object, regardless of the file they appear in."""
        result: dict[ObjectIdentifier, list[Change]] = {}
        for objects in self.file_changes.values():
            result.update(objects)
        return result

    def image_result(self) -> ImageUpdateResult:
        """Derive the legacy image view from whole-image changes."""
        legacy = ImageUpdateResult()
        for file, objects in self.file_changes.items():
            for obj, changes in objects.items():
                for change in changes:
                    policy = _image_policy(change.setter)
                    if policy is None:
                        continue
                    ref = ImageRef.parse(change.new_value, policy=policy)
                    if ref is None:
                        continue
                    file_result = legacy.files.setdefault(file, FileResult())
                    file_result.objects.setdefault(obj, []).append(ref)
        return legacy
