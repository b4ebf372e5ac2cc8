"""
Turn resolved artifacts into the libraries handed to the repackager.

Resolution happens upstream; this module only filters a finished artifact
set and names each survivor so nested entry names stay unique.

Manifesto:
    A dependency descriptor is data, not code. Build tools export the
    resolved set as YAML, and the filter chain here decides what ships.

Architecture:
    ::

        deps.yml ─► load_dependency_descriptor ─► DependencyDescriptor
                                                     │
                 DependencyFilter.apply(artifacts) ◄─┘
                   1. exclude_artifact_ids
                   2. exclude_group_ids
                   3. includes (when non-empty)
                   4. excludes
                                                     │
                 artifacts_to_libraries(kept, unpacks) ─► [Library]

Examples:
    >>> descriptor = load_dependency_descriptor("deps.yml")
    >>> libraries = descriptor.libraries()

Tags:
    dependencies, filtering, yaml, bootpack

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from bootpack.core.errors import InvalidConfigError
from bootpack.core.logging import get_logger
from bootpack.packaging.library import Library, LibraryScope

logger = get_logger(__name__)

SCOPES: dict[str, LibraryScope] = {
    "compile": LibraryScope.COMPILE,
    "runtime": LibraryScope.RUNTIME,
    "provided": LibraryScope.PROVIDED,
    "system": LibraryScope.PROVIDED,
}


@dataclass(frozen=True)
class Artifact:
    """A resolved artifact: coordinates plus the file it resolved to."""

    group_id: str
    artifact_id: str
    file: Path
    version: str = ""
    scope: str = "compile"
    classifier: str | None = None
    type: str = "jar"

    @property
    def file_name(self) -> str:
        return Path(self.file).name


@dataclass(frozen=True)
class ArtifactRef:
    """Coordinates used to select artifacts; the classifier is optional."""

    group_id: str
    artifact_id: str
    classifier: str | None = None

    def matches(self, artifact: Artifact) -> bool:
        if self.group_id != artifact.group_id or self.artifact_id != artifact.artifact_id:
            return False
        return self.classifier is None or self.classifier == artifact.classifier


def split_ids(value: str | Iterable[str] | None) -> tuple[str, ...]:
    """Split a comma-separated id list, trimming blanks."""
    if value is None:
        return ()
    items = value.split(",") if isinstance(value, str) else value
    return tuple(item.strip() for item in items if item and item.strip())


@dataclass(frozen=True)
class DependencyFilter:
    includes: tuple[ArtifactRef, ...] = ()
    excludes: tuple[ArtifactRef, ...] = ()
    exclude_group_ids: tuple[str, ...] = ()
    exclude_artifact_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "includes", tuple(self.includes))
        object.__setattr__(self, "excludes", tuple(self.excludes))
        object.__setattr__(self, "exclude_group_ids", split_ids(self.exclude_group_ids))
        object.__setattr__(self, "exclude_artifact_ids", split_ids(self.exclude_artifact_ids))

    def accepts(self, artifact: Artifact) -> bool:
        if artifact.artifact_id in self.exclude_artifact_ids:
            return False
        if artifact.group_id in self.exclude_group_ids:
            return False
        if self.includes and not any(ref.matches(artifact) for ref in self.includes):
            return False
        return not any(ref.matches(artifact) for ref in self.excludes)

    def apply(self, artifacts: Iterable[Artifact]) -> list[Artifact]:
        """Return the accepted artifacts in input order."""
        return [artifact for artifact in artifacts if self.accepts(artifact)]


def artifacts_to_libraries(
    artifacts: Sequence[Artifact], unpacks: Iterable[ArtifactRef] = ()
) -> list[Library]:
    """Convert artifacts into libraries.

    Artifacts with an unknown scope are skipped. When two artifacts share a
    file name both are renamed ``<group_id>-<file name>``.
    """
    unpacks = tuple(unpacks)
    counts = Counter(artifact.file_name for artifact in artifacts)
    libraries: list[Library] = []
    for artifact in artifacts:
        scope = SCOPES.get(artifact.scope)
        if scope is None:
            logger.debug("dependency.scope_skipped", artifact=artifact.artifact_id, scope=artifact.scope)
            continue
        name = artifact.file_name
        if counts[name] > 1:
            name = f"{artifact.group_id}-{name}"
            logger.debug("dependency.renamed", artifact=artifact.artifact_id, name=name)
        libraries.append(
            Library(
                file=Path(artifact.file),
                scope=scope,
                name=name,
                unpack_required=any(ref.matches(artifact) for ref in unpacks),
            )
        )
    return libraries


@dataclass
class DependencyDescriptor:
    artifacts: list[Artifact] = field(default_factory=list)
    filter: DependencyFilter = field(default_factory=DependencyFilter)
    requires_unpack: list[ArtifactRef] = field(default_factory=list)

    def libraries(self) -> list[Library]:
        return artifacts_to_libraries(self.filter.apply(self.artifacts), self.requires_unpack)


def _ref(raw: Any, key: str) -> ArtifactRef:
    if not isinstance(raw, dict):
        raise InvalidConfigError(key, raw, f"{key} entries must be mappings, got {raw!r}")
    try:
        return ArtifactRef(
            group_id=str(raw["group_id"]),
            artifact_id=str(raw["artifact_id"]),
            classifier=raw.get("classifier"),
        )
    except KeyError as exc:
        raise _missing_field(key, exc.args[0]) from exc


def _missing_field(key: str, field_name: str) -> InvalidConfigError:
    return InvalidConfigError(key, field_name, f"{key} entry is missing '{field_name}'")


def _artifact(raw: Any, base_dir: Path) -> Artifact:
    if not isinstance(raw, dict):
        raise InvalidConfigError("artifacts", raw, f"artifacts entries must be mappings, got {raw!r}")
    try:
        file = Path(raw["file"])
        return Artifact(
            group_id=str(raw["group_id"]),
            artifact_id=str(raw["artifact_id"]),
            file=file if file.is_absolute() else base_dir / file,
            version=str(raw.get("version", "")),
            scope=str(raw.get("scope", "compile")),
            classifier=raw.get("classifier"),
            type=str(raw.get("type", "jar")),
        )
    except KeyError as exc:
        raise _missing_field("artifacts", exc.args[0]) from exc


def load_dependency_descriptor(path: str | Path) -> DependencyDescriptor:
    """Load a YAML dependency descriptor.

    Relative artifact paths resolve against the descriptor's directory.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise InvalidConfigError("dependencies", str(path), f"Unable to read {path}") from exc
    except yaml.YAMLError as exc:
        raise InvalidConfigError("dependencies", str(path), f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise InvalidConfigError("dependencies", str(path), f"{path} must contain a mapping")

    base_dir = path.resolve().parent
    descriptor = DependencyDescriptor(
        artifacts=[_artifact(item, base_dir) for item in raw.get("artifacts") or []],
        filter=DependencyFilter(
            includes=tuple(_ref(item, "includes") for item in raw.get("includes") or []),
            excludes=tuple(_ref(item, "excludes") for item in raw.get("excludes") or []),
            exclude_group_ids=split_ids(raw.get("exclude_group_ids")),
            exclude_artifact_ids=split_ids(raw.get("exclude_artifact_ids")),
        ),
        requires_unpack=[_ref(item, "requires_unpack") for item in raw.get("requires_unpack") or []],
    )
    logger.debug("dependencies.loaded", path=str(path), artifacts=len(descriptor.artifacts))
    return descriptor


__all__ = [
    "Artifact",
    "ArtifactRef",
    "DependencyDescriptor",
    "DependencyFilter",
    "SCOPES",
    "artifacts_to_libraries",
    "load_dependency_descriptor",
    "split_ids",
]
