"""Derived facts about a workspace.

Every value in this module is recomputed per invocation from one metadata
snapshot and one build event stream. Package ids are the only cross-reference
key: names may collide once renames are taken into account.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import NewType, TypeAlias

JSONValue: TypeAlias = str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]

PackageId = NewType("PackageId", str)

# Name a dependant uses to refer to a dependency in source (`extern crate`),
# after renames and with `-` normalized to `_`.
ImportName = NewType("ImportName", str)

# Key of a dependency entry in the dependant's manifest.
DeclaredName = NewType("DeclaredName", str)


class DependencyKind(str, Enum):
    NORMAL = "normal"
    DEVELOPMENT = "development"
    BUILD = "build"


class ArtifactKind(str, Enum):
    # Library variants (rlib, dylib, proc-macro, ...) all collapse to LIBRARY.
    LIBRARY = "library"
    BINARY = "binary"
    TEST = "test"
    BENCH = "bench"
    EXAMPLE = "example"
    BUILD_SCRIPT = "build-script"


ORPHAN_ARTIFACT_KINDS: frozenset[ArtifactKind] = frozenset(
    {
        ArtifactKind.BINARY,
        ArtifactKind.TEST,
        ArtifactKind.BENCH,
        ArtifactKind.EXAMPLE,
    }
)

MANIFEST_SECTIONS: dict[DependencyKind, str] = {
    DependencyKind.NORMAL: "dependencies",
    DependencyKind.DEVELOPMENT: "dev-dependencies",
    DependencyKind.BUILD: "build-dependencies",
}


def dependency_kind_for_section(key: str) -> DependencyKind | None:
    for kind, section in MANIFEST_SECTIONS.items():
        if section == key:
            return kind
    return None


@dataclass(frozen=True)
class ResolvedEdge:
    dependant: PackageId
    dependency: PackageId
    kinds: frozenset[DependencyKind]
    import_name: ImportName
    declared_name: DeclaredName


@dataclass(frozen=True)
class UnusedDependency:
    dependant: PackageId
    dependency: PackageId
    kind: DependencyKind
    declared_name: DeclaredName = field(compare=False)
    manifest_path: Path = field(compare=False)

    def sort_key(self) -> tuple[str, str, str]:
        return (str(self.dependant), str(self.dependency), self.kind.value)

    def to_payload(self) -> JSONObject:
        return {
            "dependant": str(self.dependant),
            "dependency": str(self.dependency),
            "kind": self.kind.value,
            "declared_name": str(self.declared_name),
            "manifest_path": str(self.manifest_path),
        }


@dataclass(frozen=True)
class OrphanArtifact:
    package: PackageId
    kind: ArtifactKind
    name: str
    package_relative_path: PurePosixPath

    def __post_init__(self) -> None:
        if self.kind not in ORPHAN_ARTIFACT_KINDS:
            raise ValueError(f"{self.kind.value} artifacts cannot be orphaned")

    def sort_key(self) -> tuple[str, str, str]:
        return (str(self.package), self.kind.value, self.name)

    def to_payload(self) -> JSONObject:
        return {
            "package": str(self.package),
            "kind": self.kind.value,
            "name": self.name,
            "package_relative_path": str(self.package_relative_path),
        }


@dataclass(frozen=True)
class LinkDependency:
    dependant: PackageId
    dependency: PackageId


@dataclass(frozen=True)
class DependencyLintResults:
    unused_dependencies: frozenset[UnusedDependency] = frozenset()
    orphans: frozenset[OrphanArtifact] = frozenset()

    def sorted_unused_dependencies(self) -> list[UnusedDependency]:
        return sorted(self.unused_dependencies, key=UnusedDependency.sort_key)

    def sorted_orphans(self) -> list[OrphanArtifact]:
        return sorted(self.orphans, key=OrphanArtifact.sort_key)

    def to_payload(self) -> JSONObject:
        return {
            "unused_dependencies": [
                dep.to_payload() for dep in self.sorted_unused_dependencies()
            ],
            "orphans": [orphan.to_payload() for orphan in self.sorted_orphans()],
        }
