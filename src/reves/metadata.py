"""Normalization of `cargo metadata` output into lookup structures."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
import re
from typing import Iterable, Mapping

import semver

from reves.exceptions import CargoCommandError, MetadataError
from reves.model import (
    ArtifactKind,
    DeclaredName,
    DependencyKind,
    ImportName,
    PackageId,
    ResolvedEdge,
)
from reves.schema import DependencyDTO, MetadataDTO, NodeDepDTO, PackageDTO, TargetDTO

_RELEASE_RE = re.compile(r"^release:(?P<version>.*)$")

# First cargo release whose metadata distinguishes default members.
DEFAULT_MEMBERS_MIN_VERSION = semver.Version(1, 71, 0)

_ARTIFACT_KINDS: dict[str, ArtifactKind] = {
    "custom-build": ArtifactKind.BUILD_SCRIPT,
    "bench": ArtifactKind.BENCH,
    "bin": ArtifactKind.BINARY,
    "example": ArtifactKind.EXAMPLE,
    "test": ArtifactKind.TEST,
    "lib": ArtifactKind.LIBRARY,
    "rlib": ArtifactKind.LIBRARY,
    "dylib": ArtifactKind.LIBRARY,
    "cdylib": ArtifactKind.LIBRARY,
    "staticlib": ArtifactKind.LIBRARY,
    "proc-macro": ArtifactKind.LIBRARY,
}

_DEPENDENCY_KINDS: dict[str | None, DependencyKind] = {
    None: DependencyKind.NORMAL,
    "normal": DependencyKind.NORMAL,
    "dev": DependencyKind.DEVELOPMENT,
    "build": DependencyKind.BUILD,
}


def parse_cargo_version(text: str) -> semver.Version:
    try:
        return semver.Version.parse(text.strip())
    except ValueError as exc:
        raise CargoCommandError(f"invalid cargo version {text.strip()!r}") from exc


def parse_cargo_version_output(output: str) -> semver.Version:
    """Extract the `release:` line of `cargo -v --version`."""
    release: semver.Version | None = None
    for line in output.splitlines():
        match = _RELEASE_RE.match(line)
        if match is None:
            continue
        if release is not None:
            raise CargoCommandError("multiple cargo versions found")
        release = parse_cargo_version(match.group("version"))
    if release is None:
        raise CargoCommandError("unable to find cargo version")
    return release


def supports_default_workspace_members(version: semver.Version) -> bool:
    # A pre-release such as 1.71.0-nightly sorts before 1.71.0.
    return version >= DEFAULT_MEMBERS_MIN_VERSION


def envify(text: str) -> str:
    """Apply cargo's environment-variable name transform."""
    return text.upper().replace("-", "_")


def import_name(name: str) -> ImportName:
    return ImportName(name.replace("-", "_"))


def artifact_kind(kinds: Iterable[str]) -> ArtifactKind:
    """Collapse a target's kind strings into one `ArtifactKind`."""
    flattened: ArtifactKind | None = None
    for kind_text in kinds:
        kind = _ARTIFACT_KINDS.get(kind_text)
        if kind is None:
            raise MetadataError(f"unsupported artifact kind {kind_text}")
        if flattened is not None and flattened is not kind:
            raise MetadataError("mismatched artifact kinds")
        flattened = kind
    if flattened is None:
        raise MetadataError("missing artifact kind")
    return flattened


def dependency_kinds(dep: NodeDepDTO) -> frozenset[DependencyKind]:
    # A dependency declared several ways (e.g. under a cfg(...) target) is
    # listed once per declaration; the set deduplicates them.
    if not dep.dep_kinds:
        raise MetadataError(f"dependency {dep.name} has no dependency kinds")
    kinds: set[DependencyKind] = set()
    for info in dep.dep_kinds:
        kind = _DEPENDENCY_KINDS.get(info.kind)
        if kind is None:
            raise MetadataError(f"unsupported dependency kind {info.kind}")
        kinds.add(kind)
    return frozenset(kinds)


def has_library(targets: Iterable[TargetDTO]) -> bool:
    return any(artifact_kind(target.kind) is ArtifactKind.LIBRARY for target in targets)


def package_relative_path(package: PackageDTO, src_path: str) -> PurePosixPath:
    package_root = PurePosixPath(Path(package.manifest_path).parent.as_posix())
    source = PurePosixPath(Path(src_path).as_posix())
    try:
        return source.relative_to(package_root)
    except ValueError:
        raise MetadataError(
            f"{src_path} is outside of package {package.name} ({package_root})"
        ) from None


def _declared_dependency(
    package: PackageDTO,
    node_dep: NodeDepDTO,
    dependency: PackageDTO,
) -> DependencyDTO:
    candidates = [dep for dep in package.dependencies if dep.name == dependency.name]
    if not candidates:
        raise MetadataError(
            f"missing crate {dependency.name} in dependency list of {package.name}"
        )
    for dep in candidates:
        if import_name(dep.rename or dep.name) == node_dep.name:
            return dep
    return candidates[0]


@dataclass(frozen=True)
class StructuredMetadata:
    packages: Mapping[PackageId, PackageDTO]
    edges: Mapping[PackageId, Mapping[ImportName, ResolvedEdge]]
    all_workspace_members: frozenset[PackageId]
    default_workspace_members: frozenset[PackageId] | None
    link_keys: Mapping[str, PackageId]

    def package(self, package_id: PackageId) -> PackageDTO:
        try:
            return self.packages[package_id]
        except KeyError:
            raise MetadataError(f"unknown package {package_id}") from None

    def edge(self, dependant: PackageId, name: ImportName) -> ResolvedEdge | None:
        return self.edges.get(dependant, {}).get(name)

    def workspace_members(self, *, all_members: bool) -> frozenset[PackageId]:
        if all_members:
            return self.all_workspace_members
        if self.default_workspace_members is None:
            raise MetadataError(
                "default workspace members are unavailable; select all members"
            )
        return self.default_workspace_members

    def is_self_reference(self, package_id: PackageId, name: str) -> bool:
        # A crate cannot rename itself, so its library is only ever referred
        # to by its normalized package name.
        return name == import_name(self.package(package_id).name)


def normalize_metadata(
    metadata: MetadataDTO,
    version: semver.Version,
) -> StructuredMetadata:
    if metadata.resolve is None:
        raise MetadataError("missing cargo metadata resolve")

    packages: dict[PackageId, PackageDTO] = {}
    for package in metadata.packages:
        package_id = PackageId(package.id)
        if package_id in packages:
            raise MetadataError(f"duplicate package id {package.id}")
        packages[package_id] = package

    edges: dict[PackageId, dict[ImportName, ResolvedEdge]] = {}
    for node in metadata.resolve.nodes:
        dependant = PackageId(node.id)
        if dependant in edges:
            raise MetadataError(f"duplicate resolve node {node.id}")
        if dependant not in packages:
            raise MetadataError(f"resolve node {node.id} has no package")
        node_edges: dict[ImportName, ResolvedEdge] = {}
        for node_dep in node.deps:
            name = ImportName(node_dep.name)
            if name in node_edges:
                raise MetadataError(f"duplicate dependency {name} of {node.id}")
            dependency = PackageId(node_dep.pkg)
            if dependency not in packages:
                raise MetadataError(f"dependency {node_dep.pkg} has no package")
            declared = _declared_dependency(
                packages[dependant], node_dep, packages[dependency]
            )
            node_edges[name] = ResolvedEdge(
                dependant=dependant,
                dependency=dependency,
                kinds=dependency_kinds(node_dep),
                import_name=name,
                declared_name=DeclaredName(declared.rename or declared.name),
            )
        edges[dependant] = node_edges

    all_members: set[PackageId] = set()
    for member in metadata.workspace_members:
        if member in all_members:
            raise MetadataError(f"duplicate workspace member {member}")
        all_members.add(PackageId(member))

    default_members: frozenset[PackageId] | None = None
    if supports_default_workspace_members(version):
        if metadata.workspace_default_members is None:
            raise MetadataError(
                f"cargo {version} did not report default workspace members"
            )
        seen: set[PackageId] = set()
        for member in metadata.workspace_default_members:
            if member in seen:
                raise MetadataError(f"duplicate default workspace member {member}")
            seen.add(PackageId(member))
        stray = seen - all_members
        if stray:
            raise MetadataError(
                "default workspace members are not workspace members: "
                + ", ".join(sorted(stray))
            )
        default_members = frozenset(seen)

    link_keys: dict[str, PackageId] = {}
    for package_id, package in packages.items():
        if package.links is None:
            continue
        key = envify(package.links)
        if key in link_keys:
            raise MetadataError(
                f"packages {link_keys[key]} and {package_id} both publish link key {key}"
            )
        link_keys[key] = package_id

    return StructuredMetadata(
        packages=packages,
        edges=edges,
        all_workspace_members=frozenset(all_members),
        default_workspace_members=default_members,
        link_keys=dict(sorted(link_keys.items())),
    )
