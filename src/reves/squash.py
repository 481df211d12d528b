"""Confirmation of unused-dependency candidates against realized artifacts.

A diagnostic only says one artifact did not use a dependency. The dependency
is unused only if every artifact of the package that could have used it was
built and flagged it. A possible user missing from the evidence used the
dependency.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from reves.correlator import RealizedArtifact
from reves.invariants import never
from reves.model import ArtifactKind, DependencyKind, PackageId, UnusedDependency


def can_use(artifact: RealizedArtifact, kind: DependencyKind) -> bool:
    if artifact.kind in (ArtifactKind.LIBRARY, ArtifactKind.BINARY):
        if kind is DependencyKind.NORMAL:
            return True
        if kind is DependencyKind.DEVELOPMENT:
            return artifact.test_profile
        return False
    if artifact.kind in (ArtifactKind.BENCH, ArtifactKind.EXAMPLE, ArtifactKind.TEST):
        return kind in (DependencyKind.NORMAL, DependencyKind.DEVELOPMENT)
    if artifact.kind is ArtifactKind.BUILD_SCRIPT:
        return kind is DependencyKind.BUILD
    never("unhandled artifact kind", kind=artifact.kind)


def possible_users(
    unused: UnusedDependency,
    artifacts: Iterable[RealizedArtifact],
) -> frozenset[RealizedArtifact]:
    return frozenset(
        artifact
        for artifact in artifacts
        if artifact.package_id == unused.dependant and can_use(artifact, unused.kind)
    )


def squash_unused_dependencies(
    unused: Mapping[UnusedDependency, frozenset[RealizedArtifact]],
    package_artifacts: Mapping[PackageId, frozenset[RealizedArtifact]],
) -> frozenset[UnusedDependency]:
    # Evidence may also hold artifacts that cannot use the candidate's kind:
    # one diagnostic stages a candidate for every kind of a multi-kind edge.
    return frozenset(
        candidate
        for candidate, evidence in unused.items()
        if possible_users(candidate, package_artifacts.get(candidate.dependant, ()))
        <= evidence
    )
