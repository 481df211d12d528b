"""Cross-check of findings against documentation tests.

Doc tests are compiled by rustdoc, which the check pass never sees, so a
dependency only used in doc examples looks unused there. Rustdoc reports the
externs unused across all doc tests of a library on stderr as
`{"lint_level": ..., "unused_extern_names": [...]}`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import AbstractSet

from pydantic import ValidationError

from reves.cargo import (
    CargoArgs,
    CargoDeps,
    doc_test_argv,
    doc_test_env,
    run_cargo,
)
from reves.exceptions import ProtocolViolation
from reves.metadata import StructuredMetadata, has_library
from reves.model import DependencyKind, ImportName, PackageId, UnusedDependency
from reves.schema import UnusedExternsDTO


def parse_unused_externs(text: str) -> UnusedExternsDTO:
    try:
        return UnusedExternsDTO.model_validate(json.loads(text.strip()))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ProtocolViolation(f"unable to parse unused externs report: {exc}") from exc


def doc_findings_for_package(
    metadata: StructuredMetadata,
    package_id: PackageId,
    report: UnusedExternsDTO,
) -> frozenset[UnusedDependency]:
    package = metadata.package(package_id)
    findings: set[UnusedDependency] = set()
    for name in report.unused_extern_names:
        edge = metadata.edge(package_id, ImportName(name))
        if edge is None:
            if metadata.is_self_reference(package_id, name):
                # Doc tests never depending on their own library is not an orphan.
                continue
            raise ProtocolViolation(
                f"missing crate {name} in dependencies of {package_id}"
            )
        for kind in edge.kinds:
            findings.add(
                UnusedDependency(
                    dependant=package_id,
                    dependency=edge.dependency,
                    kind=kind,
                    declared_name=edge.declared_name,
                    manifest_path=Path(package.manifest_path),
                )
            )
    return frozenset(findings)


def run_doc_pass(
    workspace: Path,
    metadata: StructuredMetadata,
    *,
    cargo_args: CargoArgs,
    deps: CargoDeps,
) -> frozenset[UnusedDependency]:
    members = metadata.workspace_members(all_members=cargo_args.workspace)
    env = doc_test_env(deps.environ)
    findings: set[UnusedDependency] = set()
    for package_id in sorted(members):
        package = metadata.package(package_id)
        if not has_library(package.targets):
            # Only libraries have doc tests.
            continue
        completed = run_cargo(
            doc_test_argv(cargo_args, package.name),
            workspace=workspace,
            deps=deps,
            env=env,
            capture_stdout=False,
            capture_stderr=True,
        )
        report = parse_unused_externs(completed.stderr or "")
        findings |= doc_findings_for_package(metadata, package_id, report)
    return frozenset(findings)


def merge_findings(
    regular: AbstractSet[UnusedDependency],
    doc: AbstractSet[UnusedDependency] | None,
) -> frozenset[UnusedDependency]:
    """Keep a regular finding only if doc tests do not use it either.

    Build-dependency findings stand on their own: doc tests never see build
    scripts. Without a doc pass every regular finding is kept.
    """
    if doc is None:
        return frozenset(regular)
    return frozenset(
        dep for dep in regular if dep.kind is DependencyKind.BUILD or dep in doc
    )
