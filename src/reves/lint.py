"""One lint invocation: metadata, check pass, doc pass and the merge."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from reves.cargo import (
    CargoArgs,
    CargoDeps,
    cargo_metadata,
    cargo_version,
    default_deps,
)
from reves.console import Warn, default_warn
from reves.correlator import ReadText, read_build_output, run_check_pass
from reves.doctests import merge_findings, run_doc_pass
from reves.exceptions import ConfigurationError
from reves.metadata import (
    StructuredMetadata,
    normalize_metadata,
    supports_default_workspace_members,
)
from reves.model import DependencyLintResults
from reves.squash import squash_unused_dependencies


@dataclass(frozen=True)
class LintOptions:
    cargo_args: CargoArgs = CargoArgs()
    check_doc_tests: bool = True


def load_structured_metadata(
    workspace: Path,
    *,
    cargo_args: CargoArgs,
    deps: CargoDeps,
) -> StructuredMetadata:
    version = cargo_version(workspace, deps)
    if not cargo_args.workspace and not supports_default_workspace_members(version):
        raise ConfigurationError(
            f"You must pass --workspace if cargo is older than 1.71 (found {version})"
        )
    metadata = cargo_metadata(workspace, deps, cargo_args=cargo_args)
    return normalize_metadata(metadata, version)


def find_unused_dependencies(
    workspace: Path,
    metadata: StructuredMetadata,
    options: LintOptions,
    *,
    deps: CargoDeps,
    read_text: ReadText = read_build_output,
    warn: Warn = default_warn,
) -> DependencyLintResults:
    evidence = run_check_pass(
        workspace,
        metadata,
        cargo_args=options.cargo_args,
        deps=deps,
        read_text=read_text,
        warn=warn,
    )
    regular = squash_unused_dependencies(evidence.unused, evidence.package_artifacts)
    doc = None
    if options.check_doc_tests:
        doc = run_doc_pass(
            workspace,
            metadata,
            cargo_args=options.cargo_args,
            deps=deps,
        )
    return DependencyLintResults(
        unused_dependencies=merge_findings(regular, doc),
        orphans=evidence.orphans,
    )


def lint_dependencies(
    workspace: Path,
    options: LintOptions = LintOptions(),
    *,
    deps: CargoDeps | None = None,
    read_text: ReadText = read_build_output,
    warn: Warn = default_warn,
) -> DependencyLintResults:
    resolved_deps = deps or default_deps()
    metadata = load_structured_metadata(
        workspace,
        cargo_args=options.cargo_args,
        deps=resolved_deps,
    )
    return find_unused_dependencies(
        workspace,
        metadata,
        options,
        deps=resolved_deps,
        read_text=read_text,
        warn=warn,
    )
