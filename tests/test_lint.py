from __future__ import annotations

import json
from pathlib import Path
import textwrap
import tomllib

import pytest

from reves.cargo import CargoArgs
from reves.exceptions import ConfigurationError, ProtocolViolation
from reves.fix import apply_fixes
from reves.lint import LintOptions, lint_dependencies
from reves.model import DependencyKind
from tests.harness.cargo_workspace_harness import (
    LILY_BUILD_OUTPUT,
    FakeCargo,
    build_outputs,
    build_script_target,
    declared,
    lib_target,
    lily_events,
    lily_payload,
    magenta_events,
    magenta_payload,
    metadata_payload,
    node,
    node_dep,
    package,
    package_id,
    pepper_events,
    pepper_payload,
    structured,
)

_OLD_CARGO = "cargo 1.65.0\nrelease: 1.65.0\nhost: x86_64-unknown-linux-gnu\n"


def _triples(results) -> list[tuple[str, str, DependencyKind]]:
    return [
        (unused.dependant, unused.dependency, unused.kind)
        for unused in results.sorted_unused_dependencies()
    ]


def test_lint_magenta_without_doc_tests(fake_cargo_factory, warnings: list[str]) -> None:
    cargo = fake_cargo_factory(magenta_payload(), magenta_events())
    results = lint_dependencies(
        Path("/ws"),
        LintOptions(check_doc_tests=False),
        deps=cargo.deps(),
        read_text=build_outputs({"magenta": ""}),
        warn=warnings.append,
    )

    magenta = package_id("magenta")
    assert _triples(results) == [
        (magenta, package_id("fuchsia"), DependencyKind.BUILD),
        (magenta, package_id("fuchsia"), DependencyKind.NORMAL),
        (magenta, package_id("purple"), DependencyKind.DEVELOPMENT),
    ]
    assert results.orphans == frozenset()
    assert warnings == []
    assert [argv[1] for argv, _ in cargo.calls] == ["-v", "metadata", "check", "check"]


def test_lint_magenta_doc_tests_keep_confirmed_findings(fake_cargo_factory) -> None:
    cargo = fake_cargo_factory(
        magenta_payload(),
        magenta_events(),
        doc_reports={
            "magenta": {
                "lint_level": "warn",
                "unused_extern_names": ["fuchsia", "purple"],
            }
        },
    )
    results = lint_dependencies(
        Path("/ws"),
        deps=cargo.deps(),
        read_text=build_outputs({"magenta": ""}),
    )
    assert len(results.unused_dependencies) == 3
    assert cargo.calls[-1][0][1] == "test"


def test_lint_magenta_doc_tests_using_dependencies(fake_cargo_factory) -> None:
    cargo = fake_cargo_factory(magenta_payload(), magenta_events())
    results = lint_dependencies(
        Path("/ws"),
        deps=cargo.deps(),
        read_text=build_outputs({"magenta": ""}),
    )
    # Doc tests may use fuchsia and purple; only the build finding remains.
    assert _triples(results) == [
        (package_id("magenta"), package_id("fuchsia"), DependencyKind.BUILD),
    ]


def test_lint_lily_link_consumption_is_not_reported(fake_cargo_factory) -> None:
    cargo = fake_cargo_factory(lily_payload(), lily_events())
    results = lint_dependencies(
        Path("/ws"),
        LintOptions(check_doc_tests=False),
        deps=cargo.deps(),
        read_text=build_outputs({"lily": LILY_BUILD_OUTPUT, "buttercup": ""}),
    )
    assert results.unused_dependencies == frozenset()
    assert results.orphans == frozenset()


def test_lint_pepper_reports_orphan(fake_cargo_factory) -> None:
    cargo = fake_cargo_factory(pepper_payload(), pepper_events())
    results = lint_dependencies(Path("/ws"), deps=cargo.deps())
    assert results.unused_dependencies == frozenset()
    assert [orphan.to_payload() for orphan in results.sorted_orphans()] == [
        {
            "package": package_id("pepper"),
            "kind": "binary",
            "name": "pepper",
            "package_relative_path": "src/main.rs",
        }
    ]


def test_lint_requires_workspace_on_old_cargo(fake_cargo_factory) -> None:
    cargo = fake_cargo_factory(
        pepper_payload(), pepper_events(), version_output=_OLD_CARGO
    )
    with pytest.raises(ConfigurationError, match="older than 1.71 \\(found 1.65.0\\)"):
        lint_dependencies(Path("/ws"), deps=cargo.deps())
    assert len(cargo.calls) == 1

    results = lint_dependencies(
        Path("/ws"),
        LintOptions(cargo_args=CargoArgs(workspace=True)),
        deps=cargo.deps(),
    )
    assert len(results.orphans) == 1


def test_lint_protocol_violation_yields_no_results(fake_cargo_factory) -> None:
    events = magenta_events()[:3]
    cargo = fake_cargo_factory(magenta_payload(), events)
    with pytest.raises(ProtocolViolation, match="stream ended"):
        lint_dependencies(
            Path("/ws"),
            deps=cargo.deps(),
            read_text=build_outputs({"magenta": ""}),
        )
    # The doc pass never starts.
    assert all(argv[1] != "test" for argv, _ in cargo.calls)


_MAGENTA_MANIFEST = textwrap.dedent(
    """\
    [package]
    name = "magenta"
    version = "0.1.0"

    [dependencies]
    fuchsia = "1"

    [dev-dependencies]
    purple = "1"

    [build-dependencies]
    fuchsia = "1"
    """
)

_SECTION_KINDS = {
    "dependencies": None,
    "dev-dependencies": "dev",
    "build-dependencies": "build",
}


def _payload_from_manifest(manifest: Path) -> dict[str, object]:
    """Metadata for a single-member workspace, as cargo would read `manifest`."""
    document = tomllib.loads(manifest.read_text(encoding="utf-8"))
    declarations = []
    kinds: dict[str, list[str | None]] = {}
    for section, kind in _SECTION_KINDS.items():
        for name in document.get(section, {}):
            declarations.append(declared(name, kind))
            kinds.setdefault(name, []).append(kind)
    magenta = package(
        "magenta",
        dependencies=declarations,
        targets=[lib_target("magenta"), build_script_target("magenta")],
    )
    magenta["manifest_path"] = str(manifest)
    return metadata_payload(
        [magenta, *(package(name) for name in kinds)],
        [
            node("magenta", [node_dep(name, name, kinds[name]) for name in kinds]),
            *(node(name) for name in kinds),
        ],
        members=["magenta"],
    )


def test_fixed_manifest_no_longer_reports_findings(
    tmp_path: Path, warnings: list[str]
) -> None:
    manifest = tmp_path / "magenta" / "Cargo.toml"
    manifest.parent.mkdir()
    manifest.write_text(_MAGENTA_MANIFEST, encoding="utf-8")
    options = LintOptions(check_doc_tests=False)
    read_text = build_outputs({"magenta": ""})

    before = lint_dependencies(
        Path("/ws"),
        options,
        deps=FakeCargo(_payload_from_manifest(manifest), magenta_events()).deps(),
        read_text=read_text,
        warn=warnings.append,
    )
    assert len(before.unused_dependencies) == 3
    assert {unused.manifest_path for unused in before.unused_dependencies} == {manifest}

    outcomes = apply_fixes(before.unused_dependencies, warn=warnings.append)
    assert [outcome.status for outcome in outcomes] == ["fixed", "fixed", "fixed"]
    assert warnings == []

    fixed_payload = _payload_from_manifest(manifest)
    metadata = structured(fixed_payload)
    magenta = package_id("magenta")
    assert metadata.edge(magenta, "fuchsia") is None
    assert metadata.edge(magenta, "purple") is None

    # With the dependencies gone rustc has nothing left to flag.
    quiet_events = [
        line
        for line in magenta_events()
        if json.loads(line)["reason"] != "compiler-message"
    ]
    after = lint_dependencies(
        Path("/ws"),
        options,
        deps=FakeCargo(fixed_payload, quiet_events).deps(),
        read_text=read_text,
        warn=warnings.append,
    )
    remaining = set(_triples(after))
    assert remaining.isdisjoint(_triples(before))
    assert after.unused_dependencies == frozenset()
