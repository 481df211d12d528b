from __future__ import annotations

from pathlib import PurePosixPath

import pytest
import semver

from reves.exceptions import CargoCommandError, MetadataError
from reves.metadata import (
    artifact_kind,
    dependency_kinds,
    envify,
    package_relative_path,
    parse_cargo_version_output,
    supports_default_workspace_members,
)
from reves.model import ArtifactKind, DependencyKind
from reves.schema import NodeDepDTO, PackageDTO
from tests.harness.cargo_workspace_harness import (
    bin_target,
    declared,
    lib_target,
    metadata_payload,
    node,
    node_dep,
    package,
    package_id,
    structured,
)


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        (
            "cargo 1.72.1 (103a7ff2e 2023-08-15)\n"
            "release: 1.72.1\n"
            "commit-hash: 103a7ff2ee7678d34f34d778614c5eb2525ae9de\n"
            "commit-date: 2023-08-15\n"
            "host: x86_64-unknown-linux-gnu\n"
            "libgit2: 1.6.4 (sys:0.17.2 vendored)\n"
            "libcurl: 8.1.2-DEV (sys:0.4.63+curl-8.1.2 vendored ssl:OpenSSL/1.1.1u)\n"
            "ssl: OpenSSL 1.1.1u  30 May 2023\n"
            "os: Linux 4 (chimaera) [64-bit]\n",
            semver.Version(1, 72, 1),
        ),
        (
            "cargo 1.68.0 (115f34552 2023-02-26)\n"
            "release: 1.68.0\n"
            "commit-hash: 115f34552518a2f9b96d740192addbac1271e7e6\n"
            "commit-date: 2023-02-26\n"
            "host: x86_64-unknown-linux-gnu\n"
            "libgit2: 1.5.0 (sys:0.16.0 vendored)\n"
            "libcurl: 7.86.0-DEV (sys:0.4.59+curl-7.86.0 vendored ssl:OpenSSL/1.1.1q)\n"
            "os: Linux 4 (chimaera) [64-bit]\n",
            semver.Version(1, 68, 0),
        ),
        (
            "cargo 1.65.0\n"
            "release: 1.65.0\n"
            "host: x86_64-unknown-linux-gnu\n"
            "libgit2: 1.5.1 (sys:0.16.0 system)\n"
            "libcurl: 7.88.1 (sys:0.4.59+curl-7.86.0 system ssl:GnuTLS/3.7.9)\n"
            "os: Linux [64-bit]\n",
            semver.Version(1, 65, 0),
        ),
    ],
)
def test_parse_cargo_version_output(output: str, expected: semver.Version) -> None:
    assert parse_cargo_version_output(output) == expected


def test_parse_cargo_version_output_rejects_missing_and_repeated_release() -> None:
    with pytest.raises(CargoCommandError, match="unable to find"):
        parse_cargo_version_output("cargo 1.72.1\nhost: x86_64\n")
    with pytest.raises(CargoCommandError, match="multiple"):
        parse_cargo_version_output("release: 1.72.1\nrelease: 1.72.2\n")
    with pytest.raises(CargoCommandError, match="invalid cargo version"):
        parse_cargo_version_output("release: one.two\n")


def test_default_members_need_cargo_1_71() -> None:
    assert supports_default_workspace_members(semver.Version(1, 71, 0))
    assert supports_default_workspace_members(semver.Version(1, 80, 0))
    assert not supports_default_workspace_members(semver.Version(1, 70, 9))
    assert not supports_default_workspace_members(
        parse_cargo_version_output("release: 1.71.0-nightly\n")
    )
    assert str(semver.Version.parse("1.71.0-nightly")) == "1.71.0-nightly"
    assert supports_default_workspace_members(semver.Version.parse("1.73.0-nightly"))


def test_envify() -> None:
    assert envify("pimpernel") == "PIMPERNEL"
    assert envify("banana-banana_x") == "BANANA_BANANA_X"


def test_artifact_kind_collapses_library_variants() -> None:
    assert artifact_kind(["rlib", "cdylib"]) is ArtifactKind.LIBRARY
    assert artifact_kind(["proc-macro"]) is ArtifactKind.LIBRARY
    assert artifact_kind(["custom-build"]) is ArtifactKind.BUILD_SCRIPT
    with pytest.raises(MetadataError, match="mismatched"):
        artifact_kind(["lib", "bin"])
    with pytest.raises(MetadataError, match="unsupported"):
        artifact_kind(["wasm"])
    with pytest.raises(MetadataError, match="missing"):
        artifact_kind([])


def test_dependency_kinds_deduplicates_repeated_declarations() -> None:
    dep = NodeDepDTO.model_validate(node_dep("fuchsia", "fuchsia", (None, "normal", "build")))
    assert dependency_kinds(dep) == frozenset(
        {DependencyKind.NORMAL, DependencyKind.BUILD}
    )
    empty = NodeDepDTO.model_validate(node_dep("fuchsia", "fuchsia", ()))
    with pytest.raises(MetadataError, match="no dependency kinds"):
        dependency_kinds(empty)


def test_package_relative_path() -> None:
    dto = PackageDTO.model_validate(package("pepper", targets=[bin_target("pepper")]))
    assert package_relative_path(dto, "/ws/pepper/src/main.rs") == PurePosixPath(
        "src/main.rs"
    )
    with pytest.raises(MetadataError, match="outside of package"):
        package_relative_path(dto, "/elsewhere/main.rs")


def test_normalize_maps_renamed_dependency_to_declared_name() -> None:
    metadata = structured(
        metadata_payload(
            [
                package(
                    "violet",
                    dependencies=[declared("rose-hip", rename="hip"), declared("rose-hip", "dev")],
                ),
                package("rose-hip"),
            ],
            [
                node(
                    "violet",
                    [node_dep("hip", "rose-hip"), node_dep("rose_hip", "rose-hip", ("dev",))],
                ),
                node("rose-hip"),
            ],
            members=["violet"],
        )
    )
    renamed = metadata.edge(package_id("violet"), "hip")
    plain = metadata.edge(package_id("violet"), "rose_hip")
    assert renamed is not None and plain is not None
    assert renamed.declared_name == "hip"
    assert renamed.kinds == frozenset({DependencyKind.NORMAL})
    assert plain.declared_name == "rose-hip"
    assert plain.kinds == frozenset({DependencyKind.DEVELOPMENT})
    assert metadata.edge(package_id("violet"), "missing") is None


def test_normalize_rejects_duplicate_link_keys() -> None:
    payload = metadata_payload(
        [
            package("daisy", links="sqlite"),
            package("aster", links="SQLITE"),
        ],
        [node("daisy"), node("aster")],
        members=["daisy", "aster"],
    )
    with pytest.raises(MetadataError, match="both publish link key SQLITE"):
        structured(payload)


def test_normalize_rejects_default_members_outside_workspace() -> None:
    payload = metadata_payload(
        [package("daisy"), package("aster")],
        [node("daisy"), node("aster")],
        members=["daisy"],
        default_members=["aster"],
    )
    with pytest.raises(MetadataError, match="not workspace members"):
        structured(payload)


def test_normalize_requires_resolve_and_default_members() -> None:
    payload = metadata_payload([package("daisy")], [node("daisy")], members=["daisy"])
    missing_resolve = dict(payload, resolve=None)
    with pytest.raises(MetadataError, match="missing cargo metadata resolve"):
        structured(missing_resolve)

    missing_defaults = dict(payload, workspace_default_members=None)
    with pytest.raises(MetadataError, match="did not report default workspace members"):
        structured(missing_defaults)
    older = structured(missing_defaults, version="1.65.0")
    assert older.default_workspace_members is None
    with pytest.raises(MetadataError, match="unavailable"):
        older.workspace_members(all_members=False)
    assert older.workspace_members(all_members=True) == frozenset({package_id("daisy")})


def test_workspace_members_selects_default_subset() -> None:
    metadata = structured(
        metadata_payload(
            [package("daisy"), package("aster")],
            [node("daisy"), node("aster")],
            members=["daisy", "aster"],
            default_members=["daisy"],
        )
    )
    assert metadata.workspace_members(all_members=False) == frozenset({package_id("daisy")})
    assert metadata.workspace_members(all_members=True) == frozenset(
        {package_id("daisy"), package_id("aster")}
    )


def test_is_self_reference_uses_normalized_package_name() -> None:
    metadata = structured(
        metadata_payload(
            [package("sweet-pea", targets=[lib_target("sweet-pea"), bin_target("sweet-pea")])],
            [node("sweet-pea")],
            members=["sweet-pea"],
        )
    )
    assert metadata.is_self_reference(package_id("sweet-pea"), "sweet_pea")
    assert not metadata.is_self_reference(package_id("sweet-pea"), "sweet-pea")
