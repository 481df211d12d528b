"""Cargo command lines and the subprocess seam.

Every invocation gets an environment mapping of its own, built from the
inherited environment plus the variables that invocation needs; the process
environment is never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
import os
from pathlib import Path
import subprocess
from typing import Callable, Mapping, Sequence

from pydantic import ValidationError
import semver

from reves.exceptions import CargoCommandError, MetadataError
from reves.metadata import parse_cargo_version_output
from reves.schema import MetadataDTO

RunCommand = Callable[..., subprocess.CompletedProcess[str]]
PopenCommand = Callable[..., subprocess.Popen[str]]

CHECK_TARGET_DIR = "target_reves"
DOC_TARGET_DIR = "target_reves_doc"

_FLAG_SEPARATOR = "\x1f"


class ColorChoice(str, Enum):
    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


@dataclass(frozen=True)
class CargoDeps:
    run: RunCommand
    popen: PopenCommand
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))


def default_deps() -> CargoDeps:
    return CargoDeps(run=subprocess.run, popen=subprocess.Popen)


@dataclass(frozen=True)
class CargoArgs:
    color: ColorChoice = ColorChoice.AUTO
    frozen: bool = False
    locked: bool = False
    offline: bool = False
    workspace: bool = False
    config: tuple[str, ...] = ()
    target_dir: Path | None = None
    manifest_path: Path | None = None

    def to_argv(self, *, include_workspace: bool = True) -> list[str]:
        argv: list[str] = ["--color", ColorChoice(self.color).value]
        if self.frozen:
            argv.append("--frozen")
        if self.locked:
            argv.append("--locked")
        if self.offline:
            argv.append("--offline")
        if self.workspace and include_workspace:
            argv.append("--workspace")
        for config in self.config:
            argv.extend(["--config", config])
        if self.manifest_path is not None:
            argv.extend(["--manifest-path", str(self.manifest_path)])
        return argv

    def check_target_dir(self) -> Path:
        # Each pass owns its build directory; a user-chosen one is split per pass.
        if self.target_dir is None:
            return Path(CHECK_TARGET_DIR)
        return self.target_dir / "check"

    def doc_target_dir(self) -> Path:
        if self.target_dir is None:
            return Path(DOC_TARGET_DIR)
        return self.target_dir / "doc"


def cargo_command(environ: Mapping[str, str]) -> str:
    return environ.get("CARGO") or "cargo"


def encode_flags(flags: Sequence[str]) -> str:
    """Join flags the way `CARGO_ENCODED_RUSTFLAGS` expects."""
    for flag in flags:
        if _FLAG_SEPARATOR in flag:
            raise ValueError(f"flag {flag!r} contains the 0x1f separator")
    return _FLAG_SEPARATOR.join(flags)


def scoped_env(
    environ: Mapping[str, str],
    overrides: Mapping[str, str],
) -> dict[str, str]:
    env = dict(environ)
    env.update(overrides)
    return env


def check_argv(cargo_args: CargoArgs, *, jobs: int | None = None) -> list[str]:
    argv = [
        "check",
        *cargo_args.to_argv(),
        "--all-targets",
        f"--target-dir={cargo_args.check_target_dir()}",
        "--message-format=json",
        "--all-features",
    ]
    if jobs is not None:
        argv.append(f"-j{jobs}")
    return argv


def check_env(environ: Mapping[str, str]) -> dict[str, str]:
    return scoped_env(
        environ,
        {"CARGO_ENCODED_RUSTFLAGS": encode_flags(["--warn=unused-crate-dependencies"])},
    )


def doc_test_argv(cargo_args: CargoArgs, package_name: str) -> list[str]:
    # `--workspace` conflicts with `-p`; the package selection is explicit.
    return [
        "test",
        *cargo_args.to_argv(include_workspace=False),
        "--quiet",
        "--doc",
        f"--target-dir={cargo_args.doc_target_dir()}",
        "--message-format=json",
        "--all-features",
        "-p",
        package_name,
        "--",
        # --json=unused-externs-silent only reports when every test is built.
        "--include-ignored",
    ]


def doc_test_env(environ: Mapping[str, str]) -> dict[str, str]:
    return scoped_env(
        environ,
        {
            "RUSTC_BOOTSTRAP": "1",
            "CARGO_ENCODED_RUSTDOCFLAGS": encode_flags(
                [
                    "--json=unused-externs-silent",
                    "--warn=unused-crate-dependencies",
                    "--no-run",
                    "-Z",
                    "unstable-options",
                ]
            ),
        },
    )


def run_cargo(
    argv: Sequence[str],
    *,
    workspace: Path,
    deps: CargoDeps,
    env: Mapping[str, str] | None = None,
    capture_stdout: bool = True,
    capture_stderr: bool = False,
) -> subprocess.CompletedProcess[str]:
    command = [cargo_command(deps.environ), *argv]
    completed = deps.run(
        command,
        cwd=workspace,
        env=dict(env) if env is not None else dict(deps.environ),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE if capture_stdout else subprocess.DEVNULL,
        stderr=subprocess.PIPE if capture_stderr else subprocess.DEVNULL,
        text=True,
        check=False,
    )
    if completed.returncode != 0:
        raise CargoCommandError(
            f"`{' '.join(command)}` exited with status {completed.returncode}",
            argv=command,
            returncode=completed.returncode,
        )
    return completed


def cargo_version(workspace: Path, deps: CargoDeps) -> semver.Version:
    completed = run_cargo(["-v", "--version"], workspace=workspace, deps=deps)
    return parse_cargo_version_output(completed.stdout or "")


def cargo_metadata(
    workspace: Path,
    deps: CargoDeps,
    *,
    cargo_args: CargoArgs | None = None,
) -> MetadataDTO:
    argv = ["metadata", "--format-version", "1", "--all-features"]
    if cargo_args is not None:
        if cargo_args.frozen:
            argv.append("--frozen")
        if cargo_args.locked:
            argv.append("--locked")
        if cargo_args.offline:
            argv.append("--offline")
        if cargo_args.manifest_path is not None:
            argv.extend(["--manifest-path", str(cargo_args.manifest_path)])
    completed = run_cargo(argv, workspace=workspace, deps=deps)
    try:
        return MetadataDTO.model_validate(json.loads(completed.stdout or ""))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise MetadataError(f"unable to decode cargo metadata: {exc}") from exc
