"""Correlation of `cargo check --message-format=json` events.

The check pass is built with `unused_crate_dependencies` escalated to a
warning. Rustc emits every diagnostic of an artifact before cargo reports the
artifact itself, so with `-j1` the stream reads as runs of diagnostics each
closed by the artifact they belong to:

    Idle --diagnostic(t)--> Accumulating(t, pending)
    Accumulating(t) --diagnostic(t)--> Accumulating(t, pending + ...)
    Accumulating(t) --artifact(t)--> Idle            (pending flushed)

Any other transition is a protocol violation and aborts the pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
import re
import subprocess
from typing import Callable, Iterable, Mapping

from pydantic import BaseModel, ValidationError
from reves.cargo import (
    CargoArgs,
    CargoDeps,
    cargo_command,
    check_argv,
    check_env,
    run_cargo,
)
from reves.console import Warn, default_warn
from reves.exceptions import CargoCommandError, MetadataError, ProtocolViolation
from reves.links import LINK_VARIABLE_PREFIX, resolve_link_variable
from reves.metadata import StructuredMetadata, artifact_kind, package_relative_path
from reves.model import (
    ORPHAN_ARTIFACT_KINDS,
    ArtifactKind,
    DependencyKind,
    ImportName,
    LinkDependency,
    OrphanArtifact,
    PackageId,
    UnusedDependency,
)
from reves.schema import (
    ArtifactMessageDTO,
    BuildFinishedDTO,
    BuildScriptExecutedDTO,
    CompilerMessageDTO,
    TargetDTO,
)

UNUSED_CRATE_DIAGNOSTIC = "unused_crate_dependencies"

_UNUSED_CRATE_RE = re.compile(
    r"^(?:external|extern) crate `(?P<name>[^`]*)` (?:is )?unused in (?:crate )?`[^`]*`.*$",
    re.DOTALL,
)

_DIRECTIVE_PREFIXES = ("cargo::", "cargo:")

ReadText = Callable[[Path], str]


def read_build_output(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def parse_unused_crate_diagnostic(message: str) -> ImportName:
    """Return the (possibly renamed) crate named by the diagnostic."""
    match = _UNUSED_CRATE_RE.match(message)
    if match is None:
        raise ProtocolViolation(
            f"unable to parse unused_crate_dependencies diagnostic: {message!r}"
        )
    return ImportName(match.group("name"))


def parse_build_script_directive(line: str) -> tuple[str, str] | None:
    key, sep, value = line.partition("=")
    if not sep:
        return None
    for prefix in _DIRECTIVE_PREFIXES:
        if key.startswith(prefix):
            return key[len(prefix):], value
    return None


def link_variables(output: str) -> list[str]:
    """`DEP_*` variables a build script declared it reads, prefix removed."""
    variables: list[str] = []
    for line in output.splitlines():
        directive = parse_build_script_directive(line)
        if directive is None:
            continue
        key, value = directive
        if key == "rerun-if-env-changed" and value.startswith(LINK_VARIABLE_PREFIX):
            variables.append(value[len(LINK_VARIABLE_PREFIX):])
    return variables


def build_script_output_path(out_dir: str) -> Path:
    return Path(out_dir).parent / "output"


@dataclass(frozen=True)
class TargetIdentity:
    package_id: PackageId
    name: str
    kinds: tuple[str, ...]
    src_path: str

    @classmethod
    def from_target(cls, package_id: str, target: TargetDTO) -> "TargetIdentity":
        return cls(
            package_id=PackageId(package_id),
            name=target.name,
            kinds=tuple(target.kind),
            src_path=target.src_path,
        )

    def describe(self) -> str:
        return f"{'/'.join(self.kinds)} `{self.name}` of {self.package_id}"


@dataclass(frozen=True)
class RealizedArtifact:
    target: TargetIdentity
    kind: ArtifactKind
    test_profile: bool = False

    @property
    def package_id(self) -> PackageId:
        return self.target.package_id


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Accumulating:
    target: TargetIdentity
    pending: tuple[UnusedDependency, ...] = ()


CorrelatorState = Idle | Accumulating


@dataclass(frozen=True)
class CheckPassEvidence:
    unused: Mapping[UnusedDependency, frozenset[RealizedArtifact]] = field(
        default_factory=dict
    )
    package_artifacts: Mapping[PackageId, frozenset[RealizedArtifact]] = field(
        default_factory=dict
    )
    link_dependencies: frozenset[LinkDependency] = frozenset()
    orphans: frozenset[OrphanArtifact] = frozenset()


def _validate(model: type[BaseModel], payload: dict[str, object]):
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ProtocolViolation(
            f"malformed {payload.get('reason')} message: {exc}"
        ) from exc


class EventStreamCorrelator:
    """Consumes one build event stream in emission order."""

    def __init__(
        self,
        metadata: StructuredMetadata,
        *,
        read_text: ReadText = read_build_output,
        warn: Warn = default_warn,
    ) -> None:
        self._metadata = metadata
        self._read_text = read_text
        self._warn = warn
        self._state: CorrelatorState = Idle()
        self._unused: dict[UnusedDependency, set[RealizedArtifact]] = {}
        self._package_artifacts: dict[PackageId, set[RealizedArtifact]] = {}
        self._link_dependencies: set[LinkDependency] = set()
        self._orphans: set[OrphanArtifact] = set()

    @property
    def state(self) -> CorrelatorState:
        return self._state

    def feed_lines(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.feed_line(line)

    def feed_line(self, line: str) -> None:
        text = line.strip()
        if not text:
            return
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            raise ProtocolViolation(f"unexpected text line: {text!r}") from None
        if not isinstance(payload, dict):
            raise ProtocolViolation(f"unexpected non-object message: {text!r}")
        reason = payload.get("reason")
        if reason == "compiler-artifact":
            self._on_artifact(_validate(ArtifactMessageDTO, payload))
        elif reason == "compiler-message":
            self._on_diagnostic(_validate(CompilerMessageDTO, payload))
        elif reason == "build-script-executed":
            self._on_build_script(_validate(BuildScriptExecutedDTO, payload))
        elif reason == "build-finished":
            self._on_build_finished(_validate(BuildFinishedDTO, payload))
        # Other reasons carry nothing this pass needs.

    def finish(self) -> CheckPassEvidence:
        if isinstance(self._state, Accumulating):
            raise ProtocolViolation(
                f"stream ended while {self._state.target.describe()} was in progress"
            )
        return CheckPassEvidence(
            unused={dep: frozenset(found) for dep, found in self._unused.items()},
            package_artifacts={
                package_id: frozenset(found)
                for package_id, found in self._package_artifacts.items()
            },
            link_dependencies=frozenset(self._link_dependencies),
            orphans=frozenset(self._orphans),
        )

    def _on_artifact(self, message: ArtifactMessageDTO) -> None:
        target = TargetIdentity.from_target(message.package_id, message.target)
        try:
            kind = artifact_kind(message.target.kind)
        except MetadataError as exc:
            raise ProtocolViolation(str(exc)) from exc
        realized = RealizedArtifact(
            target=target, kind=kind, test_profile=message.profile.test
        )
        self._package_artifacts.setdefault(target.package_id, set()).add(realized)
        state = self._state
        if isinstance(state, Idle):
            return
        if state.target != target:
            raise ProtocolViolation(
                f"artifact {target.describe()} produced while "
                f"{state.target.describe()} was in progress"
            )
        for unused in state.pending:
            if unused.kind is DependencyKind.NORMAL and (
                LinkDependency(unused.dependant, unused.dependency)
                in self._link_dependencies
            ):
                # Consumed through its link key by the build script.
                continue
            self._unused.setdefault(unused, set()).add(realized)
        self._state = Idle()

    def _on_diagnostic(self, message: CompilerMessageDTO) -> None:
        package_id = PackageId(message.package_id)
        if package_id not in self._metadata.all_workspace_members:
            return
        target = TargetIdentity.from_target(message.package_id, message.target)
        state = self._state
        if isinstance(state, Idle):
            state = Accumulating(target=target)
        elif state.target != target:
            raise ProtocolViolation(
                f"diagnostic for {target.describe()} while "
                f"{state.target.describe()} was in progress"
            )
        code = message.message.code
        if code is not None and code.code == UNUSED_CRATE_DIAGNOSTIC:
            state = Accumulating(
                target=target,
                pending=state.pending
                + self._stage(package_id, message.target, message.message.message),
            )
        self._state = state

    def _stage(
        self,
        package_id: PackageId,
        target: TargetDTO,
        text: str,
    ) -> tuple[UnusedDependency, ...]:
        name = parse_unused_crate_diagnostic(text)
        edge = self._metadata.edge(package_id, name)
        package = self._metadata.package(package_id)
        if edge is not None:
            return tuple(
                UnusedDependency(
                    dependant=package_id,
                    dependency=edge.dependency,
                    kind=kind,
                    declared_name=edge.declared_name,
                    manifest_path=Path(package.manifest_path),
                )
                for kind in sorted(edge.kinds, key=lambda item: item.value)
            )
        if not self._metadata.is_self_reference(package_id, name):
            raise ProtocolViolation(
                f"missing crate {name} in dependencies of {package_id}"
            )
        # The artifact does not use its own package's library.
        try:
            kind = artifact_kind(target.kind)
            relative_path = package_relative_path(package, target.src_path)
        except MetadataError as exc:
            raise ProtocolViolation(str(exc)) from exc
        if kind not in ORPHAN_ARTIFACT_KINDS:
            raise ProtocolViolation(
                f"unexpected self-reference from {kind.value} `{target.name}` of {package_id}"
            )
        self._orphans.add(
            OrphanArtifact(
                package=package_id,
                kind=kind,
                name=target.name,
                package_relative_path=relative_path,
            )
        )
        return ()

    def _on_build_script(self, message: BuildScriptExecutedDTO) -> None:
        if isinstance(self._state, Accumulating):
            raise ProtocolViolation(
                f"build script of {message.package_id} executed while "
                f"{self._state.target.describe()} was in progress"
            )
        output_path = build_script_output_path(message.out_dir)
        try:
            output = self._read_text(output_path)
        except OSError as exc:
            raise ProtocolViolation(
                f"unable to read build script output {output_path}: {exc}"
            ) from exc
        dependant = PackageId(message.package_id)
        for variable in link_variables(output):
            # A variable without a matching dependency still resolves; an
            # extra suppression there is harmless.
            resolution = resolve_link_variable(variable, self._metadata.link_keys)
            provider = resolution.provider
            if provider is None:
                self._warn(
                    f"Warning: provider of link variable {LINK_VARIABLE_PREFIX}{variable} "
                    f"used by {dependant} not found - {resolution.describe()}"
                )
                continue
            self._link_dependencies.add(LinkDependency(dependant, provider))

    def _on_build_finished(self, message: BuildFinishedDTO) -> None:
        if isinstance(self._state, Accumulating):
            raise ProtocolViolation(
                f"build finished (success={message.success}) while "
                f"{self._state.target.describe()} was in progress"
            )


def run_check_pass(
    workspace: Path,
    metadata: StructuredMetadata,
    *,
    cargo_args: CargoArgs,
    deps: CargoDeps,
    read_text: ReadText = read_build_output,
    warn: Warn = default_warn,
) -> CheckPassEvidence:
    env = check_env(deps.environ)
    # Build everything in parallel first; the streamed -j1 run then replays
    # cached diagnostics in strict order.
    run_cargo(
        check_argv(cargo_args),
        workspace=workspace,
        deps=deps,
        env=env,
        capture_stdout=False,
    )
    command = [cargo_command(deps.environ), *check_argv(cargo_args, jobs=1)]
    correlator = EventStreamCorrelator(metadata, read_text=read_text, warn=warn)
    with deps.popen(
        command,
        cwd=workspace,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        text=True,
    ) as process:
        if process.stdout is None:
            raise CargoCommandError("cargo stdout is not piped", argv=command)
        try:
            correlator.feed_lines(process.stdout)
        except ProtocolViolation:
            process.kill()
            raise
        returncode = process.wait()
    if returncode != 0:
        raise CargoCommandError(
            f"`{' '.join(command)}` exited with status {returncode}",
            argv=command,
            returncode=returncode,
        )
    return correlator.finish()
