"""Removal of confirmed-unused dependencies from manifests."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Literal

import tomlkit
from tomlkit.exceptions import TOMLKitError
from tomlkit.items import InlineTable, Table

from reves.console import Warn, default_warn
from reves.exceptions import RevesError
from reves.model import UnusedDependency, dependency_kind_for_section

FixStatus = Literal["fixed", "missing", "multiple"]


@dataclass(frozen=True)
class FixOutcome:
    unused: UnusedDependency
    removals: int

    @property
    def status(self) -> FixStatus:
        if self.removals == 0:
            return "missing"
        if self.removals == 1:
            return "fixed"
        return "multiple"


def remove_dependency(text: str, unused: UnusedDependency) -> tuple[str, int]:
    """Remove the first matching entry; report how many sections held one."""
    try:
        document = tomlkit.parse(text)
    except TOMLKitError as exc:
        raise RevesError(f"unable to parse {unused.manifest_path}: {exc}") from exc
    matches = 0
    # Only top-level sections; `[target.'cfg(..)'.dependencies]` is not handled.
    for key in list(document.keys()):
        if dependency_kind_for_section(key) is not unused.kind:
            continue
        section = document[key]
        if not isinstance(section, (Table, InlineTable)):
            continue
        if unused.declared_name not in section:
            continue
        if matches == 0:
            del section[unused.declared_name]
        matches += 1
    if matches == 0:
        return text, 0
    return tomlkit.dumps(document), matches


def apply_fix(unused: UnusedDependency, *, warn: Warn = default_warn) -> FixOutcome:
    manifest_path = Path(unused.manifest_path)
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise RevesError(f"unable to read {manifest_path}: {exc}") from exc
    updated, removals = remove_dependency(text, unused)
    outcome = FixOutcome(unused=unused, removals=removals)
    if outcome.status == "missing":
        warn(f"Warning: unable to fix {_describe(unused)}")
        return outcome
    if outcome.status == "multiple":
        warn(f"Warning: handled multiple times {_describe(unused)}")
    try:
        manifest_path.write_text(updated, encoding="utf-8")
    except OSError as exc:
        raise RevesError(f"unable to write {manifest_path}: {exc}") from exc
    return outcome


def apply_fixes(
    unused_dependencies: Iterable[UnusedDependency],
    *,
    warn: Warn = default_warn,
) -> list[FixOutcome]:
    return [
        apply_fix(unused, warn=warn)
        for unused in sorted(unused_dependencies, key=UnusedDependency.sort_key)
    ]


def _describe(unused: UnusedDependency) -> str:
    return (
        f"{unused.declared_name} ({unused.kind.value}) of {unused.dependant} "
        f"in {unused.manifest_path}"
    )
