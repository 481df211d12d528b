"""Resolution of `DEP_<LINKS>_<KEY>` variables to the package publishing them.

Build scripts of packages with a `links` key can hand metadata to their direct
dependants through environment variables. Such a consumption is invisible to
rustc, so the consuming dependency would otherwise be reported as unused.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping

from reves.metadata import envify
from reves.model import PackageId

LINK_VARIABLE_PREFIX = "DEP_"

LinkOutcome = Literal["found", "ambiguous", "not-found"]


@dataclass(frozen=True)
class LinkResolution:
    variable: str
    outcome: LinkOutcome
    candidates: tuple[PackageId, ...] = ()

    @property
    def provider(self) -> PackageId | None:
        if self.outcome == "found":
            return self.candidates[0]
        return None

    def describe(self) -> str:
        if self.outcome == "found":
            return f"{LINK_VARIABLE_PREFIX}{self.variable} is provided by {self.candidates[0]}"
        if self.outcome == "ambiguous":
            return (
                f"multiple packages' `links` attributes match "
                f"{LINK_VARIABLE_PREFIX}{self.variable}: " + ", ".join(self.candidates)
            )
        return f"no package's `links` attribute matches {LINK_VARIABLE_PREFIX}{self.variable}"


def find_link_providers(
    variable: str,
    link_keys: Mapping[str, PackageId],
) -> tuple[PackageId, ...]:
    """Every package whose link key is a `_`-terminated prefix of `variable`.

    Link keys may contain `_` themselves and may be prefixes of one another, so
    each separator position is a candidate split.
    """
    providers: list[PackageId] = []
    start = 0
    while True:
        index = variable.find("_", start)
        if index < 0:
            break
        provider = link_keys.get(envify(variable[:index]))
        if provider is not None:
            providers.append(provider)
        start = index + 1
    return tuple(providers)


def resolve_link_variable(
    variable: str,
    link_keys: Mapping[str, PackageId],
) -> LinkResolution:
    """Resolve `variable` (with the `DEP_` prefix removed) to its provider."""
    providers = find_link_providers(variable, link_keys)
    if not providers:
        return LinkResolution(variable=variable, outcome="not-found")
    if len(providers) > 1:
        return LinkResolution(variable=variable, outcome="ambiguous", candidates=providers)
    return LinkResolution(variable=variable, outcome="found", candidates=providers)
