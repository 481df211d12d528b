"""Error types raised while linting a workspace."""

from __future__ import annotations

from typing import Sequence


class RevesError(RuntimeError):
    """Base class for every error that aborts a lint run."""


class MetadataError(RevesError):
    """The package graph violates an invariant the normalizer relies on."""


class ProtocolViolation(RevesError):
    """A build event stream or side channel did not follow its protocol.

    Raised for out-of-order events, unparseable lines and diagnostics naming a
    crate that cannot be resolved. No partial results survive it.
    """


class CargoCommandError(RevesError):
    def __init__(
        self,
        message: str,
        *,
        argv: Sequence[str] = (),
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.argv = tuple(str(arg) for arg in argv)
        self.returncode = returncode


class ConfigurationError(RevesError):
    """The requested run cannot be performed with this toolchain or options."""


class NeverRaise(RuntimeError):
    """Sentinel exception for code paths that should be unreachable."""

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})


class NeverThrown(NeverRaise):
    """Alias for NeverRaise used by the explicit never() marker."""
