"""Reves package root."""

from reves.exceptions import NeverThrown, RevesError
from reves.invariants import never

__all__ = ["__version__", "NeverThrown", "RevesError", "never"]

__version__ = "0.1.0"
