"""Invariant markers."""

from __future__ import annotations

from typing import NoReturn

from reves.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The keyword payload is attached to the raised exception as context; it is
    not evaluated otherwise.
    """
    if env:
        details = ", ".join(f"{key}={value!r}" for key, value in env.items())
        message = f"{reason or 'never() reached'} ({details})"
    else:
        message = reason or "never() reached"
    raise NeverThrown(message, env=env)
