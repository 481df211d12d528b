from __future__ import annotations

from typing import Callable

import typer

Warn = Callable[[str], None]


def default_warn(message: str) -> None:
    typer.echo(message, err=True)
