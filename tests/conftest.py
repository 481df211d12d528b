from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from tests.harness.cargo_workspace_harness import FakeCargo


@pytest.fixture
def warnings() -> list[str]:
    return []


@pytest.fixture
def fake_cargo_factory():
    def _make(
        metadata: dict[str, object],
        events: list[str] | None = None,
        **kwargs: object,
    ) -> FakeCargo:
        return FakeCargo(metadata=metadata, events=list(events or []), **kwargs)

    return _make
