"""Make the in-tree `callmeter` package importable from a plain checkout."""

from __future__ import annotations

import sys
from pathlib import Path

_SRC = str(Path(__file__).resolve().parents[1] / "src")


def pytest_configure() -> None:
    # An editable install already exposes the package; a fresh clone does not.
    if _SRC not in sys.path:
        sys.path.insert(0, _SRC)
