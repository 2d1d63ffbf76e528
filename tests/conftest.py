"""Pytest configuration for sanctions registry test runs."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart() -> None:
    """Put src and the repository root on sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    for import_root in (project_root / "src", project_root):
        if str(import_root) not in sys.path:
            sys.path.insert(0, str(import_root))


@pytest.fixture(autouse=True)
def _isolate_registry_env(monkeypatch) -> None:
    """Keep operator SANCTIONS_* settings out of every test."""
    for name in list(os.environ):
        if name.startswith("SANCTIONS_"):
            monkeypatch.delenv(name, raising=False)
