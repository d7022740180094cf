"""Pytest configuration and shared fixtures for Biotier tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_sessionstart() -> None:
    """Add src directory to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    src_path = project_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def config(tmp_path: Path):
    """Config rooted in a temporary directory with no retry delay."""
    from core.config import BiotierConfig

    return BiotierConfig(data_root=tmp_path / "data", backoff_seconds=0.0)
