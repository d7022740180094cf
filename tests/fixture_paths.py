"""Shared fixture path helpers for tests."""

from __future__ import annotations

import json
from pathlib import Path


def fixture_path(relative_path: str) -> Path:
    """Resolve a fixture path relative to tests/fixtures.

    Args:
        relative_path: Path under fixtures root.

    Returns:
        Absolute fixture path.
    """
    tests_root = Path(__file__).resolve().parent
    return tests_root / "fixtures" / relative_path


def fixture_records(relative_path: str) -> list[dict[str, object]]:
    """Load raw records from a JSONL fixture file."""
    lines = fixture_path(relative_path).read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]
