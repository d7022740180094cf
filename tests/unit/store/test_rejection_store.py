"""Unit tests for rejection stream persistence."""

from __future__ import annotations

import pytest

from core.errors import BiotierStoreError, TransientIOError
from core.types import Rejection
import store.rejection_store as rejection_store_module
from store.rejection_store import RejectionStore


def _rejection(record_id: str, reason_code: str = "OUT_OF_RANGE") -> Rejection:
    return Rejection(
        original_record={"id": record_id, "decimalLatitude": 95.0},
        reason_code=reason_code,  # type: ignore[arg-type]
        stage="validation",
        detail="latitude outside [-90, 90]",
    )


def test_save_and_load_preserves_rejection_rows(tmp_path) -> None:
    """Saved rejections should load back with record, code, and stage."""
    store = RejectionStore(tmp_path)
    store.save("batch-a", [_rejection("1")])

    loaded = store.load("batch-a")

    assert loaded == [_rejection("1")]


def test_save_replaces_previous_attempt(tmp_path) -> None:
    """A retry's rejections should replace the earlier attempt's rows."""
    store = RejectionStore(tmp_path)
    store.save("batch-a", [_rejection("1"), _rejection("2")])
    store.save("batch-a", [_rejection("3", "MISSING_FIELD")])

    loaded = store.load("batch-a")

    assert [item.original_record["id"] for item in loaded] == ["3"]
    assert [item.reason_code for item in loaded] == ["MISSING_FIELD"]


def test_load_unknown_batch_returns_empty_list(tmp_path) -> None:
    """Batches without saved rejections should read as empty."""
    assert RejectionStore(tmp_path).load("missing") == []


def test_load_invalid_row_raises(tmp_path) -> None:
    """Corrupt rejection rows should raise a store error."""
    store = RejectionStore(tmp_path)
    (tmp_path / "rejections").mkdir()
    (tmp_path / "rejections" / "batch-a.jsonl").write_text("{not json}\n", encoding="utf-8")

    with pytest.raises(BiotierStoreError):
        store.load("batch-a")


def test_save_leaves_no_temporary_files(tmp_path) -> None:
    """Only the final stream file should remain after repeated saves."""
    store = RejectionStore(tmp_path)
    store.save("batch-a", [_rejection("1")])
    store.save("batch-a", [_rejection("2")])

    names = sorted(path.name for path in (tmp_path / "rejections").iterdir())

    assert names == ["batch-a.jsonl"]


def test_failed_save_keeps_previous_stream(tmp_path, monkeypatch) -> None:
    """A write that fails before the swap should leave the old rows readable."""
    store = RejectionStore(tmp_path)
    store.save("batch-a", [_rejection("1")])

    def failing_replace(source: object, destination: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(rejection_store_module.os, "replace", failing_replace)
    with pytest.raises(TransientIOError):
        store.save("batch-a", [_rejection("2")])
    monkeypatch.undo()

    loaded = store.load("batch-a")

    assert loaded == [_rejection("1")]
    assert sorted(path.name for path in (tmp_path / "rejections").iterdir()) == [
        "batch-a.jsonl"
    ]
