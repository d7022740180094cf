"""Unit tests for batch lifecycle persistence."""

from __future__ import annotations

import pytest

from core.errors import BiotierStoreError
from ingest.batch_registry import BatchRegistry
from ingest.batch_types import BatchOutcome, build_batch


def _registered(tmp_path, batch_id: str = "batch-1") -> BatchRegistry:
    registry = BatchRegistry(tmp_path)
    registry.register(build_batch(batch_id, "GBIF", [{"id": "1"}, {"id": "2"}]))
    return registry


def test_register_creates_received_record(tmp_path) -> None:
    """New batches start RECEIVED with zero attempts."""
    registry = _registered(tmp_path)

    record = registry.load("batch-1")

    assert record.state == "RECEIVED"
    assert record.attempts == 0
    assert record.record_count == 2


def test_register_existing_batch_returns_stored_record(tmp_path) -> None:
    """Registering a known batch id should not reset its lifecycle."""
    registry = _registered(tmp_path)
    registry.transition("batch-1", "VALIDATING")

    record = registry.register(build_batch("batch-1", "GBIF", []))

    assert record.state == "VALIDATING"
    assert record.record_count == 2


def test_transition_to_validating_counts_attempts(tmp_path) -> None:
    """Every new attempt should increment the attempt counter."""
    registry = _registered(tmp_path)
    registry.transition("batch-1", "VALIDATING")
    registry.transition("batch-1", "FAILED", reason="disk full")
    registry.transition("batch-1", "RECEIVED")

    record = registry.transition("batch-1", "VALIDATING")

    assert record.attempts == 2


def test_failed_and_dead_keep_failing_stage_and_reason(tmp_path) -> None:
    """Status should report the stage that failed and why."""
    registry = _registered(tmp_path)
    registry.transition("batch-1", "VALIDATING")
    registry.transition("batch-1", "DEDUPING")
    registry.transition("batch-1", "FAILED", reason="disk full")
    registry.transition("batch-1", "DEAD", reason="retry limit exhausted")

    status = registry.status("batch-1")

    assert status.state == "DEAD"
    assert status.stage == "DEDUPING"
    assert status.reason == "retry limit exhausted"


def test_transition_records_outcome_and_events(tmp_path) -> None:
    """Completion should persist tier versions and the full event history."""
    registry = _registered(tmp_path)
    for state in (
        "VALIDATING",
        "DEDUPING",
        "CLEANSING",
        "WRITING_SILVER",
        "AGGREGATING",
        "WRITING_GOLD",
    ):
        registry.transition("batch-1", state)  # type: ignore[arg-type]
    outcome = BatchOutcome(
        bronze_version=1,
        silver_versions={"S10E030/2021": 1},
        gold_versions={"S10E030/2021": 1},
        accepted_count=2,
        rejected_count=0,
    )

    registry.transition("batch-1", "COMPLETE", outcome=outcome)
    record = registry.load("batch-1")

    assert record.gold_versions == {"S10E030/2021": 1}
    assert len(record.events) == 8
    assert record.accepted_count == 2


def test_invalid_transition_is_rejected(tmp_path) -> None:
    """State machine violations should raise without persisting."""
    registry = _registered(tmp_path)

    with pytest.raises(BiotierStoreError):
        registry.transition("batch-1", "COMPLETE")

    assert registry.load("batch-1").state == "RECEIVED"


def test_load_unknown_batch_raises(tmp_path) -> None:
    """Unknown batch ids should raise a store error."""
    with pytest.raises(BiotierStoreError):
        BatchRegistry(tmp_path).load("missing")


def test_list_batches_returns_registered_ids(tmp_path) -> None:
    """Listing should return every registered batch id."""
    registry = _registered(tmp_path, "batch-a")
    registry.register(build_batch("batch-b", "IUCN", []))

    assert sorted(registry.list_batches()) == ["batch-a", "batch-b"]
