"""Batch lifecycle persistence.

This module stores batch state transitions under the configured data root
so batch status stays queryable across processes and after failures.
"""

from __future__ import annotations

from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path

from core.constants import BATCH_STATE_FILE_NAME, BATCHES_DIR_NAME
from core.errors import BiotierStoreError
from core.types import Batch
from ingest.batch_types import (
    BatchEvent,
    BatchOutcome,
    BatchRecord,
    BatchState,
    BatchStatus,
    batch_record_from_payload,
    validate_batch_id,
    validate_transition,
)
from store.partition_io import read_json_file, write_json_file


class BatchRegistry:
    """Persistent lifecycle registry for submitted batches."""

    def __init__(self, data_root: Path) -> None:
        self._batches_root = data_root.expanduser().resolve() / BATCHES_DIR_NAME
        self._batches_root.mkdir(parents=True, exist_ok=True)

    def register(self, batch: Batch) -> BatchRecord:
        """Create a RECEIVED record, or return the existing one for a known batch id."""
        existing = self.find(batch.batch_id)
        if existing is not None:
            return existing
        timestamp = _utc_now_iso()
        record = BatchRecord(
            batch_id=batch.batch_id,
            source_system=batch.source_system,
            ingested_at=batch.ingested_at.isoformat(),
            record_count=len(batch.records),
            state="RECEIVED",
            stage=None,
            reason=None,
            attempts=0,
            created_at=timestamp,
            updated_at=timestamp,
            events=(BatchEvent(state="RECEIVED", timestamp=timestamp, stage=None, reason=None),),
        )
        self._write_record(record)
        return record

    def transition(
        self,
        batch_id: str,
        next_state: BatchState,
        reason: str | None = None,
        outcome: BatchOutcome | None = None,
    ) -> BatchRecord:
        """Persist one lifecycle transition.

        FAILED and DEAD keep the stage that was active when the failure
        happened; starting a new attempt increments the attempt counter.

        Args:
            batch_id: Batch identifier.
            next_state: Target state.
            reason: Failure or cancellation reason.
            outcome: Tier writes recorded on completion.

        Returns:
            Updated record.

        Raises:
            BiotierStoreError: If the transition is not allowed.
        """
        record = self.load(batch_id)
        validate_transition(record.state, next_state)
        timestamp = _utc_now_iso()
        stage = _failure_stage(record, next_state)
        next_record = replace(
            record,
            state=next_state,
            stage=stage,
            reason=reason if next_state in ("FAILED", "DEAD", "CANCELLED") else None,
            attempts=record.attempts + 1 if next_state == "VALIDATING" else record.attempts,
            updated_at=timestamp,
            events=record.events
            + (BatchEvent(state=next_state, timestamp=timestamp, stage=stage, reason=reason),),
        )
        if outcome is not None:
            next_record = replace(
                next_record,
                bronze_version=outcome.bronze_version,
                silver_versions=dict(outcome.silver_versions),
                gold_versions=dict(outcome.gold_versions),
                accepted_count=outcome.accepted_count,
                rejected_count=outcome.rejected_count,
            )
        self._write_record(next_record)
        return next_record

    def load(self, batch_id: str) -> BatchRecord:
        """Load one batch lifecycle record by id.

        Raises:
            BiotierStoreError: If the batch is unknown.
        """
        record = self.find(batch_id)
        if record is None:
            raise BiotierStoreError(
                f"Unknown batch '{batch_id}'. Submit the batch before querying its status."
            )
        return record

    def find(self, batch_id: str) -> BatchRecord | None:
        """Load one batch lifecycle record, None when unknown."""
        validate_batch_id(batch_id)
        state_path = self._state_path(batch_id)
        if not state_path.exists():
            return None
        return batch_record_from_payload(read_json_file(state_path), state_path)

    def status(self, batch_id: str) -> BatchStatus:
        """Return the operational status of a batch."""
        record = self.load(batch_id)
        return BatchStatus(
            batch_id=record.batch_id,
            state=record.state,
            stage=record.stage,
            reason=record.reason,
            attempts=record.attempts,
        )

    def list_batches(self) -> tuple[str, ...]:
        """List known batch ids in registration order."""
        records = [
            batch_record_from_payload(read_json_file(path), path)
            for path in self._batches_root.glob(f"*/{BATCH_STATE_FILE_NAME}")
        ]
        return tuple(
            record.batch_id
            for record in sorted(records, key=lambda item: (item.created_at, item.batch_id))
        )

    def _write_record(self, record: BatchRecord) -> None:
        batch_dir = self._batches_root / record.batch_id
        batch_dir.mkdir(parents=True, exist_ok=True)
        payload = asdict(record)
        payload["events"] = [asdict(event) for event in record.events]
        payload["silver_versions"] = dict(record.silver_versions)
        payload["gold_versions"] = dict(record.gold_versions)
        write_json_file(batch_dir / BATCH_STATE_FILE_NAME, payload)

    def _state_path(self, batch_id: str) -> Path:
        return self._batches_root / batch_id / BATCH_STATE_FILE_NAME


def _failure_stage(record: BatchRecord, next_state: BatchState) -> str | None:
    if next_state == "FAILED":
        return record.state
    if next_state == "DEAD":
        return record.stage
    return None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
