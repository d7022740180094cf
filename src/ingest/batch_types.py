"""Typed batch lifecycle models and validation helpers.

This module defines the batch state machine and the payload parsing used
by the batch registry, the pipeline coordinator, and status queries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
import re
from typing import Iterable, Literal, Mapping, cast

from core.constants import SUPPORTED_SOURCE_SYSTEMS
from core.errors import BiotierIngestError, BiotierStoreError
from core.types import Batch, Rejection, SourceSystem

BatchState = Literal[
    "RECEIVED",
    "VALIDATING",
    "DEDUPING",
    "CLEANSING",
    "WRITING_SILVER",
    "AGGREGATING",
    "WRITING_GOLD",
    "COMPLETE",
    "FAILED",
    "DEAD",
    "CANCELLED",
]
ALLOWED_STATE_TRANSITIONS: dict[BatchState, tuple[BatchState, ...]] = {
    "RECEIVED": ("VALIDATING", "FAILED", "CANCELLED"),
    "VALIDATING": ("DEDUPING", "FAILED", "CANCELLED"),
    "DEDUPING": ("CLEANSING", "FAILED", "CANCELLED"),
    "CLEANSING": ("WRITING_SILVER", "FAILED", "CANCELLED"),
    "WRITING_SILVER": ("AGGREGATING", "FAILED", "CANCELLED"),
    "AGGREGATING": ("WRITING_GOLD", "FAILED"),
    "WRITING_GOLD": ("COMPLETE", "FAILED"),
    "COMPLETE": (),
    "FAILED": ("RECEIVED", "DEAD", "CANCELLED"),
    "DEAD": (),
    "CANCELLED": (),
}
TERMINAL_STATES: tuple[BatchState, ...] = ("COMPLETE", "DEAD", "CANCELLED")
_BATCH_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(frozen=True)
class BatchEvent:
    """One lifecycle state transition event."""

    state: BatchState
    timestamp: str
    stage: str | None
    reason: str | None


@dataclass(frozen=True)
class BatchRecord:
    """Persisted batch lifecycle metadata.

    Attributes:
        batch_id: Batch identifier.
        source_system: Source tag of the batch.
        ingested_at: ISO receipt timestamp.
        record_count: Raw records in the batch.
        state: Current lifecycle state.
        stage: Stage that failed, for FAILED and DEAD batches.
        reason: Failure or cancellation reason.
        attempts: Attempts started so far.
        created_at: ISO registration timestamp.
        updated_at: ISO timestamp of the last transition.
        events: Transition history.
        bronze_version: Bronze partition version landed by the batch.
        silver_versions: Silver partition label to committed version.
        gold_versions: Gold partition label to committed version.
        accepted_count: Records written to silver in the last attempt.
        rejected_count: Records quarantined in the last attempt.
    """

    batch_id: str
    source_system: SourceSystem
    ingested_at: str
    record_count: int
    state: BatchState
    stage: str | None
    reason: str | None
    attempts: int
    created_at: str
    updated_at: str
    events: tuple[BatchEvent, ...]
    bronze_version: int | None = None
    silver_versions: Mapping[str, int] = field(default_factory=dict)
    gold_versions: Mapping[str, int] = field(default_factory=dict)
    accepted_count: int = 0
    rejected_count: int = 0


@dataclass(frozen=True)
class BatchStatus:
    """Operational view returned by status queries."""

    batch_id: str
    state: BatchState
    stage: str | None
    reason: str | None
    attempts: int


@dataclass(frozen=True)
class BatchOutcome:
    """Tier writes and counts produced by one successful attempt."""

    bronze_version: int | None
    silver_versions: Mapping[str, int]
    gold_versions: Mapping[str, int]
    accepted_count: int
    rejected_count: int


@dataclass(frozen=True)
class BatchResult:
    """Final result of processing one batch.

    Attributes:
        batch_id: Batch identifier.
        state: Terminal state: COMPLETE, DEAD, or CANCELLED.
        attempts: Attempts used.
        reason: Failure or cancellation reason when not complete.
        bronze_version: Bronze partition version landed by the batch.
        silver_versions: Silver partition label to committed version.
        gold_versions: Gold partition label to committed version.
        accepted_count: Records written to silver.
        rejections: Rejection stream rows of the final attempt.
    """

    batch_id: str
    state: BatchState
    attempts: int
    reason: str | None = None
    bronze_version: int | None = None
    silver_versions: Mapping[str, int] = field(default_factory=dict)
    gold_versions: Mapping[str, int] = field(default_factory=dict)
    accepted_count: int = 0
    rejections: tuple[Rejection, ...] = ()


def build_batch(
    batch_id: str,
    source_system: str,
    records: Iterable[object],
    ingested_at: datetime | None = None,
) -> Batch:
    """Build an immutable batch from caller input.

    Args:
        batch_id: Unique batch identifier.
        source_system: Source tag, case-insensitive.
        records: Raw records in source order.
        ingested_at: Receipt time; now (UTC) when omitted.

    Returns:
        Validated batch.

    Raises:
        BiotierIngestError: If the batch id or source system is invalid.
    """
    validate_batch_id(batch_id)
    normalized_source = source_system.strip().upper()
    if normalized_source not in SUPPORTED_SOURCE_SYSTEMS:
        raise BiotierIngestError(
            f"Unsupported source system '{source_system}'. "
            f"Choose one of: {', '.join(SUPPORTED_SOURCE_SYSTEMS)}."
        )
    received_at = ingested_at or datetime.now(timezone.utc)
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=timezone.utc)
    return Batch(
        batch_id=batch_id,
        source_system=cast(SourceSystem, normalized_source),
        ingested_at=received_at,
        records=tuple(
            dict(record) if isinstance(record, Mapping) else record for record in records
        ),
    )


def validate_batch_id(batch_id: str) -> None:
    """Reject batch ids that are empty or unsafe as file names."""
    if not _BATCH_ID_PATTERN.match(batch_id or ""):
        raise BiotierIngestError(
            f"Invalid batch id {batch_id!r}: use letters, digits, '.', '_' or '-', "
            "starting with a letter or digit."
        )


def validate_transition(current: BatchState, next_state: BatchState) -> None:
    """Validate one lifecycle transition against allowed state machine edges."""
    allowed_states = ALLOWED_STATE_TRANSITIONS[current]
    if next_state not in allowed_states:
        raise BiotierStoreError(
            f"Invalid batch state transition {current!r} -> {next_state!r}. "
            f"Allowed: {', '.join(allowed_states) or 'none'}."
        )


def batch_record_from_payload(payload: dict[str, object], payload_path: Path) -> BatchRecord:
    """Deserialize a lifecycle record payload from JSON."""
    raw_events = payload.get("events")
    if not isinstance(raw_events, list):
        raise BiotierStoreError(f"Invalid batch state at {payload_path}: events must be a list.")
    events = tuple(batch_event_from_payload(item, payload_path) for item in raw_events)
    try:
        return BatchRecord(
            batch_id=str(payload["batch_id"]),
            source_system=cast(SourceSystem, str(payload["source_system"])),
            ingested_at=str(payload["ingested_at"]),
            record_count=int(payload["record_count"]),  # type: ignore[call-overload]
            state=parse_state(payload.get("state"), payload_path),
            stage=optional_string(payload.get("stage")),
            reason=optional_string(payload.get("reason")),
            attempts=int(payload["attempts"]),  # type: ignore[call-overload]
            created_at=str(payload["created_at"]),
            updated_at=str(payload["updated_at"]),
            events=events,
            bronze_version=_optional_int(payload.get("bronze_version")),
            silver_versions=_version_map(payload.get("silver_versions")),
            gold_versions=_version_map(payload.get("gold_versions")),
            accepted_count=int(payload.get("accepted_count", 0)),  # type: ignore[call-overload]
            rejected_count=int(payload.get("rejected_count", 0)),  # type: ignore[call-overload]
        )
    except KeyError as error:
        raise BiotierStoreError(
            f"Invalid batch state at {payload_path}: missing required field {error.args[0]!r}."
        ) from error


def batch_event_from_payload(payload: object, payload_path: Path) -> BatchEvent:
    """Deserialize one batch event payload from JSON."""
    if not isinstance(payload, dict):
        raise BiotierStoreError(f"Invalid batch event at {payload_path}: expected object entries.")
    return BatchEvent(
        state=parse_state(payload.get("state"), payload_path),
        timestamp=str(payload.get("timestamp", "")),
        stage=optional_string(payload.get("stage")),
        reason=optional_string(payload.get("reason")),
    )


def parse_state(raw_state: object, payload_path: Path) -> BatchState:
    """Parse one batch state value from persisted payload."""
    if isinstance(raw_state, str) and raw_state in ALLOWED_STATE_TRANSITIONS:
        return cast(BatchState, raw_state)
    allowed = ", ".join(ALLOWED_STATE_TRANSITIONS.keys())
    raise BiotierStoreError(f"Invalid batch state at {payload_path}: expected one of {allowed}.")


def optional_string(raw_value: object) -> str | None:
    """Convert optional payload field to string when present."""
    if raw_value is None:
        return None
    if isinstance(raw_value, str):
        return raw_value
    return str(raw_value)


def _optional_int(raw_value: object) -> int | None:
    if raw_value is None:
        return None
    return int(raw_value)  # type: ignore[call-overload]


def _version_map(raw_value: object) -> dict[str, int]:
    if not isinstance(raw_value, dict):
        return {}
    return {str(key): int(value) for key, value in raw_value.items()}
