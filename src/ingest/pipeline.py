"""Batch pipeline coordination.

This module drives one batch through bronze landing, validation,
deduplication, cleansing, the silver write, aggregation, and the gold
write. Every transition is persisted in the batch registry; failed
attempts retry from RECEIVED with exponential backoff until the retry
limit marks the batch DEAD.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
import threading
import time
from typing import Callable, Iterable, Mapping, Sequence

from core.config import BiotierConfig
from core.constants import CONSERVATION_REGION
from core.errors import (
    BatchCancellationError,
    BiotierError,
    BiotierIngestError,
    ConflictError,
    FatalConfigError,
)
from core.logging_config import get_logger
from core.schema_definition import RecordSchema, load_schemas
from core.types import (
    Batch,
    BronzeRecord,
    ConservationStatusRecord,
    PartitionKey,
    PartitionMetrics,
    Rejection,
    TierName,
    TierRecord,
    TierWriteRequest,
    WriteMode,
)
from ingest.batch_registry import BatchRegistry
from ingest.batch_types import (
    TERMINAL_STATES,
    BatchOutcome,
    BatchRecord,
    BatchResult,
    BatchState,
    BatchStatus,
)
from ingest.silver_merge import (
    group_occurrences,
    group_statuses,
    merge_occurrences,
    merge_statuses,
    occurrences_only,
    statuses_only,
)
from store.rejection_store import RejectionStore
from store.tier_store import TierStore
from transforms.natural_key_deduplication import deduplicate_candidates
from transforms.record_cleansing import CleansingResult, cleanse_candidates
from transforms.schema_validation import validate_records
from transforms.species_aggregation import aggregate_partition

_LOGGER = get_logger(__name__)
_COMMITTING_STATES: tuple[BatchState, ...] = ("WRITING_SILVER", "AGGREGATING", "WRITING_GOLD")


@dataclass(frozen=True)
class PartitionContent:
    """Records computed against one observed partition version."""

    expected_prior_version: int
    records: tuple[TierRecord, ...]
    metrics: PartitionMetrics | None = None


PartitionBuild = Callable[[], PartitionContent]
RecordMerge = Callable[[Sequence[TierRecord]], Sequence[TierRecord]]


class _BatchControl:
    """Cancellation and first-commit flags shared by a batch's callers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active = False
        self._cancel_requested = False
        self._committed = False

    def activate(self, batch_id: str) -> None:
        with self._lock:
            if self._active:
                raise BiotierIngestError(
                    f"Batch '{batch_id}' is already being processed. "
                    "Wait for the running attempt to finish."
                )
            self._active = True

    def deactivate(self) -> None:
        with self._lock:
            self._active = False

    def request_cancel(self, batch_id: str, cancel_idle: Callable[[], object]) -> None:
        with self._lock:
            if self._committed:
                raise _not_cancellable(batch_id)
            self._cancel_requested = True
            if not self._active:
                cancel_idle()

    def check_cancelled(self, batch_id: str) -> None:
        with self._lock:
            if self._cancel_requested:
                raise BatchCancellationError(f"Batch '{batch_id}' was cancelled by request.")

    def begin_commit(self, batch_id: str) -> None:
        """Mark the first tier commit; cancellation is refused afterwards."""
        with self._lock:
            if self._cancel_requested:
                raise BatchCancellationError(f"Batch '{batch_id}' was cancelled by request.")
            self._committed = True


class PipelineCoordinator:
    """Drive batches through the tier pipeline.

    Batches run on a thread pool, one worker per batch. The tier store's
    optimistic version check is the only synchronization point between
    workers, so batches touching disjoint partitions never wait on each
    other.
    """

    def __init__(
        self,
        config: BiotierConfig,
        store: TierStore | None = None,
        registry: BatchRegistry | None = None,
        rejection_store: RejectionStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._store = store or TierStore(config)
        self._registry = registry or BatchRegistry(config.data_root)
        self._rejection_store = rejection_store or RejectionStore(config.data_root)
        self._sleep = sleep
        self._executor: ThreadPoolExecutor | None = None
        self._controls: dict[str, _BatchControl] = {}
        self._controls_lock = threading.Lock()

    def __enter__(self) -> PipelineCoordinator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def process(self, batch: Batch) -> BatchResult:
        """Process one batch to a terminal state on the calling thread.

        Args:
            batch: Batch to process.

        Returns:
            Terminal result: COMPLETE, DEAD, or CANCELLED.

        Raises:
            BiotierIngestError: If the batch id is DEAD or already running.
        """
        control = self._control_for(batch.batch_id)
        control.activate(batch.batch_id)
        try:
            return self._process_active(batch, control)
        finally:
            control.deactivate()
            self._release_control(batch.batch_id, control)

    def submit(self, batch: Batch) -> Future[BatchResult]:
        """Register a batch and queue it on the worker pool."""
        self._registry.register(batch)
        return self._worker_pool().submit(self.process, batch)

    def run_batches(self, batches: Iterable[Batch]) -> list[BatchResult]:
        """Process batches concurrently and return results in input order."""
        futures = [self.submit(batch) for batch in batches]
        return [future.result() for future in futures]

    def cancel(self, batch_id: str) -> BatchStatus:
        """Cancel a batch that has not committed to any tier yet.

        Raises:
            BatchCancellationError: If the batch is terminal or has committed.
        """
        record = self._registry.load(batch_id)
        if record.state in TERMINAL_STATES:
            raise BatchCancellationError(
                f"Batch '{batch_id}' is already {record.state}; nothing to cancel."
            )
        if _reached_commit(record, self._config.land_bronze):
            raise _not_cancellable(batch_id)
        control = self._control_for(batch_id)
        control.request_cancel(
            batch_id,
            lambda: self._registry.transition(batch_id, "CANCELLED", "cancelled by request"),
        )
        _LOGGER.info("batch_cancel_requested", batch_id=batch_id)
        return self._registry.status(batch_id)

    def get_batch_status(self, batch_id: str) -> BatchStatus:
        return self._registry.status(batch_id)

    @property
    def tracked_batch_ids(self) -> tuple[str, ...]:
        """Batch ids holding cancellation state in this coordinator."""
        with self._controls_lock:
            return tuple(sorted(self._controls))

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def _process_active(self, batch: Batch, control: _BatchControl) -> BatchResult:
        record = self._admit(batch)
        if record.state in ("COMPLETE", "CANCELLED"):
            _LOGGER.info("batch_already_terminal", batch_id=batch.batch_id, state=record.state)
            return self._stored_result(record)
        while True:
            if record.state == "FAILED":
                if record.attempts > self._config.retry_limit:
                    return self._mark_dead(batch.batch_id, record.reason)
                self._sleep(self._config.backoff_seconds * 2 ** (record.attempts - 1))
                record = self._registry.transition(batch.batch_id, "RECEIVED")
            try:
                outcome, rejections = self._run_attempt(batch, control)
            except BatchCancellationError as error:
                record = self._registry.transition(batch.batch_id, "CANCELLED", str(error))
                _LOGGER.info("batch_cancelled", batch_id=batch.batch_id, attempts=record.attempts)
                return self._stored_result(record)
            except FatalConfigError as error:
                self._mark_failed(batch.batch_id, error)
                return self._mark_dead(batch.batch_id, str(error))
            except BiotierError as error:
                record = self._mark_failed(batch.batch_id, error)
                continue
            except Exception as error:
                self._mark_failed(batch.batch_id, error)
                self._mark_dead(batch.batch_id, str(error))
                raise
            record = self._registry.transition(batch.batch_id, "COMPLETE", outcome=outcome)
            _LOGGER.info(
                "batch_completed",
                batch_id=batch.batch_id,
                attempts=record.attempts,
                accepted=outcome.accepted_count,
                rejected=outcome.rejected_count,
                silver_partitions=len(outcome.silver_versions),
                gold_partitions=len(outcome.gold_versions),
            )
            return _result_from_record(record, rejections)

    def _admit(self, batch: Batch) -> BatchRecord:
        """Register a new batch or resume a known one."""
        record = self._registry.find(batch.batch_id)
        if record is None:
            return self._registry.register(batch)
        if record.state == "DEAD":
            raise BiotierIngestError(
                f"Batch '{batch.batch_id}' is DEAD after {record.attempts} attempts: "
                f"{record.reason}. Submit corrected records under a new batch id."
            )
        if record.state in ("RECEIVED", "FAILED") or record.state in TERMINAL_STATES:
            return record
        return self._registry.transition(
            batch.batch_id, "FAILED", "interrupted before completion"
        )

    def _run_attempt(
        self,
        batch: Batch,
        control: _BatchControl,
    ) -> tuple[BatchOutcome, tuple[Rejection, ...]]:
        batch_id = batch.batch_id
        control.check_cancelled(batch_id)
        self._enter(batch_id, "VALIDATING")
        schema = _schema_for(batch, self._config)
        bronze_version = self._land_bronze(batch, control) if self._config.land_bronze else None
        validation = validate_records(batch.records, schema)

        control.check_cancelled(batch_id)
        self._enter(batch_id, "DEDUPING")
        candidates = deduplicate_candidates(validation.accepted)

        control.check_cancelled(batch_id)
        self._enter(batch_id, "CLEANSING")
        cleansed = cleanse_candidates(
            candidates,
            schema.kind,
            batch.ingested_at,
            self._config.region_grid_degrees,
        )
        rejections = tuple(validation.rejected) + tuple(cleansed.rejected)
        self._rejection_store.save(batch_id, list(rejections))

        control.check_cancelled(batch_id)
        self._enter(batch_id, "WRITING_SILVER")
        silver_versions = self._write_silver(batch_id, cleansed, control)

        self._enter(batch_id, "AGGREGATING")
        targets = self._gold_targets(cleansed)

        self._enter(batch_id, "WRITING_GOLD")
        gold_versions = {
            target.label: self._write_with_retry(
                "gold", target, batch_id, "replace", self._gold_build(target), control
            )
            for target in targets
        }
        outcome = BatchOutcome(
            bronze_version=bronze_version,
            silver_versions=silver_versions,
            gold_versions=gold_versions,
            accepted_count=len(cleansed.occurrences) + len(cleansed.statuses),
            rejected_count=len(rejections),
        )
        return outcome, rejections

    def _land_bronze(self, batch: Batch, control: _BatchControl) -> int:
        """Append the raw batch to its source system's bronze partition."""
        partition = PartitionKey(batch.source_system.lower(), batch.ingested_at.year)
        records: tuple[TierRecord, ...] = tuple(
            BronzeRecord(
                batch_id=batch.batch_id,
                position=position,
                payload=raw if isinstance(raw, Mapping) else {"value": raw},
            )
            for position, raw in enumerate(batch.records)
        )

        def build() -> PartitionContent:
            return PartitionContent(
                expected_prior_version=self._store.current_version("bronze", partition),
                records=records,
            )

        return self._write_with_retry("bronze", partition, batch.batch_id, "append", build, control)

    def _write_silver(
        self,
        batch_id: str,
        cleansed: CleansingResult,
        control: _BatchControl,
    ) -> dict[str, int]:
        versions: dict[str, int] = {}
        for partition, occurrences in group_occurrences(cleansed.occurrences).items():
            versions[partition.label] = self._write_with_retry(
                "silver",
                partition,
                batch_id,
                "replace",
                self._silver_build(
                    partition, partial(merge_occurrences, incoming_records=occurrences)
                ),
                control,
            )
        for partition, statuses in group_statuses(cleansed.statuses).items():
            versions[partition.label] = self._write_with_retry(
                "silver",
                partition,
                batch_id,
                "replace",
                self._silver_build(
                    partition, partial(merge_statuses, incoming_records=statuses)
                ),
                control,
            )
        return versions

    def _silver_build(
        self,
        partition: PartitionKey,
        merge: RecordMerge,
    ) -> PartitionBuild:
        def build() -> PartitionContent:
            snapshot = self._store.read_latest("silver", partition)
            if snapshot is None:
                return PartitionContent(expected_prior_version=0, records=tuple(merge(())))
            return PartitionContent(
                expected_prior_version=snapshot.manifest.version,
                records=tuple(merge(snapshot.records)),
            )

        return build

    def _gold_targets(self, cleansed: CleansingResult) -> list[PartitionKey]:
        """Resolve the gold partitions whose inputs this batch changed.

        A touched occurrence partition also invalidates the same region's
        next year, whose trend reads it. Status changes affect every
        occurrence partition from the earliest touched assessment year on.
        """
        silver_partitions = {
            partition
            for partition in self._store.list_partitions("silver")
            if partition.region != CONSERVATION_REGION
        }
        targets: set[PartitionKey] = set()
        for partition in group_occurrences(cleansed.occurrences):
            targets.add(partition)
            next_year = PartitionKey(partition.region, partition.year + 1)
            if next_year in silver_partitions:
                targets.add(next_year)
        if cleansed.statuses:
            earliest_year = min(record.assessment_date.year for record in cleansed.statuses)
            targets.update(
                partition for partition in silver_partitions if partition.year >= earliest_year
            )
        return sorted(targets)

    def _gold_build(self, target: PartitionKey) -> PartitionBuild:
        def build() -> PartitionContent:
            # Gold version is read before silver so a stale recompute conflicts.
            expected_version = self._store.current_version("gold", target)
            current = self._store.read_latest("silver", target)
            previous = self._store.read_latest(
                "silver", PartitionKey(target.region, target.year - 1)
            )
            gold = aggregate_partition(
                target,
                occurrences_only(current.records) if current else [],
                occurrences_only(previous.records) if previous else [],
                self._status_history(target.year),
            )
            return PartitionContent(
                expected_prior_version=expected_version,
                records=gold.aggregates,
                metrics=gold.metrics,
            )

        return build

    def _status_history(self, through_year: int) -> list[ConservationStatusRecord]:
        statuses: list[ConservationStatusRecord] = []
        for partition in self._store.list_partitions("silver", region=CONSERVATION_REGION):
            if partition.year > through_year:
                continue
            snapshot = self._store.read_latest("silver", partition)
            if snapshot is not None:
                statuses.extend(statuses_only(snapshot.records))
        return statuses

    def _write_with_retry(
        self,
        tier: TierName,
        partition: PartitionKey,
        batch_id: str,
        mode: WriteMode,
        build: PartitionBuild,
        control: _BatchControl,
    ) -> int:
        """Write a partition, re-reading and recomputing after conflicts.

        Raises:
            ConflictError: If conflicts persist past the conflict retry limit.
        """
        conflict_retry_limit = self._config.conflict_retry_limit
        conflict_attempt = 0
        while True:
            content = build()
            control.begin_commit(batch_id)
            request = TierWriteRequest(
                tier=tier,
                partition=partition,
                records=content.records,
                expected_prior_version=content.expected_prior_version,
                batch_id=batch_id,
                mode=mode,
                metrics=content.metrics,
            )
            try:
                return self._store.write(request)
            except ConflictError as error:
                if conflict_attempt >= conflict_retry_limit:
                    raise
                _LOGGER.info(
                    "partition_write_retry",
                    tier=tier,
                    partition=partition.label,
                    batch_id=batch_id,
                    conflict_attempt=conflict_attempt + 1,
                    current_version=error.current_version,
                )
                self._sleep(self._config.backoff_seconds * 2**conflict_attempt)
                conflict_attempt += 1

    def _enter(self, batch_id: str, state: BatchState) -> None:
        record = self._registry.transition(batch_id, state)
        _LOGGER.debug("batch_stage", batch_id=batch_id, state=state, attempt=record.attempts)

    def _mark_failed(self, batch_id: str, error: Exception) -> BatchRecord:
        record = self._registry.transition(batch_id, "FAILED", _error_reason(error))
        _LOGGER.warning(
            "batch_failed",
            batch_id=batch_id,
            stage=record.stage,
            attempts=record.attempts,
            error_type=type(error).__name__,
            reason=record.reason,
        )
        return record

    def _mark_dead(self, batch_id: str, reason: str | None) -> BatchResult:
        record = self._registry.transition(batch_id, "DEAD", reason)
        _LOGGER.error(
            "batch_dead",
            batch_id=batch_id,
            stage=record.stage,
            attempts=record.attempts,
            reason=record.reason,
        )
        return self._stored_result(record)

    def _stored_result(self, record: BatchRecord) -> BatchResult:
        rejections = tuple(self._rejection_store.load(record.batch_id))
        return _result_from_record(record, rejections)

    def _control_for(self, batch_id: str) -> _BatchControl:
        with self._controls_lock:
            control = self._controls.get(batch_id)
            if control is None:
                control = _BatchControl()
                self._controls[batch_id] = control
            return control

    def _release_control(self, batch_id: str, control: _BatchControl) -> None:
        with self._controls_lock:
            if self._controls.get(batch_id) is control:
                del self._controls[batch_id]

    def _worker_pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._config.worker_count,
                thread_name_prefix="biotier-batch",
            )
        return self._executor


def process_batch(batch: Batch, config: BiotierConfig) -> BatchResult:
    """Process one batch synchronously with a fresh coordinator."""
    with PipelineCoordinator(config) as coordinator:
        return coordinator.process(batch)


def _schema_for(batch: Batch, config: BiotierConfig) -> RecordSchema:
    schemas = load_schemas(config.schema_file)
    schema = schemas.get(batch.source_system)
    if schema is None:
        raise FatalConfigError(
            f"No record schema defined for source system '{batch.source_system}'. "
            "Add it to the schema file or remove BIOTIER_SCHEMA_FILE."
        )
    return schema


def _reached_commit(record: BatchRecord, land_bronze: bool) -> bool:
    """Return whether any recorded attempt may have committed to a tier."""
    for event in record.events:
        if event.state in _COMMITTING_STATES:
            return True
        if land_bronze and event.state == "VALIDATING":
            return True
    return False


def _result_from_record(record: BatchRecord, rejections: tuple[Rejection, ...]) -> BatchResult:
    return BatchResult(
        batch_id=record.batch_id,
        state=record.state,
        attempts=record.attempts,
        reason=record.reason,
        bronze_version=record.bronze_version,
        silver_versions=dict(record.silver_versions),
        gold_versions=dict(record.gold_versions),
        accepted_count=record.accepted_count,
        rejections=rejections,
    )


def _error_reason(error: Exception) -> str:
    return f"{type(error).__name__}: {error}"


def _not_cancellable(batch_id: str) -> BatchCancellationError:
    return BatchCancellationError(
        f"Batch '{batch_id}' has already committed tier writes and cannot be cancelled. "
        "Submit a correction batch instead."
    )
