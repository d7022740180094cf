"""Unit tests for batch pipeline coordination."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from core.errors import BatchCancellationError, BiotierIngestError, TransientIOError
from core.types import Batch, PartitionKey, TierWriteRequest
from ingest.batch_registry import BatchRegistry
from ingest.batch_types import build_batch
from ingest.pipeline import PipelineCoordinator, process_batch
from store.tier_store import TierStore
from tests.fixture_paths import fixture_path, fixture_records

_INGESTED_AT = datetime(2022, 1, 1, tzinfo=timezone.utc)
_PARTITION_2021 = PartitionKey("S10E030", 2021)


def _gbif_batch(batch_id: str = "gbif-2021") -> Batch:
    return build_batch(
        batch_id, "GBIF", fixture_records("gbif/occurrences.jsonl"), _INGESTED_AT
    )


def _iucn_batch(batch_id: str = "iucn-1") -> Batch:
    return build_batch(batch_id, "IUCN", fixture_records("iucn/statuses.jsonl"), _INGESTED_AT)


def _gbif_2020_batch(batch_id: str = "gbif-2020") -> Batch:
    records = [
        {
            "gbifID": "2001",
            "scientificName": "Panthera leo",
            "decimalLatitude": -1.2,
            "decimalLongitude": 36.9,
            "eventDate": "2020-03-01",
        },
        {
            "gbifID": "2002",
            "scientificName": "Loxodonta africana",
            "decimalLatitude": -2.0,
            "decimalLongitude": 35.1,
            "eventDate": "2020/08/20",
        },
    ]
    return build_batch(batch_id, "GBIF", records, _INGESTED_AT)


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _FailingStore(TierStore):
    def write(self, request: TierWriteRequest) -> int:
        raise TransientIOError("disk unavailable")


class _InterferingStore(TierStore):
    """Commits a competing silver version right before the first silver write."""

    def __init__(self, config) -> None:
        super().__init__(config)
        self.interfered = False

    def write(self, request: TierWriteRequest) -> int:
        if request.tier == "silver" and not self.interfered:
            self.interfered = True
            super().write(replace(request, records=(), batch_id="competing-writer"))
        return super().write(request)


def test_process_completes_batch_and_writes_every_tier(config) -> None:
    """A clean run lands bronze, writes silver and gold, and completes."""
    with PipelineCoordinator(config) as coordinator:
        result = coordinator.process(_gbif_batch())

    assert result.state == "COMPLETE"
    assert result.attempts == 1
    assert result.accepted_count == 3
    assert result.bronze_version == 1
    assert dict(result.silver_versions) == {"S10E030/2021": 1}
    assert dict(result.gold_versions) == {"S10E030/2021": 1}


def test_process_quarantines_bad_records_without_failing(config) -> None:
    """Invalid rows go to the rejection stream while the batch proceeds."""
    result = process_batch(_gbif_batch(), config)

    assert [(item.reason_code, item.stage) for item in result.rejections] == [
        ("OUT_OF_RANGE", "validation"),
        ("EMPTY_SCIENTIFIC_NAME", "cleansing"),
    ]


def test_process_writes_cleansed_deduplicated_silver(config) -> None:
    """Silver holds one cleansed record per natural key."""
    process_batch(_gbif_batch(), config)

    snapshot = TierStore(config).read("silver", _PARTITION_2021)

    assert sorted(
        (record.record_id, record.scientific_name, record.observation_date.isoformat())
        for record in snapshot.records
    ) == [
        ("1001", "Panthera leo", "2021-05-02"),
        ("1002", "Loxodonta africana", "2021-06-14"),
        ("1003", "Diceros bicornis", "2021-07-14"),
    ]


def test_process_lands_every_raw_record_in_bronze(config) -> None:
    """Bronze keeps the raw batch, rejected rows included."""
    process_batch(_gbif_batch(), config)

    snapshot = TierStore(config).read("bronze", PartitionKey("gbif", 2022))

    assert [record.position for record in snapshot.records] == [0, 1, 2, 3, 4, 5]


def test_process_skips_bronze_when_disabled(config) -> None:
    """Bronze landing can be switched off."""
    result = process_batch(_gbif_batch(), replace(config, land_bronze=False))

    assert result.bronze_version is None
    assert TierStore(config).list_partitions("bronze") == []


def test_process_rejects_non_mapping_records(config) -> None:
    """Records that are not mappings are quarantined as TYPE_MISMATCH."""
    records = list(fixture_records("gbif/occurrences.jsonl")[:1]) + ["garbage"]

    result = process_batch(build_batch("mixed", "GBIF", records, _INGESTED_AT), config)

    assert result.state == "COMPLETE"
    assert [item.reason_code for item in result.rejections] == ["TYPE_MISMATCH"]


def test_resubmitting_complete_batch_writes_nothing(config) -> None:
    """Replaying a completed batch returns its result without new versions."""
    first = process_batch(_gbif_batch(), config)

    second = process_batch(_gbif_batch(), config)
    versions = TierStore(config).list_versions("gold", _PARTITION_2021)

    assert dict(second.gold_versions) == dict(first.gold_versions)
    assert len(versions) == 1


def test_transient_failures_retry_until_dead(config) -> None:
    """A batch failing every attempt goes DEAD after retry_limit + 1 attempts."""
    retry_config = replace(config, retry_limit=2, backoff_seconds=1.0)
    sleep = _RecordingSleep()
    coordinator = PipelineCoordinator(
        retry_config, store=_FailingStore(retry_config), sleep=sleep
    )

    result = coordinator.process(_gbif_batch())
    status = coordinator.get_batch_status("gbif-2021")

    assert result.state == "DEAD"
    assert result.attempts == 3
    assert sleep.delays == [1.0, 2.0]
    assert status.stage == "VALIDATING"
    assert status.reason == "TransientIOError: disk unavailable"


def test_invalid_schema_file_marks_batch_dead_without_retry(config) -> None:
    """Configuration errors are fatal and skip the retry loop."""
    bad_config = replace(config, schema_file=fixture_path("schemas/malformed_schema.yaml"))

    result = process_batch(_gbif_batch(), bad_config)

    assert result.state == "DEAD"
    assert result.attempts == 1


def test_resubmitting_dead_batch_raises(config) -> None:
    """DEAD batch ids cannot be reprocessed."""
    bad_config = replace(config, schema_file=fixture_path("schemas/malformed_schema.yaml"))
    process_batch(_gbif_batch(), bad_config)

    with pytest.raises(BiotierIngestError):
        process_batch(_gbif_batch(), config)


def test_conflicting_silver_write_is_recomputed(config) -> None:
    """A stale silver write re-reads the partition and commits on top of it."""
    sleep = _RecordingSleep()
    coordinator = PipelineCoordinator(config, store=_InterferingStore(config), sleep=sleep)

    result = coordinator.process(_gbif_batch())

    assert dict(result.silver_versions) == {"S10E030/2021": 2}
    assert result.attempts == 1
    assert sleep.delays == [0.0]


def test_conflicts_past_limit_fail_attempt_and_retry(config) -> None:
    """Exhausted conflict retries fail the attempt; the next attempt completes."""
    strict_config = replace(config, conflict_retry_limit=0)
    store = _InterferingStore(strict_config)
    coordinator = PipelineCoordinator(strict_config, store=store, sleep=_RecordingSleep())

    result = coordinator.process(_gbif_batch())

    assert result.state == "COMPLETE"
    assert result.attempts == 2
    assert len(store.list_versions("bronze", PartitionKey("gbif", 2022))) == 1


def test_interrupted_batch_resumes_as_new_attempt(config) -> None:
    """A batch left mid-pipeline is failed and retried from the start."""
    registry = BatchRegistry(config.data_root)
    registry.register(_gbif_batch())
    registry.transition("gbif-2021", "VALIDATING")
    registry.transition("gbif-2021", "DEDUPING")
    coordinator = PipelineCoordinator(config, registry=registry)

    result = coordinator.process(_gbif_batch())

    assert result.state == "COMPLETE"
    assert result.attempts == 2


def test_cancel_queued_batch_prevents_processing(config) -> None:
    """A cancelled batch never writes to any tier."""
    registry = BatchRegistry(config.data_root)
    registry.register(_gbif_batch())
    coordinator = PipelineCoordinator(config, registry=registry)

    status = coordinator.cancel("gbif-2021")
    result = coordinator.process(_gbif_batch())

    assert status.state == "CANCELLED"
    assert result.state == "CANCELLED"
    assert TierStore(config).list_partitions("bronze") == []


def test_cancel_completed_batch_raises(config) -> None:
    """Terminal batches cannot be cancelled."""
    coordinator = PipelineCoordinator(config)
    coordinator.process(_gbif_batch())

    with pytest.raises(BatchCancellationError):
        coordinator.cancel("gbif-2021")


def test_status_batch_updates_gold_conservation_metrics(config) -> None:
    """New assessments recompute gold for partitions they affect."""
    process_batch(_gbif_batch(), config)

    result = process_batch(_iucn_batch(), config)
    gold = TierStore(config).read("gold", _PARTITION_2021)

    assert dict(result.gold_versions) == {"S10E030/2021": 2}
    assert gold.manifest.metrics.critically_endangered_count == 1
    assert gold.manifest.metrics.critically_endangered_proportion == 0.333333


def test_prior_year_batch_recomputes_next_year_trend(config) -> None:
    """Loading an earlier year refreshes the trend of the following year."""
    process_batch(_gbif_batch(), config)

    result = process_batch(_gbif_2020_batch(), config)
    gold = TierStore(config).read("gold", _PARTITION_2021)
    lion = next(item for item in gold.records if item.species_key == "panthera leo")

    assert sorted(result.gold_versions) == ["S10E030/2020", "S10E030/2021"]
    assert lion.previous_year_count == 1
    assert lion.trend_delta == 0.0


def _unkeyed_lion(name: str) -> dict[str, object]:
    return {
        "scientificName": name,
        "decimalLatitude": -1.5,
        "decimalLongitude": 36.8,
        "eventDate": "2021-05-01",
    }


def test_unkeyed_records_merge_the_same_in_one_or_two_batches(config) -> None:
    """Id-less duplicates collapse identically within a batch and across batches."""
    records = [_unkeyed_lion("Panthera-leo"), _unkeyed_lion("Panthera leo")]
    one_config = replace(config, data_root=config.data_root / "one")
    two_config = replace(config, data_root=config.data_root / "two")
    process_batch(build_batch("together", "GBIF", records, _INGESTED_AT), one_config)
    process_batch(build_batch("first", "GBIF", records[:1], _INGESTED_AT), two_config)
    process_batch(build_batch("second", "GBIF", records[1:], _INGESTED_AT), two_config)

    together = TierStore(one_config).read("silver", _PARTITION_2021)
    separate = TierStore(two_config).read("silver", _PARTITION_2021)

    assert sorted(record.scientific_name for record in together.records) == sorted(
        record.scientific_name for record in separate.records
    )


def test_process_releases_batch_control_when_terminal(config) -> None:
    """Finished batches leave no cancellation state behind."""
    with PipelineCoordinator(config) as coordinator:
        coordinator.process(_gbif_batch())
        coordinator.process(_iucn_batch())

        tracked = coordinator.tracked_batch_ids

    assert tracked == ()


def test_cancelled_batch_releases_batch_control(config) -> None:
    """A cancelled batch drops its control once processing observes it."""
    registry = BatchRegistry(config.data_root)
    registry.register(_gbif_batch())
    coordinator = PipelineCoordinator(config, registry=registry)
    coordinator.cancel("gbif-2021")

    coordinator.process(_gbif_batch())

    assert coordinator.tracked_batch_ids == ()
