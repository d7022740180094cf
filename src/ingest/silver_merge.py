"""Silver partition grouping and merge helpers.

This module routes cleansed records to their silver partitions and merges
them with the partition's current content. Merging reuses natural-key
deduplication with incoming records placed last, so a correction batch
supersedes earlier rows on equal dates.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Sequence

from core.constants import CONSERVATION_REGION
from core.types import (
    ConservationStatusRecord,
    OccurrenceRecord,
    PartitionKey,
    TierRecord,
)
from transforms.natural_key_deduplication import conservation_key, deduplicate, occurrence_key


def group_occurrences(
    records: Iterable[OccurrenceRecord],
) -> dict[PartitionKey, list[OccurrenceRecord]]:
    """Group occurrences by derived region and observation year."""
    partitions: dict[PartitionKey, list[OccurrenceRecord]] = defaultdict(list)
    for record in records:
        partitions[PartitionKey(record.region, record.observation_date.year)].append(record)
    return dict(sorted(partitions.items()))


def group_statuses(
    records: Iterable[ConservationStatusRecord],
) -> dict[PartitionKey, list[ConservationStatusRecord]]:
    """Group conservation statuses by assessment year."""
    partitions: dict[PartitionKey, list[ConservationStatusRecord]] = defaultdict(list)
    for record in records:
        partitions[PartitionKey(CONSERVATION_REGION, record.assessment_date.year)].append(record)
    return dict(sorted(partitions.items()))


def merge_occurrences(
    existing_records: Sequence[TierRecord],
    incoming_records: Sequence[OccurrenceRecord],
) -> list[OccurrenceRecord]:
    """Merge incoming occurrences into a silver partition's current rows.

    Args:
        existing_records: Latest silver content, empty for a new partition.
        incoming_records: Cleansed occurrences routed to the partition.

    Returns:
        One occurrence per natural key, existing keys keeping their order.
    """
    merged = [record for record in existing_records if isinstance(record, OccurrenceRecord)]
    merged.extend(incoming_records)
    return deduplicate(merged, occurrence_key, lambda record: record.observation_date)


def merge_statuses(
    existing_records: Sequence[TierRecord],
    incoming_records: Sequence[ConservationStatusRecord],
) -> list[ConservationStatusRecord]:
    """Merge incoming assessments into a status partition's current rows."""
    merged = [
        record for record in existing_records if isinstance(record, ConservationStatusRecord)
    ]
    merged.extend(incoming_records)
    return deduplicate(merged, conservation_key, lambda record: record.assessment_date)


def occurrences_only(records: Iterable[TierRecord]) -> list[OccurrenceRecord]:
    return [record for record in records if isinstance(record, OccurrenceRecord)]


def statuses_only(records: Iterable[TierRecord]) -> list[ConservationStatusRecord]:
    return [record for record in records if isinstance(record, ConservationStatusRecord)]
