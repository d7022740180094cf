"""Silver to gold species aggregation.

This module recomputes gold metrics for one region-year partition from
the full silver content. Output depends only on its inputs, so replaying
corrections in any order converges on the same gold partition.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Sequence

from core.constants import CRITICALLY_ENDANGERED_STATUS
from core.types import (
    ConservationStatusRecord,
    OccurrenceRecord,
    PartitionKey,
    PartitionMetrics,
    SpeciesAggregate,
)

_DELTA_PRECISION = 6


@dataclass(frozen=True)
class GoldPartition:
    """Recomputed gold content for one partition."""

    partition: PartitionKey
    aggregates: tuple[SpeciesAggregate, ...]
    metrics: PartitionMetrics


def aggregate_partition(
    partition: PartitionKey,
    current_records: Sequence[OccurrenceRecord],
    previous_records: Sequence[OccurrenceRecord],
    statuses: Iterable[ConservationStatusRecord],
) -> GoldPartition:
    """Recompute gold metrics for one partition.

    Args:
        partition: Region and observation year being aggregated.
        current_records: Full silver content of the partition.
        previous_records: Full silver content of the same region's prior year.
        statuses: Conservation status history across all assessments.

    Returns:
        Species aggregates sorted by species key, plus partition metrics.
    """
    current_counts = Counter(species_key(record.scientific_name) for record in current_records)
    previous_counts = Counter(species_key(record.scientific_name) for record in previous_records)
    display_names = _display_names(current_records)
    resolved_statuses = resolve_statuses(statuses, date(partition.year, 12, 31))
    aggregates = tuple(
        SpeciesAggregate(
            species_key=key,
            scientific_name=display_names[key],
            region=partition.region,
            observation_year=partition.year,
            observation_count=count,
            previous_year_count=previous_counts.get(key, 0),
            trend_delta=trend_delta(count, previous_counts.get(key, 0)),
            status=resolved_statuses.get(key),
        )
        for key, count in sorted(current_counts.items())
    )
    metrics = _build_metrics(aggregates, previous_counts)
    return GoldPartition(partition=partition, aggregates=aggregates, metrics=metrics)


def trend_delta(current: int, previous: int) -> float | None:
    """Return ``(current - previous) / previous``, None when previous is zero."""
    if previous == 0:
        return None
    return round((current - previous) / previous, _DELTA_PRECISION)


def resolve_statuses(
    statuses: Iterable[ConservationStatusRecord],
    as_of: date,
) -> dict[str, str]:
    """Resolve each species' newest status assessed on or before a date.

    Args:
        statuses: Append-only assessment history.
        as_of: Last assessment date considered.

    Returns:
        Mapping of species key to status code.
    """
    newest: dict[str, ConservationStatusRecord] = {}
    for status in statuses:
        if status.assessment_date > as_of:
            continue
        key = species_key(status.species_name)
        current = newest.get(key)
        if current is None or status.assessment_date >= current.assessment_date:
            newest[key] = status
    return {key: status.status for key, status in newest.items()}


def species_key(scientific_name: str) -> str:
    return " ".join(scientific_name.lower().split())


def _display_names(records: Sequence[OccurrenceRecord]) -> dict[str, str]:
    """Pick one display name per species independent of record order."""
    names: dict[str, str] = {}
    for record in records:
        key = species_key(record.scientific_name)
        if key not in names or record.scientific_name < names[key]:
            names[key] = record.scientific_name
    return names


def _build_metrics(
    aggregates: tuple[SpeciesAggregate, ...],
    previous_counts: Counter[str],
) -> PartitionMetrics:
    distinct_species = len(aggregates)
    observation_count = sum(aggregate.observation_count for aggregate in aggregates)
    critically_endangered = sum(
        1 for aggregate in aggregates if aggregate.status == CRITICALLY_ENDANGERED_STATUS
    )
    proportion = (
        round(critically_endangered / distinct_species, _DELTA_PRECISION)
        if distinct_species
        else None
    )
    return PartitionMetrics(
        distinct_species=distinct_species,
        observation_count=observation_count,
        critically_endangered_count=critically_endangered,
        critically_endangered_proportion=proportion,
        distinct_species_delta=trend_delta(distinct_species, len(previous_counts)),
        observation_delta=trend_delta(observation_count, sum(previous_counts.values())),
    )
