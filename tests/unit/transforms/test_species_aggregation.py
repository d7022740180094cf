"""Unit tests for gold species aggregation."""

from __future__ import annotations

from datetime import date

from core.types import ConservationStatusRecord, OccurrenceRecord, PartitionKey
from transforms.species_aggregation import aggregate_partition, resolve_statuses, trend_delta

_PARTITION = PartitionKey("S10E030", 2021)


def _occurrence(name: str, year: int, record_id: str) -> OccurrenceRecord:
    return OccurrenceRecord(
        record_id=record_id,
        scientific_name=name,
        latitude=-1.5,
        longitude=36.8,
        observation_date=date(year, 5, 1),
        source_system="GBIF",
        region="S10E030",
    )


def _status(name: str, status: str, assessed: date) -> ConservationStatusRecord:
    return ConservationStatusRecord(
        species_name=name,
        status=status,
        population_trend="stable",
        assessment_date=assessed,
        source_system="IUCN",
    )


def test_trend_delta_is_relative_change() -> None:
    """Delta should be (current - previous) / previous."""
    assert trend_delta(3, 2) == 0.5


def test_trend_delta_is_undefined_without_previous_year() -> None:
    """A zero previous count should give no delta instead of dividing by zero."""
    assert trend_delta(4, 0) is None


def test_aggregate_partition_counts_species_and_trend() -> None:
    """Aggregates should count observations per species against the prior year."""
    current = [
        _occurrence("Panthera leo", 2021, "1"),
        _occurrence("Panthera leo", 2021, "2"),
        _occurrence("Loxodonta africana", 2021, "3"),
    ]
    previous = [_occurrence("Panthera leo", 2020, "4")]

    gold = aggregate_partition(_PARTITION, current, previous, [])

    lion = next(item for item in gold.aggregates if item.species_key == "panthera leo")

    assert lion.observation_count == 2
    assert lion.previous_year_count == 1
    assert lion.trend_delta == 1.0


def test_aggregate_partition_computes_critically_endangered_share() -> None:
    """CR proportion should use the status in force at the end of the year."""
    current = [
        _occurrence("Diceros bicornis", 2021, "1"),
        _occurrence("Panthera leo", 2021, "2"),
    ]
    statuses = [
        _status("Diceros bicornis", "EN", date(2015, 1, 1)),
        _status("Diceros bicornis", "CR", date(2021, 12, 31)),
        _status("Panthera leo", "CR", date(2022, 1, 1)),
    ]

    gold = aggregate_partition(_PARTITION, current, [], statuses)

    assert gold.metrics.critically_endangered_count == 1
    assert gold.metrics.critically_endangered_proportion == 0.5


def test_aggregate_partition_metrics_without_species() -> None:
    """An empty partition should report no proportion instead of dividing by zero."""
    gold = aggregate_partition(_PARTITION, [], [], [])

    assert gold.metrics.critically_endangered_proportion is None


def test_aggregate_partition_is_independent_of_input_order() -> None:
    """The recompute should be a pure function of the record multiset."""
    records = [
        _occurrence("panthera leo", 2021, "1"),
        _occurrence("Panthera leo", 2021, "2"),
        _occurrence("Loxodonta africana", 2021, "3"),
    ]

    forward = aggregate_partition(_PARTITION, records, [], [])
    backward = aggregate_partition(_PARTITION, list(reversed(records)), [], [])

    assert forward == backward


def test_resolve_statuses_picks_newest_assessment_on_or_before_date() -> None:
    """Later assessments supersede earlier ones up to the cut-off date."""
    statuses = [
        _status("Panthera leo", "VU", date(2016, 6, 28)),
        _status("Panthera leo", "EN", date(2019, 1, 1)),
        _status("Panthera leo", "CR", date(2023, 1, 1)),
    ]

    resolved = resolve_statuses(statuses, date(2021, 12, 31))

    assert resolved == {"panthera leo": "EN"}
