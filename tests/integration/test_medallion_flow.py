"""Integration tests for the bronze, silver, and gold workflow."""

from __future__ import annotations

from datetime import datetime, timezone

from core.types import PartitionKey
from store.tier_sdk import BiotierClient
from tests.fixture_paths import fixture_path, fixture_records

_INGESTED_AT = datetime(2022, 1, 1, tzinfo=timezone.utc)


def test_medallion_flow_builds_trend_and_status_metrics(config) -> None:
    """Occurrences, statuses, and a prior year should combine into gold metrics."""
    client = BiotierClient(config)
    client.submit_records(
        "gbif-2021", "GBIF", fixture_records("gbif/occurrences.jsonl"), _INGESTED_AT
    )
    client.submit_records("iucn-1", "IUCN", fixture_records("iucn/statuses.jsonl"), _INGESTED_AT)
    client.submit_source(str(fixture_path("gbif/occurrences_2020.csv")), "gbif-2020", "GBIF")

    gold = client.read("gold", PartitionKey("S10E030", 2021))
    by_species = {item.species_key: item for item in gold.records}

    assert gold.manifest.version == 3
    assert by_species["diceros bicornis"].status == "CR"
    assert by_species["panthera leo"].trend_delta == 0.0
    assert by_species["diceros bicornis"].previous_year_count == 0
    assert gold.manifest.metrics.critically_endangered_proportion == 0.333333


def test_correction_batch_supersedes_silver_and_gold(config) -> None:
    """A later batch with the same natural key replaces the earlier record."""
    client = BiotierClient(config)
    client.submit_records(
        "gbif-2021", "GBIF", fixture_records("gbif/occurrences.jsonl"), _INGESTED_AT
    )
    client.submit_records("iucn-1", "IUCN", fixture_records("iucn/statuses.jsonl"), _INGESTED_AT)
    correction = {
        "gbifID": 1003,
        "scientificName": "Diceros bicornis michaeli",
        "decimalLatitude": -3.1,
        "decimalLongitude": 35.5,
        "eventDate": "2021-07-14",
    }

    result = client.submit_records("gbif-fix", "GBIF", [correction], _INGESTED_AT)
    silver = client.read("silver", PartitionKey("S10E030", 2021))
    gold = client.read("gold", PartitionKey("S10E030", 2021))

    assert dict(result.silver_versions) == {"S10E030/2021": 2}
    assert sorted(record.scientific_name for record in silver.records) == [
        "Diceros bicornis michaeli",
        "Loxodonta africana",
        "Panthera leo",
    ]
    assert gold.manifest.metrics.critically_endangered_count == 0


def test_point_in_time_reads_see_earlier_silver(config) -> None:
    """Older silver versions stay readable after later batches."""
    client = BiotierClient(config)
    client.submit_records(
        "gbif-2021", "GBIF", fixture_records("gbif/occurrences.jsonl"), _INGESTED_AT
    )
    extra = {
        "gbifID": 1010,
        "scientificName": "Acinonyx jubatus",
        "decimalLatitude": -1.9,
        "decimalLongitude": 35.0,
        "eventDate": "2021-09-09",
    }
    client.submit_records("gbif-extra", "GBIF", [extra], _INGESTED_AT)

    versions = client.list_versions("silver", PartitionKey("S10E030", 2021))
    first = client.read("silver", PartitionKey("S10E030", 2021), as_of_version=1)

    assert [manifest.batch_id for manifest in versions] == ["gbif-2021", "gbif-extra"]
    assert len(first.records) == 3
