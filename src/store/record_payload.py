"""Shared JSON serialization for tier records and manifests.

This module centralizes tier record serialization logic. Each payload
carries a ``kind`` tag so one partition file can be decoded without
knowing which tier wrote it.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime
import json
from pathlib import Path
from typing import Any, Mapping, cast

from core.types import (
    BronzeRecord,
    ConservationStatusRecord,
    OccurrenceRecord,
    PartitionKey,
    PartitionManifest,
    PartitionMetrics,
    SourceSystem,
    SpeciesAggregate,
    TierName,
    TierRecord,
    WriteMode,
)


def tier_record_to_payload(record: TierRecord) -> dict[str, object]:
    """Serialize a tier record into a JSON-safe payload.

    Args:
        record: Bronze, silver, or gold record.

    Returns:
        Dictionary payload tagged with its record kind.
    """
    if isinstance(record, BronzeRecord):
        return {
            "kind": "bronze",
            "batch_id": record.batch_id,
            "position": record.position,
            "payload": _json_safe(record.payload),
        }
    if isinstance(record, OccurrenceRecord):
        return {
            "kind": "occurrence",
            "record_id": record.record_id,
            "scientific_name": record.scientific_name,
            "latitude": record.latitude,
            "longitude": record.longitude,
            "observation_date": record.observation_date.isoformat(),
            "source_system": record.source_system,
            "region": record.region,
            "taxonomy": dict(record.taxonomy),
        }
    if isinstance(record, ConservationStatusRecord):
        return {
            "kind": "conservation_status",
            "species_name": record.species_name,
            "status": record.status,
            "population_trend": record.population_trend,
            "assessment_date": record.assessment_date.isoformat(),
            "source_system": record.source_system,
        }
    payload = cast(dict[str, object], asdict(record))
    payload["kind"] = "species_aggregate"
    return payload


def tier_record_from_payload(payload: Mapping[str, Any]) -> TierRecord:
    """Deserialize a tagged payload into a tier record.

    Args:
        payload: Serialized record payload.

    Returns:
        Parsed tier record.

    Raises:
        ValueError: If the payload kind is unknown or fields are invalid.
    """
    kind = payload.get("kind")
    try:
        if kind == "bronze":
            return BronzeRecord(
                batch_id=str(payload["batch_id"]),
                position=int(payload["position"]),
                payload=dict(payload["payload"]),
            )
        if kind == "occurrence":
            return OccurrenceRecord(
                record_id=str(payload["record_id"]) if payload.get("record_id") else None,
                scientific_name=str(payload["scientific_name"]),
                latitude=float(payload["latitude"]),
                longitude=float(payload["longitude"]),
                observation_date=date.fromisoformat(str(payload["observation_date"])),
                source_system=cast(SourceSystem, str(payload["source_system"])),
                region=str(payload["region"]),
                taxonomy={
                    str(key): str(value)
                    for key, value in dict(payload.get("taxonomy", {})).items()
                },
            )
        if kind == "conservation_status":
            return ConservationStatusRecord(
                species_name=str(payload["species_name"]),
                status=str(payload["status"]),
                population_trend=str(payload["population_trend"]),
                assessment_date=date.fromisoformat(str(payload["assessment_date"])),
                source_system=cast(SourceSystem, str(payload["source_system"])),
            )
        if kind == "species_aggregate":
            return SpeciesAggregate(
                species_key=str(payload["species_key"]),
                scientific_name=str(payload["scientific_name"]),
                region=str(payload["region"]),
                observation_year=int(payload["observation_year"]),
                observation_count=int(payload["observation_count"]),
                previous_year_count=int(payload["previous_year_count"]),
                trend_delta=_optional_float(payload.get("trend_delta")),
                status=str(payload["status"]) if payload.get("status") else None,
            )
    except (KeyError, TypeError) as error:
        raise ValueError(f"invalid {kind} payload: {error}") from error
    raise ValueError(f"unknown record kind {kind!r}")


def manifest_to_payload(manifest: PartitionManifest) -> dict[str, object]:
    """Serialize a partition manifest into a JSON-safe payload."""
    return {
        "tier": manifest.tier,
        "region": manifest.partition.region,
        "year": manifest.partition.year,
        "version": manifest.version,
        "created_at": manifest.created_at.isoformat(),
        "batch_id": manifest.batch_id,
        "mode": manifest.mode,
        "record_count": manifest.record_count,
        "applied_batch_ids": list(manifest.applied_batch_ids),
        "metrics": asdict(manifest.metrics) if manifest.metrics else None,
    }


def manifest_from_payload(payload: Mapping[str, Any]) -> PartitionManifest:
    """Deserialize a partition manifest payload.

    Raises:
        ValueError: If required fields are missing or invalid.
    """
    try:
        raw_metrics = payload.get("metrics")
        return PartitionManifest(
            tier=cast(TierName, str(payload["tier"])),
            partition=PartitionKey(region=str(payload["region"]), year=int(payload["year"])),
            version=int(payload["version"]),
            created_at=datetime.fromisoformat(str(payload["created_at"])),
            batch_id=str(payload["batch_id"]),
            mode=cast(WriteMode, str(payload["mode"])),
            record_count=int(payload["record_count"]),
            applied_batch_ids=tuple(str(item) for item in payload["applied_batch_ids"]),
            metrics=_metrics_from_payload(raw_metrics) if raw_metrics else None,
        )
    except (KeyError, TypeError) as error:
        raise ValueError(f"invalid manifest payload: {error}") from error


def write_records_jsonl(records_path: Path, records: list[TierRecord]) -> None:
    """Write tier records to a JSONL file.

    Args:
        records_path: Output JSONL file path.
        records: Records to serialize.
    """
    lines = [json.dumps(tier_record_to_payload(record), sort_keys=True) for record in records]
    records_path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")


def read_records_jsonl(records_path: Path) -> list[TierRecord]:
    """Read tier records from a JSONL file.

    Args:
        records_path: Input JSONL file path.

    Returns:
        Parsed records in file order.

    Raises:
        ValueError: If JSONL rows are invalid.
    """
    parsed_records: list[TierRecord] = []
    for line_number, line in enumerate(records_path.read_text(encoding="utf-8").splitlines(), 1):
        if not line.strip():
            continue
        payload = _parse_payload_line(line, line_number)
        parsed_records.append(tier_record_from_payload(payload))
    return parsed_records


def _parse_payload_line(line: str, line_number: int) -> dict[str, Any]:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as error:
        raise ValueError(f"Invalid JSON at line {line_number}: {error.msg}") from error
    if not isinstance(payload, dict):
        raise ValueError(f"Invalid payload at line {line_number}: expected JSON object")
    return payload


def _metrics_from_payload(payload: Mapping[str, Any]) -> PartitionMetrics:
    return PartitionMetrics(
        distinct_species=int(payload["distinct_species"]),
        observation_count=int(payload["observation_count"]),
        critically_endangered_count=int(payload["critically_endangered_count"]),
        critically_endangered_proportion=_optional_float(
            payload.get("critically_endangered_proportion")
        ),
        distinct_species_delta=_optional_float(payload.get("distinct_species_delta")),
        observation_delta=_optional_float(payload.get("observation_delta")),
    )


def _optional_float(raw_value: object) -> float | None:
    if raw_value is None:
        return None
    return float(raw_value)  # type: ignore[arg-type]


def _json_safe(payload: Mapping[str, object]) -> dict[str, object]:
    """Round-trip raw source values through JSON, stringifying dates."""
    return cast(dict[str, object], json.loads(json.dumps(dict(payload), default=str)))
