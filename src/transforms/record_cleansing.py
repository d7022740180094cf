"""Record cleansing transform.

This module turns validated candidates into typed canonical records.
Every step is deterministic; a record failing any step is moved to the
rejection stream with a reason code instead of being coerced.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
import math
from typing import Iterable, Mapping

from core.errors import ValidationError
from core.schema_definition import TAXONOMY_FIELDS, RecordKind
from core.types import CandidateRecord, ConservationStatusRecord, OccurrenceRecord, Rejection
from transforms.date_parsing import parse_date


@dataclass(frozen=True)
class CleansingResult:
    """Cleansed records and rejections from one cleansing pass."""

    occurrences: list[OccurrenceRecord]
    statuses: list[ConservationStatusRecord]
    rejected: list[Rejection]


def cleanse_candidates(
    candidates: Iterable[CandidateRecord],
    kind: RecordKind,
    ingested_at: datetime,
    region_grid_degrees: int,
) -> CleansingResult:
    """Cleanse validated candidates of one record kind.

    Args:
        candidates: Deduplicated candidates in order.
        kind: Record kind declared by the batch schema.
        ingested_at: Batch receipt time; later dates are rejected.
        region_grid_degrees: Grid cell size for region derivation.

    Returns:
        Typed records and rejections, both in input order.
    """
    occurrences: list[OccurrenceRecord] = []
    statuses: list[ConservationStatusRecord] = []
    rejected: list[Rejection] = []
    latest_date = ingested_at.date()
    for candidate in candidates:
        try:
            if kind == "occurrence":
                occurrences.append(
                    cleanse_occurrence(candidate, latest_date, region_grid_degrees)
                )
            else:
                statuses.append(cleanse_conservation_status(candidate, latest_date))
        except ValidationError as error:
            rejected.append(
                Rejection(
                    original_record=candidate.original,
                    reason_code=error.reason_code,  # type: ignore[arg-type]
                    stage="cleansing",
                    detail=error.detail,
                )
            )
    return CleansingResult(occurrences=occurrences, statuses=statuses, rejected=rejected)


def cleanse_occurrence(
    candidate: CandidateRecord,
    latest_date: date,
    region_grid_degrees: int,
) -> OccurrenceRecord:
    """Cleanse one occurrence candidate.

    Raises:
        ValidationError: If the name, date, or coordinates fail cleansing.
    """
    fields = candidate.fields
    scientific_name = _require_name(fields.get("scientific_name"), "scientific_name")
    observation_date = _require_date(fields.get("observation_date"), "observation_date")
    _reject_future(observation_date, latest_date, "observation_date")
    latitude = _require_coordinate(fields.get("latitude"), "latitude", 90.0)
    longitude = _require_coordinate(fields.get("longitude"), "longitude", 180.0)
    record_id = fields.get("record_id")
    return OccurrenceRecord(
        record_id=str(record_id) if record_id else None,
        scientific_name=scientific_name,
        latitude=latitude,
        longitude=longitude,
        observation_date=observation_date,
        source_system=candidate.source_system,
        region=derive_region(latitude, longitude, region_grid_degrees),
        taxonomy=_clean_taxonomy(fields),
    )


def cleanse_conservation_status(
    candidate: CandidateRecord,
    latest_date: date,
) -> ConservationStatusRecord:
    """Cleanse one conservation status candidate.

    Raises:
        ValidationError: If the species name or assessment date fail cleansing.
    """
    fields = candidate.fields
    species_name = _require_name(fields.get("species_name"), "species_name")
    assessment_date = _require_date(fields.get("assessment_date"), "assessment_date")
    _reject_future(assessment_date, latest_date, "assessment_date")
    return ConservationStatusRecord(
        species_name=species_name,
        status=str(fields["status"]),
        population_trend=str(fields["population_trend"]),
        assessment_date=assessment_date,
        source_system=candidate.source_system,
    )


def clean_scientific_name(raw_name: str) -> str:
    """Strip non-alphabetic characters, keeping single internal spaces.

    Args:
        raw_name: Name as delivered by the source.

    Returns:
        Cleansed name, possibly empty.
    """
    letters = "".join(
        character for character in raw_name if character.isalpha() or character.isspace()
    )
    return " ".join(letters.split())


def derive_region(latitude: float, longitude: float, grid_degrees: int) -> str:
    """Map coordinates to the label of their grid cell's south-west corner.

    Args:
        latitude: Decimal latitude in [-90, 90].
        longitude: Decimal longitude in [-180, 180].
        grid_degrees: Cell size in degrees.

    Returns:
        Label such as ``S10E030``.
    """
    lat_band = min(math.floor(latitude / grid_degrees) * grid_degrees, 90 - grid_degrees)
    lon_band = min(math.floor(longitude / grid_degrees) * grid_degrees, 180 - grid_degrees)
    lat_prefix = "N" if lat_band >= 0 else "S"
    lon_prefix = "E" if lon_band >= 0 else "W"
    return f"{lat_prefix}{abs(lat_band):02d}{lon_prefix}{abs(lon_band):03d}"


def _require_name(raw_value: object, field_name: str) -> str:
    cleaned = clean_scientific_name(str(raw_value or ""))
    if not cleaned:
        raise ValidationError(
            "EMPTY_SCIENTIFIC_NAME",
            f"field '{field_name}' value {raw_value!r} has no alphabetic characters",
        )
    return cleaned


def _require_date(raw_value: object, field_name: str) -> date:
    parsed = parse_date(raw_value)
    if parsed is None:
        raise ValidationError(
            "UNPARSEABLE_DATE", f"field '{field_name}' value {raw_value!r} is not a date"
        )
    return parsed


def _reject_future(value: date, latest_date: date, field_name: str) -> None:
    if value > latest_date:
        raise ValidationError(
            "FUTURE_DATE",
            f"field '{field_name}' value {value.isoformat()} is after batch ingest date "
            f"{latest_date.isoformat()}",
        )


def _require_coordinate(raw_value: object, field_name: str, bound: float) -> float:
    try:
        value = float(raw_value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationError(
            "OUT_OF_RANGE", f"field '{field_name}' value {raw_value!r} is not a coordinate"
        ) from None
    if not math.isfinite(value) or abs(value) > bound:
        raise ValidationError(
            "OUT_OF_RANGE", f"field '{field_name}' value {value} outside [-{bound}, {bound}]"
        )
    return value


def _clean_taxonomy(fields: Mapping[str, object]) -> dict[str, str]:
    taxonomy: dict[str, str] = {}
    for rank in TAXONOMY_FIELDS:
        raw_value = fields.get(rank)
        if isinstance(raw_value, str) and raw_value.strip():
            taxonomy[rank] = " ".join(raw_value.split())
    return taxonomy
