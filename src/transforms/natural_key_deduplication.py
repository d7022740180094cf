"""Natural-key deduplication transform.

This module keeps exactly one record per natural key in a single
streaming hash pass. Memory grows with distinct keys, not input size,
so chunked readers can feed arbitrarily large batches.
"""

from __future__ import annotations

from datetime import date
import hashlib
from typing import Callable, Iterable, TypeVar

from core.constants import HASH_ALGORITHM
from core.types import CandidateRecord, ConservationStatusRecord, OccurrenceRecord
from transforms.date_parsing import parse_date
from transforms.record_cleansing import clean_scientific_name

RecordT = TypeVar("RecordT")


def deduplicate(
    records: Iterable[RecordT],
    key_fn: Callable[[RecordT], str],
    date_fn: Callable[[RecordT], date | None],
) -> list[RecordT]:
    """Keep one record per natural key.

    The record with the most recent date wins. On equal dates, including
    two unparseable dates, the record later in input order wins, so
    reprocessing the same input always yields the same survivors.

    Args:
        records: Records in input order; may be a lazy chunked stream.
        key_fn: Natural key extractor.
        date_fn: Tie-break date extractor; None ranks below any date.

    Returns:
        Survivors in order of first key appearance.
    """
    survivors: dict[str, tuple[RecordT, date | None]] = {}
    for record in records:
        key = key_fn(record)
        record_date = date_fn(record)
        current = survivors.get(key)
        if current is None or _is_newer_or_equal(record_date, current[1]):
            survivors[key] = (record, record_date)
    return [record for record, _ in survivors.values()]


def deduplicate_candidates(records: Iterable[CandidateRecord]) -> list[CandidateRecord]:
    """Deduplicate validated candidates using the key for their record kind."""
    return deduplicate(records, candidate_natural_key, candidate_date)


def candidate_natural_key(record: CandidateRecord) -> str:
    """Build the natural key of a validated candidate.

    Occurrences with a source-native id key on ``source_system`` plus id;
    without one, on a hash of name, coordinates, and date. Conservation
    statuses key on species plus assessment date.
    """
    fields = record.fields
    if "species_name" in fields:
        return status_key(
            str(fields["species_name"]), _date_token(fields.get("assessment_date"))
        )
    record_id = fields.get("record_id")
    if record_id:
        return f"{record.source_system}:{record_id}"
    return occurrence_hash_key(
        record.source_system,
        str(fields.get("scientific_name", "")),
        float(fields.get("latitude", 0.0)),  # type: ignore[arg-type]
        float(fields.get("longitude", 0.0)),  # type: ignore[arg-type]
        _date_token(fields.get("observation_date")),
    )


def candidate_date(record: CandidateRecord) -> date | None:
    """Return the parsed tie-break date of a validated candidate."""
    fields = record.fields
    raw_date = fields.get("observation_date", fields.get("assessment_date"))
    return parse_date(raw_date)


def occurrence_key(record: OccurrenceRecord) -> str:
    """Build the natural key of a cleansed occurrence."""
    if record.record_id:
        return f"{record.source_system}:{record.record_id}"
    return occurrence_hash_key(
        record.source_system,
        record.scientific_name,
        record.latitude,
        record.longitude,
        record.observation_date.isoformat(),
    )


def conservation_key(record: ConservationStatusRecord) -> str:
    """Build the natural key of a cleansed conservation status."""
    return status_key(record.species_name, record.assessment_date.isoformat())


def occurrence_hash_key(
    source_system: str,
    scientific_name: str,
    latitude: float,
    longitude: float,
    date_token: str,
) -> str:
    """Hash occurrence content for records without a source-native id.

    Args:
        source_system: Source tag.
        scientific_name: Raw or cleansed scientific name.
        latitude: Decimal latitude.
        longitude: Decimal longitude.
        date_token: ISO date, or the raw value when unparseable.

    Returns:
        Prefixed hex digest key.
    """
    seed = "|".join(
        (_normalize_name(scientific_name), repr(latitude), repr(longitude), date_token)
    )
    return f"{source_system}#{_hash_text(seed)}"


def status_key(species_name: str, date_token: str) -> str:
    return f"status:{_normalize_name(species_name)}|{date_token}"


def _is_newer_or_equal(candidate: date | None, current: date | None) -> bool:
    if candidate is None:
        return current is None
    if current is None:
        return True
    return candidate >= current


def _date_token(raw_date: object) -> str:
    parsed = parse_date(raw_date)
    if parsed is not None:
        return parsed.isoformat()
    return str(raw_date).strip()


def _normalize_name(name: str) -> str:
    """Normalize a name the way cleansing does, then fold case."""
    return clean_scientific_name(name).lower()


def _hash_text(text: str) -> str:
    hasher = hashlib.new(HASH_ALGORITHM)
    hasher.update(text.encode("utf-8"))
    return hasher.hexdigest()
