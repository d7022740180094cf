"""Shared typed models.

This module defines immutable data models used by the validation,
transform, store, and pipeline layers to keep interfaces explicit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Literal, Mapping, Union

SourceSystem = Literal["GBIF", "IUCN"]
TierName = Literal["bronze", "silver", "gold"]
WriteMode = Literal["append", "replace"]
ReasonCode = Literal[
    "MISSING_FIELD",
    "TYPE_MISMATCH",
    "OUT_OF_RANGE",
    "INVALID_ENUM",
    "UNPARSEABLE_DATE",
    "EMPTY_SCIENTIFIC_NAME",
    "FUTURE_DATE",
]
RejectionStage = Literal["validation", "cleansing"]


@dataclass(frozen=True, order=True)
class PartitionKey:
    """Tier partition coordinates.

    Attributes:
        region: Region label, grid cell or source-system namespace.
        year: Observation, assessment, or ingest year.
    """

    region: str
    year: int

    @property
    def label(self) -> str:
        """Return a stable ``region/year`` label for logs and paths."""
        return f"{self.region}/{self.year}"


@dataclass(frozen=True)
class Batch:
    """Immutable set of raw records submitted together.

    Attributes:
        batch_id: Caller-provided unique batch identifier.
        source_system: Source tag selecting the record schema.
        ingested_at: UTC timestamp when the batch was received.
        records: Ordered raw records as delivered by the source, normally mappings.
    """

    batch_id: str
    source_system: SourceSystem
    ingested_at: datetime
    records: tuple[object, ...]


@dataclass(frozen=True)
class CandidateRecord:
    """Schema-accepted record normalized to canonical field names.

    Attributes:
        source_system: Source tag of the owning batch.
        fields: Canonical field values, not yet cleansed.
        original: Raw record as submitted, kept for rejection reporting.
    """

    source_system: SourceSystem
    fields: Mapping[str, object]
    original: Mapping[str, object]


@dataclass(frozen=True)
class Rejection:
    """One quarantined record with its violation.

    Attributes:
        original_record: Raw record as submitted.
        reason_code: Violation code.
        stage: Pipeline stage that rejected the record.
        detail: Human-readable explanation.
    """

    original_record: Mapping[str, object]
    reason_code: ReasonCode
    stage: RejectionStage
    detail: str


@dataclass(frozen=True)
class BronzeRecord:
    """Raw record landed in the bronze tier."""

    batch_id: str
    position: int
    payload: Mapping[str, object]


@dataclass(frozen=True)
class OccurrenceRecord:
    """Cleansed wildlife occurrence.

    Attributes:
        record_id: Source-native identifier when provided.
        scientific_name: Cleansed scientific name.
        latitude: Decimal latitude in [-90, 90].
        longitude: Decimal longitude in [-180, 180].
        observation_date: Canonical observation date.
        source_system: Source tag.
        region: Derived grid-cell region label.
        taxonomy: Optional rank fields, kingdom through genus.
    """

    record_id: str | None
    scientific_name: str
    latitude: float
    longitude: float
    observation_date: date
    source_system: SourceSystem
    region: str
    taxonomy: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ConservationStatusRecord:
    """Species-level conservation assessment."""

    species_name: str
    status: str
    population_trend: str
    assessment_date: date
    source_system: SourceSystem


@dataclass(frozen=True)
class SpeciesAggregate:
    """Gold-tier species metrics for one region and year.

    Attributes:
        species_key: Lowercased scientific name used as the join key.
        scientific_name: Display scientific name.
        region: Region label.
        observation_year: Calendar year of the observations.
        observation_count: Silver observations of the species.
        previous_year_count: Observations in the prior year.
        trend_delta: Relative change vs the prior year, None when undefined.
        status: Resolved conservation status code, None when unassessed.
    """

    species_key: str
    scientific_name: str
    region: str
    observation_year: int
    observation_count: int
    previous_year_count: int
    trend_delta: float | None
    status: str | None


@dataclass(frozen=True)
class PartitionMetrics:
    """Gold-tier partition summary.

    Attributes:
        distinct_species: Distinct species observed.
        observation_count: Total silver observations.
        critically_endangered_count: Distinct species resolved to CR.
        critically_endangered_proportion: CR share of distinct species.
        distinct_species_delta: Relative change of distinct species vs prior year.
        observation_delta: Relative change of observations vs prior year.
    """

    distinct_species: int
    observation_count: int
    critically_endangered_count: int
    critically_endangered_proportion: float | None
    distinct_species_delta: float | None
    observation_delta: float | None


TierRecord = Union[BronzeRecord, OccurrenceRecord, ConservationStatusRecord, SpeciesAggregate]


@dataclass(frozen=True)
class PartitionManifest:
    """Immutable metadata for one committed partition version.

    Attributes:
        tier: Tier name.
        partition: Partition coordinates.
        version: Monotonic version number, starting at 1.
        created_at: UTC commit timestamp.
        batch_id: Batch whose write produced the version.
        mode: ``append`` adds a segment, ``replace`` is a full snapshot.
        record_count: Records stored in this version's segment.
        applied_batch_ids: Every batch applied up to and including this version.
        metrics: Gold partition summary, when present.
    """

    tier: TierName
    partition: PartitionKey
    version: int
    created_at: datetime
    batch_id: str
    mode: WriteMode
    record_count: int
    applied_batch_ids: tuple[str, ...]
    metrics: PartitionMetrics | None = None


@dataclass(frozen=True)
class TierWriteRequest:
    """Request payload for an optimistic partition write.

    Attributes:
        tier: Target tier.
        partition: Target partition.
        records: Records for the new version.
        expected_prior_version: Version the caller read before writing.
        batch_id: Batch producing the write, used for idempotence.
        mode: Append segment or replace the partition content.
        metrics: Optional gold summary stored with the version.
    """

    tier: TierName
    partition: PartitionKey
    records: tuple[TierRecord, ...]
    expected_prior_version: int
    batch_id: str
    mode: WriteMode = "replace"
    metrics: PartitionMetrics | None = None


@dataclass(frozen=True)
class TierSnapshot:
    """Point-in-time partition content."""

    manifest: PartitionManifest
    records: tuple[TierRecord, ...]
