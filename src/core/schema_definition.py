"""Record schema definitions for source systems.

This module defines the ordered field contracts each source system must
satisfy, ships built-in GBIF and IUCN schemas, and loads YAML schema files
that override them. Source-specific field names are declared as aliases so
the validator can normalize every source into one canonical record shape.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from pathlib import Path
from typing import Literal, Mapping, Sequence, cast

import yaml

from core.constants import CONSERVATION_STATUSES, POPULATION_TRENDS, SUPPORTED_SOURCE_SYSTEMS
from core.errors import FatalConfigError
from core.types import SourceSystem

FieldType = Literal["string", "identifier", "float", "date", "enum"]
RecordKind = Literal["occurrence", "conservation_status"]
SUPPORTED_FIELD_TYPES: tuple[FieldType, ...] = ("string", "identifier", "float", "date", "enum")
REQUIRED_CANONICAL_FIELDS: dict[RecordKind, tuple[str, ...]] = {
    "occurrence": ("scientific_name", "latitude", "longitude", "observation_date"),
    "conservation_status": ("species_name", "status", "population_trend", "assessment_date"),
}
TAXONOMY_FIELDS = ("kingdom", "phylum", "class_name", "order", "family", "genus")


@dataclass(frozen=True)
class FieldSpec:
    """One canonical field contract.

    Attributes:
        name: Canonical field name.
        field_type: Expected value type.
        required: Whether a missing or null value is a violation.
        minimum: Inclusive lower bound for float fields.
        maximum: Inclusive upper bound for float fields.
        choices: Allowed values for enum fields.
        aliases: Source-native names accepted for this field, in priority order.
    """

    name: str
    field_type: FieldType
    required: bool = True
    minimum: float | None = None
    maximum: float | None = None
    choices: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()

    @property
    def source_names(self) -> tuple[str, ...]:
        """Return canonical name followed by aliases."""
        return (self.name,) + self.aliases


@dataclass(frozen=True)
class RecordSchema:
    """Ordered field contracts for one source system."""

    source_system: SourceSystem
    kind: RecordKind
    fields: tuple[FieldSpec, ...]


GBIF_SCHEMA = RecordSchema(
    source_system="GBIF",
    kind="occurrence",
    fields=(
        FieldSpec("record_id", "identifier", required=False, aliases=("gbifID", "id")),
        FieldSpec("scientific_name", "string", aliases=("scientificName", "name")),
        FieldSpec(
            "latitude", "float", minimum=-90.0, maximum=90.0, aliases=("decimalLatitude", "lat")
        ),
        FieldSpec(
            "longitude",
            "float",
            minimum=-180.0,
            maximum=180.0,
            aliases=("decimalLongitude", "lon", "lng"),
        ),
        FieldSpec("observation_date", "date", aliases=("eventDate", "date")),
        FieldSpec("kingdom", "string", required=False),
        FieldSpec("phylum", "string", required=False),
        FieldSpec("class_name", "string", required=False, aliases=("class",)),
        FieldSpec("order", "string", required=False),
        FieldSpec("family", "string", required=False),
        FieldSpec("genus", "string", required=False),
    ),
)

IUCN_SCHEMA = RecordSchema(
    source_system="IUCN",
    kind="conservation_status",
    fields=(
        FieldSpec("species_name", "string", aliases=("scientificName", "scientific_name")),
        FieldSpec(
            "status", "enum", choices=CONSERVATION_STATUSES, aliases=("redlistCategory", "category")
        ),
        FieldSpec(
            "population_trend",
            "enum",
            choices=POPULATION_TRENDS,
            aliases=("populationTrend", "trend"),
        ),
        FieldSpec("assessment_date", "date", aliases=("assessmentDate",)),
    ),
)

BUILT_IN_SCHEMAS: dict[SourceSystem, RecordSchema] = {"GBIF": GBIF_SCHEMA, "IUCN": IUCN_SCHEMA}


def load_schemas(schema_file: Path | None) -> dict[SourceSystem, RecordSchema]:
    """Return source schemas, applying a YAML override file when given.

    Args:
        schema_file: Optional YAML schema definition path.

    Returns:
        Mapping of source system to schema.

    Raises:
        FatalConfigError: If the schema file is missing or malformed.
    """
    schemas = dict(BUILT_IN_SCHEMAS)
    if schema_file is None:
        return schemas
    schemas.update(load_schema_file(schema_file))
    return schemas


def load_schema_file(schema_file: Path) -> dict[SourceSystem, RecordSchema]:
    """Load and validate a YAML schema definition file.

    Args:
        schema_file: File path to YAML schema definition.

    Returns:
        Schemas declared in the file.

    Raises:
        FatalConfigError: If the file is unreadable or fails schema checks.
    """
    payload = _load_yaml_payload(schema_file)
    root_mapping = _expect_mapping(payload, "schema file root")
    raw_version = root_mapping.get("version")
    if raw_version != 1:
        raise FatalConfigError(
            f"Unsupported schema file version {raw_version!r} in {schema_file}. Use version: 1."
        )
    raw_schemas = _expect_mapping(root_mapping.get("schemas"), "schemas")
    if not raw_schemas:
        raise FatalConfigError(f"Schema file {schema_file} declares no schemas.")
    return {
        _parse_source_system(name): build_schema(name, raw_schema)
        for name, raw_schema in raw_schemas.items()
    }


def build_schema(source_name: str, raw_schema: object) -> RecordSchema:
    """Build one validated schema from a parsed mapping.

    Args:
        source_name: Source system name the schema applies to.
        raw_schema: Parsed schema mapping with ``kind`` and ``fields``.

    Returns:
        Validated record schema.

    Raises:
        FatalConfigError: If the definition is malformed.
    """
    source_system = _parse_source_system(source_name)
    schema_mapping = _expect_mapping(raw_schema, f"schema {source_name}")
    kind = _parse_kind(schema_mapping.get("kind"), source_name)
    raw_fields = _expect_sequence(schema_mapping.get("fields"), f"schema {source_name} fields")
    fields = tuple(
        _parse_field(item, f"schema {source_name} field #{index}")
        for index, item in enumerate(raw_fields, 1)
    )
    _validate_field_names(fields, kind, source_name)
    return RecordSchema(source_system=source_system, kind=kind, fields=fields)


def _load_yaml_payload(schema_file: Path) -> object:
    if not schema_file.exists():
        raise FatalConfigError(
            f"Schema file does not exist at {schema_file}. Provide a valid YAML file path."
        )
    try:
        payload = cast(object, yaml.safe_load(schema_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise FatalConfigError(
            f"Failed to read schema file at {schema_file}: {error}. Check file permissions."
        ) from error
    except yaml.YAMLError as error:
        raise FatalConfigError(
            f"Failed to parse YAML schema file at {schema_file}: {error}. Fix YAML syntax."
        ) from error
    if payload is None:
        raise FatalConfigError(f"Schema file at {schema_file} is empty. Define 'schemas'.")
    return payload


def _parse_field(raw_field: object, context: str) -> FieldSpec:
    field_mapping = _expect_mapping(raw_field, context)
    unknown_keys = set(field_mapping) - {
        "name",
        "type",
        "required",
        "minimum",
        "maximum",
        "choices",
        "aliases",
    }
    if unknown_keys:
        raise FatalConfigError(f"Invalid {context}: unknown keys {sorted(unknown_keys)}.")
    name = field_mapping.get("name")
    if not isinstance(name, str) or not name.strip():
        raise FatalConfigError(f"Invalid {context}: 'name' must be a non-empty string.")
    field_type = field_mapping.get("type")
    if field_type not in SUPPORTED_FIELD_TYPES:
        raise FatalConfigError(
            f"Invalid {context}: 'type' must be one of {', '.join(SUPPORTED_FIELD_TYPES)}."
        )
    required = field_mapping.get("required", True)
    if not isinstance(required, bool):
        raise FatalConfigError(f"Invalid {context}: 'required' must be a boolean.")
    minimum = _optional_number(field_mapping.get("minimum"), f"{context} minimum")
    maximum = _optional_number(field_mapping.get("maximum"), f"{context} maximum")
    if minimum is not None and maximum is not None and minimum > maximum:
        raise FatalConfigError(f"Invalid {context}: minimum {minimum} exceeds maximum {maximum}.")
    choices = _string_tuple(field_mapping.get("choices", ()), f"{context} choices")
    if field_type == "enum" and not choices:
        raise FatalConfigError(f"Invalid {context}: enum fields require non-empty 'choices'.")
    aliases = _string_tuple(field_mapping.get("aliases", ()), f"{context} aliases")
    return FieldSpec(
        name=name.strip(),
        field_type=cast(FieldType, field_type),
        required=required,
        minimum=minimum,
        maximum=maximum,
        choices=choices,
        aliases=aliases,
    )


def _validate_field_names(
    fields: tuple[FieldSpec, ...], kind: RecordKind, source_name: str
) -> None:
    names = [field_spec.name for field_spec in fields]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise FatalConfigError(f"Schema {source_name} declares duplicate fields: {duplicates}.")
    missing = [name for name in REQUIRED_CANONICAL_FIELDS[kind] if name not in names]
    if missing:
        raise FatalConfigError(
            f"Schema {source_name} of kind '{kind}' is missing canonical fields: {missing}."
        )


def _parse_source_system(raw_value: object) -> SourceSystem:
    normalized = str(raw_value).strip().upper()
    if normalized not in SUPPORTED_SOURCE_SYSTEMS:
        raise FatalConfigError(
            f"Unsupported source system '{raw_value}'. "
            f"Choose one of: {', '.join(SUPPORTED_SOURCE_SYSTEMS)}."
        )
    return cast(SourceSystem, normalized)


def _parse_kind(raw_value: object, source_name: str) -> RecordKind:
    if raw_value in REQUIRED_CANONICAL_FIELDS:
        return cast(RecordKind, raw_value)
    raise FatalConfigError(
        f"Schema {source_name} has invalid kind {raw_value!r}: "
        f"expected one of {', '.join(REQUIRED_CANONICAL_FIELDS)}."
    )


def _expect_mapping(value: object, context: str) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise FatalConfigError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise FatalConfigError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def _expect_sequence(value: object, context: str) -> Sequence[object]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return value
    raise FatalConfigError(f"Invalid {context}: expected list, got {type(value).__name__}.")


def _optional_number(value: object, context: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise FatalConfigError(f"Invalid {context}: expected a number.")
    return float(value)


def _string_tuple(value: object, context: str) -> tuple[str, ...]:
    items = _expect_sequence(value, context)
    if not all(isinstance(item, str) and item for item in items):
        raise FatalConfigError(f"Invalid {context}: expected a list of non-empty strings.")
    return tuple(cast(str, item) for item in items)
