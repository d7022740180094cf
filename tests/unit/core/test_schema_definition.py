"""Unit tests for record schema loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.errors import FatalConfigError
from core.schema_definition import GBIF_SCHEMA, build_schema, load_schema_file, load_schemas
from tests.fixture_paths import fixture_path


def test_load_schemas_returns_built_ins_without_file() -> None:
    """Built-in schemas should cover every supported source system."""
    schemas = load_schemas(None)

    assert sorted(schemas) == ["GBIF", "IUCN"]


def test_built_in_gbif_schema_declares_native_aliases() -> None:
    """GBIF schema should accept Darwin Core field names."""
    latitude_spec = next(spec for spec in GBIF_SCHEMA.fields if spec.name == "latitude")

    assert "decimalLatitude" in latitude_spec.source_names


def test_load_schema_file_overrides_source_schema() -> None:
    """Schema file entries should replace the matching built-in schema."""
    schemas = load_schemas(fixture_path("schemas/custom_schema.yaml"))

    taxon_spec = schemas["GBIF"].fields[1]

    assert taxon_spec.aliases == ("taxon",)
    assert schemas["IUCN"].kind == "conservation_status"


def test_load_schema_file_raises_for_unknown_field_type() -> None:
    """Malformed field definitions should be fatal."""
    with pytest.raises(FatalConfigError):
        load_schema_file(fixture_path("schemas/malformed_schema.yaml"))


def test_load_schema_file_raises_for_missing_file(tmp_path: Path) -> None:
    """A missing schema file should be fatal."""
    with pytest.raises(FatalConfigError):
        load_schema_file(tmp_path / "missing.yaml")


def test_load_schema_file_raises_for_unsupported_version(tmp_path: Path) -> None:
    """Schema files must declare version 1."""
    schema_file = tmp_path / "schema.yaml"
    schema_file.write_text("version: 2\nschemas: {}\n", encoding="utf-8")

    with pytest.raises(FatalConfigError):
        load_schema_file(schema_file)


def test_build_schema_raises_when_canonical_field_missing() -> None:
    """Occurrence schemas must declare every canonical field."""
    raw_schema = {
        "kind": "occurrence",
        "fields": [{"name": "scientific_name", "type": "string"}],
    }

    with pytest.raises(FatalConfigError):
        build_schema("GBIF", raw_schema)


def test_build_schema_raises_for_enum_without_choices() -> None:
    """Enum fields need a non-empty choice list."""
    raw_schema = {
        "kind": "conservation_status",
        "fields": [
            {"name": "species_name", "type": "string"},
            {"name": "status", "type": "enum"},
            {"name": "population_trend", "type": "enum", "choices": ["stable"]},
            {"name": "assessment_date", "type": "date"},
        ],
    }

    with pytest.raises(FatalConfigError):
        build_schema("IUCN", raw_schema)
