"""Schema validation transform.

This module checks raw source records against ordered field contracts
and normalizes accepted records into canonical field names. Validation
is total: malformed input is always classified, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import math
from typing import Iterable, Mapping

from core.errors import ValidationError
from core.schema_definition import FieldSpec, RecordSchema
from core.types import CandidateRecord, Rejection


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating one raw record.

    Exactly one of ``accepted`` and ``rejection`` is set.
    """

    accepted: CandidateRecord | None
    rejection: Rejection | None


@dataclass(frozen=True)
class ValidationResult:
    """Accepted and rejected partitions of a validated record stream."""

    accepted: list[CandidateRecord]
    rejected: list[Rejection]


def validate_record(raw_record: object, schema: RecordSchema) -> ValidationOutcome:
    """Validate one raw record against a schema.

    Args:
        raw_record: Record as delivered by the source.
        schema: Field contracts for the record's source system.

    Returns:
        Accepted canonical record or a rejection with a violation code.
    """
    if not isinstance(raw_record, Mapping):
        rejection = Rejection(
            original_record={"value": repr(raw_record)},
            reason_code="TYPE_MISMATCH",
            stage="validation",
            detail=f"expected a record mapping, got {type(raw_record).__name__}",
        )
        return ValidationOutcome(accepted=None, rejection=rejection)
    original = dict(raw_record)
    canonical_fields: dict[str, object] = {}
    for field_spec in schema.fields:
        try:
            value = _check_field(original, field_spec)
        except ValidationError as error:
            rejection = Rejection(
                original_record=original,
                reason_code=error.reason_code,  # type: ignore[arg-type]
                stage="validation",
                detail=error.detail,
            )
            return ValidationOutcome(accepted=None, rejection=rejection)
        if value is not None:
            canonical_fields[field_spec.name] = value
    candidate = CandidateRecord(
        source_system=schema.source_system,
        fields=canonical_fields,
        original=original,
    )
    return ValidationOutcome(accepted=candidate, rejection=None)


def validate_records(raw_records: Iterable[object], schema: RecordSchema) -> ValidationResult:
    """Validate a record stream, splitting accepted from rejected.

    Args:
        raw_records: Raw records in input order.
        schema: Field contracts for the batch's source system.

    Returns:
        Ordered accepted candidates and rejections.
    """
    accepted: list[CandidateRecord] = []
    rejected: list[Rejection] = []
    for raw_record in raw_records:
        outcome = validate_record(raw_record, schema)
        if outcome.accepted is not None:
            accepted.append(outcome.accepted)
        elif outcome.rejection is not None:
            rejected.append(outcome.rejection)
    return ValidationResult(accepted=accepted, rejected=rejected)


def _check_field(record: Mapping[str, object], field_spec: FieldSpec) -> object | None:
    """Return the canonical value for one field or raise a record violation."""
    raw_value = _lookup(record, field_spec)
    if _is_missing(raw_value):
        if field_spec.required:
            raise ValidationError(
                "MISSING_FIELD",
                f"required field '{field_spec.name}' is missing "
                f"(accepted names: {', '.join(field_spec.source_names)})",
            )
        return None
    if field_spec.field_type == "float":
        return _check_float(raw_value, field_spec)
    if field_spec.field_type == "enum":
        return _check_enum(raw_value, field_spec)
    if field_spec.field_type == "identifier":
        if isinstance(raw_value, bool) or not isinstance(raw_value, (str, int)):
            raise _type_mismatch(field_spec, raw_value, "string or integer identifier")
        return str(raw_value).strip()
    if field_spec.field_type == "date":
        if not isinstance(raw_value, (str, date)):
            raise _type_mismatch(field_spec, raw_value, "date string")
        return raw_value
    if not isinstance(raw_value, str):
        raise _type_mismatch(field_spec, raw_value, "string")
    return raw_value


def _lookup(record: Mapping[str, object], field_spec: FieldSpec) -> object | None:
    for source_name in field_spec.source_names:
        if source_name in record and not _is_missing(record[source_name]):
            return record[source_name]
    return None


def _is_missing(value: object | None) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _check_float(raw_value: object, field_spec: FieldSpec) -> float:
    if isinstance(raw_value, bool):
        raise _type_mismatch(field_spec, raw_value, "number")
    if isinstance(raw_value, (int, float)):
        value = float(raw_value)
    elif isinstance(raw_value, str):
        try:
            value = float(raw_value.strip())
        except ValueError:
            raise _type_mismatch(field_spec, raw_value, "number") from None
    else:
        raise _type_mismatch(field_spec, raw_value, "number")
    if not math.isfinite(value):
        raise ValidationError(
            "OUT_OF_RANGE", f"field '{field_spec.name}' value {raw_value!r} is not finite"
        )
    if field_spec.minimum is not None and value < field_spec.minimum:
        raise _out_of_range(field_spec, value)
    if field_spec.maximum is not None and value > field_spec.maximum:
        raise _out_of_range(field_spec, value)
    return value


def _check_enum(raw_value: object, field_spec: FieldSpec) -> str:
    if not isinstance(raw_value, str):
        raise _type_mismatch(field_spec, raw_value, "string")
    normalized = raw_value.strip().lower()
    for choice in field_spec.choices:
        if choice.lower() == normalized:
            return choice
    raise ValidationError(
        "INVALID_ENUM",
        f"field '{field_spec.name}' value {raw_value!r} is not one of "
        f"{', '.join(field_spec.choices)}",
    )


def _type_mismatch(field_spec: FieldSpec, raw_value: object, expected: str) -> ValidationError:
    return ValidationError(
        "TYPE_MISMATCH",
        f"field '{field_spec.name}' expected {expected}, got {type(raw_value).__name__}",
    )


def _out_of_range(field_spec: FieldSpec, value: float) -> ValidationError:
    return ValidationError(
        "OUT_OF_RANGE",
        f"field '{field_spec.name}' value {value} outside "
        f"[{field_spec.minimum}, {field_spec.maximum}]",
    )
