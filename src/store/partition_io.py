"""Filesystem I/O helpers for tier partitions.

This module isolates JSON manifest IO and columnar mirrors so the tier
store stays focused on versioning and optimistic concurrency. Storage
failures surface as ``TransientIOError`` so the coordinator can retry.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from uuid import uuid4

import pyarrow as pa
import pyarrow.parquet as pq

from core.errors import BiotierStoreError, TransientIOError
from core.types import TierRecord
from store.record_payload import tier_record_to_payload


def read_json_file(payload_path: Path) -> dict[str, object]:
    """Read a JSON object from disk.

    Args:
        payload_path: JSON file path.

    Returns:
        Parsed JSON object.

    Raises:
        BiotierStoreError: If the file is missing or not a JSON object.
        TransientIOError: If the file cannot be read.
    """
    try:
        payload = json.loads(payload_path.read_text(encoding="utf-8"))
    except FileNotFoundError as error:
        raise BiotierStoreError(
            f"Missing tier metadata at {payload_path}. Partition may be incomplete."
        ) from error
    except json.JSONDecodeError as error:
        raise BiotierStoreError(f"Failed to parse JSON at {payload_path}: {error.msg}.") from error
    except OSError as error:
        raise TransientIOError(f"Failed to read {payload_path}: {error}.") from error
    if not isinstance(payload, dict):
        raise BiotierStoreError(f"Invalid JSON at {payload_path}: expected object.")
    return payload


def write_json_file(payload_path: Path, payload: object) -> None:
    """Atomically replace a JSON file.

    Args:
        payload_path: Destination path.
        payload: JSON-serializable payload.

    Raises:
        TransientIOError: If the write fails.
    """
    temp_path = payload_path.with_name(f".{payload_path.name}.{uuid4().hex}.tmp")
    try:
        temp_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        os.replace(temp_path, payload_path)
    except OSError as error:
        raise TransientIOError(
            f"Failed to write {payload_path}: {error}. "
            "Check write permissions and available disk space."
        ) from error


def write_parquet_mirror(parquet_path: Path, records: list[TierRecord]) -> None:
    """Write a Parquet copy of a version segment for analytics readers.

    Nested values are stored as JSON strings so every column stays scalar.
    Empty segments have no mirror.

    Args:
        parquet_path: Destination ``.parquet`` path.
        records: Segment records.

    Raises:
        BiotierStoreError: If the records cannot be converted to a table.
        TransientIOError: If the file cannot be written.
    """
    rows = [_flatten(tier_record_to_payload(record)) for record in records]
    if not rows:
        return
    try:
        table = pa.Table.from_pylist(rows)
    except (pa.ArrowInvalid, pa.ArrowTypeError) as error:
        raise BiotierStoreError(
            f"Failed to build Parquet mirror for {parquet_path}: {error}."
        ) from error
    try:
        pq.write_table(table, parquet_path)
    except OSError as error:
        raise TransientIOError(
            f"Failed to write Parquet mirror {parquet_path}: {error}."
        ) from error


def _flatten(payload: dict[str, object]) -> dict[str, object]:
    return {
        key: json.dumps(value, sort_keys=True) if isinstance(value, (dict, list)) else value
        for key, value in payload.items()
    }
