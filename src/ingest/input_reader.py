"""Source record readers for batch submission.

This module loads raw occurrence and status records from local paths or
S3 prefixes. Records are yielded lazily, file by file and chunk by chunk,
and are left untyped so schema validation can classify every row.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
import io
import json
from pathlib import Path
from typing import Any, Iterable, Iterator, TextIO

import pyarrow as pa
import pyarrow.parquet as pq

from core.config import BiotierConfig
from core.constants import DEFAULT_READ_CHUNK_SIZE, SUPPORTED_SOURCE_EXTENSIONS
from core.errors import BiotierDependencyError, BiotierIngestError


@dataclass(frozen=True)
class S3Location:
    """Parsed ``s3://bucket/prefix`` location."""

    bucket: str
    prefix: str


def read_source_records(source_uri: str, config: BiotierConfig) -> Iterator[object]:
    """Stream raw records from local files or S3.

    Args:
        source_uri: Local file, local directory, or ``s3://`` prefix.
        config: Runtime configuration for S3 session defaults.

    Returns:
        Lazy iterator over raw records in source order.

    Raises:
        BiotierIngestError: If the source is missing, empty, or unparseable.
    """
    if source_uri.startswith("s3://"):
        return _read_s3_records(source_uri, config)
    source_path = Path(source_uri).expanduser()
    return _read_local_records(source_path, _local_files(source_path))


def iter_record_chunks(
    records: Iterable[object],
    chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
) -> Iterator[list[object]]:
    """Group a record stream into lists of at most ``chunk_size`` records."""
    if chunk_size < 1:
        raise BiotierIngestError(f"Invalid chunk size {chunk_size}: expected >= 1.")
    chunk: list[object] = []
    for record in records:
        chunk.append(record)
        if len(chunk) >= chunk_size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def parse_s3_uri(uri: str) -> S3Location:
    """Parse and validate an S3 prefix URI.

    Raises:
        BiotierIngestError: If bucket or prefix is missing.
    """
    bucket, _, prefix = uri.removeprefix("s3://").partition("/")
    if not bucket or not prefix:
        raise BiotierIngestError(
            f"Invalid S3 URI '{uri}': expected s3://bucket/prefix. "
            "Provide both bucket and prefix."
        )
    return S3Location(bucket=bucket, prefix=prefix)


def _local_files(source_path: Path) -> list[Path]:
    """Resolve the ordered list of readable files under a local source."""
    if not source_path.exists():
        raise BiotierIngestError(
            f"Failed to read source at {source_path}: path does not exist. "
            "Provide an existing file or directory."
        )
    if source_path.is_file():
        return [source_path]
    files = [
        file_path
        for file_path in sorted(source_path.rglob("*"))
        if file_path.is_file() and _is_supported(file_path.name)
    ]
    if not files:
        raise BiotierIngestError(
            f"No readable record files found under {source_path}. "
            f"Supported extensions: {', '.join(SUPPORTED_SOURCE_EXTENSIONS)}."
        )
    return files


def _read_local_records(source_path: Path, files: list[Path]) -> Iterator[object]:
    for file_path in files:
        suffix = file_path.suffix.lower()
        try:
            if suffix == ".parquet":
                yield from _parquet_rows(file_path, str(file_path))
                continue
            with file_path.open("r", encoding="utf-8", newline="") as handle:
                yield from _text_rows(handle, suffix, str(file_path))
        except OSError as error:
            raise BiotierIngestError(
                f"Failed to read source file {file_path}: {error}. "
                f"Check that {source_path} is readable."
            ) from error


def _text_rows(handle: TextIO, suffix: str, source_name: str) -> Iterator[object]:
    """Yield rows from a JSONL, JSON, or CSV text stream."""
    if suffix == ".csv":
        yield from csv.DictReader(handle)
        return
    if suffix == ".json":
        yield from _json_document_rows(handle.read(), source_name)
        return
    for line_number, line in enumerate(handle, 1):
        if not line.strip():
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError as error:
            raise BiotierIngestError(
                f"Failed to parse JSONL record at {source_name}:{line_number}: "
                f"{error.msg}. Fix the JSON syntax and resubmit the batch."
            ) from error


def _json_document_rows(text: str, source_name: str) -> list[object]:
    """Extract rows from a JSON array or a ``{"records": [...]}`` document."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        raise BiotierIngestError(
            f"Failed to parse JSON document {source_name}: {error.msg}."
        ) from error
    if isinstance(payload, dict) and isinstance(payload.get("records"), list):
        return list(payload["records"])
    if isinstance(payload, list):
        return payload
    raise BiotierIngestError(
        f"Invalid JSON document {source_name}: expected an array of records "
        "or an object with a 'records' array."
    )


def _parquet_rows(source: Path | io.BytesIO, source_name: str) -> Iterator[object]:
    try:
        parquet_file = pq.ParquetFile(source)
        for record_batch in parquet_file.iter_batches(batch_size=DEFAULT_READ_CHUNK_SIZE):
            yield from record_batch.to_pylist()
    except pa.ArrowInvalid as error:
        raise BiotierIngestError(
            f"Failed to read Parquet source {source_name}: {error}."
        ) from error


def _read_s3_records(source_uri: str, config: BiotierConfig) -> Iterator[object]:
    """Stream records from every supported object under an S3 prefix."""
    location = parse_s3_uri(source_uri)
    s3_client = _create_s3_client(config)
    object_keys = _list_s3_keys(s3_client, location)
    if not object_keys:
        raise BiotierIngestError(
            f"No readable record objects found for {source_uri}. "
            f"Upload {', '.join(SUPPORTED_SOURCE_EXTENSIONS)} files and resubmit."
        )
    return _download_s3_records(s3_client, location.bucket, object_keys)


def _create_s3_client(config: BiotierConfig) -> Any:
    """Create a boto3 S3 client.

    Raises:
        BiotierDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise BiotierDependencyError(
            "S3 support requires boto3, but it is not installed. "
            "Install boto3 to submit batches from s3:// sources."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")


def _list_s3_keys(s3_client: Any, location: S3Location) -> list[str]:
    paginator = s3_client.get_paginator("list_objects_v2")
    pages = paginator.paginate(Bucket=location.bucket, Prefix=location.prefix)
    keys: list[str] = []
    for page in pages:
        for obj in page.get("Contents", []):
            if _is_supported(obj["Key"]):
                keys.append(obj["Key"])
    return sorted(keys)


def _download_s3_records(
    s3_client: Any,
    bucket: str,
    object_keys: Iterable[str],
) -> Iterator[object]:
    for key in object_keys:
        body: bytes = s3_client.get_object(Bucket=bucket, Key=key)["Body"].read()
        source_name = f"s3://{bucket}/{key}"
        suffix = Path(key).suffix.lower()
        if suffix == ".parquet":
            yield from _parquet_rows(io.BytesIO(body), source_name)
            continue
        yield from _text_rows(io.StringIO(body.decode("utf-8")), suffix, source_name)


def _is_supported(name: str) -> bool:
    return Path(name).suffix.lower() in SUPPORTED_SOURCE_EXTENSIONS
