"""Core constants used across Biotier modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".biotier")
TIERS_DIR_NAME = "tiers"
VERSIONS_DIR_NAME = "versions"
STAGING_DIR_NAME = ".staging"
BATCHES_DIR_NAME = "batches"
REJECTIONS_DIR_NAME = "rejections"
MANIFEST_FILE_NAME = "manifest.json"
RECORDS_FILE_NAME = "records.jsonl"
PARQUET_FILE_NAME = "records.parquet"
BATCH_STATE_FILE_NAME = "state.json"
VERSION_DIR_PREFIX = "v"
VERSION_DIR_WIDTH = 6
HASH_ALGORITHM = "sha256"
DEFAULT_RETRY_LIMIT = 3
DEFAULT_CONFLICT_RETRY_LIMIT = 5
DEFAULT_BACKOFF_SECONDS = 0.5
DEFAULT_WORKER_COUNT = 4
DEFAULT_REGION_GRID_DEGREES = 10
DEFAULT_READ_CHUNK_SIZE = 10_000
CONSERVATION_REGION = "iucn-status"
SUPPORTED_SOURCE_EXTENSIONS = (".jsonl", ".json", ".csv", ".parquet")
SUPPORTED_TIERS = ("bronze", "silver", "gold")
SUPPORTED_SOURCE_SYSTEMS = ("GBIF", "IUCN")
CONSERVATION_STATUSES = ("CR", "EN", "VU", "NT", "LC", "DD")
POPULATION_TRENDS = ("increasing", "decreasing", "stable", "unknown")
CRITICALLY_ENDANGERED_STATUS = "CR"
