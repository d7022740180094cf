"""Versioned tier store with optimistic concurrency.

This module persists bronze, silver, and gold partitions as immutable,
monotonically numbered versions. A write names the version it read;
the commit is an atomic directory rename, so of two racing writers
exactly one wins and the other receives ``ConflictError``.

Layout::

    <data_root>/tiers/<tier>/<region>/<year>/
        manifest.json                current version and applied batch ids
        versions/v000001/            one immutable directory per version
            manifest.json
            records.jsonl
            records.parquet
"""

from __future__ import annotations

from datetime import datetime, timezone
import errno
import os
from pathlib import Path
import shutil
from typing import cast
from uuid import uuid4

from core.config import BiotierConfig
from core.constants import (
    MANIFEST_FILE_NAME,
    PARQUET_FILE_NAME,
    RECORDS_FILE_NAME,
    STAGING_DIR_NAME,
    SUPPORTED_TIERS,
    TIERS_DIR_NAME,
    VERSION_DIR_PREFIX,
    VERSION_DIR_WIDTH,
    VERSIONS_DIR_NAME,
)
from core.errors import BiotierStoreError, ConflictError, TransientIOError
from core.logging_config import get_logger
from core.types import (
    PartitionKey,
    PartitionManifest,
    TierName,
    TierRecord,
    TierSnapshot,
    TierWriteRequest,
)
from store.partition_io import read_json_file, write_json_file, write_parquet_mirror
from store.record_payload import (
    manifest_from_payload,
    manifest_to_payload,
    read_records_jsonl,
    write_records_jsonl,
)

_LOGGER = get_logger(__name__)


class TierStore:
    """Partitioned, versioned tier storage.

    This class is the only component that mutates tier state. Readers
    always see complete versions because a version becomes visible only
    through the final rename.
    """

    def __init__(self, config: BiotierConfig) -> None:
        """Initialize tier store from config.

        Args:
            config: Runtime configuration.
        """
        self._tiers_root = config.data_root / TIERS_DIR_NAME

    def write(self, request: TierWriteRequest) -> int:
        """Commit a new partition version.

        Re-writing a batch already applied to the partition is a no-op
        returning the version that applied it.

        Args:
            request: Write request naming the expected prior version.

        Returns:
            Committed (or previously committed) version number.

        Raises:
            ConflictError: If the partition moved past the expected version.
            TransientIOError: If storage fails mid-write.
        """
        partition_dir = self._partition_dir(request.tier, request.partition)
        latest = self._latest_manifest(partition_dir)
        current_version = latest.version if latest else 0
        if latest and request.batch_id in latest.applied_batch_ids:
            applied_version = self._applied_version(partition_dir, request.batch_id, latest)
            _LOGGER.info(
                "partition_write_skipped",
                tier=request.tier,
                partition=request.partition.label,
                batch_id=request.batch_id,
                version=applied_version,
            )
            return applied_version
        if request.expected_prior_version != current_version:
            raise _conflict(request, current_version)
        manifest = PartitionManifest(
            tier=request.tier,
            partition=request.partition,
            version=current_version + 1,
            created_at=datetime.now(timezone.utc),
            batch_id=request.batch_id,
            mode=request.mode,
            record_count=len(request.records),
            applied_batch_ids=(latest.applied_batch_ids if latest else ()) + (request.batch_id,),
            metrics=request.metrics,
        )
        staging_dir = self._stage_version(partition_dir, manifest, list(request.records))
        self._commit(partition_dir, staging_dir, request, manifest.version)
        self._refresh_partition_manifest(partition_dir)
        _LOGGER.info(
            "partition_committed",
            tier=request.tier,
            partition=request.partition.label,
            batch_id=request.batch_id,
            version=manifest.version,
            mode=manifest.mode,
            record_count=manifest.record_count,
        )
        return manifest.version

    def read(
        self,
        tier: TierName,
        partition: PartitionKey,
        as_of_version: int | None = None,
    ) -> TierSnapshot:
        """Read partition content at a version.

        Args:
            tier: Tier name.
            partition: Partition coordinates.
            as_of_version: Target version; latest when omitted.

        Returns:
            Manifest and ordered records at that version.

        Raises:
            BiotierStoreError: If the partition or version does not exist.
        """
        partition_dir = self._partition_dir(tier, partition)
        current_version = self._current_version(partition_dir)
        if current_version == 0:
            raise BiotierStoreError(
                f"No versions exist for {tier} partition {partition.label}. "
                "Submit a batch before reading the partition."
            )
        target_version = current_version if as_of_version is None else as_of_version
        if not 1 <= target_version <= current_version:
            raise BiotierStoreError(
                f"Version {target_version} not found for {tier} partition {partition.label}. "
                f"Valid versions are 1..{current_version}."
            )
        manifest = self._load_version_manifest(partition_dir, target_version)
        records = self._resolve_records(partition_dir, manifest)
        return TierSnapshot(manifest=manifest, records=records)

    def read_latest(self, tier: TierName, partition: PartitionKey) -> TierSnapshot | None:
        """Read the latest partition content, or None if never written."""
        if self.current_version(tier, partition) == 0:
            return None
        return self.read(tier, partition)

    def current_version(self, tier: TierName, partition: PartitionKey) -> int:
        """Return the latest committed version, 0 for an unwritten partition."""
        return self._current_version(self._partition_dir(tier, partition))

    def list_versions(self, tier: TierName, partition: PartitionKey) -> list[PartitionManifest]:
        """List committed version manifests in version order."""
        partition_dir = self._partition_dir(tier, partition)
        return [
            self._load_version_manifest(partition_dir, version)
            for version in self._version_numbers(partition_dir)
        ]

    def list_partitions(self, tier: TierName, region: str | None = None) -> list[PartitionKey]:
        """List partitions holding at least one committed version.

        Args:
            tier: Tier name.
            region: Optional region filter.

        Returns:
            Sorted partition keys.
        """
        tier_dir = self._tier_dir(tier)
        if not tier_dir.is_dir():
            return []
        partitions: list[PartitionKey] = []
        for region_dir in sorted(tier_dir.iterdir()):
            if not region_dir.is_dir() or (region and region_dir.name != region):
                continue
            for year_dir in sorted(region_dir.iterdir()):
                if year_dir.is_dir() and _is_year(year_dir.name):
                    if self._version_numbers(year_dir):
                        partitions.append(PartitionKey(region_dir.name, int(year_dir.name)))
        return sorted(partitions)

    def _stage_version(
        self,
        partition_dir: Path,
        manifest: PartitionManifest,
        records: list[TierRecord],
    ) -> Path:
        """Write a complete version into a private staging directory."""
        staging_dir = partition_dir / STAGING_DIR_NAME / uuid4().hex
        try:
            (partition_dir / VERSIONS_DIR_NAME).mkdir(parents=True, exist_ok=True)
            staging_dir.mkdir(parents=True)
            write_records_jsonl(staging_dir / RECORDS_FILE_NAME, records)
        except OSError as error:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise TransientIOError(
                f"Failed to stage version {manifest.version} at {staging_dir}: {error}. "
                "Check write permissions and available disk space."
            ) from error
        try:
            write_parquet_mirror(staging_dir / PARQUET_FILE_NAME, records)
            write_json_file(staging_dir / MANIFEST_FILE_NAME, manifest_to_payload(manifest))
        except (TransientIOError, BiotierStoreError):
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise
        return staging_dir

    def _commit(
        self,
        partition_dir: Path,
        staging_dir: Path,
        request: TierWriteRequest,
        version: int,
    ) -> None:
        """Publish a staged version; the rename is the optimistic check."""
        version_dir = partition_dir / VERSIONS_DIR_NAME / _version_dir_name(version)
        try:
            os.rename(staging_dir, version_dir)
        except OSError as error:
            shutil.rmtree(staging_dir, ignore_errors=True)
            if version_dir.exists() or error.errno in (errno.EEXIST, errno.ENOTEMPTY):
                raise _conflict(request, self._current_version(partition_dir)) from error
            raise TransientIOError(
                f"Failed to commit version {version} at {version_dir}: {error}."
            ) from error

    def _refresh_partition_manifest(self, partition_dir: Path) -> None:
        """Mirror the latest version into the partition-level manifest.

        The versions directory stays authoritative; this file is rewritten
        after every commit for readers that only need the current pointer.
        Concurrent committers may refresh out of order, so each one keeps
        rewriting until the file names the newest committed version and
        never replaces a newer pointer with an older one.
        """
        manifest_path = partition_dir / MANIFEST_FILE_NAME
        while True:
            latest = self._latest_manifest(partition_dir)
            if latest is None:
                return
            if _recorded_version(manifest_path) < latest.version:
                payload = {
                    "current_version": latest.version,
                    "applied_batch_ids": list(latest.applied_batch_ids),
                    "updated_at": latest.created_at.isoformat(),
                }
                write_json_file(manifest_path, payload)
            if self._current_version(partition_dir) == latest.version:
                return

    def _resolve_records(
        self,
        partition_dir: Path,
        manifest: PartitionManifest,
    ) -> tuple[TierRecord, ...]:
        """Concatenate append segments back to the nearest full snapshot."""
        segments: list[list[TierRecord]] = []
        version_manifest = manifest
        while True:
            segments.append(self._load_segment(partition_dir, version_manifest.version))
            if version_manifest.mode == "replace" or version_manifest.version == 1:
                break
            version_manifest = self._load_version_manifest(
                partition_dir, version_manifest.version - 1
            )
        records: list[TierRecord] = []
        for segment in reversed(segments):
            records.extend(segment)
        return tuple(records)

    def _load_segment(self, partition_dir: Path, version: int) -> list[TierRecord]:
        records_path = self._version_dir(partition_dir, version) / RECORDS_FILE_NAME
        try:
            return read_records_jsonl(records_path)
        except FileNotFoundError as error:
            raise BiotierStoreError(
                f"Missing {RECORDS_FILE_NAME} for version {version} at {records_path}."
            ) from error
        except ValueError as error:
            raise BiotierStoreError(
                f"Failed to parse partition records at {records_path}: {error}."
            ) from error
        except OSError as error:
            raise TransientIOError(f"Failed to read {records_path}: {error}.") from error

    def _latest_manifest(self, partition_dir: Path) -> PartitionManifest | None:
        current_version = self._current_version(partition_dir)
        if current_version == 0:
            return None
        return self._load_version_manifest(partition_dir, current_version)

    def _applied_version(
        self,
        partition_dir: Path,
        batch_id: str,
        latest: PartitionManifest,
    ) -> int:
        """Find the version whose write applied a batch."""
        for version in range(latest.version, 0, -1):
            manifest = self._load_version_manifest(partition_dir, version)
            if manifest.batch_id == batch_id:
                return version
        return latest.version

    def _load_version_manifest(self, partition_dir: Path, version: int) -> PartitionManifest:
        manifest_path = self._version_dir(partition_dir, version) / MANIFEST_FILE_NAME
        payload = read_json_file(manifest_path)
        try:
            return manifest_from_payload(payload)
        except ValueError as error:
            raise BiotierStoreError(
                f"Invalid version manifest at {manifest_path}: {error}."
            ) from error

    def _current_version(self, partition_dir: Path) -> int:
        version_numbers = self._version_numbers(partition_dir)
        return version_numbers[-1] if version_numbers else 0

    def _version_numbers(self, partition_dir: Path) -> list[int]:
        versions_dir = partition_dir / VERSIONS_DIR_NAME
        if not versions_dir.exists():
            return []
        try:
            names = [path.name for path in versions_dir.iterdir() if path.is_dir()]
        except OSError as error:
            raise TransientIOError(
                f"Failed to list versions at {versions_dir}: {error}."
            ) from error
        return sorted(
            int(name[len(VERSION_DIR_PREFIX) :])
            for name in names
            if name.startswith(VERSION_DIR_PREFIX) and name[len(VERSION_DIR_PREFIX) :].isdigit()
        )

    def _version_dir(self, partition_dir: Path, version: int) -> Path:
        return partition_dir / VERSIONS_DIR_NAME / _version_dir_name(version)

    def _tier_dir(self, tier: str) -> Path:
        if tier not in SUPPORTED_TIERS:
            raise BiotierStoreError(
                f"Unsupported tier '{tier}'. Choose one of: {', '.join(SUPPORTED_TIERS)}."
            )
        return self._tiers_root / tier

    def _partition_dir(self, tier: str, partition: PartitionKey) -> Path:
        """Return the partition path; only the write path creates it."""
        region = partition.region
        if not region or region.startswith(".") or "/" in region or "\\" in region:
            raise BiotierStoreError(
                f"Invalid partition region {region!r}: expected a plain name without separators."
            )
        return self._tier_dir(tier) / region / str(partition.year)


def _version_dir_name(version: int) -> str:
    return f"{VERSION_DIR_PREFIX}{version:0{VERSION_DIR_WIDTH}d}"


def _is_year(name: str) -> bool:
    return name.lstrip("-").isdigit()


def _recorded_version(manifest_path: Path) -> int:
    """Return the version named by a partition-level manifest, 0 if absent."""
    if not manifest_path.exists():
        return 0
    recorded = read_json_file(manifest_path).get("current_version", 0)
    return recorded if isinstance(recorded, int) else 0


def _conflict(request: TierWriteRequest, current_version: int) -> ConflictError:
    _LOGGER.warning(
        "partition_conflict",
        tier=request.tier,
        partition=request.partition.label,
        batch_id=request.batch_id,
        expected_version=request.expected_prior_version,
        current_version=current_version,
    )
    return ConflictError(
        f"Stale write to {request.tier} partition {request.partition.label}: expected prior "
        f"version {request.expected_prior_version}, found {current_version}. "
        "Re-read the partition and retry.",
        current_version=current_version,
    )


def tier_name(raw_tier: str) -> TierName:
    """Validate a tier name from user input."""
    if raw_tier not in SUPPORTED_TIERS:
        raise BiotierStoreError(
            f"Unsupported tier '{raw_tier}'. Choose one of: {', '.join(SUPPORTED_TIERS)}."
        )
    return cast(TierName, raw_tier)
