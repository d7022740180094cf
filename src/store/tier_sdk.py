"""Python SDK for tier operations.

This module exposes high-level APIs for batch submission, status
queries, point-in-time tier reads, and rejection stream access.
"""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Iterable, Mapping

from core.config import BiotierConfig
from core.types import Batch, PartitionKey, PartitionManifest, Rejection, TierSnapshot
from ingest.batch_registry import BatchRegistry
from ingest.batch_types import BatchRecord, BatchResult, BatchStatus, build_batch
from ingest.input_reader import read_source_records
from ingest.pipeline import PipelineCoordinator
from store.rejection_store import RejectionStore
from store.tier_store import TierStore, tier_name


class BiotierClient:
    """Primary SDK entry point for ingestion and tier reads."""

    def __init__(self, config: BiotierConfig | None = None) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration, from env when omitted.
        """
        self._config = config or BiotierConfig.from_env()
        self._store = TierStore(self._config)
        self._registry = BatchRegistry(self._config.data_root)
        self._rejections = RejectionStore(self._config.data_root)
        self._coordinator = PipelineCoordinator(
            self._config,
            store=self._store,
            registry=self._registry,
            rejection_store=self._rejections,
        )

    @property
    def config(self) -> BiotierConfig:
        return self._config

    def submit_batch(self, batch: Batch) -> BatchResult:
        """Process a batch synchronously to a terminal state.

        Args:
            batch: Batch to process.

        Returns:
            Terminal batch result.

        Raises:
            BiotierIngestError: If the batch id is DEAD.
        """
        return self._coordinator.process(batch)

    def submit_records(
        self,
        batch_id: str,
        source_system: str,
        records: Iterable[Mapping[str, object]],
        ingested_at: datetime | None = None,
    ) -> BatchResult:
        """Build a batch from raw records and process it."""
        return self.submit_batch(build_batch(batch_id, source_system, records, ingested_at))

    def submit_source(self, source_uri: str, batch_id: str, source_system: str) -> BatchResult:
        """Read a local or S3 source into one batch and process it.

        Args:
            source_uri: Local file, directory, or ``s3://`` prefix.
            batch_id: Batch identifier.
            source_system: Source tag selecting the schema.

        Returns:
            Terminal batch result.

        Raises:
            BiotierIngestError: If the source cannot be read.
        """
        records = read_source_records(source_uri, self._config)
        return self.submit_batch(build_batch(batch_id, source_system, records))

    def submit_async(self, batch: Batch) -> Future[BatchResult]:
        """Queue a batch on the worker pool."""
        return self._coordinator.submit(batch)

    def run_batches(self, batches: Iterable[Batch]) -> list[BatchResult]:
        return self._coordinator.run_batches(batches)

    def cancel(self, batch_id: str) -> BatchStatus:
        return self._coordinator.cancel(batch_id)

    def get_batch_status(self, batch_id: str) -> BatchStatus:
        """Return state, failed stage, reason, and attempts of a batch."""
        return self._coordinator.get_batch_status(batch_id)

    def get_batch(self, batch_id: str) -> BatchRecord:
        """Load the full lifecycle record of a batch, including its events."""
        return self._registry.load(batch_id)

    def list_batches(self) -> tuple[str, ...]:
        return self._registry.list_batches()

    def read(
        self,
        tier: str,
        partition: PartitionKey,
        as_of_version: int | None = None,
    ) -> TierSnapshot:
        """Read a partition at a version, latest when omitted.

        Raises:
            BiotierStoreError: If the tier, partition, or version is unknown.
        """
        return self._store.read(tier_name(tier), partition, as_of_version)

    def list_versions(self, tier: str, partition: PartitionKey) -> list[PartitionManifest]:
        return self._store.list_versions(tier_name(tier), partition)

    def list_partitions(self, tier: str, region: str | None = None) -> list[PartitionKey]:
        return self._store.list_partitions(tier_name(tier), region)

    def rejections(self, batch_id: str) -> list[Rejection]:
        """Load the persisted rejection stream of a batch."""
        self._registry.load(batch_id)
        return self._rejections.load(batch_id)

    def with_data_root(self, data_root: str) -> BiotierClient:
        """Clone the client with a different local data root.

        Args:
            data_root: New data root path.

        Returns:
            New SDK client instance.
        """
        resolved_root = Path(data_root).expanduser().resolve()
        return BiotierClient(replace(self._config, data_root=resolved_root))

    def close(self) -> None:
        self._coordinator.shutdown()
