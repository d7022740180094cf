"""Public SDK surface for Biotier.

This module provides a stable import path for pipeline users.
It re-exports the primary client and typed models.
"""

from __future__ import annotations

from core.config import BiotierConfig
from core.types import (
    Batch,
    ConservationStatusRecord,
    OccurrenceRecord,
    PartitionKey,
    PartitionManifest,
    PartitionMetrics,
    Rejection,
    SpeciesAggregate,
    TierSnapshot,
)
from ingest.batch_types import BatchResult, BatchStatus, build_batch
from ingest.pipeline import PipelineCoordinator, process_batch
from store.tier_sdk import BiotierClient

__all__ = [
    "Batch",
    "BatchResult",
    "BatchStatus",
    "BiotierClient",
    "BiotierConfig",
    "ConservationStatusRecord",
    "OccurrenceRecord",
    "PartitionKey",
    "PartitionManifest",
    "PartitionMetrics",
    "PipelineCoordinator",
    "Rejection",
    "SpeciesAggregate",
    "TierSnapshot",
    "build_batch",
    "process_batch",
]
