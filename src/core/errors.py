"""Biotier exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type so the pipeline coordinator
can decide between quarantine, retry, and dead-lettering.
"""

from __future__ import annotations


class BiotierError(Exception):
    """Base exception for all Biotier failures."""


class FatalConfigError(BiotierError):
    """Raised for invalid runtime configuration or schema definitions.

    Batches failing with this error are marked dead without retry.
    """


class ValidationError(BiotierError):
    """Raised for one record violating a schema or cleansing contract.

    Record-level only: the record is quarantined and the batch continues.
    """

    def __init__(self, reason_code: str, detail: str) -> None:
        super().__init__(f"{reason_code}: {detail}")
        self.reason_code = reason_code
        self.detail = detail


class ConflictError(BiotierError):
    """Raised when a partition write observes a stale prior version."""

    def __init__(self, message: str, current_version: int) -> None:
        super().__init__(message)
        self.current_version = current_version


class TransientIOError(BiotierError):
    """Raised when tier storage is temporarily unavailable."""


class BiotierStoreError(BiotierError):
    """Raised for corrupt or missing tier metadata."""


class BiotierIngestError(BiotierError):
    """Raised for source parsing and batch submission failures."""


class BiotierDependencyError(BiotierError):
    """Raised when an optional runtime dependency is missing."""


class BatchCancellationError(BiotierError):
    """Raised when a batch cannot be cancelled or was cancelled mid-run."""
