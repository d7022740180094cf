"""Rejection stream persistence.

This module stores quarantined records per batch as JSONL so external
quality monitoring can consume ``(original_record, reason_code, stage)``
rows. Each attempt replaces the previous attempt's rows.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, cast
from uuid import uuid4

from core.constants import REJECTIONS_DIR_NAME
from core.errors import BiotierStoreError, TransientIOError
from core.types import ReasonCode, Rejection, RejectionStage


class RejectionStore:
    """Filesystem-backed rejection stream."""

    def __init__(self, data_root: Path) -> None:
        self._rejections_dir = data_root / REJECTIONS_DIR_NAME

    def save(self, batch_id: str, rejections: list[Rejection]) -> Path:
        """Atomically replace the persisted rejections of a batch.

        Args:
            batch_id: Batch identifier.
            rejections: Rejections from the latest attempt.

        Returns:
            Path of the written JSONL file.

        Raises:
            TransientIOError: If the file cannot be written.
        """
        rejections_path = self._rejections_path(batch_id)
        lines = [json.dumps(_rejection_to_payload(item), sort_keys=True) for item in rejections]
        temp_path = rejections_path.with_name(f".{rejections_path.name}.{uuid4().hex}.tmp")
        try:
            self._rejections_dir.mkdir(parents=True, exist_ok=True)
            temp_path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
            os.replace(temp_path, rejections_path)
        except OSError as error:
            temp_path.unlink(missing_ok=True)
            raise TransientIOError(
                f"Failed to write rejection stream at {rejections_path}: {error}."
            ) from error
        return rejections_path

    def load(self, batch_id: str) -> list[Rejection]:
        """Load persisted rejections of a batch, empty if none were saved."""
        rejections_path = self._rejections_path(batch_id)
        if not rejections_path.exists():
            return []
        rejections: list[Rejection] = []
        for line_number, line in enumerate(
            rejections_path.read_text(encoding="utf-8").splitlines(), 1
        ):
            if not line.strip():
                continue
            rejections.append(_parse_rejection_line(rejections_path, line, line_number))
        return rejections

    def _rejections_path(self, batch_id: str) -> Path:
        return self._rejections_dir / f"{batch_id}.jsonl"


def _rejection_to_payload(rejection: Rejection) -> dict[str, object]:
    return {
        "original_record": json.loads(json.dumps(dict(rejection.original_record), default=str)),
        "reason_code": rejection.reason_code,
        "stage": rejection.stage,
        "detail": rejection.detail,
    }


def _parse_rejection_line(rejections_path: Path, line: str, line_number: int) -> Rejection:
    try:
        payload: dict[str, Any] = json.loads(line)
        return Rejection(
            original_record=dict(payload["original_record"]),
            reason_code=cast(ReasonCode, str(payload["reason_code"])),
            stage=cast(RejectionStage, str(payload["stage"])),
            detail=str(payload.get("detail", "")),
        )
    except (json.JSONDecodeError, KeyError, TypeError) as error:
        raise BiotierStoreError(
            f"Invalid rejection row at {rejections_path}:{line_number}: {error}."
        ) from error
