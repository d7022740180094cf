"""Runtime configuration model for Biotier.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_CONFLICT_RETRY_LIMIT,
    DEFAULT_DATA_ROOT,
    DEFAULT_REGION_GRID_DEGREES,
    DEFAULT_RETRY_LIMIT,
    DEFAULT_WORKER_COUNT,
)
from core.errors import FatalConfigError

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass(frozen=True)
class BiotierConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for tiers, batch state, and rejections.
        retry_limit: Failed attempts allowed before a batch is marked dead.
        conflict_retry_limit: Partition write retries after optimistic conflicts.
        backoff_seconds: Base delay for exponential retry backoff.
        worker_count: Number of batch worker threads.
        region_grid_degrees: Grid cell size used to derive occurrence regions.
        schema_file: Optional YAML schema definition overriding built-ins.
        land_bronze: Whether raw batches are persisted to the bronze tier.
        s3_region: Optional default AWS region for S3 batch sources.
        s3_profile: Optional AWS profile for boto3 session initialization.
    """

    data_root: Path
    retry_limit: int = DEFAULT_RETRY_LIMIT
    conflict_retry_limit: int = DEFAULT_CONFLICT_RETRY_LIMIT
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    worker_count: int = DEFAULT_WORKER_COUNT
    region_grid_degrees: int = DEFAULT_REGION_GRID_DEGREES
    schema_file: Path | None = None
    land_bronze: bool = True
    s3_region: str | None = None
    s3_profile: str | None = None

    @classmethod
    def from_env(cls) -> "BiotierConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            FatalConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("BIOTIER_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        schema_file_value = os.getenv("BIOTIER_SCHEMA_FILE")
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            retry_limit=_parse_int("BIOTIER_RETRY_LIMIT", DEFAULT_RETRY_LIMIT, minimum=0),
            conflict_retry_limit=_parse_int(
                "BIOTIER_CONFLICT_RETRY_LIMIT", DEFAULT_CONFLICT_RETRY_LIMIT, minimum=0
            ),
            backoff_seconds=_parse_backoff(),
            worker_count=_parse_int("BIOTIER_WORKERS", DEFAULT_WORKER_COUNT, minimum=1),
            region_grid_degrees=_parse_grid_degrees(),
            schema_file=Path(schema_file_value).expanduser().resolve()
            if schema_file_value
            else None,
            land_bronze=_parse_bool("BIOTIER_LAND_BRONZE", True),
            s3_region=os.getenv("BIOTIER_S3_REGION"),
            s3_profile=os.getenv("BIOTIER_S3_PROFILE"),
        )


def _parse_int(env_name: str, default_value: int, minimum: int) -> int:
    """Parse an integer environment value with a lower bound.

    Args:
        env_name: Environment variable name.
        default_value: Value used when the variable is unset.
        minimum: Smallest accepted value.

    Returns:
        Parsed integer.

    Raises:
        FatalConfigError: If value is not an integer or below minimum.
    """
    raw_value = os.getenv(env_name, str(default_value))
    try:
        parsed_value = int(raw_value)
    except ValueError as error:
        raise FatalConfigError(
            f"Invalid {env_name} value: expected integer, got '{raw_value}'. "
            f"Set {env_name} to a numeric value."
        ) from error
    if parsed_value < minimum:
        raise FatalConfigError(
            f"Invalid {env_name} value: expected >= {minimum}, got {parsed_value}."
        )
    return parsed_value


def _parse_backoff() -> float:
    raw_value = os.getenv("BIOTIER_BACKOFF_SECONDS", str(DEFAULT_BACKOFF_SECONDS))
    try:
        parsed_value = float(raw_value)
    except ValueError as error:
        raise FatalConfigError(
            "Invalid BIOTIER_BACKOFF_SECONDS value: "
            f"expected number, got '{raw_value}'. Set a non-negative number of seconds."
        ) from error
    if parsed_value < 0:
        raise FatalConfigError(
            f"Invalid BIOTIER_BACKOFF_SECONDS value: expected >= 0, got {parsed_value}."
        )
    return parsed_value


def _parse_grid_degrees() -> int:
    """Parse region grid size; it must tile the latitude range evenly."""
    grid_degrees = _parse_int(
        "BIOTIER_REGION_GRID_DEGREES", DEFAULT_REGION_GRID_DEGREES, minimum=1
    )
    if 180 % grid_degrees != 0:
        raise FatalConfigError(
            f"Invalid BIOTIER_REGION_GRID_DEGREES value {grid_degrees}: "
            "grid size must divide 180 evenly (e.g. 1, 5, 10, 30)."
        )
    return grid_degrees


def _parse_bool(env_name: str, default_value: bool) -> bool:
    raw_value = os.getenv(env_name)
    if raw_value is None:
        return default_value
    normalized = raw_value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise FatalConfigError(
        f"Invalid {env_name} value: expected boolean, got '{raw_value}'. "
        f"Use one of: {', '.join(_TRUE_VALUES + _FALSE_VALUES)}."
    )
