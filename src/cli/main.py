"""Biotier CLI entry points.
This module exposes batch submission, status, and tier read commands.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
import json
from pathlib import Path
import sys
from typing import Any, Sequence

from core.config import BiotierConfig
from core.constants import SUPPORTED_SOURCE_SYSTEMS, SUPPORTED_TIERS
from core.errors import BiotierError
from core.types import PartitionKey
from store.record_payload import tier_record_to_payload
from store.tier_sdk import BiotierClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="biotier", description="Biotier medallion pipeline CLI")
    parser.add_argument("--data-root", help="Override BIOTIER_DATA_ROOT for this command")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_submit_command(subparsers)
    _add_status_command(subparsers)
    _add_batches_command(subparsers)
    _add_read_command(subparsers)
    _add_versions_command(subparsers)
    _add_partitions_command(subparsers)
    _add_rejections_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Biotier CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code; 1 when the batch did not complete or a command failed.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        client = _build_client(args.data_root)
        return _dispatch(parser, client, args)
    except BiotierError as error:
        print(f"error={error}", file=sys.stderr)
        return 1


def _dispatch(
    parser: argparse.ArgumentParser,
    client: BiotierClient,
    args: argparse.Namespace,
) -> int:
    if args.command == "submit":
        return _run_submit_command(client, args)
    if args.command == "status":
        return _run_status_command(client, args)
    if args.command == "batches":
        return _run_batches_command(client)
    if args.command == "read":
        return _run_read_command(client, args)
    if args.command == "versions":
        return _run_versions_command(client, args)
    if args.command == "partitions":
        return _run_partitions_command(client, args)
    if args.command == "rejections":
        return _run_rejections_command(client, args)
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(data_root: str | None) -> BiotierClient:
    """Build SDK client with optional data-root override."""
    config = BiotierConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    return BiotierClient(config)


def _run_submit_command(client: BiotierClient, args: argparse.Namespace) -> int:
    result = client.submit_source(args.source, args.batch_id, args.source_system)
    print(f"batch_id={result.batch_id}")
    print(f"state={result.state}")
    print(f"attempts={result.attempts}")
    print(f"accepted={result.accepted_count}")
    print(f"rejected={len(result.rejections)}")
    if result.bronze_version is not None:
        print(f"bronze_version={result.bronze_version}")
    for label, version in sorted(result.silver_versions.items()):
        print(f"silver {label} v{version}")
    for label, version in sorted(result.gold_versions.items()):
        print(f"gold {label} v{version}")
    if result.reason:
        print(f"reason={result.reason}")
    return 0 if result.state == "COMPLETE" else 1


def _run_status_command(client: BiotierClient, args: argparse.Namespace) -> int:
    status = client.get_batch_status(args.batch_id)
    print(f"batch_id={status.batch_id}")
    print(f"state={status.state}")
    print(f"stage={status.stage or '-'}")
    print(f"reason={status.reason or '-'}")
    print(f"attempts={status.attempts}")
    return 1 if status.state == "DEAD" else 0


def _run_batches_command(client: BiotierClient) -> int:
    for batch_id in client.list_batches():
        status = client.get_batch_status(batch_id)
        print(f"{batch_id}\t{status.state}\t{status.attempts}")
    return 0


def _run_read_command(client: BiotierClient, args: argparse.Namespace) -> int:
    snapshot = client.read(args.tier, PartitionKey(args.region, args.year), args.version)
    manifest = snapshot.manifest
    print(
        f"# {manifest.tier} {manifest.partition.label} v{manifest.version} "
        f"records={len(snapshot.records)}",
        file=sys.stderr,
    )
    records = snapshot.records if args.limit is None else snapshot.records[: args.limit]
    for record in records:
        print(json.dumps(tier_record_to_payload(record), sort_keys=True))
    return 0


def _run_versions_command(client: BiotierClient, args: argparse.Namespace) -> int:
    for manifest in client.list_versions(args.tier, PartitionKey(args.region, args.year)):
        print(
            f"v{manifest.version}\t"
            f"{manifest.mode}\t"
            f"{manifest.record_count}\t"
            f"{manifest.created_at.isoformat()}\t"
            f"{manifest.batch_id}"
        )
    return 0


def _run_partitions_command(client: BiotierClient, args: argparse.Namespace) -> int:
    for partition in client.list_partitions(args.tier, args.region):
        print(partition.label)
    return 0


def _run_rejections_command(client: BiotierClient, args: argparse.Namespace) -> int:
    for rejection in client.rejections(args.batch_id):
        payload = {
            "original_record": dict(rejection.original_record),
            "reason_code": rejection.reason_code,
            "stage": rejection.stage,
            "detail": rejection.detail,
        }
        print(json.dumps(payload, sort_keys=True, default=str))
    return 0


def _add_submit_command(subparsers: Any) -> None:
    """Register submit subcommand."""
    parser = subparsers.add_parser("submit", help="Submit a local path or S3 prefix as one batch")
    parser.add_argument("source", help="Source file, directory, or s3://bucket/prefix")
    parser.add_argument("--batch-id", required=True, help="Unique batch identifier")
    parser.add_argument(
        "--source-system",
        required=True,
        type=str.upper,
        choices=SUPPORTED_SOURCE_SYSTEMS,
        help="Source system selecting the record schema",
    )


def _add_status_command(subparsers: Any) -> None:
    """Register status subcommand."""
    parser = subparsers.add_parser("status", help="Show batch lifecycle status")
    parser.add_argument("batch_id", help="Batch identifier")


def _add_batches_command(subparsers: Any) -> None:
    subparsers.add_parser("batches", help="List submitted batches")


def _add_partition_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tier", required=True, choices=SUPPORTED_TIERS, help="Tier name")
    parser.add_argument("--region", required=True, help="Partition region label")
    parser.add_argument("--year", required=True, type=int, help="Partition year")


def _add_read_command(subparsers: Any) -> None:
    """Register read subcommand."""
    parser = subparsers.add_parser("read", help="Print partition records as JSON lines")
    _add_partition_arguments(parser)
    parser.add_argument("--version", type=int, help="Point-in-time version, latest when omitted")
    parser.add_argument("--limit", type=int, help="Maximum records to print")


def _add_versions_command(subparsers: Any) -> None:
    """Register versions subcommand."""
    parser = subparsers.add_parser("versions", help="List committed partition versions")
    _add_partition_arguments(parser)


def _add_partitions_command(subparsers: Any) -> None:
    """Register partitions subcommand."""
    parser = subparsers.add_parser("partitions", help="List partitions of a tier")
    parser.add_argument("--tier", required=True, choices=SUPPORTED_TIERS, help="Tier name")
    parser.add_argument("--region", help="Optional region filter")


def _add_rejections_command(subparsers: Any) -> None:
    """Register rejections subcommand."""
    parser = subparsers.add_parser("rejections", help="Print a batch's rejection stream")
    parser.add_argument("batch_id", help="Batch identifier")
