"""Unit tests for CLI command handling."""

from __future__ import annotations

import json

from cli.main import main
from tests.fixture_paths import fixture_path


def _submit(data_root: str, source: str, batch_id: str, source_system: str) -> int:
    return main(
        [
            "--data-root",
            data_root,
            "submit",
            str(fixture_path(source)),
            "--batch-id",
            batch_id,
            "--source-system",
            source_system,
        ]
    )


def test_cli_submit_prints_batch_summary(tmp_path, capsys) -> None:
    """CLI submit should print state, counts, and committed versions."""
    exit_code = _submit(str(tmp_path), "gbif/occurrences.jsonl", "cli-1", "gbif")
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0
    assert {
        "state=COMPLETE",
        "accepted=3",
        "rejected=2",
        "silver S10E030/2021 v1",
        "gold S10E030/2021 v1",
    } <= set(output)


def test_cli_status_reports_completed_batch(tmp_path, capsys) -> None:
    """CLI status should print the batch lifecycle state."""
    _submit(str(tmp_path), "gbif/occurrences.jsonl", "cli-1", "GBIF")
    capsys.readouterr()

    exit_code = main(["--data-root", str(tmp_path), "status", "cli-1"])
    output = capsys.readouterr().out.splitlines()

    assert exit_code == 0
    assert "state=COMPLETE" in output
    assert "attempts=1" in output


def test_cli_status_unknown_batch_fails(tmp_path, capsys) -> None:
    """Unknown batches should exit non-zero with an error on stderr."""
    exit_code = main(["--data-root", str(tmp_path), "status", "missing"])
    captured = capsys.readouterr()

    assert exit_code == 1
    assert captured.err.startswith("error=")


def test_cli_read_prints_gold_records_as_json_lines(tmp_path, capsys) -> None:
    """CLI read should print one JSON object per record."""
    _submit(str(tmp_path), "gbif/occurrences.jsonl", "cli-1", "GBIF")
    capsys.readouterr()

    exit_code = main(
        [
            "--data-root",
            str(tmp_path),
            "read",
            "--tier",
            "gold",
            "--region",
            "S10E030",
            "--year",
            "2021",
        ]
    )
    rows = [json.loads(line) for line in capsys.readouterr().out.splitlines()]

    assert exit_code == 0
    assert [row["species_key"] for row in rows] == [
        "diceros bicornis",
        "loxodonta africana",
        "panthera leo",
    ]


def test_cli_versions_and_partitions_list_silver(tmp_path, capsys) -> None:
    """CLI versions and partitions should describe committed silver state."""
    _submit(str(tmp_path), "gbif/occurrences.jsonl", "cli-1", "GBIF")
    capsys.readouterr()

    main(["--data-root", str(tmp_path), "partitions", "--tier", "silver"])
    partitions = capsys.readouterr().out.splitlines()
    main(
        [
            "--data-root",
            str(tmp_path),
            "versions",
            "--tier",
            "silver",
            "--region",
            "S10E030",
            "--year",
            "2021",
        ]
    )
    versions = capsys.readouterr().out.splitlines()
    fields = versions[0].split("\t")

    assert partitions == ["S10E030/2021"]
    assert fields[:3] == ["v1", "replace", "3"]
    assert fields[4] == "cli-1"


def test_cli_rejections_prints_quarantined_rows(tmp_path, capsys) -> None:
    """CLI rejections should print the batch's rejection stream."""
    _submit(str(tmp_path), "gbif/occurrences.jsonl", "cli-1", "GBIF")
    capsys.readouterr()

    exit_code = main(["--data-root", str(tmp_path), "rejections", "cli-1"])
    rows = [json.loads(line) for line in capsys.readouterr().out.splitlines()]

    assert exit_code == 0
    assert [row["reason_code"] for row in rows] == [
        "OUT_OF_RANGE",
        "EMPTY_SCIENTIFIC_NAME",
    ]


def test_cli_submit_missing_source_fails(tmp_path, capsys) -> None:
    """Unreadable sources should exit non-zero."""
    exit_code = _submit(str(tmp_path), "gbif/missing.jsonl", "cli-2", "GBIF")
    captured = capsys.readouterr()

    assert exit_code == 1
    assert "error=" in captured.err
