"""Unit tests for CLI command handling."""

from __future__ import annotations

import json

import pytest

from cli.main import build_parser, main
from ingest.feed_ingestor import write_snapshot
from tests.fixture_paths import fixture_path
from tests.registry_fakes import BUILD_TIME


def _seed_snapshot(data_root) -> None:
    write_snapshot(
        fixture_path("sdn_sample.xml").read_bytes(),
        "https://primary.example/sdn.xml",
        data_root / "raw",
        BUILD_TIME,
    )


def test_cli_run_skip_download_prints_root_set(tmp_path, capsys) -> None:
    """A local rebuild should print a successful JSON payload with roots."""
    _seed_snapshot(tmp_path)

    exit_code = main(["--data-root", str(tmp_path), "run", "--skip-download"])
    payload = json.loads(capsys.readouterr().out)

    assert (
        exit_code == 0
        and payload["success"] is True
        and payload["entry_count"] == 6
        and len(payload["root_set"]["roots"]) == 7
    )


def test_cli_run_without_snapshot_reports_failed_stage(tmp_path, capsys) -> None:
    """Skipping download with nothing stored fails at the fetch stage."""
    exit_code = main(["--data-root", str(tmp_path), "run", "--skip-download"])
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 1 and payload["stage"] == "fetch" and payload["error_kind"] == "StoreError"


def test_cli_freshness_without_snapshot_recommends_refresh(tmp_path, capsys) -> None:
    """Freshness prints key-value lines."""
    exit_code = main(["--data-root", str(tmp_path), "freshness"])
    output = capsys.readouterr().out

    assert exit_code == 0 and "refresh_recommended=true" in output


def test_cli_witness_for_listed_entry_is_membership(tmp_path, capsys) -> None:
    """An entry from the last run should be a member of its category tree."""
    _seed_snapshot(tmp_path)
    main(["--data-root", str(tmp_path), "run", "--skip-download"])
    capsys.readouterr()

    exit_code = main(
        ["--data-root", str(tmp_path), "witness", "--category", "name_and_dob", "--entry-id", "1001"]
    )
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 0 and payload["membership"] is True


def test_cli_witness_for_unlisted_fields_is_non_membership(tmp_path, capsys) -> None:
    """Identity fields absent from the tree produce a non-membership witness."""
    _seed_snapshot(tmp_path)
    main(["--data-root", str(tmp_path), "run", "--skip-download"])
    capsys.readouterr()

    exit_code = main(
        [
            "--data-root",
            str(tmp_path),
            "witness",
            "--category",
            "aadhaar_name_and_yob",
            "--field",
            "JANE DOE",
            "--field",
            "1990",
        ]
    )
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 0 and payload["membership"] is False


def test_cli_errors_print_machine_readable_payload(tmp_path, capsys) -> None:
    """Domain errors should exit 1 with a JSON error payload."""
    exit_code = main(
        ["--data-root", str(tmp_path), "witness", "--category", "name_and_dob", "--entry-id", "1001"]
    )
    payload = json.loads(capsys.readouterr().out)

    assert (
        exit_code == 1
        and payload["success"] is False
        and payload["stage"] == "witness"
        and payload["error_kind"] == "StoreError"
    )


def test_cli_prestage_requires_profile(tmp_path, capsys) -> None:
    """Distribution commands need a rollout profile."""
    exit_code = main(["--data-root", str(tmp_path), "prestage"])
    payload = json.loads(capsys.readouterr().out)

    assert exit_code == 1 and payload["error_kind"] == "ConfigError"


def test_cli_witness_requires_one_lookup() -> None:
    """Witness needs either fields or an entry id."""
    with pytest.raises(SystemExit):
        build_parser().parse_args(["witness", "--category", "name_and_dob"])
