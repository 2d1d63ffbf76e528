"""Sanctions registry CLI entry points.
This module exposes build, freshness, distribution and rollout commands.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
import json
from pathlib import Path
from typing import Any, Sequence

from cli.rollout_command import add_rollout_commands, run_rollout_command
from core.config import RegistryConfig
from core.constants import DEFAULT_FRESHNESS_HOURS, DEFAULT_PRUNE_KEEP
from core.errors import SanctionsError
from core.logging_config import get_logger
from ingest.pipeline import PipelineOptions
from rollout.registry_sdk import SanctionsClient
from trees.leaf_encoding import SANCTIONS_CATEGORIES

_LOGGER = get_logger(__name__)
_ROLLOUT_COMMANDS = ("propose", "cosign", "execute", "resume", "promote", "abort", "proposals")


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="sanctions", description="Sanctions registry CLI")
    parser.add_argument("--data-root", help="Override SANCTIONS_DATA_ROOT for this command")
    parser.add_argument("--profile", help="Override SANCTIONS_PROFILE rollout profile path")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_run_command(subparsers)
    _add_freshness_command(subparsers)
    _add_prestage_command(subparsers)
    _add_prune_command(subparsers)
    _add_witness_command(subparsers)
    add_rollout_commands(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the sanctions registry CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        client = _build_client(args.data_root, args.profile)
        if args.command == "run":
            return _run_run_command(client, args)
        if args.command == "freshness":
            return _run_freshness_command(client, args)
        if args.command == "prestage":
            return _run_prestage_command(client, args)
        if args.command == "prune":
            return _run_prune_command(client, args)
        if args.command == "witness":
            return _run_witness_command(client, args)
        if args.command in _ROLLOUT_COMMANDS:
            return run_rollout_command(client, args)
    except SanctionsError as error:
        _LOGGER.error(
            "command_failed",
            command=args.command,
            error_kind=error.error_kind,
            error=str(error),
        )
        print_json(
            {
                "success": False,
                "stage": args.command,
                "error_kind": error.error_kind,
                "error": str(error),
            }
        )
        return 1
    parser.error(f"Unsupported command: {args.command}")
    return 2


def print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _build_client(data_root: str | None, profile: str | None) -> SanctionsClient:
    """Build SDK client with optional data-root and profile overrides.

    Args:
        data_root: Optional override path.
        profile: Optional rollout profile path.

    Returns:
        Configured SDK client.
    """
    config = RegistryConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    if profile:
        config = replace(config, profile_path=Path(profile).expanduser().resolve())
    return SanctionsClient(config)


def _run_run_command(client: SanctionsClient, args: argparse.Namespace) -> int:
    """Handle run command.

    Pre-staging only follows a successful build, so a failed run never
    reaches serving locations.
    """
    options = PipelineOptions(
        skip_download=args.skip_download,
        output_dir=None if args.output_dir is None else Path(args.output_dir).expanduser().resolve(),
    )
    result = client.run(options)
    payload = result.to_payload()
    if result.success and args.prestage:
        manifest = client.prestage(result.output_dir)
        payload["bundle_id"] = manifest.bundle_id
    print_json(payload)
    return 0 if result.success else 1


def _run_freshness_command(client: SanctionsClient, args: argparse.Namespace) -> int:
    report = client.freshness(args.max_age_hours)
    print(f"latest_snapshot={report.latest_snapshot or '-'}")
    print(f"age_hours={'-' if report.age_hours is None else f'{report.age_hours:.2f}'}")
    print(f"refresh_recommended={str(report.refresh_recommended).lower()}")
    return 0


def _run_prestage_command(client: SanctionsClient, args: argparse.Namespace) -> int:
    output_dir = None if args.output_dir is None else Path(args.output_dir).expanduser().resolve()
    manifest = client.prestage(output_dir, tag=args.tag)
    print(f"bundle_id={manifest.bundle_id}")
    print(f"tag={manifest.tag}")
    print(f"files={len(manifest.files)}")
    return 0


def _run_prune_command(client: SanctionsClient, args: argparse.Namespace) -> int:
    deleted = client.prune(args.keep)
    for location_name, bundle_ids in deleted.items():
        print(f"{location_name}\t{len(bundle_ids)}\t{','.join(bundle_ids) or '-'}")
    return 0


def _run_witness_command(client: SanctionsClient, args: argparse.Namespace) -> int:
    tree_dir = None if args.tree_dir is None else Path(args.tree_dir).expanduser().resolve()
    witness = client.witness(
        args.category,
        fields=None if not args.field else tuple(args.field),
        entry_id=args.entry_id,
        tree_dir=tree_dir,
    )
    print_json(witness.to_payload())
    return 0


def _add_run_command(subparsers: Any) -> None:
    """Register run subcommand."""
    parser = subparsers.add_parser("run", help="Fetch, normalize and build category trees")
    parser.add_argument(
        "--skip-download",
        action="store_true",
        help="Rebuild from the latest stored snapshot instead of fetching",
    )
    parser.add_argument("--output-dir", help="Tree output directory")
    parser.add_argument(
        "--prestage",
        action="store_true",
        help="Stage the built bundle at every serving location after a successful run",
    )


def _add_freshness_command(subparsers: Any) -> None:
    """Register freshness subcommand."""
    parser = subparsers.add_parser("freshness", help="Report the latest snapshot age")
    parser.add_argument(
        "--max-age-hours",
        type=float,
        default=DEFAULT_FRESHNESS_HOURS,
        help="Age after which a refresh is recommended",
    )


def _add_prestage_command(subparsers: Any) -> None:
    """Register prestage subcommand."""
    parser = subparsers.add_parser("prestage", help="Stage built trees at serving locations")
    parser.add_argument("--output-dir", help="Build output directory to stage")
    parser.add_argument(
        "--tag",
        choices=("staged", "test"),
        default="staged",
        help="Bundle tag",
    )


def _add_prune_command(subparsers: Any) -> None:
    """Register prune subcommand."""
    parser = subparsers.add_parser("prune", help="Delete old inactive bundles")
    parser.add_argument(
        "--keep",
        type=int,
        default=DEFAULT_PRUNE_KEEP,
        help="Inactive bundles to keep per location",
    )


def _add_witness_command(subparsers: Any) -> None:
    """Register witness subcommand."""
    parser = subparsers.add_parser("witness", help="Print a membership witness for one identity")
    parser.add_argument("--category", required=True, choices=SANCTIONS_CATEGORIES)
    lookup = parser.add_mutually_exclusive_group(required=True)
    lookup.add_argument(
        "--field",
        action="append",
        help="Canonical identity field, repeated in category order",
    )
    lookup.add_argument("--entry-id", help="Normalized entry id from the last run")
    parser.add_argument("--tree-dir", help="Directory holding category tree files")
