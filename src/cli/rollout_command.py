"""Rollout command wiring for the sanctions CLI."""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

from eth_account.signers.local import LocalAccount

from core.errors import SanctionsConfigError
from rollout.proposal_types import RolloutProposal
from rollout.registry_sdk import SanctionsClient
from rollout.signer import EthAccountSigner, load_signer_from_env
from trees.tree_builder import load_root_set

DEFAULT_SIGNER_KEY_ENV = "SANCTIONS_SIGNER_KEY"
DEFAULT_EXECUTOR_KEY_ENV = "SANCTIONS_EXECUTOR_KEY"


def add_rollout_commands(subparsers: Any) -> None:
    """Register proposal lifecycle subcommands."""
    propose = subparsers.add_parser("propose", help="Propose the last built root set")
    propose.add_argument("--output-dir", help="Build output directory holding roots.json")
    propose.add_argument("--bundle-id", help="Pre-staged bundle promoted on confirmation")
    _add_key_env_argument(propose)

    cosign = subparsers.add_parser("cosign", help="Add an owner signature to a proposal")
    cosign.add_argument("proposal_id", help="Proposal identifier")
    _add_key_env_argument(cosign)

    execute = subparsers.add_parser("execute", help="Execute a co-signed proposal and promote")
    execute.add_argument("proposal_id", help="Proposal identifier")
    _add_executor_key_env_argument(execute)

    resume = subparsers.add_parser("resume", help="Keep waiting on an executing proposal")
    resume.add_argument("proposal_id", help="Proposal identifier")
    _add_executor_key_env_argument(resume)

    promote = subparsers.add_parser("promote", help="Retry promotion after confirmation")
    promote.add_argument("proposal_id", help="Proposal identifier")

    abort = subparsers.add_parser("abort", help="Abort an unconfirmed proposal")
    abort.add_argument("proposal_id", help="Proposal identifier")
    abort.add_argument("--reason", required=True, help="Reason recorded in proposal history")

    subparsers.add_parser("proposals", help="List rollout proposals")


def run_rollout_command(client: SanctionsClient, args: argparse.Namespace) -> int:
    """Execute one proposal lifecycle command and print its outcome."""
    if args.command == "proposals":
        for proposal in client.proposals():
            print(
                f"{proposal.proposal_id}\t"
                f"{proposal.state}\t"
                f"{len(proposal.signatures)}/{proposal.threshold}\t"
                f"{proposal.tx_hash or '-'}\t"
                f"{proposal.created_at}"
            )
        return 0
    if args.command == "propose":
        output_dir = (
            client.output_dir if args.output_dir is None else Path(args.output_dir).expanduser().resolve()
        )
        proposal = client.coordinator().propose(
            load_root_set(output_dir),
            _signer(args.key_env),
            bundle_id=args.bundle_id,
        )
    elif args.command == "cosign":
        proposal = client.coordinator().cosign(args.proposal_id, _signer(args.key_env))
    elif args.command == "execute":
        proposal = client.coordinator(_executor(args.executor_key_env)).execute(args.proposal_id)
    elif args.command == "resume":
        proposal = client.coordinator(_executor(args.executor_key_env)).resume(args.proposal_id)
    elif args.command == "promote":
        proposal = client.coordinator().promote(args.proposal_id)
    elif args.command == "abort":
        proposal = client.coordinator().abort(args.proposal_id, args.reason)
    else:
        raise SanctionsConfigError(f"Unsupported rollout command: {args.command}")
    _print_proposal(proposal)
    return 0


def _print_proposal(proposal: RolloutProposal) -> None:
    print(f"proposal_id={proposal.proposal_id}")
    print(f"state={proposal.state}")
    print(f"signatures={len(proposal.signatures)}/{proposal.threshold}")
    print(f"bundle_id={proposal.bundle_id or '-'}")
    print(f"tx_hash={proposal.tx_hash or '-'}")


def _signer(key_env: str) -> EthAccountSigner:
    return load_signer_from_env(key_env)


def _executor(key_env: str) -> LocalAccount | None:
    if not os.getenv(key_env):
        return None
    return load_signer_from_env(key_env).account


def _add_key_env_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--key-env",
        default=DEFAULT_SIGNER_KEY_ENV,
        help="Environment variable holding the owner's private key",
    )


def _add_executor_key_env_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--executor-key-env",
        default=DEFAULT_EXECUTOR_KEY_ENV,
        help="Environment variable holding the transaction sender's private key",
    )
