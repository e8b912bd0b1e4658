"""
Command-line interface for the mint pipeline.

Provides CLI commands for running and checking pipelines:
- simulate: Drive simulated activity and mint requests through a pipeline
- verify: Re-verify an exported ledger snapshot offline
- config: Print the effective configuration

Usage:
    mint-pipeline simulate [--requests N] [--export [PATH]]
    mint-pipeline verify PATH
    mint-pipeline config

Environment Variables:
    MINT_* variables override config/pipeline.ini (see mint_pipeline.config).
"""

import argparse
import logging
import sys
from itertools import cycle

from mint_pipeline.config import config, configure_logging, print_config_summary
from mint_pipeline.core.clock import SteppingClock
from mint_pipeline.errors import LedgerExportError, PipelineError

logger = logging.getLogger(__name__)


def cmd_simulate(args: argparse.Namespace) -> int:
    """
    Run a self-contained simulation and report the resulting ledger.

    Activities are spaced ``--step-ms`` apart on a simulated clock and cycle
    through ``--kinds``, so the default run trips neither abuse rule.  Each
    request is preceded by enough activity to reach the admission threshold.

    Returns:
        0 if the ledger verifies after processing, 1 otherwise.
    """
    from mint_pipeline.pipeline import MintPipeline

    kinds = [k.strip() for k in args.kinds.split(",") if k.strip()]
    if not kinds:
        print("Error: --kinds must name at least one activity kind.", file=sys.stderr)
        return 1

    clock = SteppingClock()
    try:
        pipeline = MintPipeline(config, clock=clock)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: cannot build pipeline: {e}", file=sys.stderr)
        return 1

    activity_kinds = cycle(kinds)
    accepted = 0
    activities = 0
    for i in range(args.requests):
        while not pipeline.controller.can_mint() and activities < args.max_activities:
            clock.advance(milliseconds=args.step_ms)
            pipeline.record_activity(next(activity_kinds), args.intensity)
            activities += 1

        result = pipeline.submit(
            {
                "token_type": args.token_type,
                "owner": args.owner,
                "amount": args.amount,
                "metadata": {"simulation_index": i},
            }
        )
        if result.accepted:
            accepted += 1
        else:
            print(f"Request {i}: rejected ({result.rejection.reason}) {result.rejection.message}")

    batch = pipeline.process_all()
    summary = pipeline.verify()
    stats = pipeline.ledger.stats()

    print("\n" + "=" * 60)
    print("SIMULATION SUMMARY")
    print("=" * 60)
    print(f"Activities:  {activities}")
    print(f"Requests:    {args.requests} submitted, {accepted} admitted")
    if batch is not None:
        print(
            f"Batch:       {batch.batch_id} "
            f"committed={batch.committed_count} failed={batch.failed_count}"
        )
        for failure in batch.failures:
            print(f"  item {failure.index} ({failure.request_id}): {failure.reason}")
    print(f"Ledger:      {stats['total_entries']} entries, {stats['digests']} digest(s)")
    print(f"Last hash:   {pipeline.ledger.last_hash}")
    print(f"Integrity:   {'OK' if summary.valid else 'BROKEN'}")

    if args.export is not None:
        try:
            path = pipeline.export(args.export or None)
        except (LedgerExportError, OSError) as e:
            print(f"Error: export failed: {e}", file=sys.stderr)
            return 1
        print(f"Exported:    {path}")
    print("=" * 60 + "\n")

    return 0 if summary.valid else 1


def cmd_verify(args: argparse.Namespace) -> int:
    """
    Verify an exported ledger file: checksum, hash chain and batch digests.

    Returns:
        0 if every check passes, 1 otherwise.
    """
    from mint_pipeline.ledger.export import read_export, verify_snapshot, verify_snapshot_digests

    try:
        snapshot = read_export(args.path)
        report = verify_snapshot(snapshot)
        mismatches = verify_snapshot_digests(snapshot)
    except LedgerExportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Entries:     {report.total_entries}")
    print(f"Links OK:    {report.verified_count}")
    for error in report.errors:
        print(f"  broken link at #{error.index}: expected {error.expected}, found {error.actual}")
    for mismatch in mismatches:
        print(
            f"  digest {mismatch.digest_id} [{mismatch.range_start}, {mismatch.range_end}] "
            f"does not match its entries"
        )

    if report.valid and not mismatches:
        print("✓ Ledger export verified")
        return 0
    print("✗ Ledger export failed verification", file=sys.stderr)
    return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Print the effective configuration."""
    print_config_summary()
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="mint-pipeline",
        description="Charge-gated, batched, hash-chained token minting",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="Logging level (default: from config, or MINT_LOG_LEVEL env var)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # simulate command
    sim_parser = subparsers.add_parser(
        "simulate",
        help="Run a simulated pipeline",
        description="Generate activity, submit mint requests, process them and verify the ledger.",
    )
    sim_parser.add_argument(
        "--requests", "-n", type=int, default=12, help="Mint requests to submit"
    )
    sim_parser.add_argument(
        "--kinds",
        type=str,
        default="click,scroll,keypress",
        help="Comma-separated activity kinds to cycle through",
    )
    sim_parser.add_argument(
        "--intensity", type=float, default=25.0, help="Intensity of each simulated activity"
    )
    sim_parser.add_argument(
        "--step-ms", type=float, default=250.0, help="Simulated milliseconds between activities"
    )
    sim_parser.add_argument(
        "--max-activities",
        type=int,
        default=10_000,
        help="Stop generating activity after this many",
    )
    sim_parser.add_argument("--token-type", type=str, default="ALC", help="Token type to mint")
    sim_parser.add_argument("--owner", type=str, default="simulator", help="Owner of minted tokens")
    sim_parser.add_argument("--amount", type=float, default=1.0, help="Amount per token")
    sim_parser.add_argument(
        "--export",
        nargs="?",
        const="",
        default=None,
        help="Export the ledger afterwards (to PATH, or to the configured export directory)",
    )
    sim_parser.set_defaults(func=cmd_simulate)

    # verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify an exported ledger file",
        description="Check the file checksum, every hash-chain link and every batch digest.",
    )
    verify_parser.add_argument("path", type=str, help="Path to an exported ledger JSON file")
    verify_parser.set_defaults(func=cmd_verify)

    # config command
    config_parser = subparsers.add_parser("config", help="Show the effective configuration")
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args()

    if args.log_level:
        config.logging.level = args.log_level
    configure_logging(config.logging)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except PipelineError as e:
        logger.error("Command failed: %s", e, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
