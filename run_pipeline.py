#!/usr/bin/env python3
"""
CLI interface for the Repo Discovery pipeline.

Commands:
  full       - Run complete pipeline (discover + merge + collect + score + enrich)
  discover   - Run discovery strategies only; store newly seen repositories
  snapshot   - Refresh counters and append today's snapshot for every repository
  tool-scan  - Count daily commits attributed to AI coding tools
  stats      - Show database statistics

Examples:
  # Score the top 20 candidates of two strategies without writing anything
  python run_pipeline.py full --strategies category_search,hacker_news --limit 20 --dry-run

  # Nightly run, results saved as JSON
  python run_pipeline.py full --output run.json

  # Daily jobs
  python run_pipeline.py snapshot
  python run_pipeline.py tool-scan

  # Show statistics
  python run_pipeline.py stats --db-path discovery.db

Exit codes:
  0  success (including runs where some strategies or repositories failed)
  1  unexpected failure
  2  configuration error (missing GITHUB_TOKEN, malformed variable, unknown strategy)
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from storage.repo_store import repo_store
from workflows.config import ConfigurationError, PipelineConfig
from workflows.pipeline import STRATEGY_ORDER, DiscoveryPipeline, PipelineStats

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(verbose: bool = False):
    """Configure logging for the pipeline"""
    level = logging.DEBUG if verbose else logging.INFO

    # Format with colors if terminal supports it
    if sys.stderr.isatty():
        colors = {
            "DEBUG": "\033[36m",
            "INFO": "\033[32m",
            "WARNING": "\033[33m",
            "ERROR": "\033[31m",
            "CRITICAL": "\033[35m",
            "RESET": "\033[0m",
        }

        class ColoredFormatter(logging.Formatter):
            def format(self, record):
                levelname = record.levelname
                if levelname in colors:
                    record.levelname = f"{colors[levelname]}{levelname}{colors['RESET']}"
                return super().format(record)

        formatter = ColoredFormatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=[handler], force=True)

    # Reduce noise from some modules
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


# =============================================================================
# CONFIG
# =============================================================================

def positive_int(value: str) -> int:
    """argparse type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {number}")
    return number


def parse_strategies(value: Optional[str]) -> Optional[List[str]]:
    """Split ``--strategies`` and reject unknown names."""
    if not value:
        return None
    names = [s.strip() for s in value.split(",") if s.strip()]
    unknown = [n for n in names if n not in STRATEGY_ORDER]
    if unknown:
        raise ConfigurationError(
            f"Unknown strategies: {', '.join(unknown)}. Available: {', '.join(STRATEGY_ORDER)}"
        )
    return names


def load_config(args, require_token: bool = True) -> PipelineConfig:
    """Load config from the environment, then apply command-line overrides."""
    config = PipelineConfig.from_env()
    if getattr(args, "db_path", None):
        config = dataclasses.replace(config, db_path=args.db_path)
    if require_token:
        config.require_github_token()
    return config


# =============================================================================
# COMMAND HANDLERS
# =============================================================================

async def cmd_full(args) -> int:
    """Run full pipeline: discover → merge → collect → score → enrich"""
    strategies = parse_strategies(args.strategies)
    config = load_config(args)

    print("=" * 70)
    print("REPO DISCOVERY - FULL PIPELINE")
    print("=" * 70)
    print(f"\nStrategies: {', '.join(strategies or STRATEGY_ORDER)}")
    print(f"Limit: {args.limit if args.limit is not None else 'none'}")
    print(f"Dry run: {args.dry_run}")
    print(f"Database: {config.db_path}")
    print()

    async with DiscoveryPipeline(config) as pipeline:
        stats = await pipeline.run_full(strategies=strategies, limit=args.limit, dry_run=args.dry_run)

    _print_stats(stats)
    _write_output(stats, args.output)
    return EXIT_OK


async def cmd_discover(args) -> int:
    """Run discovery strategies and store new repositories"""
    strategies = parse_strategies(args.strategies)
    config = load_config(args)

    print("=" * 70)
    print("REPO DISCOVERY - DISCOVER")
    print("=" * 70)

    async with DiscoveryPipeline(config) as pipeline:
        stats = await pipeline.run_discover(strategies=strategies, dry_run=args.dry_run)

    _print_stats(stats)
    _write_output(stats, args.output)
    return EXIT_OK


async def cmd_snapshot(args) -> int:
    """Daily counter refresh"""
    config = load_config(args)

    print("=" * 70)
    print("REPO DISCOVERY - DAILY SNAPSHOT")
    print("=" * 70)

    async with DiscoveryPipeline(config) as pipeline:
        stats = await pipeline.run_snapshot(dry_run=args.dry_run)

    _print_stats(stats)
    return EXIT_OK


async def cmd_tool_scan(args) -> int:
    """Daily tool attribution counts"""
    config = load_config(args)

    print("=" * 70)
    print("REPO DISCOVERY - TOOL ATTRIBUTION SCAN")
    print("=" * 70)

    async with DiscoveryPipeline(config) as pipeline:
        stats = await pipeline.run_tool_scan(dry_run=args.dry_run)

    _print_stats(stats)
    return EXIT_OK


async def cmd_stats(args) -> int:
    """Show database statistics"""
    config = load_config(args, require_token=False)

    print("=" * 70)
    print("REPO DISCOVERY - STATISTICS")
    print("=" * 70)

    async with repo_store(config.db_path) as store:
        stats = await store.get_stats()
        runs = await store.get_pipeline_runs(limit=5)

    print()
    print("STORAGE")
    print("-" * 70)
    print(f"Database: {stats['database_path']}")
    print(f"Repositories: {stats['repositories']} ({stats['absent_repositories']} absent)")
    print(f"Snapshots: {stats['snapshots']} (latest {stats['latest_snapshot_date'] or 'never'})")
    print(f"Tool contributions: {stats['tool_contributions']}")
    print()

    print("ENRICHMENTS")
    print("-" * 70)
    print(f"Total: {stats['enrichments']}")
    for category, count in stats["enrichments_by_category"].items():
        print(f"  {category}: {count}")
    print()

    print("RECENT RUNS")
    print("-" * 70)
    if not runs:
        print("  (none)")
    for run in runs:
        print(f"  {run['started_at']}  {run['command']:<10} {run['run_id']}")
    return EXIT_OK


def _write_output(stats: PipelineStats, output: Optional[str]) -> None:
    if output:
        output_path = Path(output)
        output_path.write_text(json.dumps(stats.to_dict(), indent=2))
        print(f"\nResults saved to: {output_path}")


def _print_stats(stats: PipelineStats):
    """Print pipeline statistics in a readable format"""
    print()
    print("=" * 70)
    print(f"{stats.command.upper()} RESULTS{' (dry run)' if stats.dry_run else ''}")
    print("=" * 70)
    print()

    if stats.strategies:
        print("DISCOVERY")
        print("-" * 70)
        for result in stats.strategies:
            status_symbol = "✓" if result["status"] == "success" else "✗"
            print(
                f"{status_symbol} {result['strategy']:<16} {result['candidates_found']:>5} candidates"
                f"  ({result['status']}, {result['units_failed']} failed units)"
            )
            if result["error_message"]:
                print(f"    Error: {result['error_message']}")
        print(f"Candidates found: {stats.candidates_found}")
        print(f"After merge: {stats.candidates_merged}")
        for strategy, count in stats.unique_by_strategy.items():
            print(f"  unique from {strategy}: {count}")
        print()

    if stats.command == "full":
        print("REPOSITORIES")
        print("-" * 70)
        print(f"Scored: {stats.repos_scored}")
        print(f"Enriched: {stats.repos_enriched}")
        print(f"Score only: {stats.repos_score_only}")
        print(f"Enrichment failed: {stats.repos_enrich_failed}")
        print(f"Skipped: {stats.repos_skipped}")
        print(f"Errored: {stats.repos_errored}")
        print(f"With degraded metrics: {stats.metrics_degraded}")
        print()
    elif stats.command == "discover":
        print(f"New repositories stored: {stats.repos_persisted}")
        print()

    if stats.job:
        print("JOB")
        print("-" * 70)
        for key, value in stats.job.items():
            print(f"{key}: {value}")
        print()

    if stats.errors:
        print("ERRORS")
        print("-" * 70)
        for error in stats.errors:
            print(f"  • {error}")
        print()

    print("TIMING")
    print("-" * 70)
    print(f"Started: {stats.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    if stats.completed_at:
        print(f"Completed: {stats.completed_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        print(f"Duration: {stats.duration_seconds:.2f}s")


# =============================================================================
# CLI ARGUMENT PARSER
# =============================================================================

COMMANDS = {
    "full": cmd_full,
    "discover": cmd_discover,
    "snapshot": cmd_snapshot,
    "tool-scan": cmd_tool_scan,
    "stats": cmd_stats,
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser"""

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--db-path",
        type=str,
        help="Path to SQLite database (overrides DISCOVERY_DB_PATH)",
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    parser = argparse.ArgumentParser(
        description="Repo Discovery Pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment variables:
  GITHUB_TOKEN               - GitHub API token (required except for stats)
  DISCOVERY_DB_PATH          - Path to SQLite database (default: discovery.db)
  QUOTA_FLOOR                - Sleep until reset below this many calls (default: 100)
  SEARCH_QUOTA_FLOOR         - Same, for the search API (default: 2)
  RESCORE_THRESHOLD          - Score change that triggers re-enrichment (default: 10)
  ARCHIVE_MIN_STARS          - Minimum daily stars from the event archive (default: 5)
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    full_parser = subparsers.add_parser(
        "full",
        parents=[common],
        help="Run complete pipeline (discover + score + enrich)",
    )
    full_parser.add_argument(
        "--strategies",
        type=str,
        help=f"Comma-separated strategies (default: all of {','.join(STRATEGY_ORDER)})",
    )
    full_parser.add_argument(
        "--limit",
        type=positive_int,
        help="Score at most this many merged candidates",
    )
    full_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Score without writing to the database or enriching",
    )
    full_parser.add_argument(
        "--output",
        type=str,
        help="Save results to JSON file",
    )

    discover_parser = subparsers.add_parser(
        "discover",
        parents=[common],
        help="Run discovery strategies only",
    )
    discover_parser.add_argument(
        "--strategies",
        type=str,
        help="Comma-separated strategies (default: all)",
    )
    discover_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Don't store new repositories",
    )
    discover_parser.add_argument(
        "--output",
        type=str,
        help="Save results to JSON file",
    )

    snapshot_parser = subparsers.add_parser(
        "snapshot",
        parents=[common],
        help="Refresh counters and append today's snapshots",
    )
    snapshot_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch but don't write",
    )

    tool_parser = subparsers.add_parser(
        "tool-scan",
        parents=[common],
        help="Count commits attributed to AI coding tools",
    )
    tool_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Count but don't write",
    )

    subparsers.add_parser(
        "stats",
        parents=[common],
        help="Show database statistics",
    )

    return parser


# =============================================================================
# MAIN
# =============================================================================

async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""

    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_FAILURE

    setup_logging(verbose=args.verbose)

    try:
        return await COMMANDS[args.command](args)
    except ConfigurationError as e:
        logging.error(f"Configuration error: {e}")
        print(f"\nConfiguration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130
    except Exception as e:
        logging.exception("Fatal error")
        print(f"\nFatal error: {e}", file=sys.stderr)
        return EXIT_FAILURE


def cli() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
