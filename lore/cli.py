"""
lore/cli.py - Command-line interface for the lore sync pipeline.

Provides a single entry point that:
  1. Loads HORIZON_URL / DATABASE_URL from a .env file automatically
  2. Runs a resync (holders -> accounts -> delegations -> tags -> reputation)
  3. Shows the council leaderboard and per-account reputation graphs

Usage:
    python -m lore sync --full          # truncate and resync everything
    python -m lore sync --dry-run       # resync into memory, print summary
    python -m lore council              # council leaderboard
    python -m lore reputation GABC...   # reputation graph for one account

sync, council and reputation read DATABASE_URL from .env in the repo root
(or the path given by --env-file) before falling back to the environment.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path

from lore.config import DEFAULT_CONFIG, LoreConfig


# ── .env loader (stdlib only) ─────────────────────────────────────────────────

def _load_dotenv(env_file: str | None = None) -> dict[str, str]:
    """Load KEY=VALUE pairs from a .env file into os.environ.

    Existing environment values win. Returns the newly loaded pairs.

    Args:
        env_file: Explicit path. If None, looks for .env next to the package
                  and in each parent directory.
    """
    if env_file is None:
        start = Path(__file__).parent.parent
        for directory in [start, *start.parents]:
            candidate = directory / ".env"
            if candidate.is_file():
                env_file = str(candidate)
                break

    if not env_file or not Path(env_file).is_file():
        return {}

    loaded: dict[str, str] = {}
    with open(env_file, encoding="utf-8") as fh:
        for raw_line in fh:
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            if key and key not in os.environ:
                os.environ[key] = value
                loaded[key] = value

    return loaded


# ── Logging setup ─────────────────────────────────────────────────────────────

def _setup_logging(level: str = "INFO") -> None:
    """Configure the root logger with timestamps on stderr."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    fmt = "%(asctime)s  %(levelname)-8s  %(name)s - %(message)s"
    logging.basicConfig(level=numeric, format=fmt, datefmt="%H:%M:%S", stream=sys.stderr)
    logging.getLogger("urllib.request").setLevel(logging.WARNING)


logger = logging.getLogger("lore.cli")


def _config_from_args(args: argparse.Namespace) -> LoreConfig:
    overrides = {}
    horizon_url = getattr(args, "horizon_url", None) or os.environ.get("HORIZON_URL")
    if horizon_url:
        overrides["horizon_url"] = horizon_url
    if getattr(args, "workers", None):
        overrides["max_concurrent_fetches"] = args.workers
    if getattr(args, "failure_threshold", None) is not None:
        overrides["failure_threshold"] = args.failure_threshold
    return replace(DEFAULT_CONFIG, **overrides) if overrides else DEFAULT_CONFIG


def _open_repository(args: argparse.Namespace, config: LoreConfig):
    """PostgresRepository from --database-url / DATABASE_URL, or None."""
    dsn = args.database_url or os.environ.get("DATABASE_URL")
    if not dsn:
        return None
    from lore.storage.postgres import PostgresRepository
    return PostgresRepository(dsn, config)


# ── Subcommand: sync ──────────────────────────────────────────────────────────

def cmd_sync(args: argparse.Namespace) -> int:
    """Resync holders, delegations, association tags and reputation scores."""
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)
    config = _config_from_args(args)

    from lore.governance.delegation import DelegationWriteError
    from lore.ingestion.orchestrator import AccountSyncThresholdError, SyncCancelledError
    from lore.ledger.horizon_client import HorizonClient, LedgerError
    from lore.pipeline import run_full_sync
    from lore.storage import RepositoryError

    if args.dry_run:
        from lore.storage.memory import InMemoryRepository
        repository = InMemoryRepository(config)
    else:
        try:
            repository = _open_repository(args, config)
        except RepositoryError as exc:
            logger.error("%s", exc)
            return 2
        if repository is None:
            logger.error("DATABASE_URL not set. Set it in .env, pass --database-url, or use --dry-run.")
            return 2

    client = HorizonClient(
        horizon_url=config.horizon_url,
        timeout=config.request_timeout_sec,
        retries=config.request_retries,
        page_limit=config.horizon_page_limit,
    )

    cancel = threading.Event()

    def _on_interrupt(signum, frame) -> None:
        logger.warning("Interrupt received; cancelling sync...")
        cancel.set()

    previous_handler = signal.signal(signal.SIGINT, _on_interrupt)

    logger.info("=" * 60)
    logger.info("lore - Sync Run")
    logger.info("  Horizon      : %s", config.horizon_url)
    logger.info("  Store        : %s", "memory (dry run)" if args.dry_run else "postgres")
    logger.info("  Full resync  : %s", args.full)
    logger.info("  Workers      : %d", config.max_concurrent_fetches)
    logger.info("=" * 60)

    try:
        result = run_full_sync(
            client,
            repository,
            config,
            truncate=args.full,
            cancel_event=cancel,
            report_path=args.report_path,
        )
    except SyncCancelledError:
        logger.error("Sync cancelled.")
        return 130
    except AccountSyncThresholdError as exc:
        logger.error("Sync failed: %s", exc)
        return 1
    except DelegationWriteError as exc:
        logger.error("Delegation pass failed: %s", exc)
        return 1
    except (LedgerError, RepositoryError) as exc:
        logger.error("Sync aborted: %s", exc)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        if hasattr(repository, "close"):
            repository.close()

    sync = result.account_sync
    deleg = result.delegation
    print()
    print("=" * 60)
    print("  LORE - SYNC COMPLETE")
    print("=" * 60)
    print(f"  Elapsed          : {result.elapsed_sec:.0f}s")
    print(f"  Holders          : {len(result.holder_ids)}")
    print(f"  Accounts synced  : {sync.succeeded}/{sync.total}")
    print(f"  Persons          : {result.stats.persons}")
    print(f"  Companies        : {result.stats.companies}")
    print(f"  Council ready    : {result.stats.council_ready}")
    print(f"  Deleg. errors    : {len(deleg.delegation_errors)}")
    print(f"  Deleg. cycles    : {len(deleg.cycles)}")
    print(f"  Assoc. tags      : {result.association_tags}")
    print(f"  Scores written   : {result.scores_written}")
    if result.reputation_error:
        print(f"  Reputation error : {result.reputation_error}")
    if result.report_path:
        print(f"  Report saved to  : {result.report_path}")
    print("=" * 60)
    return 0


# ── Subcommand: council ───────────────────────────────────────────────────────

def cmd_council(args: argparse.Namespace) -> int:
    """Print the council leaderboard from the store."""
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)
    config = _config_from_args(args)

    from lore.reports.sync_report import council_leaderboard
    from lore.storage import RepositoryError

    try:
        repository = _open_repository(args, config)
    except RepositoryError as exc:
        logger.error("%s", exc)
        return 2
    if repository is None:
        logger.error("DATABASE_URL not set.")
        return 2

    try:
        board = council_leaderboard(repository).head(args.top)
    except RepositoryError as exc:
        logger.error("%s", exc)
        return 2
    finally:
        repository.close()

    if board.empty:
        print("No council candidates.")
        return 0

    print()
    print(f"  {'#':>3}  {'Name':<30} {'Votes':>10} {'Power':>10}")
    print("  " + "-" * 56)
    for rank, row in enumerate(board.itertuples(index=False), start=1):
        print(f"  {rank:>3}  {row.name[:30]:<30} {row.received_votes:>10} {row.total_power:>10}")
    print()
    return 0


# ── Subcommand: reputation ────────────────────────────────────────────────────

def cmd_reputation(args: argparse.Namespace) -> int:
    """Print the two-level reputation graph for one account."""
    _load_dotenv(args.env_file)
    _setup_logging(args.log_level)
    config = _config_from_args(args)

    from lore.models import is_valid_account_id
    from lore.reputation.calculator import compute_reputation_scores
    from lore.reputation.graph import build_graph_for_account
    from lore.storage import RepositoryError

    if not is_valid_account_id(args.account_id):
        logger.error("Not a valid account ID: %s", args.account_id)
        return 2

    try:
        repository = _open_repository(args, config)
    except RepositoryError as exc:
        logger.error("%s", exc)
        return 2
    if repository is None:
        logger.error("DATABASE_URL not set.")
        return 2

    try:
        if args.recompute:
            compute_reputation_scores(repository, config)
        graph = build_graph_for_account(repository, args.account_id, config)
    except RepositoryError as exc:
        logger.error("%s", exc)
        return 2
    finally:
        repository.close()

    score = graph.score
    print()
    print("=" * 60)
    print(f"  {graph.target_name}")
    print(f"  {graph.target_account_id}")
    print("=" * 60)
    print(f"  Grade            : {score.grade}")
    print(f"  Weighted score   : {score.weighted_score:.2f}")
    print(f"  Base score       : {score.base_score:.2f}")
    print(
        f"  Ratings          : {score.total_ratings} "
        f"(A {score.rating_count_a} / B {score.rating_count_b} / "
        f"C {score.rating_count_c} / D {score.rating_count_d})"
    )
    for title, nodes in (("Direct raters", graph.level1_nodes),
                         ("Raters of raters", graph.level2_nodes)):
        print()
        print(f"  {title} ({len(nodes)}):")
        for node in nodes[: args.limit]:
            print(
                f"    {node.rating}  {node.display_name[:30]:<30} "
                f"w={node.weight:6.2f}  conn={node.connections:<3} own={node.own_score:.2f}"
            )
    print("=" * 60)
    return 0


# ── Parser ────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lore",
        description=(
            "lore - Montelibero Association governance and trust intelligence.\n"
            "Reads HORIZON_URL and DATABASE_URL from .env automatically."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full resync into PostgreSQL, with a Markdown report
  python -m lore sync --full --report-path reports/sync.md

  # Resync into memory only (no database needed)
  python -m lore sync --dry-run

  # Council vote standings
  python -m lore council --top 20

  # Reputation graph for one account, recomputing all scores first
  python -m lore reputation GABC... --recompute
        """,
    )

    parser.add_argument(
        "--env-file",
        default=None,
        metavar="PATH",
        help="Path to .env file (default: auto-detect .env in repo root)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        metavar="DSN",
        help="PostgreSQL DSN (overrides .env and DATABASE_URL)",
    )
    parser.add_argument(
        "--horizon-url",
        default=None,
        metavar="URL",
        help=f"Horizon endpoint (default: HORIZON_URL or {DEFAULT_CONFIG.horizon_url})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    p_sync = subparsers.add_parser("sync", help="Resync accounts, delegations and reputation")
    p_sync.add_argument(
        "--full",
        action="store_true",
        help="Truncate the store before syncing",
    )
    p_sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Sync into an in-memory store instead of PostgreSQL",
    )
    p_sync.add_argument(
        "--workers",
        type=int,
        default=None,
        metavar="N",
        help=f"Concurrent account fetches (default: {DEFAULT_CONFIG.max_concurrent_fetches})",
    )
    p_sync.add_argument(
        "--failure-threshold",
        type=float,
        default=None,
        metavar="RATE",
        help=f"Tolerated failed-account fraction (default: {DEFAULT_CONFIG.failure_threshold})",
    )
    p_sync.add_argument(
        "--report-path",
        default=None,
        metavar="PATH",
        help="Write a Markdown sync report to PATH",
    )
    p_sync.set_defaults(func=cmd_sync)

    p_council = subparsers.add_parser("council", help="Show council vote standings")
    p_council.add_argument("--top", type=int, default=20, metavar="N", help="Rows to show")
    p_council.set_defaults(func=cmd_council)

    p_rep = subparsers.add_parser("reputation", help="Show the reputation graph of an account")
    p_rep.add_argument("account_id", help="56-character account ID")
    p_rep.add_argument(
        "--recompute",
        action="store_true",
        help="Recompute and persist all scores before building the graph",
    )
    p_rep.add_argument("--limit", type=int, default=25, metavar="N", help="Nodes per level")
    p_rep.set_defaults(func=cmd_reputation)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
