"""
lore/pipeline.py - Single-call full resync.

Provides run_full_sync() which executes a complete resync in dependency
order and returns a SyncRunResult with every intermediate result:

    1. truncate (optional, full resync only)
    2. collect MTLAP + MTLAC holders
    3. fetch/parse/persist every holder account
    4. resolve delegations and tally council votes
    5. sync association tags
    6. compute reputation scores (failure logged, non-fatal)
    7. collect stats, optionally write the Markdown report

Phases 3 and 4 escalate: AccountSyncThresholdError and DelegationWriteError
propagate to the caller. Cancellation in any ledger phase (2, 3, 5) surfaces
as SyncCancelledError. Accounts persisted before the failure stay persisted.

Usage:
    from lore.pipeline import run_full_sync
    result = run_full_sync(HorizonClient(), InMemoryRepository())
    print(result.stats)
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from lore.config import DEFAULT_CONFIG, LoreConfig
from lore.governance.delegation import DelegationReport, resolve_delegations
from lore.ingestion.orchestrator import (
    AccountFetchOrchestrator,
    AccountSyncResult,
    SyncCancelledError,
    collect_holder_ids,
    sync_association_tags,
)
from lore.ledger.horizon_client import RequestCancelledError
from lore.models import SyncStats
from lore.reports.sync_report import export_sync_report_markdown
from lore.reputation.calculator import compute_reputation_scores

logger = logging.getLogger(__name__)


@dataclass
class SyncRunResult:
    """
    Complete output of one full resync.

    Fields:
        started_at:        UTC start time.
        holder_ids:        De-duplicated holder IDs that were synced.
        account_sync:      Orchestrator result for the account phase.
        delegation:        Delegation resolver report.
        association_tags:  Number of association tags stored.
        scores_written:    Reputation scores persisted (0 if the phase failed).
        reputation_error:  Error text when the reputation phase failed.
        stats:             Store-wide counts after the run.
        elapsed_sec:       Wall-clock duration.
        report_path:       Where the Markdown report was written, if requested.
    """
    started_at: datetime
    holder_ids: list[str] = field(default_factory=list)
    account_sync: Optional[AccountSyncResult] = None
    delegation: Optional[DelegationReport] = None
    association_tags: int = 0
    scores_written: int = 0
    reputation_error: Optional[str] = None
    stats: SyncStats = field(default_factory=SyncStats)
    elapsed_sec: float = 0.0
    report_path: Optional[str] = None


def run_full_sync(
    client,
    repository,
    config: LoreConfig = DEFAULT_CONFIG,
    truncate: bool = False,
    cancel_event: Optional[threading.Event] = None,
    report_path: Optional[str] = None,
) -> SyncRunResult:
    """
    Run a complete resync of holders, delegations, tags and reputation.

    Args:
        client:        Ledger client (HorizonClient or a test double).
        repository:    Repository implementation.
        config:        LoreConfig instance.
        truncate:      Empty the store first (full resync).
        cancel_event:  Optional cancellation signal for the ledger phases.
        report_path:   If set, write the Markdown sync report here.

    Returns:
        SyncRunResult.
    """
    start = time.monotonic()
    result = SyncRunResult(started_at=datetime.now(timezone.utc))
    logger.info("lore sync starting.")

    if truncate:
        repository.truncate()
        logger.info("Phase 1/7: Store truncated.")
    else:
        logger.info("Phase 1/7: Truncate skipped (incremental resync).")

    try:
        result.holder_ids = collect_holder_ids(client, config, cancel_event)
    except RequestCancelledError as exc:
        raise SyncCancelledError("sync cancelled while listing holders") from exc
    logger.info("Phase 2/7: %d unique holders.", len(result.holder_ids))

    orchestrator = AccountFetchOrchestrator(client, repository, config)
    result.account_sync = orchestrator.sync_accounts(result.holder_ids, cancel_event)
    logger.info(
        "Phase 3/7: Accounts synced - %d ok, %d failed.",
        result.account_sync.succeeded, result.account_sync.failed,
    )

    result.delegation = resolve_delegations(repository, config)
    logger.info(
        "Phase 4/7: Delegations resolved - %d errors, %d cycle(s).",
        len(result.delegation.delegation_errors), len(result.delegation.cycles),
    )

    try:
        result.association_tags = sync_association_tags(client, repository, config, cancel_event)
    except RequestCancelledError as exc:
        raise SyncCancelledError("sync cancelled while syncing association tags") from exc
    logger.info("Phase 5/7: %d association tags.", result.association_tags)

    try:
        result.scores_written = compute_reputation_scores(repository, config)
        logger.info("Phase 6/7: %d reputation scores written.", result.scores_written)
    except Exception as exc:  # noqa: BLE001
        result.reputation_error = str(exc)
        logger.error("Phase 6/7: Reputation scoring failed: %s", exc)

    result.stats = repository.get_sync_stats()
    result.elapsed_sec = time.monotonic() - start

    if report_path:
        export_sync_report_markdown(result, repository, report_path, config)
        result.report_path = report_path
        logger.info("Phase 7/7: Sync report written to %s.", report_path)
    else:
        logger.info("Phase 7/7: Report skipped (no report_path).")

    logger.info(
        "lore sync complete: %d accounts (%d persons, %d companies) in %.1fs.",
        result.stats.total_accounts, result.stats.persons, result.stats.companies,
        result.elapsed_sec,
    )
    return result
