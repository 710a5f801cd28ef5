"""
lore/ingestion/orchestrator.py - Account sync orchestration layer.

Wires the Horizon client, the ManageData parser and the repository into
the account phase of a resync:

    collect_holder_ids      MTLAP + MTLAC holders, de-duplicated, cursor order kept
    AccountFetchOrchestrator.sync_accounts
                            fetch -> parse -> persist each account, at most
                            max_concurrent_fetches units in flight
    sync_association_tags   Program/Faction tags from the issuer account

Failure policy:
    - One account failing (fetch error, persistence error) never aborts the
      batch; the failure is recorded in a lock-protected list and logged.
    - After every unit has finished, failed/total is compared with
      config.failure_threshold. Strictly above it raises
      AccountSyncThresholdError carrying the AccountSyncResult. Accounts
      that succeeded stay persisted either way.

Cancellation:
    A threading.Event covers the whole batch. Dispatch waits on the
    concurrency semaphore in short slices and checks the event between
    them, so a cancelled batch stops dispatching promptly and raises
    SyncCancelledError. The same event is handed to the ledger client, which
    refuses to start new requests once it is set.

Usage:
    from lore.ingestion.orchestrator import AccountFetchOrchestrator
    result = AccountFetchOrchestrator(client, repo).sync_accounts(ids)
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable, Optional

from lore.config import DEFAULT_CONFIG, LoreConfig
from lore.parsing.association import group_tags, parse_association_tags
from lore.parsing.manage_data import parse_account

logger = logging.getLogger(__name__)

# How long a dispatch wait on the semaphore lasts before re-checking cancellation.
_ACQUIRE_POLL_SEC = 0.05

_PROGRESS_EVERY = 100


class SyncCancelledError(Exception):
    """The batch was stopped by request, not because accounts failed."""


class AccountSyncThresholdError(Exception):
    """Too many accounts failed. .result holds the full AccountSyncResult."""

    def __init__(self, result: "AccountSyncResult") -> None:
        super().__init__(
            f"account sync failure rate {result.failure_rate:.1%} exceeds threshold "
            f"({result.failed}/{result.total} failed)"
        )
        self.result = result


@dataclass
class AccountSyncResult:
    """Outcome of one sync_accounts batch.

    Attributes:
        total:        Accounts handed to the batch.
        succeeded:    Accounts fetched and persisted.
        failed:       Accounts whose unit raised.
        errors:       One {"account_id", "error"} dict per failed account.
        elapsed_sec:  Wall-clock duration of the batch.
    """

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)
    elapsed_sec: float = 0.0

    @property
    def failure_rate(self) -> float:
        return self.failed / self.total if self.total else 0.0

    @property
    def failed_ids(self) -> list[str]:
        return [e["account_id"] for e in self.errors]


class AccountFetchOrchestrator:
    """Bounded-concurrency fetch/parse/persist driver for a set of accounts.

    Args:
        client:      Ledger client exposing fetch_account_detail(id, cancel_event).
        repository:  Repository exposing a thread-safe upsert_account(record).
        config:      Concurrency bound, failure threshold, log sample size.
    """

    def __init__(self, client, repository, config: LoreConfig = DEFAULT_CONFIG) -> None:
        self.client = client
        self.repository = repository
        self.config = config

    def sync_account(self, account_id: str, cancel_event: Optional[threading.Event] = None) -> None:
        """Fetch, parse and persist one account. Errors propagate to the caller."""
        detail = self.client.fetch_account_detail(account_id, cancel_event=cancel_event)
        record = parse_account(detail)
        self.repository.upsert_account(record)

    def sync_accounts(
        self,
        account_ids: Iterable[str],
        cancel_event: Optional[threading.Event] = None,
    ) -> AccountSyncResult:
        """Sync every account in account_ids with bounded concurrency.

        account_ids is assumed de-duplicated; two units racing on the same
        account are not guarded against.

        Args:
            account_ids:   Accounts to sync.
            cancel_event:  Optional batch-wide cancellation signal.

        Returns:
            AccountSyncResult when the failure rate is within the threshold.

        Raises:
            SyncCancelledError:        cancel_event was set during the batch.
            AccountSyncThresholdError: failure rate above config.failure_threshold.
        """
        ids = list(account_ids)
        cancel = cancel_event if cancel_event is not None else threading.Event()
        limit = max(1, self.config.max_concurrent_fetches)
        start = time.monotonic()

        semaphore = threading.BoundedSemaphore(limit)
        failures: list[dict] = []
        failures_lock = threading.Lock()
        progress = {"done": 0}

        def run_unit(account_id: str) -> None:
            try:
                self.sync_account(account_id, cancel)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Account sync failed for %s: %s", account_id, exc)
                with failures_lock:
                    failures.append({"account_id": account_id, "error": str(exc)})
            finally:
                semaphore.release()
                with failures_lock:
                    progress["done"] += 1
                    done = progress["done"]
                if done % _PROGRESS_EVERY == 0:
                    logger.info("Synced %d/%d accounts", done, len(ids))

        logger.info("Syncing %d accounts (max %d in flight)", len(ids), limit)

        executor = ThreadPoolExecutor(max_workers=limit, thread_name_prefix="lore-sync")
        cancelled = False
        try:
            futures = []
            for account_id in ids:
                self._acquire(semaphore, cancel)
                futures.append(executor.submit(run_unit, account_id))
            wait(futures)
            if cancel.is_set():
                raise SyncCancelledError("account sync cancelled")
        except SyncCancelledError:
            cancelled = True
            raise
        finally:
            executor.shutdown(wait=not cancelled, cancel_futures=cancelled)

        with failures_lock:
            errors = list(failures)

        result = AccountSyncResult(
            total=len(ids),
            succeeded=len(ids) - len(errors),
            failed=len(errors),
            errors=errors,
            elapsed_sec=time.monotonic() - start,
        )

        if result.failed:
            sample = result.failed_ids[: self.config.failed_sample_size]
            logger.warning(
                "Account sync: %d/%d failed (%.1f%%); sample: %s",
                result.failed, result.total, result.failure_rate * 100, ", ".join(sample),
            )

        if result.failure_rate > self.config.failure_threshold:
            raise AccountSyncThresholdError(result)

        logger.info(
            "Account sync complete: %d succeeded, %d failed in %.1fs",
            result.succeeded, result.failed, result.elapsed_sec,
        )
        return result

    @staticmethod
    def _acquire(semaphore: threading.BoundedSemaphore, cancel: threading.Event) -> None:
        """Take one concurrency slot, failing fast once cancel is set."""
        while True:
            if cancel.is_set():
                raise SyncCancelledError("account sync cancelled before dispatch")
            if semaphore.acquire(timeout=_ACQUIRE_POLL_SEC):
                if cancel.is_set():
                    semaphore.release()
                    raise SyncCancelledError("account sync cancelled before dispatch")
                return


# ---------------------------------------------------------------------------
# Holder collection and association tags
# ---------------------------------------------------------------------------

def collect_holder_ids(
    client,
    config: LoreConfig = DEFAULT_CONFIG,
    cancel_event: Optional[threading.Event] = None,
) -> list[str]:
    """List MTLAP and MTLAC holders as one de-duplicated list.

    MTLAP holders come first, in ledger cursor order, followed by MTLAC
    holders not already seen.
    """
    persons = client.list_holders(config.governance_token, config.token_issuer, cancel_event)
    companies = client.list_holders(config.company_token, config.token_issuer, cancel_event)
    unique = list(dict.fromkeys([*persons, *companies]))
    logger.info(
        "Holders: %d %s, %d %s, %d unique",
        len(persons), config.governance_token, len(companies), config.company_token, len(unique),
    )
    return unique


def sync_association_tags(
    client,
    repository,
    config: LoreConfig = DEFAULT_CONFIG,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """Replace the Program/Faction tag groups from the association account.

    Every known tag group is rewritten, so a tag removed on the ledger
    disappears from the store.

    Returns:
        Number of tags stored.
    """
    detail = client.fetch_account_detail(config.token_issuer, cancel_event=cancel_event)
    tags = parse_association_tags(detail.data)
    for tag_name, group in group_tags(tags).items():
        repository.upsert_association_tags(tag_name, group)
        logger.debug("Association tags: %d %s", len(group), tag_name)
    logger.info("Association tags synced: %d", len(tags))
    return len(tags)
