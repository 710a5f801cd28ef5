"""
lore/storage/memory.py - Thread-safe in-memory repository.

Used by the test suite and by `lore sync --dry-run`. Semantics match the
PostgreSQL repository:

- upsert_account replaces the account and all four of its sub-collections
  in one step under the lock, so readers never see a half-written account;
- derived delegation fields survive an upsert and are cleared only by
  reset_delegations (or truncate);
- upsert_scores silently skips accounts that were never synced.

Portfolio value is the native XLM balance. Token and pool valuation is an
external concern.
"""

import copy
import logging
import threading
from typing import Optional

from lore.config import DEFAULT_CONFIG, LoreConfig
from lore.models import (
    AccountProfile,
    AccountRecord,
    AssetPair,
    AssociationTag,
    DelegationInfo,
    DelegationState,
    RatingEdge,
    ReputationScore,
    SyncStats,
    short_account_id,
)
from lore.reputation.calculator import RATING_LETTERS, count_confirmed_connections
from lore.storage import RepositoryError

logger = logging.getLogger(__name__)


class InMemoryRepository:
    """Dict-backed Repository. All public methods take the instance lock."""

    def __init__(self, config: LoreConfig = DEFAULT_CONFIG) -> None:
        self.config = config
        self._lock = threading.Lock()
        self._accounts: dict[str, AccountRecord] = {}
        self._derived: dict[str, DelegationState] = {}
        self._tags: dict[str, list[AssociationTag]] = {}
        self._scores: dict[str, ReputationScore] = {}

    # ── Accounts ──────────────────────────────────────────────────────────────

    def truncate(self) -> None:
        with self._lock:
            self._accounts.clear()
            self._derived.clear()
            self._tags.clear()
            self._scores.clear()

    def upsert_account(self, record: AccountRecord) -> None:
        stored = copy.deepcopy(record)
        with self._lock:
            self._accounts[record.account_id] = stored
            self._derived.setdefault(record.account_id, DelegationState())

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        with self._lock:
            record = self._accounts.get(account_id)
            return copy.deepcopy(record) if record is not None else None

    def account_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._accounts)

    def upsert_association_tags(self, tag_name: str, tags: list[AssociationTag]) -> None:
        with self._lock:
            self._tags[tag_name] = list(tags)

    def get_association_tags(self, tag_name: str) -> list[AssociationTag]:
        with self._lock:
            return list(self._tags.get(tag_name, []))

    def get_unique_assets(self) -> list[AssetPair]:
        with self._lock:
            pairs = {
                AssetPair(bal.asset_code, bal.asset_issuer)
                for record in self._accounts.values()
                for bal in record.balances
            }
        return sorted(pairs, key=lambda p: (p.asset_code, p.asset_issuer))

    def get_sync_stats(self) -> SyncStats:
        cfg = self.config
        stats = SyncStats()
        with self._lock:
            for record in self._accounts.values():
                stats.total_accounts += 1
                if record.balance_of(cfg.governance_token, cfg.token_issuer) > 0:
                    stats.persons += 1
                if record.balance_of(cfg.company_token, cfg.token_issuer) > 0:
                    stats.companies += 1
                if record.council_ready:
                    stats.council_ready += 1
        return stats

    # ── Delegation ────────────────────────────────────────────────────────────

    def reset_delegations(self) -> None:
        with self._lock:
            self._derived = {aid: DelegationState() for aid in self._accounts}

    def get_all_delegation_info(self) -> list[DelegationInfo]:
        cfg = self.config
        with self._lock:
            return [
                DelegationInfo(
                    account_id=record.account_id,
                    delegate_to=record.delegate_to,
                    council_delegate_to=record.council_delegate_to,
                    governance_balance=record.balance_of(cfg.governance_token, cfg.token_issuer),
                    council_ready=record.council_ready,
                )
                for record in self._accounts.values()
            ]

    def _state(self, account_id: str) -> DelegationState:
        if account_id not in self._accounts:
            raise RepositoryError(f"Unknown account: {account_id}")
        return self._derived.setdefault(account_id, DelegationState())

    def set_delegation_error(self, account_id: str, has_error: bool) -> None:
        with self._lock:
            self._state(account_id).delegation_error = has_error

    def set_cycle_error(self, account_id: str, path: list[str]) -> None:
        with self._lock:
            state = self._state(account_id)
            state.cycle_error = True
            state.cycle_path = list(path)

    def set_received_votes(self, account_id: str, votes: int) -> None:
        with self._lock:
            self._state(account_id).received_votes = votes

    def get_delegation_states(self) -> dict[str, DelegationState]:
        with self._lock:
            return copy.deepcopy(self._derived)

    # ── Reputation ────────────────────────────────────────────────────────────

    def get_rating_edges(self) -> list[RatingEdge]:
        with self._lock:
            return [
                RatingEdge(edge.source_account_id, edge.target_account_id, edge.relation_type)
                for record in self._accounts.values()
                for edge in record.relationships
                if edge.relation_type in RATING_LETTERS
            ]

    def get_connection_counts(self) -> dict[str, int]:
        with self._lock:
            edges = [
                edge
                for record in self._accounts.values()
                for edge in record.relationships
            ]
        return count_confirmed_connections(edges)

    def get_account_profiles(self) -> dict[str, AccountProfile]:
        connections = self.get_connection_counts()
        with self._lock:
            return {
                aid: AccountProfile(
                    account_id=aid,
                    display_name=record.name or short_account_id(aid),
                    portfolio_value=float(record.native_balance),
                    connections=connections.get(aid, 0),
                    own_score=self._scores[aid].weighted_score if aid in self._scores else 0.0,
                )
                for aid, record in self._accounts.items()
            }

    def upsert_scores(self, scores: dict[str, ReputationScore]) -> int:
        written = 0
        with self._lock:
            for aid, score in scores.items():
                if aid not in self._accounts:
                    continue
                self._scores[aid] = copy.copy(score)
                written += 1
        skipped = len(scores) - written
        if skipped:
            logger.debug("upsert_scores: skipped %d score(s) for unknown accounts", skipped)
        return written

    def get_score(self, account_id: str) -> Optional[ReputationScore]:
        with self._lock:
            score = self._scores.get(account_id)
            return copy.copy(score) if score is not None else None

    def get_scores(self) -> dict[str, ReputationScore]:
        with self._lock:
            return {aid: copy.copy(s) for aid, s in self._scores.items()}
