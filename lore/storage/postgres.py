"""
lore/storage/postgres.py - psycopg2 repository for the lore PostgreSQL schema.

Tables used (created by the external migration tooling, not here):

    accounts                 one row per synced account + derived delegation fields
    account_balances         (account_id, asset_code, asset_issuer) -> balance
    account_metadata         (account_id, data_key, data_index) -> data_value
    relationships            (source_account_id, relation_type, relation_index) -> target
    association_tags         (tag_name, tag_index) -> target_account_id
    reputation_scores        account_id -> score (FK accounts, ON DELETE CASCADE)
    confirmed_relationships  view joining paired relationship rows

Connections come from a ThreadedConnectionPool sized to the sync
concurrency, so each orchestrator worker holds its own connection. An
account upsert runs in a single transaction: the summary row is upserted
and each child table is delete-then-insert for that account, so concurrent
readers see either the old account or the new one.

Portfolio value is accounts.total_xlm_value when the valuation job has
filled it with a non-zero value, else the native balance. The column
defaults to 0, so 0 is read as "not valued".

Every psycopg2 error is re-raised as RepositoryError.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool

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
from lore.reputation.calculator import RATING_LETTERS
from lore.storage import RepositoryError

logger = logging.getLogger(__name__)


# ── SQL ───────────────────────────────────────────────────────────────────────

_TRUNCATE_SQL = """
    TRUNCATE accounts, account_balances, account_metadata, relationships,
             association_tags, reputation_scores CASCADE
"""

_UPSERT_ACCOUNT_SQL = """
    INSERT INTO accounts (
        account_id, mtlap_balance, mtlac_balance, native_balance,
        delegate_to, council_delegate_to, is_council_ready, updated_at
    ) VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
    ON CONFLICT (account_id) DO UPDATE SET
        mtlap_balance = EXCLUDED.mtlap_balance,
        mtlac_balance = EXCLUDED.mtlac_balance,
        native_balance = EXCLUDED.native_balance,
        delegate_to = EXCLUDED.delegate_to,
        council_delegate_to = EXCLUDED.council_delegate_to,
        is_council_ready = EXCLUDED.is_council_ready,
        updated_at = NOW()
"""

_RESET_DELEGATIONS_SQL = """
    UPDATE accounts SET
        received_votes = 0,
        has_delegation_error = FALSE,
        has_cycle_error = FALSE,
        cycle_path = NULL
"""

_CONNECTION_COUNTS_SQL = """
    SELECT account_id, COUNT(*) AS connection_count
    FROM (
        SELECT source_account_id AS account_id FROM confirmed_relationships
        UNION ALL
        SELECT target_account_id AS account_id FROM confirmed_relationships
    ) connections
    GROUP BY account_id
"""

_PROFILES_SQL = """
    SELECT a.account_id,
           COALESCE(m.data_value, ''),
           COALESCE(NULLIF(a.total_xlm_value, 0), a.native_balance, 0),
           COALESCE(rs.weighted_score, 0)
    FROM accounts a
    LEFT JOIN account_metadata m
        ON m.account_id = a.account_id AND m.data_key = 'Name' AND m.data_index = ''
    LEFT JOIN reputation_scores rs ON rs.account_id = a.account_id
"""

_UPSERT_SCORES_SQL = """
    INSERT INTO reputation_scores (
        account_id, weighted_score, base_score,
        rating_count_a, rating_count_b, rating_count_c, rating_count_d,
        total_ratings, total_weight, calculated_at
    ) VALUES %s
    ON CONFLICT (account_id) DO UPDATE SET
        weighted_score = EXCLUDED.weighted_score,
        base_score = EXCLUDED.base_score,
        rating_count_a = EXCLUDED.rating_count_a,
        rating_count_b = EXCLUDED.rating_count_b,
        rating_count_c = EXCLUDED.rating_count_c,
        rating_count_d = EXCLUDED.rating_count_d,
        total_ratings = EXCLUDED.total_ratings,
        total_weight = EXCLUDED.total_weight,
        calculated_at = EXCLUDED.calculated_at
"""

_SCORE_COLUMNS = """
    account_id, weighted_score, base_score,
    rating_count_a, rating_count_b, rating_count_c, rating_count_d,
    total_ratings, total_weight, calculated_at
"""

_SYNC_STATS_SQL = """
    SELECT COUNT(*),
           COUNT(*) FILTER (WHERE mtlap_balance > 0),
           COUNT(*) FILTER (WHERE mtlac_balance > 0),
           COUNT(*) FILTER (WHERE is_council_ready)
    FROM accounts
"""


def _row_to_score(row) -> ReputationScore:
    return ReputationScore(
        account_id=row[0],
        weighted_score=float(row[1]),
        base_score=float(row[2]),
        rating_count_a=row[3],
        rating_count_b=row[4],
        rating_count_c=row[5],
        rating_count_d=row[6],
        total_ratings=row[7],
        total_weight=float(row[8]),
        calculated_at=row[9],
    )


class PostgresRepository:
    """Repository backed by PostgreSQL through a psycopg2 connection pool."""

    def __init__(
        self,
        dsn: str,
        config: LoreConfig = DEFAULT_CONFIG,
        min_connections: int = 1,
        max_connections: Optional[int] = None,
    ) -> None:
        self.config = config
        # One connection per sync worker, plus one for the main thread.
        maxconn = max_connections or config.max_concurrent_fetches + 1
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(min_connections, maxconn, dsn)
        except psycopg2.Error as exc:
            raise RepositoryError(f"Cannot connect to database: {exc}") from exc

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def _transaction(self) -> Iterator["psycopg2.extensions.cursor"]:
        """Borrow a pooled connection and run one transaction on it."""
        conn = self._pool.getconn()
        try:
            with conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg2.Error as exc:
            raise RepositoryError(str(exc).strip()) from exc
        finally:
            self._pool.putconn(conn)

    # ── Accounts ──────────────────────────────────────────────────────────────

    def truncate(self) -> None:
        with self._transaction() as cur:
            cur.execute(_TRUNCATE_SQL)
        logger.info("Truncated account tables")

    def upsert_account(self, record: AccountRecord) -> None:
        cfg = self.config
        aid = record.account_id
        with self._transaction() as cur:
            cur.execute(_UPSERT_ACCOUNT_SQL, (
                aid,
                record.balance_of(cfg.governance_token, cfg.token_issuer),
                record.balance_of(cfg.company_token, cfg.token_issuer),
                record.native_balance,
                record.delegate_to,
                record.council_delegate_to,
                record.council_ready,
            ))

            cur.execute("DELETE FROM account_balances WHERE account_id = %s", (aid,))
            if record.balances:
                psycopg2.extras.execute_values(
                    cur,
                    "INSERT INTO account_balances (account_id, asset_code, asset_issuer, balance) "
                    "VALUES %s",
                    [(aid, b.asset_code, b.asset_issuer, b.amount) for b in record.balances],
                )

            cur.execute("DELETE FROM account_metadata WHERE account_id = %s", (aid,))
            if record.metadata:
                psycopg2.extras.execute_values(
                    cur,
                    "INSERT INTO account_metadata (account_id, data_key, data_index, data_value) "
                    "VALUES %s",
                    [(aid, m.key, m.index, m.value) for m in record.metadata],
                )

            cur.execute("DELETE FROM relationships WHERE source_account_id = %s", (aid,))
            if record.relationships:
                psycopg2.extras.execute_values(
                    cur,
                    "INSERT INTO relationships "
                    "(source_account_id, target_account_id, relation_type, relation_index) "
                    "VALUES %s",
                    [
                        (aid, r.target_account_id, r.relation_type, r.relation_index)
                        for r in record.relationships
                    ],
                )

    def upsert_association_tags(self, tag_name: str, tags: list[AssociationTag]) -> None:
        with self._transaction() as cur:
            cur.execute("DELETE FROM association_tags WHERE tag_name = %s", (tag_name,))
            if tags:
                psycopg2.extras.execute_values(
                    cur,
                    "INSERT INTO association_tags (tag_name, tag_index, target_account_id) "
                    "VALUES %s",
                    [(tag_name, str(t.tag_index), t.target_account_id) for t in tags],
                )

    def get_unique_assets(self) -> list[AssetPair]:
        with self._transaction() as cur:
            cur.execute(
                "SELECT DISTINCT asset_code, asset_issuer FROM account_balances "
                "ORDER BY asset_code, asset_issuer"
            )
            return [AssetPair(code, issuer) for code, issuer in cur.fetchall()]

    def get_sync_stats(self) -> SyncStats:
        with self._transaction() as cur:
            cur.execute(_SYNC_STATS_SQL)
            total, persons, companies, council_ready = cur.fetchone()
        return SyncStats(total, persons, companies, council_ready)

    # ── Delegation ────────────────────────────────────────────────────────────

    def reset_delegations(self) -> None:
        with self._transaction() as cur:
            cur.execute(_RESET_DELEGATIONS_SQL)

    def get_all_delegation_info(self) -> list[DelegationInfo]:
        with self._transaction() as cur:
            cur.execute(
                "SELECT account_id, delegate_to, council_delegate_to, "
                "COALESCE(mtlap_balance, 0), COALESCE(is_council_ready, FALSE) FROM accounts"
            )
            return [DelegationInfo(*row) for row in cur.fetchall()]

    def set_delegation_error(self, account_id: str, has_error: bool) -> None:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE accounts SET has_delegation_error = %s WHERE account_id = %s",
                (has_error, account_id),
            )

    def set_cycle_error(self, account_id: str, path: list[str]) -> None:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE accounts SET has_cycle_error = TRUE, cycle_path = %s "
                "WHERE account_id = %s",
                (list(path), account_id),
            )

    def set_received_votes(self, account_id: str, votes: int) -> None:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE accounts SET received_votes = %s WHERE account_id = %s",
                (votes, account_id),
            )

    def get_delegation_states(self) -> dict[str, DelegationState]:
        with self._transaction() as cur:
            cur.execute(
                "SELECT account_id, COALESCE(received_votes, 0), "
                "COALESCE(has_delegation_error, FALSE), COALESCE(has_cycle_error, FALSE), "
                "COALESCE(cycle_path, '{}') FROM accounts"
            )
            return {
                aid: DelegationState(votes, deleg_err, cycle_err, list(path))
                for aid, votes, deleg_err, cycle_err, path in cur.fetchall()
            }

    # ── Reputation ────────────────────────────────────────────────────────────

    def get_rating_edges(self) -> list[RatingEdge]:
        with self._transaction() as cur:
            cur.execute(
                "SELECT source_account_id, target_account_id, relation_type "
                "FROM relationships WHERE relation_type = ANY(%s)",
                (list(RATING_LETTERS),),
            )
            return [RatingEdge(*row) for row in cur.fetchall()]

    def get_connection_counts(self) -> dict[str, int]:
        with self._transaction() as cur:
            cur.execute(_CONNECTION_COUNTS_SQL)
            return {aid: int(count) for aid, count in cur.fetchall()}

    def get_account_profiles(self) -> dict[str, AccountProfile]:
        connections = self.get_connection_counts()
        with self._transaction() as cur:
            cur.execute(_PROFILES_SQL)
            rows = cur.fetchall()
        return {
            aid: AccountProfile(
                account_id=aid,
                display_name=name or short_account_id(aid),
                portfolio_value=float(portfolio),
                connections=connections.get(aid, 0),
                own_score=float(own_score),
            )
            for aid, name, portfolio, own_score in rows
        }

    def upsert_scores(self, scores: dict[str, ReputationScore]) -> int:
        if not scores:
            return 0
        with self._transaction() as cur:
            cur.execute(
                "SELECT account_id FROM accounts WHERE account_id = ANY(%s)",
                (list(scores),),
            )
            existing = {row[0] for row in cur.fetchall()}
            rows = [
                (
                    s.account_id, s.weighted_score, s.base_score,
                    s.rating_count_a, s.rating_count_b, s.rating_count_c, s.rating_count_d,
                    s.total_ratings, s.total_weight, s.calculated_at,
                )
                for aid, s in scores.items()
                if aid in existing
            ]
            if rows:
                psycopg2.extras.execute_values(cur, _UPSERT_SCORES_SQL, rows)
        return len(rows)

    def get_score(self, account_id: str) -> Optional[ReputationScore]:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_SCORE_COLUMNS} FROM reputation_scores WHERE account_id = %s",
                (account_id,),
            )
            row = cur.fetchone()
        return _row_to_score(row) if row else None

    def get_scores(self) -> dict[str, ReputationScore]:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_SCORE_COLUMNS} FROM reputation_scores")
            return {row[0]: _row_to_score(row) for row in cur.fetchall()}
