"""
lore/config.py - All tunable parameters for the lore sync pipeline.

No threshold should be hardcoded in a sync or metric module. Token codes,
concurrency bounds, failure thresholds and reputation weight caps live here
so that calibration changes are a single-file diff.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class LoreConfig:
    """
    Immutable configuration for the lore sync pipeline.

    Override by constructing a new LoreConfig with the desired values.
    """

    # ── Ledger ────────────────────────────────────────────────────────────────
    horizon_url: str = "https://horizon.stellar.org"
    # Stellar mainnet Horizon endpoint.

    horizon_page_limit: int = 200
    # Records per page when listing asset holders. Horizon's maximum is 200;
    # a page shorter than this terminates pagination.

    request_timeout_sec: float = 30.0
    request_retries: int = 3
    # 429 and 5xx responses are retried with exponential backoff.

    # ── Tokens ────────────────────────────────────────────────────────────────
    token_issuer: str = "GCNVDZIHGX473FEI7IXCUAEXUJ4BGCKEMHF36VYP5EMS7PX2QBLAMTLA"
    # Issues both tokens. Also the association account whose ManageData
    # carries Program/Faction tags.

    governance_token: str = "MTLAP"
    # Person token. Weights council votes and gates ordinary delegation.

    company_token: str = "MTLAC"
    # Company token. Holders are synced alongside MTLAP holders.

    # ── Account sync ──────────────────────────────────────────────────────────
    max_concurrent_fetches: int = 10
    # Maximum number of account fetch+persist units in flight at once.

    failure_threshold: float = 0.10
    # A batch fails when failed/total is strictly greater than this.
    # Exactly 10% failed still counts as a successful batch.

    failed_sample_size: int = 10
    # Number of failed account IDs included in the failure log line.

    # ── Delegation ────────────────────────────────────────────────────────────
    delegation_write_error_cap: int = 10
    # More derived-field write failures than this fails the resolver pass.

    # ── Reputation ────────────────────────────────────────────────────────────
    reputation_min_weight: float = 1.0
    # Floor for a rater's weight. Every valid rating counts for something.

    reputation_max_weight: float = 100.0
    # Cap for a rater's weight so a single whale cannot dominate a score.


# Singleton default - import this everywhere instead of constructing anew.
DEFAULT_CONFIG = LoreConfig()
