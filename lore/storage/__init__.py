"""
lore.storage - Persistence layer.

Modules:
    memory    - Thread-safe in-memory repository (tests, dry runs).
    postgres  - psycopg2 repository against the lore PostgreSQL schema.

Both implement the Repository protocol below. The sync orchestrator calls
upsert_account from worker threads, so implementations must be thread-safe.
Every storage failure surfaces as RepositoryError.
"""

from typing import Optional, Protocol

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
)


class RepositoryError(Exception):
    """A read or write against the store failed."""


class Repository(Protocol):

    def truncate(self) -> None: ...

    def upsert_account(self, record: AccountRecord) -> None: ...

    def upsert_association_tags(self, tag_name: str, tags: list[AssociationTag]) -> None: ...

    def reset_delegations(self) -> None: ...

    def get_all_delegation_info(self) -> list[DelegationInfo]: ...

    def set_delegation_error(self, account_id: str, has_error: bool) -> None: ...

    def set_cycle_error(self, account_id: str, path: list[str]) -> None: ...

    def set_received_votes(self, account_id: str, votes: int) -> None: ...

    def get_delegation_states(self) -> dict[str, DelegationState]: ...

    def get_unique_assets(self) -> list[AssetPair]: ...

    def get_rating_edges(self) -> list[RatingEdge]: ...

    def get_connection_counts(self) -> dict[str, int]: ...

    def get_account_profiles(self) -> dict[str, AccountProfile]: ...

    def upsert_scores(self, scores: dict[str, ReputationScore]) -> int: ...

    def get_score(self, account_id: str) -> Optional[ReputationScore]: ...

    def get_scores(self) -> dict[str, ReputationScore]: ...

    def get_sync_stats(self) -> SyncStats: ...
