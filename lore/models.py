"""
lore/models.py - Shared record types for the lore sync pipeline.

Records produced by the parser and consumed by the repository, the
delegation resolver and the reputation builder. Ledger amounts are kept as
decimal.Decimal end to end; only reputation arithmetic drops to float.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

ACCOUNT_ID_LENGTH = 56
ACCOUNT_ID_PREFIX = "G"

NATIVE_ASSET_CODE = "XLM"


def is_valid_account_id(value: str) -> bool:
    """True when value has the shape of a Stellar public account ID."""
    return len(value) == ACCOUNT_ID_LENGTH and value.startswith(ACCOUNT_ID_PREFIX)


@dataclass(frozen=True)
class Balance:
    """One trustline or native balance. The native asset has an empty issuer."""
    asset_code: str
    asset_issuer: str
    amount: Decimal

    @property
    def is_native(self) -> bool:
        return self.asset_code == NATIVE_ASSET_CODE and not self.asset_issuer


@dataclass(frozen=True)
class MetadataEntry:
    """
    One decoded profile field.

    Fields:
        key:    Base key with any trailing digit run removed ("Website").
        index:  Literal digit suffix ("", "1", "002"). Never parsed to int so
                that "2" and "002" stay distinct slots.
        value:  Decoded, whitespace-stripped value.
    """
    key: str
    index: str
    value: str


@dataclass(frozen=True)
class RelationshipEdge:
    source_account_id: str
    target_account_id: str
    relation_type: str
    relation_index: str


@dataclass(frozen=True)
class AssociationTag:
    """A Program/Faction tag declared on the association account."""
    tag_name: str
    tag_index: int
    target_account_id: str


@dataclass
class AccountRecord:
    """
    Everything persisted for one account on a resync.

    Fields:
        account_id:           56-char public key.
        name:                 Primary display name (the unindexed "Name" entry).
        balances:             All non-pool balances, native included.
        metadata:             Profile fields, sorted by (key, index).
        relationships:        Outgoing relationship edges.
        delegate_to:          Ordinary delegation target, if any.
        council_delegate_to:  Council delegation target, if any.
        council_ready:        Account declared itself a council candidate.
    """
    account_id: str
    name: str = ""
    balances: list[Balance] = field(default_factory=list)
    metadata: list[MetadataEntry] = field(default_factory=list)
    relationships: list[RelationshipEdge] = field(default_factory=list)
    delegate_to: Optional[str] = None
    council_delegate_to: Optional[str] = None
    council_ready: bool = False

    def balance_of(self, asset_code: str, asset_issuer: str = "") -> Decimal:
        """Amount held of (code, issuer), or zero when there is no trustline."""
        for bal in self.balances:
            if bal.asset_code == asset_code and bal.asset_issuer == asset_issuer:
                return bal.amount
        return Decimal("0")

    @property
    def native_balance(self) -> Decimal:
        return self.balance_of(NATIVE_ASSET_CODE, "")


@dataclass
class AccountDetail:
    """
    Raw ledger state of one account, as returned by the ledger client.

    Fields:
        account_id:  56-char public key.
        balances:    Parsed balances (liquidity-pool shares already dropped).
        data:        ManageData map, values still base64-encoded.
    """
    account_id: str
    balances: list[Balance] = field(default_factory=list)
    data: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DelegationInfo:
    """Snapshot row read by the delegation resolver."""
    account_id: str
    delegate_to: Optional[str]
    council_delegate_to: Optional[str]
    governance_balance: Decimal
    council_ready: bool


@dataclass
class DelegationState:
    """
    Derived delegation fields, recomputed from scratch on every full resync.

    Fields:
        received_votes:    Truncated MTLAP total routed to a council-ready account.
        delegation_error:  delegate_to points at a missing or zero-MTLAP account.
        cycle_error:       Account sits on an ordinary delegation cycle.
        cycle_path:        The cycle, starting from its first repeated node.
    """
    received_votes: int = 0
    delegation_error: bool = False
    cycle_error: bool = False
    cycle_path: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RatingEdge:
    rater_account_id: str
    ratee_account_id: str
    rating: str


@dataclass(frozen=True)
class AccountProfile:
    """
    Per-account inputs for rater weighting and display.

    Fields:
        account_id:       56-char public key.
        display_name:     Name, or a shortened ID when the account has none.
        portfolio_value:  Portfolio value in XLM.
        connections:      Count of confirmed relationship rows.
        own_score:        Account's own weighted reputation score (0 if unrated).
    """
    account_id: str
    display_name: str
    portfolio_value: float = 0.0
    connections: int = 0
    own_score: float = 0.0


@dataclass(frozen=True)
class RaterInfo:
    """A rating edge joined with the rater's profile."""
    account_id: str
    display_name: str
    rating: str
    portfolio_value: float
    connections: int
    own_score: float


@dataclass(frozen=True)
class AssetPair:
    asset_code: str
    asset_issuer: str


@dataclass
class SyncStats:
    total_accounts: int = 0
    persons: int = 0
    companies: int = 0
    council_ready: int = 0


def short_account_id(account_id: str) -> str:
    """GABCDE...UVWXYZ form used when an account has no name."""
    if len(account_id) <= 12:
        return account_id
    return f"{account_id[:6]}...{account_id[-6:]}"


# ── Reputation ────────────────────────────────────────────────────────────────

RATING_VALUES: dict[str, int] = {"A": 4, "B": 3, "C": 2, "D": 1}

# Inclusive lower bound of each grade band, best first.
GRADE_BANDS: tuple[tuple[float, str], ...] = (
    (3.5, "A"),
    (3.0, "A-"),
    (2.5, "B+"),
    (2.0, "B"),
    (1.5, "C+"),
    (1.0, "C"),
)
GRADE_NOT_APPLICABLE = "N/A"


def score_to_grade(score: float) -> str:
    """Map a 0-4 weighted score to a letter grade ("N/A" for unrated)."""
    for lower_bound, grade in GRADE_BANDS:
        if score >= lower_bound:
            return grade
    if score > 0:
        return "D"
    return GRADE_NOT_APPLICABLE


@dataclass
class ReputationScore:
    """
    Aggregated reputation of one ratee, computed over its direct raters.

    Fields:
        account_id:      Rated account.
        weighted_score:  sum(weight * value) / sum(weight), in [0, 4].
        base_score:      Unweighted mean of the rating values, in [0, 4].
        rating_count_a:  Number of A ratings (likewise b, c, d).
        total_ratings:   Number of valid ratings received.
        total_weight:    Sum of rater weights.
        calculated_at:   UTC timestamp of the computation.
    """
    account_id: str
    weighted_score: float = 0.0
    base_score: float = 0.0
    rating_count_a: int = 0
    rating_count_b: int = 0
    rating_count_c: int = 0
    rating_count_d: int = 0
    total_ratings: int = 0
    total_weight: float = 0.0
    calculated_at: Optional[datetime] = None

    @property
    def grade(self) -> str:
        return score_to_grade(self.weighted_score)


@dataclass(frozen=True)
class ReputationNode:
    """
    One rater shown in a reputation graph.

    distance is 1 for direct raters of the target and 2 for raters of a
    direct rater. rating is what this node gave to rated_account_id: the
    target (distance 1) or the level-1 rater it was reached through
    (distance 2).
    """
    account_id: str
    display_name: str
    rating: str
    weight: float
    portfolio_value: float
    connections: int
    own_score: float
    distance: int
    rated_account_id: str = ""


@dataclass
class ReputationGraph:
    target_account_id: str
    target_name: str
    score: ReputationScore
    level1_nodes: list[ReputationNode] = field(default_factory=list)
    level2_nodes: list[ReputationNode] = field(default_factory=list)
