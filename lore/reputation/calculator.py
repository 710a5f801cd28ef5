"""
lore/reputation/calculator.py - Weighted A/B/C/D reputation scores.

Members rate each other by declaring relationship keys A, B, C or D
(e.g. ManageData "A3" -> GABC...). A rating's influence depends on who gave
it: raters with larger portfolios and more confirmed relationships weigh more.

    value(A)=4  value(B)=3  value(C)=2  value(D)=1   (anything else: skipped)

    weight(rater) = clip( log10(portfolio + 1) * sqrt(connections + 1),
                          min_weight, max_weight )

    weighted_score = sum(weight_i * value_i) / sum(weight_i)
    base_score     = mean(value_i)

Both factors are non-decreasing, so weight is non-decreasing in portfolio
and connections. The product is 0 for an empty portfolio and stays under
the floor for small ones, and there connections do not change the weight
(with no connections the floor covers anything under 9 XLM). The min_weight floor (1.0) keeps every valid rating
strictly positive, even from an empty new account. The max_weight cap
(100.0) bounds a whale's influence. Both scores are convex combinations of
values in [1, 4] and therefore stay within [0, 4].

"Connections" counts rows of the confirmed-relationship view: an edge S->T
of a paired type (Employer/Employee, Spouse/Spouse, ...) joined with every
matching T->S edge of the paired type. Each joined row counts once for S
and once for T.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Iterable, Optional

import numpy as np

from lore.config import DEFAULT_CONFIG, LoreConfig
from lore.models import (
    RATING_VALUES,
    RatingEdge,
    RelationshipEdge,
    ReputationScore,
    score_to_grade,  # noqa: F401  re-exported for callers
)
from lore.parsing.manage_data import RELATION_PAIRS

logger = logging.getLogger(__name__)

RATING_LETTERS: tuple[str, ...] = ("A", "B", "C", "D")


def rating_value(rating: str) -> int:
    """A=4, B=3, C=2, D=1; any other string is 0 and contributes nothing."""
    return RATING_VALUES.get(rating, 0)


def rater_weight(
    portfolio_value: float,
    connections: int,
    config: LoreConfig = DEFAULT_CONFIG,
) -> float:
    """
    Influence of one rater.

    Args:
        portfolio_value: Rater's portfolio value in XLM. Negative input is treated as 0.
        connections:     Rater's confirmed-connection count.
        config:          Supplies reputation_min_weight / reputation_max_weight.

    Returns:
        Weight in [config.reputation_min_weight, config.reputation_max_weight].

    Connections only multiply the portfolio factor: a rater with 0 XLM gets
    min_weight however many confirmed connections they have.
    """
    portfolio = max(float(portfolio_value), 0.0)
    links = max(int(connections), 0)
    raw = np.log10(portfolio + 1.0) * np.sqrt(links + 1.0)
    return float(np.clip(raw, config.reputation_min_weight, config.reputation_max_weight))


def count_confirmed_connections(edges: Iterable[RelationshipEdge]) -> dict[str, int]:
    """
    Count confirmed-relationship rows per account.

    An edge S->T of type X is confirmed by each edge T->S of type
    RELATION_PAIRS[X]. Every (edge, confirming edge) row adds one to S and
    one to T, so a mutually declared pair gives each side 2.
    """
    edges = list(edges)
    reverse_index: dict[tuple[str, str, str], int] = defaultdict(int)
    for edge in edges:
        reverse_index[(edge.source_account_id, edge.target_account_id, edge.relation_type)] += 1

    counts: dict[str, int] = defaultdict(int)
    for edge in edges:
        paired = RELATION_PAIRS.get(edge.relation_type)
        if paired is None:
            continue
        rows = reverse_index.get((edge.target_account_id, edge.source_account_id, paired), 0)
        if rows:
            counts[edge.source_account_id] += rows
            counts[edge.target_account_id] += rows
    return dict(counts)


def calculate_scores(
    edges: Iterable[RatingEdge],
    portfolios: dict[str, float],
    connections: dict[str, int],
    config: LoreConfig = DEFAULT_CONFIG,
    calculated_at: Optional[datetime] = None,
) -> dict[str, ReputationScore]:
    """
    Compute a ReputationScore for every account that received a rating.

    Args:
        edges:          Rating edges (rater -> ratee, letter).
        portfolios:     account_id -> portfolio value; missing means 0.
        connections:    account_id -> confirmed-connection count; missing means 0.
        config:         Weight bounds.
        calculated_at:  Timestamp stamped on every score (default: now, UTC).

    Returns:
        dict mapping ratee account_id -> ReputationScore. A ratee whose
        ratings are all invalid letters gets a zero score.
    """
    stamp = calculated_at or datetime.now(timezone.utc)

    by_ratee: dict[str, list[RatingEdge]] = defaultdict(list)
    for edge in edges:
        by_ratee[edge.ratee_account_id].append(edge)

    scores: dict[str, ReputationScore] = {}
    for ratee_id, ratee_edges in by_ratee.items():
        score = ReputationScore(account_id=ratee_id, calculated_at=stamp)
        values: list[int] = []
        weights: list[float] = []

        for edge in ratee_edges:
            value = rating_value(edge.rating)
            if value == 0:
                continue
            letter_field = f"rating_count_{edge.rating.lower()}"
            setattr(score, letter_field, getattr(score, letter_field) + 1)
            values.append(value)
            weights.append(rater_weight(
                portfolios.get(edge.rater_account_id, 0.0),
                connections.get(edge.rater_account_id, 0),
                config,
            ))

        score.total_ratings = len(values)
        if values:
            v = np.asarray(values, dtype=float)
            w = np.asarray(weights, dtype=float)
            score.base_score = float(v.mean())
            score.total_weight = float(w.sum())
            score.weighted_score = float(np.dot(w, v) / w.sum())

        scores[ratee_id] = score

    logger.debug(
        "calculate_scores: %d ratees from %d rating edges",
        len(scores), sum(len(e) for e in by_ratee.values()),
    )
    return scores


def compute_reputation_scores(repository, config: LoreConfig = DEFAULT_CONFIG) -> int:
    """
    Recompute and persist reputation scores for every rated account.

    Reads the rating edges, portfolios and connection counts from the
    repository, computes scores, and upserts them. Only ratees that exist
    as synced accounts are written.

    Returns:
        Number of scores written.
    """
    edges = repository.get_rating_edges()
    profiles = repository.get_account_profiles()
    portfolios = {aid: p.portfolio_value for aid, p in profiles.items()}
    connections = {aid: p.connections for aid, p in profiles.items()}

    scores = calculate_scores(edges, portfolios, connections, config)
    written = repository.upsert_scores(scores)

    logger.info(
        "Reputation: %d rating edges, %d ratees scored, %d written",
        len(edges), len(scores), written,
    )
    return written
