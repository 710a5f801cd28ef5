"""
Tests for lore.reputation.calculator - rater weights, weighted scores,
grade bands and confirmed-connection counts.
"""

from datetime import datetime, timezone

import pytest
from conftest import make_account_id, mtlap, xlm

from lore.config import LoreConfig
from lore.models import AccountRecord, RatingEdge, RelationshipEdge, score_to_grade
from lore.reputation.calculator import (
    calculate_scores,
    compute_reputation_scores,
    count_confirmed_connections,
    rater_weight,
    rating_value,
)
from lore.storage.memory import InMemoryRepository

A, B, C, T = (make_account_id(x) for x in ("a", "b", "c", "target"))


# ── Rater weight ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "portfolio, connections, expected",
    [
        (0, 0, 1.0),
        (5, 0, 1.0),
        (10, 0, 1.0414),
        (100, 3, 4.0086),
        (1000, 8, 9.0013),
        (1_000_000, 99, 60.0),
        (1_000_000_000, 10_000, 100.0),
    ],
)
def test_rater_weight_reference_points(portfolio, connections, expected):
    """log10(p+1) * sqrt(c+1), clamped to [1, 100]."""
    assert rater_weight(portfolio, connections) == pytest.approx(expected, abs=1e-3)


def test_rater_weight_is_monotone():
    """More portfolio or more connections never lowers the weight."""
    previous = 0.0
    for portfolio in (0, 1, 10, 100, 10_000, 10**8):
        weight = rater_weight(portfolio, 4)
        assert weight >= previous
        previous = weight

    previous = 0.0
    for connections in (0, 1, 5, 50, 500):
        weight = rater_weight(1000, connections)
        assert weight >= previous
        previous = weight


def test_rater_weight_negative_inputs_floor():
    """Negative portfolio or connections behave like zero."""
    assert rater_weight(-50, -3) == 1.0


def test_rater_weight_connections_need_a_portfolio():
    """With an empty portfolio the floor holds whatever the connection count."""
    assert rater_weight(0, 0) == 1.0
    assert rater_weight(0, 50) == 1.0
    assert rater_weight(5, 0) == 1.0
    assert rater_weight(5, 10) > 1.0
    assert rater_weight(1000, 50) > rater_weight(1000, 0)


def test_rater_weight_custom_bounds():
    """Bounds come from config."""
    config = LoreConfig(reputation_min_weight=2.0, reputation_max_weight=5.0)
    assert rater_weight(0, 0, config) == 2.0
    assert rater_weight(10**9, 100, config) == 5.0


# ── Grades ────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "score, grade",
    [
        (4.0, "A"),
        (3.5, "A"),
        (3.49, "A-"),
        (3.0, "A-"),
        (2.5, "B+"),
        (2.0, "B"),
        (1.5, "C+"),
        (1.0, "C"),
        (0.99, "D"),
        (0.0, "N/A"),
    ],
)
def test_score_to_grade_boundaries(score, grade):
    """Band lower bounds are inclusive; zero means unrated."""
    assert score_to_grade(score) == grade


def test_rating_value_unknown_letter_is_zero():
    """Only A-D carry value."""
    assert [rating_value(x) for x in ("A", "B", "C", "D", "E", "a")] == [4, 3, 2, 1, 0, 0]


# ── calculate_scores ──────────────────────────────────────────────────────────

def test_equal_weights_give_plain_mean():
    """With identical raters, weighted and base scores agree."""
    edges = [RatingEdge(A, T, "A"), RatingEdge(B, T, "C")]
    score = calculate_scores(edges, {}, {})[T]
    assert score.base_score == pytest.approx(3.0)
    assert score.weighted_score == pytest.approx(3.0)
    assert score.total_weight == pytest.approx(2.0)
    assert (score.rating_count_a, score.rating_count_c, score.total_ratings) == (1, 1, 2)


def test_heavier_rater_pulls_score():
    """A whale's D outweighs a newcomer's A."""
    edges = [RatingEdge(A, T, "A"), RatingEdge(B, T, "D")]
    score = calculate_scores(edges, {B: 1_000_000}, {B: 99})[T]
    expected = (1.0 * 4 + 60.0 * 1) / 61.0
    assert score.weighted_score == pytest.approx(expected, rel=1e-4)
    assert score.base_score == pytest.approx(2.5)
    assert score.grade == "C"


def test_invalid_letters_are_ignored():
    """Ratings outside A-D do not count; the ratee still gets a zero score."""
    edges = [RatingEdge(A, T, "E"), RatingEdge(B, C, "Z"), RatingEdge(A, C, "B")]
    scores = calculate_scores(edges, {}, {})
    assert scores[T].total_ratings == 0
    assert scores[T].weighted_score == 0.0
    assert scores[T].grade == "N/A"
    assert scores[C].total_ratings == 1
    assert scores[C].weighted_score == pytest.approx(3.0)


def test_scores_stay_within_bounds():
    """Weighted and base scores lie in [0, 4] for any mix."""
    letters = "ABCDABDDCA"
    edges = [RatingEdge(make_account_id(f"r{i}"), T, letter) for i, letter in enumerate(letters)]
    portfolios = {e.rater_account_id: 10.0 ** i for i, e in enumerate(edges)}
    score = calculate_scores(edges, portfolios, {})[T]
    assert 0.0 <= score.weighted_score <= 4.0
    assert 0.0 <= score.base_score <= 4.0


def test_calculated_at_is_stamped():
    """Every score carries the supplied timestamp."""
    stamp = datetime(2026, 1, 1, tzinfo=timezone.utc)
    scores = calculate_scores([RatingEdge(A, T, "A")], {}, {}, calculated_at=stamp)
    assert scores[T].calculated_at == stamp


# ── Confirmed connections ─────────────────────────────────────────────────────

def _edge(src, dst, kind, index=""):
    return RelationshipEdge(src, dst, kind, index)


def test_mutual_pair_counts_two_each():
    """Employer/Employee declared on both sides gives each side 2 rows."""
    counts = count_confirmed_connections([_edge(A, B, "Employer"), _edge(B, A, "Employee")])
    assert counts == {A: 2, B: 2}


def test_one_sided_relationship_not_counted():
    """An unreciprocated claim is not a connection."""
    assert count_confirmed_connections([_edge(A, B, "Spouse")]) == {}


def test_wrong_pair_type_not_counted():
    """Employer answered by Employer is not confirmed."""
    assert count_confirmed_connections([_edge(A, B, "Employer"), _edge(B, A, "Employer")]) == {}


def test_unpaired_types_never_count():
    """Ratings and one-way types have no pairing."""
    edges = [_edge(A, B, "A"), _edge(B, A, "A"), _edge(A, B, "Sympathy"), _edge(B, A, "Sympathy")]
    assert count_confirmed_connections(edges) == {}


def test_duplicate_indices_multiply_rows():
    """Two indexed OneFamily claims each way give 4 joined rows per direction."""
    edges = [
        _edge(A, B, "OneFamily", ""), _edge(A, B, "OneFamily", "1"),
        _edge(B, A, "OneFamily", ""), _edge(B, A, "OneFamily", "1"),
    ]
    assert count_confirmed_connections(edges) == {A: 8, B: 8}


# ── compute_reputation_scores ─────────────────────────────────────────────────

def _rated_account(account_id, ratings=(), xlm_balance=0):
    return AccountRecord(
        account_id=account_id,
        balances=[xlm(xlm_balance), mtlap(1)],
        relationships=[RelationshipEdge(account_id, target, letter, "") for target, letter in ratings],
    )


def test_compute_reputation_scores_writes_known_ratees_only():
    """Scores for accounts that were never synced are skipped."""
    repo = InMemoryRepository()
    outsider = make_account_id("outsider")
    repo.upsert_account(_rated_account(A, ratings=[(T, "A"), (outsider, "B")], xlm_balance=100))
    repo.upsert_account(_rated_account(T))

    written = compute_reputation_scores(repo)

    assert written == 1
    assert repo.get_score(outsider) is None
    stored = repo.get_score(T)
    assert stored.weighted_score == pytest.approx(4.0)
    assert stored.total_weight == pytest.approx(rater_weight(100, 0))
