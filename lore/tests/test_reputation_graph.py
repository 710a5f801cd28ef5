"""
Tests for lore.reputation.graph - the two-level reputation graph and its
NetworkX export.
"""

import pytest
from conftest import make_account_id, mtlap, xlm

from lore.models import AccountProfile, AccountRecord, RatingEdge, RelationshipEdge, ReputationScore
from lore.reputation.graph import (
    build_graph_for_account,
    build_reputation_graph,
    raters_of,
    reputation_graph_to_networkx,
)
from lore.storage.memory import InMemoryRepository

T, R1, R2, S1, S2 = (make_account_id(x) for x in ("target", "r1", "r2", "s1", "s2"))


def make_rating_web() -> tuple[list[RatingEdge], dict[str, AccountProfile]]:
    """
    R1 -A-> T, R2 -C-> T
    S1 -B-> R1, S1 -D-> R2, S2 -A-> R2
    T  -A-> R1          (target rating its own rater: excluded from level 2)
    R2 -B-> R1          (level-1 account also appears at level 2)
    """
    edges = [
        RatingEdge(R1, T, "A"),
        RatingEdge(R2, T, "C"),
        RatingEdge(S1, R1, "B"),
        RatingEdge(S1, R2, "D"),
        RatingEdge(S2, R2, "A"),
        RatingEdge(T, R1, "A"),
        RatingEdge(R2, R1, "B"),
    ]
    profiles = {
        T: AccountProfile(T, "Target"),
        R1: AccountProfile(R1, "Rater One", portfolio_value=1000.0, connections=8),
        R2: AccountProfile(R2, "Rater Two"),
        S1: AccountProfile(S1, "Second One", own_score=3.2),
    }
    return edges, profiles


# ── raters_of ─────────────────────────────────────────────────────────────────

def test_raters_of_joins_profiles():
    """Raters carry profile data; unknown raters get a shortened ID."""
    edges, profiles = make_rating_web()
    raters = {r.account_id: r for r in raters_of(R2, edges, profiles)}
    assert set(raters) == {S1, S2}
    assert raters[S1].display_name == "Second One"
    assert raters[S1].own_score == 3.2
    assert raters[S2].display_name == f"{S2[:6]}...{S2[-6:]}"


def test_raters_of_skips_invalid_letters():
    """A rating outside A-D is not a rater."""
    assert raters_of(T, [RatingEdge(R1, T, "X")], {}) == []


# ── build_reputation_graph ────────────────────────────────────────────────────

def test_level1_sorted_best_rating_first():
    """Direct raters are ordered A before C."""
    edges, profiles = make_rating_web()
    graph = build_reputation_graph(T, edges, profiles)
    assert [n.account_id for n in graph.level1_nodes] == [R1, R2]
    assert all(n.distance == 1 and n.rated_account_id == T for n in graph.level1_nodes)
    assert graph.target_name == "Target"


def test_level1_weight_uses_rater_profile():
    """R1's weight is log10(1001) * sqrt(9)."""
    edges, profiles = make_rating_web()
    node = build_reputation_graph(T, edges, profiles).level1_nodes[0]
    assert node.weight == pytest.approx(9.0013, abs=1e-3)


def test_level2_excludes_target_and_dedupes():
    """Target never appears at level 2; S1 keeps its best rating (B over D)."""
    edges, profiles = make_rating_web()
    graph = build_reputation_graph(T, edges, profiles)
    level2 = {n.account_id: n for n in graph.level2_nodes}

    assert T not in level2
    assert set(level2) == {S1, S2, R2}
    assert level2[S1].rating == "B"
    assert level2[S1].rated_account_id == R1
    assert level2[S2].rated_account_id == R2
    assert all(n.distance == 2 for n in graph.level2_nodes)
    assert [n.account_id for n in graph.level2_nodes][0] == S2


def test_score_computed_from_level1_only():
    """Weighted score uses R1 (A, w~9) and R2 (C, w=1)."""
    edges, profiles = make_rating_web()
    graph = build_reputation_graph(T, edges, profiles)
    w1 = 9.0013
    assert graph.score.weighted_score == pytest.approx((w1 * 4 + 1 * 2) / (w1 + 1), abs=1e-3)
    assert graph.score.base_score == pytest.approx(3.0)
    assert graph.score.total_ratings == 2


def test_unrated_target_has_empty_graph():
    """A target nobody rated gets no nodes and an N/A grade."""
    graph = build_reputation_graph(T, [], {})
    assert graph.level1_nodes == []
    assert graph.level2_nodes == []
    assert graph.score.grade == "N/A"


def test_mutual_ratings_terminate():
    """A rates B and B rates A: depth stays at two levels."""
    edges = [RatingEdge(R1, T, "A"), RatingEdge(T, R1, "A"), RatingEdge(R1, R1, "B")]
    graph = build_reputation_graph(T, edges, {})
    assert [n.account_id for n in graph.level1_nodes] == [R1]
    assert [n.account_id for n in graph.level2_nodes] == [R1]


# ── Repository wrapper ────────────────────────────────────────────────────────

def test_build_graph_for_account_prefers_stored_score():
    """A persisted score replaces the recomputed one."""
    repo = InMemoryRepository()
    repo.upsert_account(AccountRecord(
        R1, name="Rater", balances=[xlm(50), mtlap(1)],
        relationships=[RelationshipEdge(R1, T, "B", "")],
    ))
    repo.upsert_account(AccountRecord(T, name="Target", balances=[mtlap(1)]))
    repo.upsert_scores({T: ReputationScore(T, weighted_score=1.25, total_ratings=9)})

    graph = build_graph_for_account(repo, T)

    assert graph.target_name == "Target"
    assert graph.score.total_ratings == 9
    assert [n.display_name for n in graph.level1_nodes] == ["Rater"]


# ── NetworkX export ───────────────────────────────────────────────────────────

def test_networkx_export_structure():
    """Edges point rater -> rated; shared accounts keep distance 1."""
    edges, profiles = make_rating_web()
    G = reputation_graph_to_networkx(build_reputation_graph(T, edges, profiles))

    assert G.nodes[T]["distance"] == 0
    assert G.nodes[R2]["distance"] == 1
    assert G.nodes[S1]["distance"] == 2
    assert G.has_edge(R1, T) and G.has_edge(R2, T)
    assert G.has_edge(R2, R1)
    assert G.edges[S1, R1]["rating"] == "B"
    assert G.edges[S1, R1]["value"] == 3
    assert not G.has_edge(T, R1)
