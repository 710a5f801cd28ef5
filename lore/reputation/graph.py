"""
lore/reputation/graph.py - Two-level reputation graph for one target account.

    Level 1  every account that rated the target (distance 1)
    Level 2  every account that rated a level-1 rater (distance 2)

Level 2 is de-duplicated by account: when an account rated several level-1
raters, the best rating it gave is shown. The target itself never appears
at level 2. Level-1 membership does not exclude an account from level 2,
since "X rated the target" and "X rated one of the target's raters" are
separate facts.

Depth is fixed at two hops by construction. There is no recursive traversal,
so mutual ratings (A rates B, B rates A) cannot loop.

The score shown with the graph is computed from level 1 only. Level 2 is
context for the reader.

Nodes are ordered by rating (A first), then by weight (heaviest first), then
by account ID so that output is stable.
"""

import logging
from collections import defaultdict
from typing import Iterable, Optional

import networkx as nx

from lore.config import DEFAULT_CONFIG, LoreConfig
from lore.models import (
    AccountProfile,
    RaterInfo,
    RatingEdge,
    ReputationGraph,
    ReputationNode,
    ReputationScore,
    short_account_id,
)
from lore.reputation.calculator import calculate_scores, rater_weight, rating_value

logger = logging.getLogger(__name__)


def _profile_for(account_id: str, profiles: dict[str, AccountProfile]) -> AccountProfile:
    profile = profiles.get(account_id)
    if profile is None:
        return AccountProfile(account_id=account_id, display_name=short_account_id(account_id))
    return profile


def raters_of(
    ratee_id: str,
    edges: Iterable[RatingEdge],
    profiles: dict[str, AccountProfile],
) -> list[RaterInfo]:
    """Join every valid rating of ratee_id with its rater's profile."""
    raters: list[RaterInfo] = []
    for edge in edges:
        if edge.ratee_account_id != ratee_id or rating_value(edge.rating) == 0:
            continue
        profile = _profile_for(edge.rater_account_id, profiles)
        raters.append(RaterInfo(
            account_id=edge.rater_account_id,
            display_name=profile.display_name,
            rating=edge.rating,
            portfolio_value=profile.portfolio_value,
            connections=profile.connections,
            own_score=profile.own_score,
        ))
    return raters


def _to_node(
    rater: RaterInfo,
    distance: int,
    rated_account_id: str,
    config: LoreConfig,
) -> ReputationNode:
    return ReputationNode(
        account_id=rater.account_id,
        display_name=rater.display_name,
        rating=rater.rating,
        weight=rater_weight(rater.portfolio_value, rater.connections, config),
        portfolio_value=rater.portfolio_value,
        connections=rater.connections,
        own_score=rater.own_score,
        distance=distance,
        rated_account_id=rated_account_id,
    )


def _node_sort_key(node: ReputationNode) -> tuple:
    return (-rating_value(node.rating), -node.weight, node.account_id)


def build_reputation_graph(
    target_account_id: str,
    edges: Iterable[RatingEdge],
    profiles: dict[str, AccountProfile],
    config: LoreConfig = DEFAULT_CONFIG,
) -> ReputationGraph:
    """
    Build the display graph and level-1 score for target_account_id.

    Args:
        target_account_id: Account whose reputation is shown.
        edges:             Full rating-edge set.
        profiles:          account_id -> AccountProfile (name, portfolio,
                           connections, own score). Accounts without a
                           profile get a shortened ID and zero inputs.
        config:            Weight bounds.

    Returns:
        ReputationGraph with sorted level-1 and level-2 nodes.
    """
    by_ratee: dict[str, list[RatingEdge]] = defaultdict(list)
    for edge in edges:
        by_ratee[edge.ratee_account_id].append(edge)

    # ── Level 1 ───────────────────────────────────────────────────────────────
    direct = raters_of(target_account_id, by_ratee.get(target_account_id, []), profiles)
    level1 = sorted(
        (_to_node(r, 1, target_account_id, config) for r in direct), key=_node_sort_key
    )

    portfolios = {aid: p.portfolio_value for aid, p in profiles.items()}
    connections = {aid: p.connections for aid, p in profiles.items()}
    scores = calculate_scores(
        by_ratee.get(target_account_id, []), portfolios, connections, config
    )
    score = scores.get(target_account_id) or ReputationScore(account_id=target_account_id)

    # ── Level 2 ───────────────────────────────────────────────────────────────
    best: dict[str, ReputationNode] = {}
    for level1_id in dict.fromkeys(n.account_id for n in level1):
        for rater in raters_of(level1_id, by_ratee.get(level1_id, []), profiles):
            if rater.account_id == target_account_id:
                continue
            node = _to_node(rater, 2, level1_id, config)
            current = best.get(rater.account_id)
            if current is None or _node_sort_key(node) < _node_sort_key(current):
                best[rater.account_id] = node
    level2 = sorted(best.values(), key=_node_sort_key)

    target_name = _profile_for(target_account_id, profiles).display_name

    logger.debug(
        "Reputation graph for %s: %d level-1, %d level-2 nodes, score %.2f",
        target_account_id, len(level1), len(level2), score.weighted_score,
    )
    return ReputationGraph(
        target_account_id=target_account_id,
        target_name=target_name,
        score=score,
        level1_nodes=level1,
        level2_nodes=level2,
    )


def build_graph_for_account(
    repository,
    target_account_id: str,
    config: LoreConfig = DEFAULT_CONFIG,
) -> ReputationGraph:
    """Build the reputation graph for one account from repository state.

    When a persisted score exists it replaces the freshly computed one, so
    the graph shows the same score as the leaderboard.
    """
    graph = build_reputation_graph(
        target_account_id,
        repository.get_rating_edges(),
        repository.get_account_profiles(),
        config,
    )
    stored: Optional[ReputationScore] = repository.get_score(target_account_id)
    if stored is not None:
        graph.score = stored
    return graph


def reputation_graph_to_networkx(graph: ReputationGraph) -> nx.DiGraph:
    """
    Export a ReputationGraph as a NetworkX DiGraph.

    Nodes carry name, distance (0 for the target) and the weighting inputs.
    Edges point from rater to rated account and carry the rating letter, its
    numeric value and the rater's weight. An account present at both levels
    is one node with two outgoing edges and keeps distance 1. Nodes are
    visited best rating first, so a repeated rater-ratee pair keeps its best edge.
    """
    G = nx.DiGraph()
    G.add_node(
        graph.target_account_id,
        name=graph.target_name,
        distance=0,
        score=graph.score.weighted_score,
        grade=graph.score.grade,
    )
    for node in graph.level1_nodes + graph.level2_nodes:
        if node.account_id not in G:
            G.add_node(
                node.account_id,
                name=node.display_name,
                distance=node.distance,
                weight=node.weight,
                portfolio_value=node.portfolio_value,
                connections=node.connections,
                own_score=node.own_score,
            )
        if G.has_edge(node.account_id, node.rated_account_id):
            continue
        G.add_edge(
            node.account_id,
            node.rated_account_id,
            rating=node.rating,
            value=rating_value(node.rating),
            weight=node.weight,
        )
    return G
