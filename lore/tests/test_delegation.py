"""
Tests for lore.governance.delegation - delegation errors, cycle detection
and council vote tallies.
"""

from decimal import Decimal

import pytest
from conftest import make_account_id, mtlap

from lore.config import LoreConfig
from lore.governance.delegation import (
    DelegationWriteError,
    build_index,
    final_council_target,
    resolve_delegations,
    tally_council_votes,
    trace_delegation_chain,
)
from lore.models import AccountRecord, DelegationInfo
from lore.storage import RepositoryError
from lore.storage.memory import InMemoryRepository

A, B, C, D, E = (make_account_id(x) for x in ("a", "b", "c", "d", "e"))


def _info(account_id, delegate_to=None, council_to=None, balance=1, ready=False):
    return DelegationInfo(account_id, delegate_to, council_to, Decimal(str(balance)), ready)


def _account(account_id, balance=1, delegate_to=None, council_to=None, ready=False):
    return AccountRecord(
        account_id=account_id,
        balances=[mtlap(balance)] if balance else [],
        delegate_to=delegate_to,
        council_delegate_to=council_to,
        council_ready=ready,
    )


def _repo(*records) -> InMemoryRepository:
    repo = InMemoryRepository()
    for record in records:
        repo.upsert_account(record)
    return repo


# ── Chain tracing ─────────────────────────────────────────────────────────────

def test_trace_chain_without_cycle():
    """A terminating chain returns the full path and no cycle."""
    index = build_index([_info(A, B), _info(B, C), _info(C)])
    assert trace_delegation_chain(A, index) == ([A, B, C], False)


def test_trace_chain_returns_cyclic_portion_only():
    """A tail leading into a cycle reports only the cycle."""
    index = build_index([_info(D, A), _info(A, B), _info(B, C), _info(C, A)])
    path, has_cycle = trace_delegation_chain(D, index)
    assert has_cycle is True
    assert path == [A, B, C]


def test_trace_self_delegation_is_cycle():
    """Delegating to oneself is a one-node cycle."""
    index = build_index([_info(A, A)])
    assert trace_delegation_chain(A, index) == ([A], True)


def test_trace_long_chain_is_iterative():
    """Very long chains do not hit the recursion limit."""
    ids = [make_account_id(f"n{i}") for i in range(5000)]
    infos = [_info(ids[i], ids[i + 1]) for i in range(len(ids) - 1)] + [_info(ids[-1])]
    path, has_cycle = trace_delegation_chain(ids[0], build_index(infos))
    assert has_cycle is False
    assert len(path) == 5000


# ── Ordinary delegation pass ──────────────────────────────────────────────────

def test_delegation_to_missing_account_is_error():
    """A target that was never synced flags the delegator."""
    repo = _repo(_account(A, delegate_to=make_account_id("ghost")))
    report = resolve_delegations(repo)
    assert report.delegation_errors == [A]
    assert repo.get_delegation_states()[A].delegation_error is True


def test_delegation_to_zero_balance_account_is_error():
    """A target holding no MTLAP flags the delegator."""
    repo = _repo(_account(A, delegate_to=B), _account(B, balance=0))
    report = resolve_delegations(repo)
    assert report.delegation_errors == [A]
    assert repo.get_delegation_states()[B].delegation_error is False


def test_valid_delegation_has_no_flags():
    """Delegating to a holder sets nothing."""
    repo = _repo(_account(A, delegate_to=B), _account(B))
    report = resolve_delegations(repo)
    states = repo.get_delegation_states()
    assert report.delegation_errors == []
    assert report.cycles == []
    assert not states[A].delegation_error and not states[A].cycle_error


@pytest.mark.parametrize("n", [2, 3, 5])
def test_cycle_of_n_marks_every_member(n):
    """Every account on an N-cycle gets cycle_error and the same path."""
    ids = [make_account_id(f"cyc{i}") for i in range(n)]
    repo = _repo(*(_account(ids[i], delegate_to=ids[(i + 1) % n]) for i in range(n)))

    report = resolve_delegations(repo)
    states = repo.get_delegation_states()

    assert len(report.cycles) == 1
    assert sorted(report.cycles[0]) == sorted(ids)
    for aid in ids:
        assert states[aid].cycle_error is True
        assert states[aid].cycle_path == report.cycles[0]


def test_tail_into_cycle_is_not_marked():
    """An account leading into a cycle is not itself on it."""
    repo = _repo(
        _account(D, delegate_to=A),
        _account(A, delegate_to=B),
        _account(B, delegate_to=A),
    )
    report = resolve_delegations(repo)
    states = repo.get_delegation_states()
    assert len(report.cycles) == 1
    assert states[D].cycle_error is False
    assert report.cycle_accounts == {A, B}


def test_resolve_resets_previous_flags():
    """A second pass after the cycle is broken clears the old flags."""
    repo = _repo(_account(A, delegate_to=B), _account(B, delegate_to=A))
    resolve_delegations(repo)
    repo.upsert_account(_account(B))

    resolve_delegations(repo)

    assert repo.get_delegation_states()[A].cycle_error is False
    assert repo.get_delegation_states()[B].cycle_path == []


# ── Council votes ─────────────────────────────────────────────────────────────

def test_votes_are_additive_and_truncated():
    """Two delegators' balances sum, then truncate to int."""
    index = build_index([
        _info(A, council_to=C, balance="2.7"),
        _info(B, council_to=C, balance="1.6"),
        _info(C, ready=True, balance=100),
    ])
    assert tally_council_votes(index) == {C: 4}


def test_council_chain_is_followed_transitively():
    """A -> B -> C(ready): both A and B count for C."""
    index = build_index([
        _info(A, council_to=B, balance=3),
        _info(B, council_to=C, balance=5),
        _info(C, ready=True),
    ])
    assert final_council_target(A, index) == C
    assert tally_council_votes(index) == {C: 8}


def test_zero_balance_intermediate_is_still_followed():
    """Balances along the council chain are ignored."""
    index = build_index([
        _info(A, council_to=B, balance=4),
        _info(B, council_to=C, balance=0),
        _info(C, ready=True),
    ])
    assert tally_council_votes(index)[C] == 4


def test_council_cycle_contributes_nothing():
    """Accounts whose council chain loops give their votes to nobody."""
    index = build_index([
        _info(A, council_to=B, balance=5),
        _info(B, council_to=A, balance=5),
        _info(C, ready=True),
    ])
    assert final_council_target(A, index) is None
    assert tally_council_votes(index) == {C: 0}


def test_non_ready_terminal_gets_nothing():
    """A chain ending at a non-candidate is dropped."""
    index = build_index([_info(A, council_to=B, balance=5), _info(B)])
    assert final_council_target(A, index) is None
    assert tally_council_votes(index) == {}


def test_candidate_own_balance_not_counted():
    """A ready account does not receive its own MTLAP as votes."""
    index = build_index([_info(C, ready=True, balance=50)])
    assert tally_council_votes(index) == {C: 0}


def test_received_votes_persisted():
    """resolve_delegations writes received votes for every candidate."""
    repo = _repo(
        _account(A, balance=7, council_to=C),
        _account(C, ready=True),
        _account(E, ready=True),
    )
    report = resolve_delegations(repo)
    states = repo.get_delegation_states()
    assert report.received_votes == {C: 7, E: 0}
    assert states[C].received_votes == 7
    assert states[A].received_votes == 0


# ── Write errors ──────────────────────────────────────────────────────────────

class FailingRepository(InMemoryRepository):
    """Raises on set_cycle_error for the accounts in fail_ids."""

    def __init__(self, fail_ids):
        super().__init__()
        self.fail_ids = set(fail_ids)

    def set_cycle_error(self, account_id, path):
        if account_id in self.fail_ids:
            raise RepositoryError(f"write failed: {account_id}")
        super().set_cycle_error(account_id, path)


def _cycle_repo(repo, ids):
    for i, aid in enumerate(ids):
        repo.upsert_account(_account(aid, delegate_to=ids[(i + 1) % len(ids)]))
    return repo


def test_write_errors_within_cap_are_tolerated():
    """Up to the cap, failed writes are reported but the pass succeeds."""
    ids = [make_account_id(f"w{i}") for i in range(6)]
    repo = _cycle_repo(FailingRepository(ids[:3]), ids)

    report = resolve_delegations(repo, LoreConfig(delegation_write_error_cap=3))

    assert sorted(report.write_errors) == sorted(ids[:3])
    assert repo.get_delegation_states()[ids[4]].cycle_error is True


def test_write_errors_above_cap_raise():
    """More failed writes than the cap fails the pass."""
    ids = [make_account_id(f"w{i}") for i in range(6)]
    repo = _cycle_repo(FailingRepository(ids[:4]), ids)

    with pytest.raises(DelegationWriteError):
        resolve_delegations(repo, LoreConfig(delegation_write_error_cap=3))
