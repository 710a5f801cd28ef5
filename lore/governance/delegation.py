"""
lore/governance/delegation.py - Delegation validity, cycles and council votes.

Members route governance weight through two ManageData directives:

    mtla_delegate    ordinary delegation; the target must exist and hold MTLAP
    mtla_c_delegate  council delegation, or "ready" to stand as a candidate

resolve_delegations() recomputes every derived delegation field from
scratch once per full resync:

    1. reset          clear received votes, error flags and cycle paths
    2. ordinary pass  for each account with mtla_delegate (ID order):
                        target missing or MTLAP <= 0 -> delegation error
                        else walk the chain; on a revisit, every account on
                        the cyclic portion is flagged with the cycle path
    3. council pass   each account's council chain is followed to its end,
                        ignoring balances along the way; a council-ready
                        account with no outgoing council pointer collects
                        the MTLAP of every other account resolving to it
    4. writes         each derived write is independent; failures are
                        collected and only more than
                        config.delegation_write_error_cap of them fails the pass

Both walks are iterative with a visited set over a dict index of the
snapshot, so long or cyclic chains cannot recurse.

A cycle is persisted state, not an error: the pass still succeeds.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from lore.config import DEFAULT_CONFIG, LoreConfig
from lore.models import DelegationInfo

logger = logging.getLogger(__name__)


class DelegationWriteError(Exception):
    """More derived-field writes failed than config.delegation_write_error_cap allows."""


@dataclass
class DelegationReport:
    """
    Summary of one resolver pass.

    Fields:
        accounts:           Accounts in the snapshot.
        delegating:         Accounts with an ordinary delegation directive.
        delegation_errors:  Accounts flagged with a delegation error.
        cycles:             Distinct cyclic paths found, each from its first
                            repeated node.
        received_votes:     council-ready account -> truncated vote total.
        write_errors:       Account IDs whose derived write failed.
    """
    accounts: int = 0
    delegating: int = 0
    delegation_errors: list[str] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    received_votes: dict[str, int] = field(default_factory=dict)
    write_errors: list[str] = field(default_factory=list)

    @property
    def cycle_accounts(self) -> set[str]:
        return {aid for path in self.cycles for aid in path}


def build_index(accounts: list[DelegationInfo]) -> dict[str, DelegationInfo]:
    return {acc.account_id: acc for acc in accounts}


def trace_delegation_chain(
    start_id: str,
    index: dict[str, DelegationInfo],
) -> tuple[list[str], bool]:
    """
    Follow delegate_to pointers from start_id.

    Returns:
        (path, has_cycle). Without a cycle, path is the full chain from
        start_id to the last node reached. With a cycle, path is only the
        cyclic portion, starting at the first repeated node.
    """
    visited: set[str] = set()
    path: list[str] = []
    current: Optional[str] = start_id

    while current is not None:
        if current in visited:
            return path[path.index(current):], True
        visited.add(current)
        path.append(current)

        node = index.get(current)
        if node is None:
            break
        current = node.delegate_to

    return path, False


def final_council_target(start_id: str, index: dict[str, DelegationInfo]) -> Optional[str]:
    """
    Resolve where start_id's council vote ends up.

    Follows council_delegate_to without looking at balances. The chain ends
    at an account with no council pointer: that account is the target if it
    is council-ready. A missing account, a non-ready terminal or a cycle
    yields None.
    """
    visited: set[str] = set()
    current = start_id

    while True:
        if current in visited:
            return None
        visited.add(current)

        node = index.get(current)
        if node is None:
            return None
        if node.council_delegate_to is None:
            return current if node.council_ready else None
        current = node.council_delegate_to


def tally_council_votes(index: dict[str, DelegationInfo]) -> dict[str, int]:
    """
    Received votes for every council-ready account.

    Sums the MTLAP balance of every other account whose council chain
    resolves to the candidate, then truncates to int. Candidates nobody
    delegates to get 0.
    """
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for account_id, node in index.items():
        target = final_council_target(account_id, index)
        if target is None or target == account_id:
            continue
        totals[target] += node.governance_balance

    return {
        account_id: int(totals.get(account_id, Decimal("0")))
        for account_id, node in index.items()
        if node.council_ready
    }


def resolve_delegations(repository, config: LoreConfig = DEFAULT_CONFIG) -> DelegationReport:
    """
    Recompute all derived delegation fields in the repository.

    Args:
        repository: Repository with reset_delegations, get_all_delegation_info,
                    set_delegation_error, set_cycle_error, set_received_votes.
        config:     Supplies delegation_write_error_cap.

    Returns:
        DelegationReport for the pass.

    Raises:
        DelegationWriteError: More write failures than the configured cap.
    """
    repository.reset_delegations()
    index = build_index(repository.get_all_delegation_info())

    report = DelegationReport(accounts=len(index))

    def write(account_id: str, setter, *args) -> None:
        try:
            setter(account_id, *args)
        except Exception as exc:  # noqa: BLE001
            logger.error("Delegation write failed for %s: %s", account_id, exc)
            report.write_errors.append(account_id)

    # ── Ordinary delegation ───────────────────────────────────────────────────
    marked: set[str] = set()
    for account_id in sorted(index):
        node = index[account_id]
        if node.delegate_to is None:
            continue
        report.delegating += 1

        target = index.get(node.delegate_to)
        if target is None or target.governance_balance <= 0:
            report.delegation_errors.append(account_id)
            write(account_id, repository.set_delegation_error, True)
            continue

        path, has_cycle = trace_delegation_chain(account_id, index)
        if not has_cycle or path[0] in marked:
            continue
        report.cycles.append(path)
        for member in path:
            if member in marked:
                continue
            marked.add(member)
            write(member, repository.set_cycle_error, path)

    # ── Council votes ─────────────────────────────────────────────────────────
    report.received_votes = tally_council_votes(index)
    for account_id, votes in sorted(report.received_votes.items()):
        write(account_id, repository.set_received_votes, votes)

    if report.write_errors:
        logger.warning(
            "Delegation pass had %d write error(s): %s",
            len(report.write_errors),
            ", ".join(report.write_errors[: config.failed_sample_size]),
        )
        if len(report.write_errors) > config.delegation_write_error_cap:
            raise DelegationWriteError(
                f"too many write errors during delegation pass: {len(report.write_errors)}"
            )

    logger.info(
        "Delegations: %d accounts, %d delegating, %d errors, %d cycle(s), %d council candidates",
        report.accounts, report.delegating, len(report.delegation_errors),
        len(report.cycles), len(report.received_votes),
    )
    return report
