"""
lore/reports/sync_report.py - Leaderboards and the Markdown sync report.

Leaderboards are pandas DataFrames built from repository state, so they can
be printed by the CLI, exported to CSV, or inspected in a notebook:

    council_leaderboard     council-ready accounts by received votes
    reputation_leaderboard  rated accounts by weighted score
    delegation_issues       accounts flagged with a delegation or cycle error

export_sync_report_markdown() renders one sync run plus the leaderboards
as a Markdown document, written atomically (.tmp then os.replace).
"""

import logging
import os
from typing import Optional

import pandas as pd

from lore.config import DEFAULT_CONFIG, LoreConfig
from lore.models import DelegationState, score_to_grade, short_account_id

logger = logging.getLogger(__name__)

COUNCIL_COLUMNS = ["account_id", "name", "received_votes", "own_balance", "total_power"]
REPUTATION_COLUMNS = [
    "account_id", "name", "grade", "weighted_score", "base_score",
    "total_ratings", "rating_count_a", "rating_count_b", "rating_count_c",
    "rating_count_d", "total_weight",
]
ISSUE_COLUMNS = ["account_id", "name", "delegation_error", "cycle_error", "cycle_path"]


def _names(repository) -> dict[str, str]:
    return {aid: p.display_name for aid, p in repository.get_account_profiles().items()}


def council_leaderboard(repository) -> pd.DataFrame:
    """
    Council-ready accounts ranked by received votes.

    Columns: account_id, name, received_votes, own_balance (MTLAP held by
    the candidate), total_power (received + own, truncated).
    """
    names = _names(repository)
    states = repository.get_delegation_states()
    rows = [
        {
            "account_id": info.account_id,
            "name": names.get(info.account_id, short_account_id(info.account_id)),
            "received_votes": states.get(info.account_id, DelegationState()).received_votes,
            "own_balance": float(info.governance_balance),
        }
        for info in repository.get_all_delegation_info()
        if info.council_ready
    ]
    df = pd.DataFrame(rows, columns=COUNCIL_COLUMNS[:-1])
    df["total_power"] = (df["received_votes"] + df["own_balance"]).astype(int)
    return df.sort_values(
        ["received_votes", "own_balance", "account_id"], ascending=[False, False, True]
    ).reset_index(drop=True)


def reputation_leaderboard(repository, min_ratings: int = 1) -> pd.DataFrame:
    """Rated accounts with at least min_ratings valid ratings, best first."""
    names = _names(repository)
    rows = [
        {
            "account_id": aid,
            "name": names.get(aid, short_account_id(aid)),
            "grade": score_to_grade(s.weighted_score),
            "weighted_score": s.weighted_score,
            "base_score": s.base_score,
            "total_ratings": s.total_ratings,
            "rating_count_a": s.rating_count_a,
            "rating_count_b": s.rating_count_b,
            "rating_count_c": s.rating_count_c,
            "rating_count_d": s.rating_count_d,
            "total_weight": s.total_weight,
        }
        for aid, s in repository.get_scores().items()
        if s.total_ratings >= min_ratings
    ]
    df = pd.DataFrame(rows, columns=REPUTATION_COLUMNS)
    return df.sort_values(
        ["weighted_score", "total_ratings", "account_id"], ascending=[False, False, True]
    ).reset_index(drop=True)


def delegation_issues(repository) -> pd.DataFrame:
    """Accounts whose ordinary delegation is broken or cyclic."""
    names = _names(repository)
    rows = [
        {
            "account_id": aid,
            "name": names.get(aid, short_account_id(aid)),
            "delegation_error": state.delegation_error,
            "cycle_error": state.cycle_error,
            "cycle_path": " -> ".join(short_account_id(p) for p in state.cycle_path),
        }
        for aid, state in repository.get_delegation_states().items()
        if state.delegation_error or state.cycle_error
    ]
    df = pd.DataFrame(rows, columns=ISSUE_COLUMNS)
    return df.sort_values("account_id").reset_index(drop=True)


def _markdown_table(df: pd.DataFrame, columns: list[str], headers: list[str]) -> list[str]:
    lines = [
        "| " + " | ".join(headers) + " |",
        "|" + "|".join("---" for _ in headers) + "|",
    ]
    for row in df[columns].itertuples(index=False):
        cells = []
        for value in row:
            if isinstance(value, float):
                cells.append(f"{value:.2f}")
            else:
                cells.append(str(value).replace("|", "\\|"))
        lines.append("| " + " | ".join(cells) + " |")
    return lines


def render_sync_report(
    result,
    repository,
    config: LoreConfig = DEFAULT_CONFIG,
    top_n: int = 20,
) -> str:
    """
    Render a sync run and the current leaderboards as Markdown.

    Args:
        result:      SyncRunResult from lore.pipeline.run_full_sync.
        repository:  Repository the run wrote to.
        config:      Token codes for labels.
        top_n:       Rows per leaderboard.

    Returns:
        The Markdown document.
    """
    stats = result.stats
    sync = result.account_sync
    deleg = result.delegation
    lines: list[str] = []

    # ── Title ─────────────────────────────────────────────────────────────────
    lines += [
        "# lore - Sync Report",
        "",
        f"**Started:** {result.started_at:%Y-%m-%d %H:%M:%S} UTC | "
        f"**Duration:** {result.elapsed_sec:.1f}s",
        "",
        "---",
        "",
    ]

    # ── Summary ───────────────────────────────────────────────────────────────
    lines += [
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Accounts | {stats.total_accounts} |",
        f"| Persons ({config.governance_token} > 0) | {stats.persons} |",
        f"| Companies ({config.company_token} > 0) | {stats.companies} |",
        f"| Council candidates | {stats.council_ready} |",
        f"| Association tags | {result.association_tags} |",
        f"| Reputation scores written | {result.scores_written} |",
    ]
    if sync is not None:
        lines += [
            f"| Accounts synced | {sync.succeeded}/{sync.total} |",
            f"| Sync failure rate | {sync.failure_rate:.1%} |",
        ]
    if deleg is not None:
        lines += [
            f"| Delegation errors | {len(deleg.delegation_errors)} |",
            f"| Delegation cycles | {len(deleg.cycles)} |",
        ]
    lines.append("")

    if result.reputation_error:
        lines += [f"> Reputation scoring failed: {result.reputation_error}", ""]

    if sync is not None and sync.errors:
        lines += ["## Failed Accounts", ""]
        for err in sync.errors[: config.failed_sample_size]:
            lines.append(f"- `{err['account_id']}`: {err['error']}")
        if len(sync.errors) > config.failed_sample_size:
            lines.append(f"- ... and {len(sync.errors) - config.failed_sample_size} more")
        lines.append("")

    # ── Council ───────────────────────────────────────────────────────────────
    council = council_leaderboard(repository).head(top_n)
    lines += ["## Council Leaderboard", ""]
    if council.empty:
        lines += ["_No council candidates._", ""]
    else:
        lines += _markdown_table(
            council,
            ["name", "account_id", "received_votes", "total_power"],
            ["Name", "Account", "Received votes", "Total power"],
        )
        lines.append("")

    # ── Reputation ────────────────────────────────────────────────────────────
    reputation = reputation_leaderboard(repository).head(top_n)
    lines += ["## Reputation Leaderboard", ""]
    if reputation.empty:
        lines += ["_No rated accounts._", ""]
    else:
        lines += _markdown_table(
            reputation,
            ["name", "grade", "weighted_score", "total_ratings"],
            ["Name", "Grade", "Score", "Ratings"],
        )
        lines.append("")

    # ── Delegation issues ─────────────────────────────────────────────────────
    issues = delegation_issues(repository)
    if not issues.empty:
        lines += ["## Delegation Issues", ""]
        lines += _markdown_table(
            issues,
            ["name", "delegation_error", "cycle_error", "cycle_path"],
            ["Name", "Delegation error", "Cycle", "Cycle path"],
        )
        lines.append("")

    return "\n".join(lines)


def export_sync_report_markdown(
    result,
    repository,
    output_path: str,
    config: LoreConfig = DEFAULT_CONFIG,
    top_n: int = 20,
) -> str:
    """Render the sync report and write it to output_path atomically.

    Returns:
        The Markdown document.
    """
    markdown = render_sync_report(result, repository, config, top_n)
    directory: Optional[str] = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp = output_path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as fh:
        fh.write(markdown)
    os.replace(tmp, output_path)
    logger.info("Sync report written: %s (%d chars)", output_path, len(markdown))
    return markdown
