"""
lore.reports - Human-readable output of a sync run.

Modules:
    sync_report  - pandas leaderboards (council votes, reputation) and the
                   Markdown sync report.
"""
