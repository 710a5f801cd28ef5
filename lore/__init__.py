"""
lore - Ledger-derived governance and trust intelligence for the
Montelibero Association on the Stellar network.

Syncs MTLAP/MTLAC holder accounts from Horizon, decodes their ManageData
entries into profile fields, relationships and delegation directives, and
derives the council delegation tally and the weighted reputation graph.

Subpackages:
- lore.parsing:     ManageData and association tag decoding (pure functions)
- lore.ledger:      Horizon REST client
- lore.ingestion:   Bounded-concurrency account sync orchestrator
- lore.governance:  Delegation chain resolution and council vote tally
- lore.reputation:  Weighted A/B/C/D reputation scores and 2-level graphs
- lore.storage:     In-memory and PostgreSQL repositories
- lore.reports:     Leaderboards and the Markdown sync report
"""

__version__ = "0.1.0"
