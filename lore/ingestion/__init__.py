"""
lore.ingestion - Account sync from the ledger into the repository.

Modules:
    orchestrator  - Holder collection, bounded-concurrency account fetch and
                    persist with a failure-rate threshold, association tag sync.
"""
