"""
lore.governance - Delegation graph derived from mtla_delegate / mtla_c_delegate.

Modules:
    delegation  - Ordinary delegation validity and cycle detection, plus the
                  transitive council vote tally.
"""
