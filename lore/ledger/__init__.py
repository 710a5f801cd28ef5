"""
lore.ledger - Stellar Horizon access.

Modules:
    horizon_client  - Asset holder listing and account detail fetches over
                      the Horizon REST API, with retry on 429/5xx.
"""
