"""
lore.reputation - Weighted A/B/C/D reputation.

Modules:
    calculator  - Rater weights, per-account scores, grades, confirmed
                  connection counts, and the persist-all-scores pass.
    graph       - Two-level (raters, raters of raters) display graph for one
                  target account, with a NetworkX export.
"""
