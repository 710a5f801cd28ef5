"""
lore.parsing - Pure decoding of ledger ManageData entries.

Modules:
    manage_data  - Profile fields, relationship edges and delegation
                   directives from a member account's ManageData map.
    association  - Program/Faction tags from the association account.

No I/O and no state: every function here is deterministic in its input.
"""
