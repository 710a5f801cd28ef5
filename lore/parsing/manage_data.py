"""
lore/parsing/manage_data.py - Decode account ManageData into structured facts.

Stellar accounts carry up to ~1000 owner-supplied key/value entries, each
value base64-encoded. Montelibero members use them as a free-form profile:

    Name            -> profile field  (key="Name", index="")
    Website2        -> profile field  (key="Website", index="2")
    PartOf          -> relationship   (type=PartOf, index="", value=target ID)
    Employee01      -> relationship   (type=Employee, index="01")
    mtla_delegate   -> ordinary delegation directive
    mtla_c_delegate -> council delegation directive, or "ready"

Several relation type names are prefixes of others (Owner / OwnerMajority /
OwnershipFull, A / ...). RELATION_PREFIXES is an explicit tuple checked in
a prefix-safe order: each name comes before every shorter name that is a
prefix of it, so "OwnerMajority1" is never read as "Owner" with a garbage
suffix. The tuple is not sorted by length overall.

Suffixes are kept as literal strings: "Website2" and "Website002" occupy two
distinct slots.

Malformed input never raises. An undecodable value is logged and the key is
dropped, and a relationship whose value is not an account ID falls through
to an ordinary profile field.
"""

import base64
import binascii
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Optional

from lore.models import (
    AccountDetail,
    AccountRecord,
    MetadataEntry,
    RelationshipEdge,
    is_valid_account_id,
)

logger = logging.getLogger(__name__)

DELEGATE_KEY = "mtla_delegate"
COUNCIL_DELEGATE_KEY = "mtla_c_delegate"
COUNCIL_READY_SENTINEL = "ready"

NAME_KEY = "Name"

# Checked in this order. A name never follows a shorter name that prefixes it.
RELATION_PREFIXES: tuple[str, ...] = (
    "RecommendToMTLA",
    "OwnershipMajority",
    "OwnershipMinority",
    "OwnershipFull",
    "OwnerMajority",
    "OwnerMinority",
    "FactionMember",
    "Collaboration",
    "Partnership",
    "WelcomeGuest",
    "Contractor",
    "OneFamily",
    "Employer",
    "Employee",
    "Guardian",
    "Sympathy",
    "Divorce",
    "Client",
    "Spouse",
    "MyPart",
    "PartOf",
    "Owner",
    "Love",
    "Ward",
    "A",
    "B",
    "C",
    "D",
)

RELATION_TYPES: frozenset[str] = frozenset(RELATION_PREFIXES)

# Symmetric pairing that makes a relationship "confirmed" when both sides declare it.
RELATION_PAIRS: dict[str, str] = {
    "MyPart": "PartOf",
    "PartOf": "MyPart",
    "OneFamily": "OneFamily",
    "Spouse": "Spouse",
    "Guardian": "Ward",
    "Ward": "Guardian",
    "Employer": "Employee",
    "Employee": "Employer",
    "Contractor": "Client",
    "Client": "Contractor",
    "Partnership": "Partnership",
    "Collaboration": "Collaboration",
    "OwnershipFull": "Owner",
    "Owner": "OwnershipFull",
    "OwnershipMajority": "OwnerMajority",
    "OwnerMajority": "OwnershipMajority",
    "OwnershipMinority": "OwnerMinority",
    "OwnerMinority": "OwnershipMinority",
}

_NUMBERED_KEY_RE = re.compile(r"(.+?)(\d*)", re.DOTALL)
_ASCII_DIGITS = frozenset("0123456789")


@dataclass
class ParsedManageData:
    """
    Result of decoding one account's ManageData map.

    Fields:
        metadata:             Profile entries sorted by (key, index).
        relationships:        Relationship edges sorted by (type, index, target).
                              source_account_id is left empty; parse_account
                              fills it in.
        delegate_to:          Ordinary delegation target, if a valid one was set.
        council_delegate_to:  Council delegation target, if a valid one was set.
        council_ready:        True when mtla_c_delegate decodes to "ready".
    """
    metadata: list[MetadataEntry] = field(default_factory=list)
    relationships: list[RelationshipEdge] = field(default_factory=list)
    delegate_to: Optional[str] = None
    council_delegate_to: Optional[str] = None
    council_ready: bool = False


def decode_value(raw_value: str) -> str:
    """
    Decode one base64 ManageData value and strip surrounding whitespace.

    Returns "" when the value is not valid standard base64 or not UTF-8;
    callers treat "" as "discard this key".
    """
    try:
        decoded = base64.b64decode(raw_value, validate=True)
        return decoded.decode("utf-8").strip()
    except (binascii.Error, ValueError) as exc:
        logger.warning("Failed to decode ManageData value %r: %s", raw_value, exc)
        return ""


def split_numbered_key(key: str) -> tuple[str, str]:
    """
    Split "Website002" into ("Website", "002").

    Keys without a trailing digit run get index "". The base keeps at least
    one character, so an all-digit key like "42" splits to ("4", "2").
    """
    match = _NUMBERED_KEY_RE.fullmatch(key)
    if match is None:
        return key, ""
    return match.group(1), match.group(2)


def match_relation(key: str, value: str) -> Optional[tuple[str, str]]:
    """
    Classify key as a relationship if it is one.

    Returns (relation_type, index) for the first prefix in RELATION_PREFIXES
    whose remainder is empty or all ASCII digits, provided value is a valid
    account ID. Returns None otherwise.
    """
    if not is_valid_account_id(value):
        return None
    for prefix in RELATION_PREFIXES:
        if not key.startswith(prefix):
            continue
        rest = key[len(prefix):]
        if all(ch in _ASCII_DIGITS for ch in rest):
            return prefix, rest
    return None


def parse_manage_data(raw: Mapping[str, str]) -> ParsedManageData:
    """
    Decode a raw ManageData map (key -> base64 value) into structured facts.

    The result does not depend on the iteration order of raw.

    Args:
        raw: Mapping exactly as returned by Horizon's account "data" field.

    Returns:
        ParsedManageData with sorted metadata and relationship lists.
    """
    result = ParsedManageData()
    metadata: list[MetadataEntry] = []
    relationships: list[RelationshipEdge] = []

    for key in sorted(raw):
        value = decode_value(raw[key])
        if not value:
            continue

        if key == DELEGATE_KEY:
            if is_valid_account_id(value):
                result.delegate_to = value
            continue

        if key == COUNCIL_DELEGATE_KEY:
            if value.lower() == COUNCIL_READY_SENTINEL:
                result.council_ready = True
            elif is_valid_account_id(value):
                result.council_delegate_to = value
            continue

        relation = match_relation(key, value)
        if relation is not None:
            relation_type, index = relation
            relationships.append(RelationshipEdge(
                source_account_id="",
                target_account_id=value,
                relation_type=relation_type,
                relation_index=index,
            ))
            continue

        base_key, index = split_numbered_key(key)
        metadata.append(MetadataEntry(key=base_key, index=index, value=value))

    result.metadata = sorted(metadata, key=lambda m: (m.key, m.index))
    result.relationships = sorted(
        relationships,
        key=lambda r: (r.relation_type, r.relation_index, r.target_account_id),
    )
    return result


# ── Account decoding ──────────────────────────────────────────────────────────

def parse_account(detail: AccountDetail) -> AccountRecord:
    """
    Build the AccountRecord persisted for one account.

    The primary name is the "Name" profile entry with an empty index.
    Relationship edges get the account as their source.
    """
    parsed = parse_manage_data(detail.data)

    name = ""
    for entry in parsed.metadata:
        if entry.key == NAME_KEY and entry.index == "":
            name = entry.value
            break

    relationships = [
        RelationshipEdge(
            source_account_id=detail.account_id,
            target_account_id=edge.target_account_id,
            relation_type=edge.relation_type,
            relation_index=edge.relation_index,
        )
        for edge in parsed.relationships
    ]

    return AccountRecord(
        account_id=detail.account_id,
        name=name,
        balances=list(detail.balances),
        metadata=parsed.metadata,
        relationships=relationships,
        delegate_to=parsed.delegate_to,
        council_delegate_to=parsed.council_delegate_to,
        council_ready=parsed.council_ready,
    )
