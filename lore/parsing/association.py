"""
lore/parsing/association.py - Program/Faction tags on the association account.

The association account (the MTLAP/MTLAC issuer) classifies member accounts
by writing ManageData keys of the form

    <Tag><56-char account ID>[index]

e.g. "ProgramGABC...XYZ" or "FactionGABC...XYZ2". The value is ignored; the
key alone carries the tag. A missing index means 0.
"""

import logging
from collections.abc import Mapping

from lore.models import ACCOUNT_ID_LENGTH, ACCOUNT_ID_PREFIX, AssociationTag

logger = logging.getLogger(__name__)

TAG_NAMES: tuple[str, ...] = ("Program", "Faction")


def parse_association_tags(raw: Mapping[str, str]) -> list[AssociationTag]:
    """
    Extract association tags from the issuer's ManageData map.

    Keys whose embedded ID is too short or does not start with "G", or whose
    index suffix is not an integer, are skipped.

    Returns:
        Tags sorted by (tag_name, tag_index, target_account_id).
    """
    tags: list[AssociationTag] = []

    for key in raw:
        for tag_name in TAG_NAMES:
            if not key.startswith(tag_name):
                continue
            rest = key[len(tag_name):]
            if len(rest) < ACCOUNT_ID_LENGTH:
                continue
            target_id = rest[:ACCOUNT_ID_LENGTH]
            if not target_id.startswith(ACCOUNT_ID_PREFIX):
                continue

            suffix = rest[ACCOUNT_ID_LENGTH:]
            index = 0
            if suffix:
                if not suffix.isdigit() or not suffix.isascii():
                    logger.debug("Skipping association key with bad index: %s", key)
                    continue
                index = int(suffix)

            tags.append(AssociationTag(tag_name, index, target_id))

    tags.sort(key=lambda t: (t.tag_name, t.tag_index, t.target_account_id))
    return tags


def group_tags(tags: list[AssociationTag]) -> dict[str, list[AssociationTag]]:
    """Group tags by name. Every known tag name is present, possibly empty."""
    grouped: dict[str, list[AssociationTag]] = {name: [] for name in TAG_NAMES}
    for tag in tags:
        grouped.setdefault(tag.tag_name, []).append(tag)
    return grouped
