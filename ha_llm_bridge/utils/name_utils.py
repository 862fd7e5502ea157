"""Name normalization utilities for entity and area matching.

Provides the single canonical form used by the name index, the resolver
and the fuzzy search, so all three agree on what "the same name" means.
"""

import re
from typing import List

SEPARATOR = "_"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize(text: str) -> str:
    """Normalize text for case/punctuation-insensitive comparison.

    Performs:
    - Lowercase conversion
    - Every run of non-alphanumeric characters collapsed to one separator
    - Leading/trailing separators stripped

    The result is stable under re-application: normalize(normalize(x)) == normalize(x).

    Examples:
        normalize("Living Room") -> "living_room"
        normalize("living-room") -> "living_room"
        normalize("  LIVING   ROOM ") -> "living_room"
        normalize("light.sam_office_tube") -> "light_sam_office_tube"
    """
    if not text:
        return ""
    return _NON_ALNUM.sub(SEPARATOR, str(text).lower()).strip(SEPARATOR)


def split_words(token: str) -> List[str]:
    """Split an already normalized token into its words."""
    return [w for w in token.split(SEPARATOR) if w]


def entity_domain(entity_id: str) -> str:
    """Return the domain part of an identifier ('light.kitchen' -> 'light')."""
    return entity_id.split(".", 1)[0] if entity_id else ""

