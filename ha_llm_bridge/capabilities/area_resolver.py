"""Area and Floor resolver capability.

Maps a user-supplied location string to an area or floor of the current
registry snapshot:
- Exact match on the normalized area name
- Match on area aliases
- Partial match (name contains needle or vice versa)
"""

import logging
from typing import Any, Dict, List, Optional

from .base import Capability
from ..utils.name_utils import normalize
from ..utils.registry_types import Area

_LOGGER = logging.getLogger(__name__)


class AreaResolverCapability(Capability):
    """Resolve area/floor names against the registry snapshot."""

    name = "area_resolver"
    description = "Map a location string to a known area or floor."

    def find_area(self, area_name: Optional[str]) -> Optional[Area]:
        """Find area by name with alias and partial matching.

        Args:
            area_name: User-provided area name or area id

        Returns:
            Area or None
        """
        if not area_name:
            return None
        needle = normalize(area_name)
        if not needle:
            return None

        areas = list(self.view.snapshot.areas.values())

        # First pass: exact name or id match
        for a in areas:
            if normalize(a.name) == needle or normalize(a.area_id) == needle:
                return a

        # Second pass: aliases
        for a in areas:
            for alias in a.aliases:
                if normalize(alias) == needle:
                    _LOGGER.debug("[AreaResolver] Area alias match: '%s' → '%s'", area_name, a.name)
                    return a

        # Third pass: partial match
        for a in areas:
            canon_name = normalize(a.name)
            if canon_name and (needle in canon_name or canon_name in needle):
                _LOGGER.debug("[AreaResolver] Area partial match: '%s' → '%s'", area_name, a.name)
                return a

        _LOGGER.debug("[AreaResolver] No area found for '%s'", area_name)
        return None

    def known_floors(self) -> List[str]:
        """Floors referenced by areas or entity attributes, in registry order."""
        snapshot = self.view.snapshot
        floors: Dict[str, None] = {}
        for a in snapshot.areas.values():
            if a.floor_id:
                floors.setdefault(a.floor_id, None)
        for e in snapshot.entities.values():
            if e.floor:
                floors.setdefault(e.floor, None)
        return list(floors)

    def find_floor(self, floor_name: Optional[str]) -> Optional[str]:
        """Find a floor by exact or partial normalized name."""
        if not floor_name:
            return None
        needle = normalize(floor_name)
        if not needle:
            return None

        floors = self.known_floors()
        for floor in floors:
            if normalize(floor) == needle:
                return floor
        for floor in floors:
            canon = normalize(floor)
            if canon and (needle in canon or canon in needle):
                _LOGGER.debug("[AreaResolver] Floor partial match: '%s' → '%s'", floor_name, floor)
                return floor

        _LOGGER.debug("[AreaResolver] No floor found for '%s'", floor_name)
        return None

    async def run(
        self,
        user_input: Optional[Dict[str, Any]] = None,
        search_text: Optional[str] = None,
        mode: str = "area",  # "area" or "floor"
        **_: Any,
    ) -> Dict[str, Any]:
        """Resolve an area or floor name.

        Returns:
            Dict with "match" key (name or None)
        """
        text = (search_text or (user_input or {}).get("area") or "").strip()
        if not text:
            return {"match": None}

        if mode == "floor":
            return {"match": self.find_floor(text)}

        area = self.find_area(text)
        return {"match": area.name if area else None}
