"""Entity resolver capability.

Resolves a reference (explicit id, or name plus area/floor/domain hints) to
exactly one entity id:
- Explicit id always wins
- Exact name index lookup
- Partial token containment as fallback
- Disambiguation by domain, then area, then floor
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .base import Capability
from ..registry import RegistryView
from ..utils.name_utils import entity_domain, normalize
from ..utils.registry_types import ResolutionQuery

_LOGGER = logging.getLogger(__name__)

MATCH_EXPLICIT = "explicit"
MATCH_EXACT = "exact"
MATCH_PARTIAL = "partial"


@dataclass(frozen=True)
class Resolution:
    """Outcome of one successful resolution."""

    entity_id: str
    match_type: str  # explicit / exact / partial
    candidates: int = 1  # candidate count before disambiguation


class EntityResolverCapability(Capability):
    """Resolve a single entity id from a name and structural hints."""

    name = "entity_resolver"
    description = "Resolve an entity reference (id, or name + area/floor/domain) to one entity id."

    def resolve(self, query: ResolutionQuery) -> Optional[str]:
        """Return the resolved entity id, or None when nothing matches."""
        resolution = self.resolve_detailed(query)
        return resolution.entity_id if resolution else None

    def resolve_detailed(self, query: ResolutionQuery) -> Optional[Resolution]:
        if query.explicit_id:
            # Existence is checked by whatever consumes the id.
            return Resolution(query.explicit_id, MATCH_EXPLICIT)

        if not query.name:
            return None

        token = normalize(query.name)
        if not token:
            return None

        # Read the view once so the whole resolution sees one consistent pair.
        view = self.view

        candidates = list(view.index.lookup(token))
        match_type = MATCH_EXACT
        if not candidates:
            candidates = self._partial_candidates(view, token)
            match_type = MATCH_PARTIAL

        if not candidates:
            _LOGGER.debug("[EntityResolver] No candidates for '%s'", query.name)
            return None

        total = len(candidates)
        if total > 1:
            candidates = self._disambiguate(view, candidates, query)

        entity_id = min(candidates)
        _LOGGER.debug(
            "[EntityResolver] '%s' → %s (%s, %d candidates, %d after filters)",
            query.name,
            entity_id,
            match_type,
            total,
            len(candidates),
        )
        return Resolution(entity_id, match_type, total)

    @staticmethod
    def _partial_candidates(view: RegistryView, token: str) -> List[str]:
        """Union of candidates whose index token contains the query or vice versa."""
        found: Dict[str, None] = {}
        for key, ids in view.index.items():
            if token in key or key in token:
                for eid in ids:
                    found.setdefault(eid, None)
        return list(found)

    def _disambiguate(self, view: RegistryView, candidates: List[str], query: ResolutionQuery) -> List[str]:
        snapshot = view.snapshot
        filters: List[Callable[[str], bool]] = []

        if query.domain_hint:
            domain = query.domain_hint.strip().lower()
            filters.append(lambda eid: entity_domain(eid) == domain)
        if query.area:
            filters.append(lambda eid: snapshot.area_matches(eid, query.area))
        if query.floor:
            floor = normalize(query.floor)
            filters.append(lambda eid: normalize(snapshot.floor_for(eid) or "") == floor)

        for keep in filters:
            if len(candidates) <= 1:
                break
            narrowed = [eid for eid in candidates if keep(eid)]
            if narrowed:
                candidates = narrowed
        return candidates

    async def run(self, user_input: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Dict[str, Any]:
        """Resolve from tool arguments.

        Returns:
            Dict with "entity_id" (or None) and "match_type"
        """
        query = ResolutionQuery.from_args({**(user_input or {}), **kwargs})
        resolution = self.resolve_detailed(query)
        if resolution is None:
            return {"entity_id": None, "match_type": None}
        return {
            "entity_id": resolution.entity_id,
            "match_type": resolution.match_type,
            "candidates": resolution.candidates,
        }
