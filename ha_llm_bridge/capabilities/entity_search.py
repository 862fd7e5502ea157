"""Entity search capability.

Ranks every entity of the current snapshot against a noisy query using
additive relevance scoring (see utils.fuzzy_utils) plus context bonuses for
domain and area hints. Sparse results come with suggestions.
"""

import logging
from typing import Any, Dict, List, Optional

from .base import Capability
from ..const import CONF_SEARCH_LIMIT, DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT
from ..registry import RegistrySnapshot
from ..utils.fuzzy_utils import (
    PENALTY_UNAVAILABLE,
    SCORE_AREA_HINT,
    SCORE_DOMAIN_HINT,
    relevance_label,
    score_text,
)
from ..utils.name_utils import normalize
from ..utils.registry_types import Entity, SearchResult

_LOGGER = logging.getLogger(__name__)

MIN_RESULTS_WITHOUT_SUGGESTIONS = 3
MAX_DOMAIN_SUGGESTIONS = 10
MAX_AREA_SUGGESTIONS = 5


def clamp_limit(limit: Any, default: int = DEFAULT_SEARCH_LIMIT) -> int:
    """Coerce a caller-supplied limit into 1..MAX_SEARCH_LIMIT."""
    try:
        value = int(limit) if limit is not None else default
    except (TypeError, ValueError):
        value = default
    return max(1, min(MAX_SEARCH_LIMIT, value))


class EntitySearchCapability(Capability):
    """Ranked fuzzy search over all entities."""

    name = "entity_search"
    description = "Fuzzy search for entities with typo tolerance and relevance scoring."

    def score_entity(
        self,
        snapshot: RegistrySnapshot,
        entity: Entity,
        normalized_query: str,
        domain_hint: Optional[str] = None,
        area_hint: Optional[str] = None,
    ) -> int:
        score = score_text(
            normalized_query,
            normalize(entity.display_name),
            normalize(entity.entity_id),
        )
        if domain_hint and entity.domain == domain_hint:
            score += SCORE_DOMAIN_HINT
        if area_hint and snapshot.area_matches(entity.entity_id, area_hint):
            score += SCORE_AREA_HINT
        if not entity.is_available:
            score -= PENALTY_UNAVAILABLE
        return score

    def search(
        self,
        query: str,
        limit: Optional[int] = None,
        domain_hint: Optional[str] = None,
        area_hint: Optional[str] = None,
    ) -> List[SearchResult]:
        """Return up to `limit` results with score > 0, best first.

        Ties keep registry iteration order.
        """
        limit = clamp_limit(limit, self.config.get(CONF_SEARCH_LIMIT, DEFAULT_SEARCH_LIMIT))
        normalized_query = normalize(query)
        if not normalized_query:
            return []

        domain_hint = domain_hint.strip().lower() if domain_hint else None
        snapshot = self.view.snapshot

        scored: List[SearchResult] = []
        for entity in snapshot.entities.values():
            score = self.score_entity(snapshot, entity, normalized_query, domain_hint, area_hint)
            if score <= 0:
                continue
            device = snapshot.device_for(entity.entity_id)
            area = snapshot.area_for(entity.entity_id)
            scored.append(
                SearchResult(
                    entity_id=entity.entity_id,
                    friendly_name=entity.display_name,
                    domain=entity.domain,
                    state=entity.state,
                    score=score,
                    relevance=relevance_label(score),
                    device_class=entity.device_class,
                    device=device.display_name if device else None,
                    area=area.name if area else None,
                )
            )

        # list.sort is stable
        scored.sort(key=lambda r: r.score, reverse=True)
        results = scored[:limit]
        _LOGGER.debug(
            "[EntitySearch] '%s': %d scored, returning %d", query, len(scored), len(results)
        )
        return results

    def suggestions(self, results: List[SearchResult]) -> List[str]:
        """Hints for sparse result sets (fewer than three results)."""
        if len(results) >= MIN_RESULTS_WITHOUT_SUGGESTIONS:
            return []

        snapshot = self.view.snapshot
        hints = []
        domains = snapshot.domains()[:MAX_DOMAIN_SUGGESTIONS]
        if domains:
            hints.append(f"Try searching within a domain: {', '.join(domains)}")

        area_names = [a.name for a in snapshot.areas.values()][:MAX_AREA_SUGGESTIONS]
        if area_names:
            hints.append(f"Try specifying an area: {', '.join(area_names)}")

        if results:
            top = results[0]
            hints.append(f'Did you mean "{top.friendly_name}" ({top.entity_id})?')
        return hints

    async def run(self, user_input: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Dict[str, Any]:
        """Search from tool arguments.

        Returns:
            Dict with "query", "results_count", "results" and, for sparse
            results, "suggestions"
        """
        args = {**(user_input or {}), **kwargs}
        query = str(args.get("query") or "")
        results = self.search(
            query,
            limit=args.get("limit"),
            domain_hint=args.get("domain_hint") or args.get("domain"),
            area_hint=args.get("area_hint") or args.get("area"),
        )
        payload: Dict[str, Any] = {
            "query": query,
            "results_count": len(results),
            "results": [r.as_dict() for r in results],
        }
        hints = self.suggestions(results)
        if hints:
            payload["suggestions"] = hints
        return payload
