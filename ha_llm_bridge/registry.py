"""Registry snapshot and store.

The store owns exactly one RegistryView (snapshot + name index built from
it). A refresh assembles a new view off to the side and replaces the
reference in one assignment, so readers always see a complete pair.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from .name_index import NameIndex
from .utils.name_utils import normalize
from .utils.registry_types import Area, Device, Entity

_LOGGER = logging.getLogger(__name__)

REGISTRY_CACHE_KEY = "registry"


@dataclass(frozen=True)
class RegistrySnapshot:
    """Point-in-time copy of entities, areas and devices."""

    entities: Mapping[str, Entity]
    areas: Mapping[str, Area]
    devices: Mapping[str, Device]
    entity_devices: Mapping[str, str] = field(default_factory=dict)  # entity_id -> device id
    built_at: float = 0.0

    @classmethod
    def build(
        cls,
        entities: Iterable[Entity],
        areas: Iterable[Area] = (),
        devices: Iterable[Device] = (),
    ) -> "RegistrySnapshot":
        entity_map = {e.entity_id: e for e in entities}
        area_map = {a.area_id: a for a in areas}
        device_map = {d.id: d for d in devices}

        # Link via the device's child list first, the entity's own device_id wins.
        entity_devices: Dict[str, str] = {}
        for device in device_map.values():
            for eid in device.entity_ids:
                entity_devices.setdefault(eid, device.id)
        for entity in entity_map.values():
            if entity.device_id and entity.device_id in device_map:
                entity_devices[entity.entity_id] = entity.device_id

        return cls(
            entities=entity_map,
            areas=area_map,
            devices=device_map,
            entity_devices=entity_devices,
            built_at=time.time(),
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RegistrySnapshot":
        """Build from the raw JSON payload stored in the cache."""
        return cls.build(
            [Entity.from_dict(e) for e in payload.get("entities") or []],
            [Area.from_dict(a) for a in payload.get("areas") or []],
            [Device.from_dict(d) for d in payload.get("devices") or []],
        )

    @classmethod
    def empty(cls) -> "RegistrySnapshot":
        return cls(entities={}, areas={}, devices={})

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self.entities.get(entity_id)

    def device_for(self, entity_id: str) -> Optional[Device]:
        device_id = self.entity_devices.get(entity_id)
        return self.devices.get(device_id) if device_id else None

    def area_for(self, entity_id: str) -> Optional[Area]:
        """Resolve the entity's area: own area_id first, else its device's."""
        entity = self.entities.get(entity_id)
        if entity and entity.area_id and entity.area_id in self.areas:
            return self.areas[entity.area_id]
        device = self.device_for(entity_id)
        if device and device.area_id:
            return self.areas.get(device.area_id)
        return None

    def floor_for(self, entity_id: str) -> Optional[str]:
        """Floor attribute of the entity, else the floor of its area."""
        entity = self.entities.get(entity_id)
        if entity and entity.floor:
            return entity.floor
        area = self.area_for(entity_id)
        return area.floor_id if area else None

    def area_matches(self, entity_id: str, area_hint: str) -> bool:
        """True if the entity's area name (or one of its aliases) normalizes to the hint."""
        needle = normalize(area_hint)
        if not needle:
            return False
        area = self.area_for(entity_id)
        if area is None:
            return False
        if normalize(area.name) == needle:
            return True
        return any(normalize(alias) == needle for alias in area.aliases)

    def domains(self) -> List[str]:
        """Distinct domains in registry order."""
        return list(dict.fromkeys(e.domain for e in self.entities.values()))


@dataclass(frozen=True)
class RegistryView:
    """A snapshot and the name index built from it, swapped as one unit."""

    snapshot: RegistrySnapshot
    index: NameIndex

    @classmethod
    def from_snapshot(cls, snapshot: RegistrySnapshot) -> "RegistryView":
        return cls(snapshot=snapshot, index=NameIndex.from_entities(snapshot.entities.values()))

    @classmethod
    def empty(cls) -> "RegistryView":
        return cls.from_snapshot(RegistrySnapshot.empty())


FetchList = Callable[[], Awaitable[List[Dict[str, Any]]]]


class RegistryStore:
    """Single writer of the current RegistryView.

    Fetches go through the cache under one key so the durable tier holds the
    raw registry JSON; the auto-refresh registered at startup rebuilds and
    swaps the view on every successful fetch.
    """

    def __init__(
        self,
        cache,
        fetch_states: FetchList,
        fetch_areas: Optional[FetchList] = None,
        fetch_devices: Optional[FetchList] = None,
        refresh_interval: Optional[float] = None,
    ) -> None:
        self._cache = cache
        self._fetch_states = fetch_states
        self._fetch_areas = fetch_areas
        self._fetch_devices = fetch_devices
        self._refresh_interval = refresh_interval
        self._view = RegistryView.empty()
        self._payload: Dict[str, Any] = {"entities": [], "areas": [], "devices": []}
        self._loaded = False
        self._refresh_handle = None

    @property
    def view(self) -> RegistryView:
        """The current complete view (never a partially rebuilt one)."""
        return self._view

    @property
    def snapshot(self) -> RegistrySnapshot:
        return self._view.snapshot

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def apply_payload(self, payload: Dict[str, Any]) -> RegistryView:
        """Build a new view from a raw payload and install it."""
        view = RegistryView.from_snapshot(RegistrySnapshot.from_payload(payload))
        self._view = view
        self._payload = payload
        self._loaded = True
        _LOGGER.info(
            "[Registry] View applied: %d entities, %d areas, %d devices, %d name tokens",
            len(view.snapshot.entities),
            len(view.snapshot.areas),
            len(view.snapshot.devices),
            len(view.index),
        )
        return view

    @staticmethod
    def _check_items(
        items: Any, parse: Callable[[Dict[str, Any]], Any], key: str
    ) -> List[Dict[str, Any]]:
        """Parse every item once so malformed data rejects before it is cached."""
        if not isinstance(items, list):
            raise ValueError(f"{key} payload is not a list")
        for item in items:
            try:
                parse(item)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise ValueError(f"malformed {key} item {item!r}: {e!r}") from e
        return items

    async def _fetch_entities(self) -> List[Dict[str, Any]]:
        return self._check_items(await self._fetch_states(), Entity.from_dict, "entities")

    async def _fetch_optional(
        self, fetch: Optional[FetchList], key: str, parse: Callable[[Dict[str, Any]], Any]
    ) -> List[Dict[str, Any]]:
        if fetch is None:
            return list(self._payload.get(key) or [])
        try:
            return list(self._check_items(await fetch(), parse, key))
        except Exception as e:
            previous = list(self._payload.get(key) or [])
            _LOGGER.warning(
                "[Registry] %s endpoint unusable, keeping %d previous entries: %s",
                key,
                len(previous),
                e,
            )
            return previous

    async def fetch_payload(self) -> Dict[str, Any]:
        """Fetch the raw registry.

        A states failure (or a malformed state) rejects the whole fetch; area
        and device problems fall back to the previous entries.
        """
        states, areas, devices = await asyncio.gather(
            self._fetch_entities(),
            self._fetch_optional(self._fetch_areas, "areas", Area.from_dict),
            self._fetch_optional(self._fetch_devices, "devices", Device.from_dict),
        )
        return {"entities": list(states), "areas": areas, "devices": devices}

    async def _refresh_payload(self) -> Dict[str, Any]:
        payload = await self.fetch_payload()
        self.apply_payload(payload)
        return payload

    async def async_refresh(self) -> RegistryView:
        """Fetch now, apply, and store the result in the cache."""
        payload = await self._refresh_payload()
        await self._cache.set(REGISTRY_CACHE_KEY, payload)
        return self._view

    async def async_ensure_loaded(self) -> RegistryView:
        """Load the view from the cache (or a fetch) if nothing is loaded yet.

        A cached record that no longer parses is dropped and fetched again.
        """
        if self._loaded:
            return self._view
        payload = await self._cache.get_or_fetch(REGISTRY_CACHE_KEY, self.fetch_payload)
        if self._loaded:
            return self._view
        try:
            self.apply_payload(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            _LOGGER.warning("[Registry] Cached registry unusable, fetching again: %s", e)
            await self._cache.invalidate(REGISTRY_CACHE_KEY)
            payload = await self._cache.get_or_fetch(REGISTRY_CACHE_KEY, self.fetch_payload)
            self.apply_payload(payload)
        return self._view

    async def async_startup(self) -> RegistryView:
        """Initial load plus the background auto-refresh registration."""
        view = await self.async_ensure_loaded()
        self._refresh_handle = self._cache.register_auto_refresh(
            REGISTRY_CACHE_KEY, self._refresh_payload, self._refresh_interval
        )
        return view

    def shutdown(self) -> None:
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None
