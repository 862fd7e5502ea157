"""Shared types for the entity registry, cache and resolver.

This module contains the data structures passed between the registry store,
the name index, the resolver and the search capability. Registry types are
immutable: every refresh builds new values instead of mutating old ones.
"""

from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .name_utils import entity_domain

UNAVAILABLE_STATES = frozenset({"unavailable", "unknown"})


def _frozen_mapping(data: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class Entity:
    """One controllable/observable object from the remote registry."""

    entity_id: str  # "<domain>.<slug>"
    state: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    last_changed: Optional[str] = None
    last_updated: Optional[str] = None
    device_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.attributes, MappingProxyType):
            object.__setattr__(self, "attributes", _frozen_mapping(self.attributes))

    @property
    def domain(self) -> str:
        return entity_domain(self.entity_id)

    @property
    def display_name(self) -> str:
        """Friendly name, falling back to the identifier."""
        name = self.attributes.get("friendly_name")
        if isinstance(name, str) and name.strip():
            return name
        return self.entity_id

    @property
    def area_id(self) -> Optional[str]:
        return self.attributes.get("area_id") or None

    @property
    def floor(self) -> Optional[str]:
        return self.attributes.get("floor") or None

    @property
    def device_class(self) -> Optional[str]:
        return self.attributes.get("device_class")

    @property
    def unit_of_measurement(self) -> Optional[str]:
        return self.attributes.get("unit_of_measurement")

    @property
    def battery_level(self) -> Optional[float]:
        """Battery level in percent if the entity reports one."""
        value = self.attributes.get("battery_level")
        if value is None and self.device_class == "battery":
            value = self.state
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def is_available(self) -> bool:
        return self.state not in UNAVAILABLE_STATES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entity":
        """Create from a remote state object."""
        entity_id = data["entity_id"]
        if not isinstance(entity_id, str) or "." not in entity_id:
            raise ValueError(f"invalid entity_id: {entity_id!r}")
        return cls(
            entity_id=entity_id,
            state=str(data.get("state", "unknown")),
            attributes=data.get("attributes") or {},
            last_changed=data.get("last_changed"),
            last_updated=data.get("last_updated"),
            device_id=data.get("device_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "state": self.state,
            "attributes": dict(self.attributes),
            "last_changed": self.last_changed,
            "last_updated": self.last_updated,
            "device_id": self.device_id,
        }


@dataclass(frozen=True)
class Area:
    """A named physical grouping (room / zone)."""

    area_id: str
    name: str
    aliases: Tuple[str, ...] = ()
    floor_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Area":
        if not isinstance(data.get("area_id"), str):
            raise ValueError(f"invalid area_id: {data.get('area_id')!r}")
        return cls(
            area_id=data["area_id"],
            name=data.get("name") or data["area_id"],
            aliases=tuple(data.get("aliases") or ()),
            floor_id=data.get("floor_id"),
        )


@dataclass(frozen=True)
class Device:
    """A physical unit hosting one or more entities."""

    id: str
    name: Optional[str] = None
    name_by_user: Optional[str] = None  # User override wins over manufacturer name
    area_id: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    sw_version: Optional[str] = None
    entity_ids: Tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        return self.name_by_user or self.name or self.id

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Device":
        if not isinstance(data.get("id"), str):
            raise ValueError(f"invalid device id: {data.get('id')!r}")
        return cls(
            id=data["id"],
            name=data.get("name"),
            name_by_user=data.get("name_by_user"),
            area_id=data.get("area_id"),
            manufacturer=data.get("manufacturer"),
            model=data.get("model"),
            sw_version=data.get("sw_version"),
            entity_ids=tuple(data.get("entities") or data.get("entity_ids") or ()),
        )


@dataclass
class CacheRecord:
    """A cached value with its write time and time-to-live (both in ms)."""

    data: Any
    timestamp: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.timestamp < self.ttl

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "CacheRecord":
        """Create from a persisted record; raises ValueError on schema mismatch."""
        if not isinstance(data, dict) or not {"data", "timestamp", "ttl"} <= data.keys():
            raise ValueError("cache record must contain data, timestamp and ttl")
        timestamp, ttl = data["timestamp"], data["ttl"]
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("cache record timestamp must be numeric")
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
            raise ValueError("cache record ttl must be numeric")
        return cls(data=data["data"], timestamp=timestamp, ttl=ttl)


@dataclass(frozen=True)
class ResolutionQuery:
    """A reference to one entity: explicit identifier or name plus hints."""

    explicit_id: Optional[str] = None
    name: Optional[str] = None
    area: Optional[str] = None
    floor: Optional[str] = None
    domain_hint: Optional[str] = None

    @staticmethod
    def _first_str(d: Dict[str, Any], *keys: str) -> Optional[str]:
        """Extract first non-blank string value from dict."""
        for k in keys:
            v = d.get(k)
            if isinstance(v, str) and v.strip():
                return v.strip()
        return None

    @classmethod
    def from_args(cls, args: Dict[str, Any]) -> "ResolutionQuery":
        """Build a query from tool arguments."""
        return cls(
            explicit_id=cls._first_str(args, "entity_id", "explicit_id"),
            name=cls._first_str(args, "name"),
            area=cls._first_str(args, "area"),
            floor=cls._first_str(args, "floor"),
            domain_hint=cls._first_str(args, "domain_hint", "domain"),
        )


@dataclass
class SearchResult:
    """One ranked search hit."""

    entity_id: str
    friendly_name: str
    domain: str
    state: str
    score: int
    relevance: str  # "high", "medium" or "low"
    device_class: Optional[str] = None
    device: Optional[str] = None
    area: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "friendly_name": self.friendly_name,
            "domain": self.domain,
            "state": self.state,
            "device_class": self.device_class,
            "device": {"name": self.device} if self.device else None,
            "area": {"name": self.area} if self.area else None,
            "score": self.score,
            "relevance": self.relevance,
        }
