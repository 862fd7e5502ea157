"""Tool-invocation boundary.

Each tool takes a plain dict of arguments, validates it with a voluptuous
schema and returns a ToolResult. dispatch() never raises: validation errors,
unknown tools and remote failures all come back as error results.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import voluptuous as vol

from .capabilities.area_resolver import AreaResolverCapability
from .capabilities.entity_resolver import EntityResolverCapability
from .capabilities.entity_search import EntitySearchCapability
from .const import (
    DEFAULT_EXPLORE_LIMIT,
    DEFAULT_LOW_BATTERY_THRESHOLD,
    DEFAULT_STALE_THRESHOLD_HOURS,
)
from .ha_client import HomeAssistantApiError
from .registry import RegistrySnapshot
from .tool_result import (
    ERROR_INVALID_ARGUMENTS,
    ERROR_UNKNOWN_TOOL,
    ERROR_UPSTREAM,
    ToolResult,
)
from .utils.name_utils import normalize
from .utils.registry_types import Device, Entity, ResolutionQuery

_LOGGER = logging.getLogger(__name__)

GROUP_BY_OPTIONS = ("domain", "area", "device", "device_class", "state")

# Domains whose state attributes can reference other entities.
REFERENCING_DOMAINS = ("automation", "scene", "script")

# Issue severity, most severe first.
HEALTH_ISSUES = ("unavailable", "low_battery", "stale")

_OPT_STR = vol.Any(None, str)

REFERENCE_SCHEMA = {
    vol.Optional("entity_id"): _OPT_STR,
    vol.Optional("name"): _OPT_STR,
    vol.Optional("area"): _OPT_STR,
    vol.Optional("floor"): _OPT_STR,
    vol.Optional("domain_hint"): _OPT_STR,
}

SEARCH_SCHEMA = vol.Schema(
    {
        vol.Required("query"): str,
        vol.Optional("limit"): vol.Any(None, vol.Coerce(int)),
        vol.Optional("domain_hint"): _OPT_STR,
        vol.Optional("area_hint"): _OPT_STR,
    },
    extra=vol.REMOVE_EXTRA,
)

RESOLVE_SCHEMA = vol.Schema(REFERENCE_SCHEMA, extra=vol.REMOVE_EXTRA)

GET_ENTITY_SCHEMA = vol.Schema(
    {**REFERENCE_SCHEMA, vol.Optional("live", default=False): vol.Boolean()},
    extra=vol.REMOVE_EXTRA,
)

LIST_DEVICES_SCHEMA = vol.Schema({vol.Optional("area"): _OPT_STR}, extra=vol.REMOVE_EXTRA)

EXPLORE_SCHEMA = vol.Schema(
    {
        vol.Optional("domain"): _OPT_STR,
        vol.Optional("area"): _OPT_STR,
        vol.Optional("device_class"): _OPT_STR,
        vol.Optional("state"): _OPT_STR,
        vol.Optional("search"): _OPT_STR,
        vol.Optional("group_by", default="domain"): vol.In(GROUP_BY_OPTIONS),
        vol.Optional("include_unavailable", default=False): vol.Boolean(),
        vol.Optional("limit", default=DEFAULT_EXPLORE_LIMIT): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=500)
        ),
    },
    extra=vol.REMOVE_EXTRA,
)

CALL_SERVICE_SCHEMA = vol.Schema(
    {
        vol.Required("domain"): vol.All(str, vol.Length(min=1)),
        vol.Required("service"): vol.All(str, vol.Length(min=1)),
        vol.Optional("data"): vol.Any(None, dict),
        **REFERENCE_SCHEMA,
    },
    extra=vol.REMOVE_EXTRA,
)

HEALTH_SCHEMA = vol.Schema(
    {
        vol.Optional("entity_id"): _OPT_STR,
        vol.Optional("area"): _OPT_STR,
        vol.Optional("domain"): _OPT_STR,
        vol.Optional("show_healthy", default=False): vol.Boolean(),
        vol.Optional("stale_threshold_hours", default=DEFAULT_STALE_THRESHOLD_HOURS): vol.All(
            vol.Coerce(float), vol.Range(min=0.1)
        ),
        vol.Optional("low_battery_threshold", default=DEFAULT_LOW_BATTERY_THRESHOLD): vol.All(
            vol.Coerce(float), vol.Range(min=0, max=100)
        ),
    },
    extra=vol.REMOVE_EXTRA,
)

TOPOLOGY_SCHEMA = vol.Schema(
    {
        vol.Optional("floor"): _OPT_STR,
        vol.Optional("area_filter"): _OPT_STR,
        vol.Optional("include_entities", default=False): vol.Boolean(),
    },
    extra=vol.REMOVE_EXTRA,
)

EMPTY_SCHEMA = vol.Schema({}, extra=vol.REMOVE_EXTRA)


def _has_reference(args: Dict[str, Any]) -> bool:
    return any(args.get(k) for k in ("entity_id", "name"))


def _hours_since(timestamp: Optional[str], now: datetime) -> Optional[float]:
    """Hours between an ISO 8601 timestamp and `now`; None if unparseable."""
    if not timestamp:
        return None
    try:
        then = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    return (now - then).total_seconds() / 3600


class BridgeTools:
    """Tool handlers on top of the registry store, capabilities and client."""

    def __init__(
        self,
        registry,
        client=None,
        config: Optional[Dict[str, Any]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.registry = registry
        self.client = client
        self.config = config or {}
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.resolver = EntityResolverCapability(registry, self.config)
        self.searcher = EntitySearchCapability(registry, self.config)
        self.areas = AreaResolverCapability(registry, self.config)

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "search_entities_fuzzy": self._search_entities_fuzzy,
            "resolve_entity": self._resolve_entity,
            "get_entity": self._get_entity,
            "list_areas": self._list_areas,
            "list_devices": self._list_devices,
            "explore_entities": self._explore_entities,
            "get_entity_relationships": self._get_entity_relationships,
            "get_home_topology": self._get_home_topology,
            "get_device_health": self._get_device_health,
            "call_service": self._call_service,
            "refresh_registry": self._refresh_registry,
        }
        self._schemas: Dict[str, vol.Schema] = {
            "search_entities_fuzzy": SEARCH_SCHEMA,
            "resolve_entity": RESOLVE_SCHEMA,
            "get_entity": GET_ENTITY_SCHEMA,
            "list_areas": EMPTY_SCHEMA,
            "list_devices": LIST_DEVICES_SCHEMA,
            "explore_entities": EXPLORE_SCHEMA,
            "get_entity_relationships": RESOLVE_SCHEMA,
            "get_home_topology": TOPOLOGY_SCHEMA,
            "get_device_health": HEALTH_SCHEMA,
            "call_service": CALL_SERVICE_SCHEMA,
            "refresh_registry": EMPTY_SCHEMA,
        }

    @property
    def tool_names(self) -> List[str]:
        return list(self._handlers)

    async def dispatch(self, tool: str, args: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Run one tool. Never raises."""
        handler = self._handlers.get(tool)
        if handler is None:
            _LOGGER.warning("[Tools] Unknown tool '%s'", tool)
            return ToolResult.error(ERROR_UNKNOWN_TOOL, f"Unknown tool: {tool}", tool)

        try:
            validated = self._schemas[tool](dict(args or {}))
        except vol.Invalid as e:
            _LOGGER.debug("[Tools] Invalid arguments for %s: %s", tool, e)
            return ToolResult.error(ERROR_INVALID_ARGUMENTS, str(e), tool)

        _LOGGER.debug("[Tools] %s(%s)", tool, validated)
        try:
            result = await handler(validated)
        except vol.Invalid as e:
            return ToolResult.error(ERROR_INVALID_ARGUMENTS, str(e), tool)
        except HomeAssistantApiError as e:
            _LOGGER.warning("[Tools] %s failed upstream: %s", tool, e)
            return ToolResult.error(ERROR_UPSTREAM, str(e), tool)
        except Exception as e:
            _LOGGER.exception("[Tools] %s failed", tool)
            return ToolResult.error(ERROR_UPSTREAM, f"{type(e).__name__}: {e}", tool)

        if isinstance(result, ToolResult):
            result.tool = tool
            return result
        return ToolResult.success(result, tool)

    # --- helpers ---

    def _describe(self, snapshot: RegistrySnapshot, entity: Entity) -> Dict[str, Any]:
        area = snapshot.area_for(entity.entity_id)
        device = snapshot.device_for(entity.entity_id)
        return {
            "entity_id": entity.entity_id,
            "friendly_name": entity.display_name,
            "domain": entity.domain,
            "state": entity.state,
            "device_class": entity.device_class,
            "unit_of_measurement": entity.unit_of_measurement,
            "area": {"id": area.area_id, "name": area.name} if area else None,
            "device": {"id": device.id, "name": device.display_name} if device else None,
            "floor": snapshot.floor_for(entity.entity_id),
            "last_updated": entity.last_updated,
        }

    @staticmethod
    def _require_reference(args: Dict[str, Any]) -> None:
        if not _has_reference(args):
            raise vol.Invalid("either entity_id or name is required")

    # --- tool handlers ---

    async def _search_entities_fuzzy(self, args: Dict[str, Any]) -> Dict[str, Any]:
        await self.registry.async_ensure_loaded()
        return await self.searcher.run(args)

    async def _resolve_entity(self, args: Dict[str, Any]) -> Any:
        self._require_reference(args)
        await self.registry.async_ensure_loaded()
        resolution = await self.resolver.run(args)
        entity_id = resolution["entity_id"]
        if entity_id is None:
            return ToolResult.not_found(f"No entity matches '{args.get('name')}'")

        snapshot = self.registry.snapshot
        entity = snapshot.get_entity(entity_id)
        data: Dict[str, Any] = {
            "entity_id": entity_id,
            "match_type": resolution["match_type"],
            "known": entity is not None,
        }
        if entity is not None:
            area = snapshot.area_for(entity.entity_id)
            data.update(
                friendly_name=entity.display_name,
                domain=entity.domain,
                state=entity.state,
                area=area.name if area else None,
            )
        return data

    async def _get_entity(self, args: Dict[str, Any]) -> Any:
        self._require_reference(args)
        await self.registry.async_ensure_loaded()
        entity_id = self.resolver.resolve(ResolutionQuery.from_args(args))
        snapshot = self.registry.snapshot
        entity = snapshot.get_entity(entity_id) if entity_id else None
        if entity is None:
            return ToolResult.not_found(
                f"Entity not found: {entity_id or args.get('name')}"
            )
        if args["live"] and self.client is not None:
            # Current state straight from Home Assistant, registry context from the snapshot.
            entity = Entity.from_dict(await self.client.get_state(entity.entity_id))
        data = self._describe(snapshot, entity)
        data["attributes"] = dict(entity.attributes)
        data["last_changed"] = entity.last_changed
        data["live"] = bool(args["live"] and self.client is not None)
        return data

    async def _get_entity_relationships(self, args: Dict[str, Any]) -> Any:
        self._require_reference(args)
        await self.registry.async_ensure_loaded()
        entity_id = (await self.resolver.run(args))["entity_id"]
        snapshot = self.registry.snapshot
        entity = snapshot.get_entity(entity_id) if entity_id else None
        if entity is None:
            return ToolResult.not_found(f"Entity not found: {entity_id or args.get('name')}")

        device = snapshot.device_for(entity.entity_id)
        area = snapshot.area_for(entity.entity_id)
        related = []
        if device is not None:
            for eid, device_id in snapshot.entity_devices.items():
                other = snapshot.get_entity(eid)
                if device_id != device.id or eid == entity.entity_id or other is None:
                    continue
                related.append(
                    {
                        "entity_id": eid,
                        "friendly_name": other.display_name,
                        "domain": other.domain,
                        "state": other.state,
                        "device_class": other.device_class,
                    }
                )

        referencing: Dict[str, List[Dict[str, Any]]] = {d: [] for d in REFERENCING_DOMAINS}
        for other in snapshot.entities.values():
            if other.domain not in referencing or other.entity_id == entity.entity_id:
                continue
            if entity.entity_id in json.dumps(dict(other.attributes), default=str):
                referencing[other.domain].append(
                    {
                        "entity_id": other.entity_id,
                        "friendly_name": other.display_name,
                        "state": other.state,
                    }
                )

        data = self._describe(snapshot, entity)
        data["attributes"] = dict(entity.attributes)
        return {
            "entity": data,
            "device": {
                "id": device.id,
                "name": device.display_name,
                "manufacturer": device.manufacturer,
                "model": device.model,
                "sw_version": device.sw_version,
                "area_id": device.area_id,
            }
            if device
            else None,
            "area": {
                "area_id": area.area_id,
                "name": area.name,
                "aliases": list(area.aliases),
                "floor_id": area.floor_id,
            }
            if area
            else None,
            "related_entities": sorted(related, key=lambda r: r["entity_id"]),
            "automations_referencing": referencing["automation"],
            "scenes_referencing": referencing["scene"],
            "scripts_referencing": referencing["script"],
        }

    async def _get_home_topology(self, args: Dict[str, Any]) -> Any:
        await self.registry.async_ensure_loaded()
        snapshot = self.registry.snapshot
        include_entities = args["include_entities"]

        floor = None
        if args.get("floor"):
            floor = (await self.areas.run(search_text=args["floor"], mode="floor"))["match"]
            if floor is None:
                return ToolResult.not_found(f"Floor not found: {args['floor']}")

        areas = list(snapshot.areas.values())
        unmatched: List[str] = []
        if args.get("area_filter"):
            wanted = {}
            for name in args["area_filter"].split(","):
                if not name.strip():
                    continue
                area = self.areas.find_area(name)
                if area is None:
                    unmatched.append(name.strip())
                else:
                    wanted[area.area_id] = area
            if not wanted:
                return ToolResult.not_found(f"No area matches '{args['area_filter']}'")
            areas = list(wanted.values())
        if floor is not None:
            areas = [a for a in areas if a.floor_id == floor]

        entities_by_area: Dict[str, List[Entity]] = {}
        for entity in snapshot.entities.values():
            area = snapshot.area_for(entity.entity_id)
            if area is not None:
                entities_by_area.setdefault(area.area_id, []).append(entity)

        by_floor: Dict[Optional[str], List[Dict[str, Any]]] = {}
        for area in areas:
            area_entities = entities_by_area.get(area.area_id, [])
            area_data: Dict[str, Any] = {
                "area_id": area.area_id,
                "name": area.name,
                "aliases": list(area.aliases),
                "entity_count": len(area_entities),
                "devices": [
                    self._topology_device(snapshot, d, include_entities)
                    for d in snapshot.devices.values()
                    if d.area_id == area.area_id
                ],
            }
            if include_entities:
                area_data["entities"] = [
                    self._entity_brief(e)
                    for e in area_entities
                    if snapshot.device_for(e.entity_id) is None
                ]
            by_floor.setdefault(area.floor_id, []).append(area_data)

        floor_order: List[Optional[str]] = [floor] if floor is not None else self.areas.known_floors()
        floors = []
        for floor_id in floor_order + [None]:
            floor_areas = by_floor.pop(floor_id, [])
            if not floor_areas:
                continue
            floor_areas.sort(key=lambda a: a["entity_count"], reverse=True)
            floors.append(
                {
                    "floor": floor_id,
                    "area_count": len(floor_areas),
                    "entity_count": sum(a["entity_count"] for a in floor_areas),
                    "areas": floor_areas,
                }
            )

        unassigned = []
        if floor is None and not args.get("area_filter"):
            unassigned = [
                self._topology_device(snapshot, d, include_entities)
                for d in snapshot.devices.values()
                if not d.area_id
            ]

        data: Dict[str, Any] = {
            "summary": {
                "floors": len([f for f in floors if f["floor"] is not None]),
                "areas": len(snapshot.areas),
                "devices": len(snapshot.devices),
                "entities": len(snapshot.entities),
            },
            "floors": floors,
            "unassigned_devices": unassigned,
        }
        if unmatched:
            data["unmatched_areas"] = unmatched
        return data

    def _topology_device(
        self, snapshot: RegistrySnapshot, device: Device, include_entities: bool
    ) -> Dict[str, Any]:
        entities = [
            snapshot.entities[eid]
            for eid, device_id in snapshot.entity_devices.items()
            if device_id == device.id and eid in snapshot.entities
        ]
        data: Dict[str, Any] = {
            "id": device.id,
            "name": device.display_name,
            "manufacturer": device.manufacturer,
            "model": device.model,
            "entity_count": len(entities),
        }
        if include_entities:
            data["entities"] = [self._entity_brief(e) for e in entities]
        return data

    @staticmethod
    def _entity_brief(entity: Entity) -> Dict[str, Any]:
        return {
            "entity_id": entity.entity_id,
            "friendly_name": entity.display_name,
            "domain": entity.domain,
            "state": entity.state,
            "device_class": entity.device_class,
        }

    async def _get_device_health(self, args: Dict[str, Any]) -> Any:
        await self.registry.async_ensure_loaded()
        snapshot = self.registry.snapshot
        now = self._now()
        stale_hours = args["stale_threshold_hours"]
        battery_threshold = args["low_battery_threshold"]

        if args.get("entity_id"):
            entity = snapshot.get_entity(args["entity_id"])
            if entity is None:
                return ToolResult.not_found(f"Entity not found: {args['entity_id']}")
            to_check = [entity]
        else:
            to_check = [
                e
                for e in snapshot.entities.values()
                if (not args.get("domain") or e.domain == args["domain"])
                and (not args.get("area") or snapshot.area_matches(e.entity_id, args["area"]))
            ]

        summary = {"total_checked": len(to_check), "healthy": 0}
        summary.update({issue: 0 for issue in HEALTH_ISSUES})
        issues: List[Dict[str, Any]] = []
        healthy: List[Dict[str, Any]] = []
        for entity in to_check:
            hours = _hours_since(entity.last_updated, now)
            battery = entity.battery_level
            item = self._entity_brief(entity)
            item.update(
                last_updated=entity.last_updated,
                hours_since_update=round(hours, 1) if hours is not None else None,
                battery_level=battery,
            )
            if not entity.is_available:
                item["issue"] = "unavailable"
            elif battery is not None and battery < battery_threshold:
                item["issue"] = "low_battery"
            elif hours is not None and hours > stale_hours:
                item["issue"] = "stale"
            else:
                summary["healthy"] += 1
                if args["show_healthy"]:
                    healthy.append(item)
                continue
            summary[item["issue"]] += 1
            issues.append(item)

        issues.sort(
            key=lambda i: (HEALTH_ISSUES.index(i["issue"]), -(i["hours_since_update"] or 0.0))
        )
        _LOGGER.debug(
            "[Tools] Health check: %d entities, %d issues", len(to_check), len(issues)
        )
        data: Dict[str, Any] = {
            "checked_at": now.isoformat(),
            "stale_threshold_hours": stale_hours,
            "low_battery_threshold": battery_threshold,
            "summary": summary,
            "issues": issues,
        }
        if args["show_healthy"]:
            data["healthy"] = healthy
        return data

    async def _list_areas(self, args: Dict[str, Any]) -> Dict[str, Any]:
        await self.registry.async_ensure_loaded()
        snapshot = self.registry.snapshot
        counts: Dict[str, int] = {}
        for eid in snapshot.entities:
            area = snapshot.area_for(eid)
            if area:
                counts[area.area_id] = counts.get(area.area_id, 0) + 1
        areas = [
            {
                "area_id": a.area_id,
                "name": a.name,
                "aliases": list(a.aliases),
                "floor_id": a.floor_id,
                "entity_count": counts.get(a.area_id, 0),
            }
            for a in snapshot.areas.values()
        ]
        return {"count": len(areas), "areas": areas}

    async def _list_devices(self, args: Dict[str, Any]) -> Any:
        await self.registry.async_ensure_loaded()
        snapshot = self.registry.snapshot
        area_id = None
        if args.get("area"):
            area = self.areas.find_area(args["area"])
            if area is None:
                return ToolResult.not_found(f"Area not found: {args['area']}")
            area_id = area.area_id

        devices = []
        for d in snapshot.devices.values():
            if area_id and d.area_id != area_id:
                continue
            area = snapshot.areas.get(d.area_id) if d.area_id else None
            devices.append(
                {
                    "id": d.id,
                    "name": d.display_name,
                    "area": area.name if area else None,
                    "manufacturer": d.manufacturer,
                    "model": d.model,
                    "sw_version": d.sw_version,
                    "entity_count": len(d.entity_ids),
                }
            )
        return {"count": len(devices), "devices": devices}

    async def _explore_entities(self, args: Dict[str, Any]) -> Dict[str, Any]:
        await self.registry.async_ensure_loaded()
        snapshot = self.registry.snapshot
        group_by = args["group_by"]
        search = normalize(args.get("search") or "")

        matched = []
        for entity in snapshot.entities.values():
            if args.get("domain") and entity.domain != args["domain"]:
                continue
            if args.get("area") and not snapshot.area_matches(entity.entity_id, args["area"]):
                continue
            if args.get("device_class") and entity.device_class != args["device_class"]:
                continue
            if args.get("state") and entity.state != args["state"]:
                continue
            if not args["include_unavailable"] and not entity.is_available:
                continue
            if search and search not in normalize(entity.display_name) and search not in normalize(entity.entity_id):
                continue
            matched.append(self._describe(snapshot, entity))
            if len(matched) >= args["limit"]:
                break

        groups: Dict[str, List[Dict[str, Any]]] = {}
        for item in matched:
            groups.setdefault(self._group_key(item, group_by), []).append(item)

        ordered = sorted(groups.items(), key=lambda kv: len(kv[1]), reverse=True)
        return {
            "total_matched": len(matched),
            "filters_applied": {
                "domain": args.get("domain"),
                "area": args.get("area"),
                "device_class": args.get("device_class"),
                "state": args.get("state"),
                "search": args.get("search"),
                "include_unavailable": args["include_unavailable"],
            },
            "grouped_by": group_by,
            "groups": [
                {"group_name": name, "count": len(items), "entities": items}
                for name, items in ordered
            ],
        }

    @staticmethod
    def _group_key(item: Dict[str, Any], group_by: str) -> str:
        if group_by == "area":
            return item["area"]["name"] if item["area"] else "no_area"
        if group_by == "device":
            return item["device"]["name"] if item["device"] else "no_device"
        if group_by == "device_class":
            return item["device_class"] or "no_class"
        return item[group_by]

    async def _call_service(self, args: Dict[str, Any]) -> Any:
        if self.client is None:
            return ToolResult.error(ERROR_UPSTREAM, "No Home Assistant client configured")

        entity_id = None
        if _has_reference(args):
            await self.registry.async_ensure_loaded()
            query = ResolutionQuery.from_args(args)
            entity_id = self.resolver.resolve(query)
            if entity_id is None:
                # The device may be new since the last refresh.
                _LOGGER.debug("[Tools] '%s' unresolved, refreshing registry once", query.name)
                await self.registry.async_refresh()
                entity_id = self.resolver.resolve(query)
            if entity_id is None:
                return ToolResult.not_found(f"No entity matches '{query.name}'")

        response = await self.client.call_service(
            args["domain"], args["service"], args.get("data") or {}, entity_id
        )
        return {
            "domain": args["domain"],
            "service": args["service"],
            "entity_id": entity_id,
            "response": response,
        }

    async def _refresh_registry(self, args: Dict[str, Any]) -> Dict[str, Any]:
        view = await self.registry.async_refresh()
        return {
            "entities": len(view.snapshot.entities),
            "areas": len(view.snapshot.areas),
            "devices": len(view.snapshot.devices),
            "name_tokens": len(view.index),
        }
