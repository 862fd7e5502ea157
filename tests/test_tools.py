"""Tests for the BridgeTools tool-invocation boundary."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from ha_llm_bridge.ha_client import HomeAssistantApiError
from ha_llm_bridge.tool_result import (
    ERROR_INVALID_ARGUMENTS,
    ERROR_NOT_FOUND,
    ERROR_UNKNOWN_TOOL,
    ERROR_UPSTREAM,
    ToolResult,
)
from ha_llm_bridge.tools import BridgeTools

from conftest import make_state

NOW = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    client = MagicMock()
    client.call_service = AsyncMock(return_value=[{"entity_id": "light.sam_office_tube", "state": "on"}])
    return client


@pytest.fixture
def tools(store, client):
    return BridgeTools(store, client, {}, now=lambda: NOW)


# ============================================================================
# DISPATCH
# ============================================================================

class TestDispatch:
    """Tests for dispatch error handling."""

    async def test_unknown_tool(self, tools):
        result = await tools.dispatch("launch_rocket", {})
        assert not result.ok
        assert result.error_code == ERROR_UNKNOWN_TOOL

    async def test_missing_required_argument(self, tools):
        result = await tools.dispatch("search_entities_fuzzy", {})
        assert result.error_code == ERROR_INVALID_ARGUMENTS

    async def test_reference_required(self, tools):
        result = await tools.dispatch("resolve_entity", {"area": "office"})
        assert result.error_code == ERROR_INVALID_ARGUMENTS

    async def test_unexpected_exception_becomes_payload(self, tools, store):
        store.async_ensure_loaded = AsyncMock(side_effect=KeyError("boom"))
        result = await tools.dispatch("list_areas")
        assert result.error_code == ERROR_UPSTREAM
        assert result.tool == "list_areas"

    def test_error_payload_shape(self):
        payload = ToolResult.error(ERROR_NOT_FOUND, "nope", "get_entity").as_dict()
        assert payload == {
            "status": "error",
            "tool": "get_entity",
            "error": {"code": "not_found", "message": "nope"},
        }

    def test_tool_names(self, tools):
        assert set(tools.tool_names) == {
            "search_entities_fuzzy",
            "resolve_entity",
            "get_entity",
            "list_areas",
            "list_devices",
            "explore_entities",
            "get_entity_relationships",
            "get_home_topology",
            "get_device_health",
            "call_service",
            "refresh_registry",
        }


# ============================================================================
# LOOKUP TOOLS
# ============================================================================

class TestLookupTools:
    """Tests for search, resolve and get."""

    async def test_search(self, tools):
        result = await tools.dispatch("search_entities_fuzzy", {"query": "offic ligt", "limit": 5})
        assert result.ok
        assert result.data["results"][0]["entity_id"] == "light.sam_office_tube"

    async def test_resolve(self, tools):
        result = await tools.dispatch("resolve_entity", {"name": "fan", "area": "bedroom"})
        assert result.data["entity_id"] == "fan.bedroom_fan"
        assert result.data["area"] == "Bedroom"
        assert result.data["known"] is True

    async def test_resolve_explicit_unknown_id(self, tools):
        result = await tools.dispatch("resolve_entity", {"entity_id": "light.nowhere"})
        assert result.ok
        assert result.data == {"entity_id": "light.nowhere", "match_type": "explicit", "known": False}

    async def test_resolve_not_found(self, tools):
        result = await tools.dispatch("resolve_entity", {"name": "nonexistent_xyz"})
        assert result.error_code == ERROR_NOT_FOUND

    async def test_get_entity(self, tools):
        result = await tools.dispatch("get_entity", {"name": "office light"})
        assert result.data["entity_id"] == "light.sam_office_tube"
        assert result.data["area"] == {"id": "office", "name": "Office"}
        assert result.data["floor"] == "upstairs"
        assert result.data["attributes"]["friendly_name"] == "office lights"

    async def test_get_entity_unknown_id(self, tools):
        result = await tools.dispatch("get_entity", {"entity_id": "light.nowhere"})
        assert result.error_code == ERROR_NOT_FOUND

    async def test_get_entity_live_state(self, tools, client):
        client.get_state = AsyncMock(
            return_value=make_state("light.kitchen", "kitchen light", state="off", area_id="kitchen")
        )
        result = await tools.dispatch("get_entity", {"name": "kitchen light", "live": True})
        client.get_state.assert_awaited_once_with("light.kitchen")
        assert result.data["state"] == "off"
        assert result.data["live"] is True
        assert result.data["area"] == {"id": "kitchen", "name": "Kitchen"}

    async def test_get_entity_live_upstream_error(self, tools, client):
        client.get_state = AsyncMock(side_effect=HomeAssistantApiError("HTTP 404", status=404))
        result = await tools.dispatch("get_entity", {"entity_id": "light.kitchen", "live": True})
        assert result.error_code == ERROR_UPSTREAM


class TestRegistryTools:
    """Tests for list and explore tools."""

    async def test_list_areas(self, tools):
        result = await tools.dispatch("list_areas")
        by_id = {a["area_id"]: a for a in result.data["areas"]}
        assert by_id["office"]["entity_count"] == 3
        assert by_id["bedroom"]["entity_count"] == 1
        assert by_id["office"]["aliases"] == ["Study"]

    async def test_list_devices_by_area(self, tools):
        result = await tools.dispatch("list_devices", {"area": "bedroom"})
        assert result.data["count"] == 1
        assert result.data["devices"][0]["name"] == "Bedroom Ceiling Fan"

    async def test_list_devices_unknown_area(self, tools):
        result = await tools.dispatch("list_devices", {"area": "garage"})
        assert result.error_code == ERROR_NOT_FOUND

    async def test_explore_groups_and_skips_unavailable(self, tools):
        result = await tools.dispatch("explore_entities", {"group_by": "area"})
        groups = {g["group_name"]: g["count"] for g in result.data["groups"]}
        assert groups == {"Office": 3, "Kitchen": 2, "Bedroom": 1}
        assert result.data["total_matched"] == 6

    async def test_explore_filters(self, tools):
        result = await tools.dispatch(
            "explore_entities",
            {"domain": "light", "area": "office", "include_unavailable": True},
        )
        ids = [e["entity_id"] for g in result.data["groups"] for e in g["entities"]]
        assert ids == ["light.sam_office_tube", "light.office_lamp"]

    async def test_explore_invalid_group(self, tools):
        result = await tools.dispatch("explore_entities", {"group_by": "color"})
        assert result.error_code == ERROR_INVALID_ARGUMENTS

    async def test_refresh_registry(self, tools, fetchers):
        result = await tools.dispatch("refresh_registry")
        assert result.data["entities"] == 7
        fetchers["states"].assert_awaited_once()


# ============================================================================
# CALL SERVICE
# ============================================================================

class TestCallService:
    """Tests for call_service."""

    async def test_resolves_then_calls(self, tools, client):
        result = await tools.dispatch(
            "call_service",
            {"domain": "light", "service": "turn_on", "name": "office light", "data": {"brightness": 100}},
        )
        assert result.ok
        client.call_service.assert_awaited_once_with(
            "light", "turn_on", {"brightness": 100}, "light.sam_office_tube"
        )

    async def test_without_reference(self, tools, client):
        await tools.dispatch("call_service", {"domain": "scene", "service": "reload"})
        client.call_service.assert_awaited_once_with("scene", "reload", {}, None)

    async def test_unresolved_refreshes_once(self, tools, client, fetchers):
        result = await tools.dispatch(
            "call_service", {"domain": "light", "service": "turn_on", "name": "garage door"}
        )
        assert result.error_code == ERROR_NOT_FOUND
        fetchers["states"].assert_awaited_once()
        client.call_service.assert_not_awaited()

    async def test_upstream_error(self, tools, client):
        client.call_service.side_effect = HomeAssistantApiError("HTTP 500", status=500)
        result = await tools.dispatch(
            "call_service", {"domain": "light", "service": "turn_on", "entity_id": "light.kitchen"}
        )
        assert result.error_code == ERROR_UPSTREAM


# ============================================================================
# HOME STRUCTURE AND HEALTH
# ============================================================================

@pytest.fixture
def extended_store(store, registry_payload):
    """Store with a battery sensor, a second device entity and an automation."""
    power = make_state("sensor.bedroom_fan_power", "fan power", state="12.5", unit_of_measurement="W")
    power["device_id"] = "dev_bedroom_fan"
    registry_payload["entities"] += [
        power,
        make_state("sensor.remote_battery", "remote battery", state="12", device_class="battery"),
        make_state(
            "automation.fan_at_night",
            "Fan at night",
            entity_id=["fan.bedroom_fan"],
        ),
        make_state("script.cool_down", "Cool down", entity_id=["fan.office_fan"]),
    ]
    store.apply_payload(registry_payload)
    return store


class TestHomeTopology:
    """Tests for get_home_topology."""

    async def test_floors_areas_devices(self, tools):
        result = await tools.dispatch("get_home_topology")
        assert result.ok
        assert result.data["summary"] == {"floors": 2, "areas": 3, "devices": 1, "entities": 7}
        floors = {f["floor"]: f for f in result.data["floors"]}
        assert list(floors) == ["upstairs", "ground"]
        assert [a["name"] for a in floors["upstairs"]["areas"]] == ["Office", "Bedroom"]
        bedroom = floors["upstairs"]["areas"][1]
        assert bedroom["devices"][0]["name"] == "Bedroom Ceiling Fan"
        assert bedroom["devices"][0]["entity_count"] == 1
        assert "entities" not in bedroom
        assert result.data["unassigned_devices"] == []

    async def test_include_entities(self, tools):
        result = await tools.dispatch("get_home_topology", {"include_entities": True})
        office = result.data["floors"][0]["areas"][0]
        assert [e["entity_id"] for e in office["entities"]] == [
            "light.sam_office_tube",
            "fan.office_fan",
            "light.office_lamp",
        ]
        bedroom = result.data["floors"][0]["areas"][1]
        assert bedroom["entities"] == []
        assert bedroom["devices"][0]["entities"][0]["entity_id"] == "fan.bedroom_fan"

    async def test_floor_filter_partial(self, tools):
        result = await tools.dispatch("get_home_topology", {"floor": "upstair"})
        assert [f["floor"] for f in result.data["floors"]] == ["upstairs"]
        assert result.data["floors"][0]["area_count"] == 2

    async def test_unknown_floor(self, tools):
        result = await tools.dispatch("get_home_topology", {"floor": "basement"})
        assert result.error_code == ERROR_NOT_FOUND

    async def test_area_filter_with_alias(self, tools):
        result = await tools.dispatch("get_home_topology", {"area_filter": "study, garage"})
        assert [a["name"] for f in result.data["floors"] for a in f["areas"]] == ["Office"]
        assert result.data["unmatched_areas"] == ["garage"]

    async def test_unassigned_devices(self, tools, store, registry_payload):
        registry_payload["devices"].append({"id": "dev_hub", "name": "Hub", "entities": []})
        store.apply_payload(registry_payload)
        result = await tools.dispatch("get_home_topology")
        assert [d["id"] for d in result.data["unassigned_devices"]] == ["dev_hub"]


class TestDeviceHealth:
    """Tests for get_device_health."""

    async def test_stale_and_unavailable(self, tools):
        result = await tools.dispatch("get_device_health")
        summary = result.data["summary"]
        assert summary["total_checked"] == 7
        assert summary["unavailable"] == 1
        assert summary["stale"] == 6
        assert summary["healthy"] == 0
        first = result.data["issues"][0]
        assert first["entity_id"] == "sensor.hallway_temperature"
        assert first["issue"] == "unavailable"
        assert result.data["issues"][1]["hours_since_update"] == 36.0
        assert "healthy" not in result.data

    async def test_threshold_and_show_healthy(self, tools):
        result = await tools.dispatch(
            "get_device_health", {"stale_threshold_hours": 48, "show_healthy": True}
        )
        assert result.data["summary"]["healthy"] == 6
        assert len(result.data["healthy"]) == 6
        assert [i["issue"] for i in result.data["issues"]] == ["unavailable"]

    async def test_low_battery(self, tools, extended_store):
        result = await tools.dispatch(
            "get_device_health", {"domain": "sensor", "stale_threshold_hours": 48}
        )
        issues = {i["entity_id"]: i for i in result.data["issues"]}
        assert issues["sensor.remote_battery"]["issue"] == "low_battery"
        assert issues["sensor.remote_battery"]["battery_level"] == 12.0
        assert "sensor.bedroom_fan_power" not in issues
        assert result.data["summary"]["low_battery"] == 1

    async def test_area_and_domain_filters(self, tools):
        result = await tools.dispatch(
            "get_device_health", {"area": "office", "domain": "light", "show_healthy": True}
        )
        assert result.data["summary"]["total_checked"] == 2

    async def test_unknown_entity(self, tools):
        result = await tools.dispatch("get_device_health", {"entity_id": "light.nowhere"})
        assert result.error_code == ERROR_NOT_FOUND

    async def test_threshold_minimum(self, tools):
        result = await tools.dispatch("get_device_health", {"stale_threshold_hours": 0})
        assert result.error_code == ERROR_INVALID_ARGUMENTS


class TestEntityRelationships:
    """Tests for get_entity_relationships."""

    async def test_device_area_and_references(self, tools, extended_store):
        result = await tools.dispatch("get_entity_relationships", {"name": "fan", "area": "bedroom"})
        data = result.data
        assert data["entity"]["entity_id"] == "fan.bedroom_fan"
        assert data["device"]["id"] == "dev_bedroom_fan"
        assert data["area"]["name"] == "Bedroom"
        assert [r["entity_id"] for r in data["related_entities"]] == ["sensor.bedroom_fan_power"]
        assert [a["entity_id"] for a in data["automations_referencing"]] == ["automation.fan_at_night"]
        assert data["scripts_referencing"] == []
        assert data["scenes_referencing"] == []

    async def test_unit_in_description(self, tools, extended_store):
        result = await tools.dispatch("get_entity", {"entity_id": "sensor.bedroom_fan_power"})
        assert result.data["unit_of_measurement"] == "W"
        assert result.data["device"]["name"] == "Bedroom Ceiling Fan"

    async def test_entity_without_device(self, tools):
        result = await tools.dispatch("get_entity_relationships", {"entity_id": "light.kitchen"})
        assert result.data["device"] is None
        assert result.data["related_entities"] == []
        assert result.data["area"]["area_id"] == "kitchen"

    async def test_not_found(self, tools):
        result = await tools.dispatch("get_entity_relationships", {"name": "nonexistent_xyz"})
        assert result.error_code == ERROR_NOT_FOUND

    async def test_reference_required(self, tools):
        result = await tools.dispatch("get_entity_relationships", {})
        assert result.error_code == ERROR_INVALID_ARGUMENTS
