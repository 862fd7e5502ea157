"""Shared fixtures: a small registry payload, a fake clock and a loaded store."""

import copy
from unittest.mock import AsyncMock

import pytest

from ha_llm_bridge.cache import TieredCache
from ha_llm_bridge.const import CONF_CACHE_DIR, CONF_CACHE_TTL, CONF_REFRESH_INTERVAL
from ha_llm_bridge.registry import RegistryStore


def make_state(entity_id, name=None, /, state="on", **attributes):
    """Build a remote state object the way /api/states returns it."""
    if name is not None:
        attributes["friendly_name"] = name
    return {
        "entity_id": entity_id,
        "state": state,
        "attributes": attributes,
        "last_changed": "2024-01-01T00:00:00+00:00",
        "last_updated": "2024-01-01T00:00:00+00:00",
    }


REGISTRY_PAYLOAD = {
    "entities": [
        make_state("light.sam_office_tube", "office lights", area_id="office"),
        make_state("light.kitchen", "kitchen light", area_id="kitchen"),
        make_state("fan.office_fan", "fan", area_id="office"),
        make_state("fan.bedroom_fan", "fan"),
        make_state("light.office_lamp", "lamp", area_id="office"),
        make_state("light.kitchen_lamp", "lamp", area_id="kitchen"),
        make_state(
            "sensor.hallway_temperature",
            "hallway temperature",
            state="unavailable",
            device_class="temperature",
        ),
    ],
    "areas": [
        {"area_id": "office", "name": "Office", "aliases": ["Study"], "floor_id": "upstairs"},
        {"area_id": "bedroom", "name": "Bedroom", "floor_id": "upstairs"},
        {"area_id": "kitchen", "name": "Kitchen", "floor_id": "ground"},
    ],
    "devices": [
        {
            "id": "dev_bedroom_fan",
            "name": "Ceiling Fan 3000",
            "name_by_user": "Bedroom Ceiling Fan",
            "area_id": "bedroom",
            "manufacturer": "Acme",
            "model": "CF3000",
            "entities": ["fan.bedroom_fan"],
        },
    ],
}


class FakeClock:
    """Millisecond clock under test control."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def registry_payload():
    return copy.deepcopy(REGISTRY_PAYLOAD)


@pytest.fixture
def clock():
    return FakeClock(1_000_000.0)


@pytest.fixture
def cache_config(tmp_path):
    return {
        CONF_CACHE_DIR: str(tmp_path / "cache"),
        CONF_CACHE_TTL: 60000,
        CONF_REFRESH_INTERVAL: 60000,
    }


@pytest.fixture
def cache(cache_config, clock):
    cache = TieredCache(cache_config, clock=clock)
    yield cache
    cache.shutdown()


@pytest.fixture
def fetchers(registry_payload):
    """AsyncMock fetch functions backed by the registry payload."""
    return {
        "states": AsyncMock(return_value=registry_payload["entities"]),
        "areas": AsyncMock(return_value=registry_payload["areas"]),
        "devices": AsyncMock(return_value=registry_payload["devices"]),
    }


@pytest.fixture
def store(cache, fetchers, registry_payload):
    """Registry store with the payload already applied."""
    store = RegistryStore(cache, fetchers["states"], fetchers["areas"], fetchers["devices"])
    store.apply_payload(registry_payload)
    yield store
    store.shutdown()
