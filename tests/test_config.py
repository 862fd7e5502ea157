"""Tests for configuration loading and bridge setup."""

from unittest.mock import AsyncMock, patch

import pytest
import voluptuous as vol

from ha_llm_bridge import async_setup, async_unload, load_config
from ha_llm_bridge.const import (
    CONF_CACHE_DIR,
    CONF_CACHE_TTL,
    CONF_HASS_TOKEN,
    CONF_HASS_URL,
    CONF_REFRESH_INTERVAL,
    CONF_SEARCH_LIMIT,
)


def test_defaults():
    config = load_config(environ={})
    assert config[CONF_CACHE_DIR] == "./cache"
    assert config[CONF_CACHE_TTL] == 60000
    assert config[CONF_REFRESH_INTERVAL] == 60000
    assert config[CONF_SEARCH_LIMIT] == 10
    assert CONF_HASS_TOKEN not in config


def test_environment_overrides_defaults():
    config = load_config(
        environ={
            "HASS_URL": "http://ha.local:8123",
            "API_ACCESS_TOKEN": "abc",
            "HASS_CACHE_TTL": "5000",
        }
    )
    assert config[CONF_HASS_URL] == "http://ha.local:8123"
    assert config[CONF_HASS_TOKEN] == "abc"
    assert config[CONF_CACHE_TTL] == 5000


def test_hass_token_preferred_over_api_access_token():
    config = load_config(environ={"HASS_TOKEN": "primary", "API_ACCESS_TOKEN": "fallback"})
    assert config[CONF_HASS_TOKEN] == "primary"


def test_explicit_overrides_win():
    config = load_config({CONF_CACHE_TTL: 100, CONF_CACHE_DIR: None}, environ={"HASS_CACHE_TTL": "5000"})
    assert config[CONF_CACHE_TTL] == 100
    assert config[CONF_CACHE_DIR] == "./cache"


def test_invalid_values_rejected():
    with pytest.raises(vol.Invalid):
        load_config({CONF_CACHE_TTL: "soon"}, environ={})
    with pytest.raises(vol.Invalid):
        load_config({CONF_SEARCH_LIMIT: 500}, environ={})


async def test_setup_requires_token(monkeypatch):
    monkeypatch.delenv("HASS_TOKEN", raising=False)
    monkeypatch.delenv("API_ACCESS_TOKEN", raising=False)
    with pytest.raises(vol.Invalid):
        await async_setup({})


async def test_setup_and_unload(monkeypatch, tmp_path):
    for name in ("HASS_URL", "HASS_TOKEN", "HASS_CACHE_DIR", "HASS_CACHE_TTL", "HASS_REFRESH_INTERVAL"):
        monkeypatch.delenv(name, raising=False)
    with patch("ha_llm_bridge.bridge.HomeAssistantBridge.async_start", new=AsyncMock()) as start, patch(
        "ha_llm_bridge.bridge.HomeAssistantBridge.async_stop", new=AsyncMock()
    ) as stop:
        bridge = await async_setup({CONF_HASS_TOKEN: "t", CONF_CACHE_DIR: str(tmp_path)})
        assert bridge.client.base_url == "http://localhost:8123"
        assert bridge.cache.cache_dir == str(tmp_path)
        start.assert_awaited_once()
        assert await async_unload(bridge) is True
        stop.assert_awaited_once()
