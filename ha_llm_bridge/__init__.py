"""Home Assistant LLM bridge.

Resolves loosely specified device references against a cached copy of the
Home Assistant registry and exposes the result as tool calls.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional

import voluptuous as vol

from .const import (
    CONF_CACHE_DIR,
    CONF_CACHE_TTL,
    CONF_HASS_TOKEN,
    CONF_HASS_URL,
    CONF_REFRESH_INTERVAL,
    CONF_REQUEST_TIMEOUT,
    CONF_SEARCH_LIMIT,
    DEFAULTS,
    ENV_VARS,
    MAX_SEARCH_LIMIT,
)

_LOGGER = logging.getLogger(__name__)

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional(CONF_HASS_URL): vol.All(str, vol.Url()),
        vol.Optional(CONF_HASS_TOKEN): vol.Any(None, str),
        vol.Optional(CONF_CACHE_DIR): vol.All(str, vol.Length(min=1)),
        vol.Optional(CONF_CACHE_TTL): vol.All(vol.Coerce(int), vol.Range(min=0)),
        vol.Optional(CONF_REFRESH_INTERVAL): vol.All(vol.Coerce(int), vol.Range(min=1000)),
        vol.Optional(CONF_REQUEST_TIMEOUT): vol.All(vol.Coerce(float), vol.Range(min=1, max=300)),
        vol.Optional(CONF_SEARCH_LIMIT): vol.All(vol.Coerce(int), vol.Range(min=1, max=MAX_SEARCH_LIMIT)),
    },
    extra=vol.ALLOW_EXTRA,
)


def _config_from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    for key, names in ENV_VARS.items():
        for name in names:
            value = environ.get(name)
            if value:
                config[key] = value
                break
    return config


def load_config(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Build the effective, validated configuration.

    MERGE CONFIG priority (lowest to highest):
    1. Built-in defaults
    2. Environment variables
    3. Explicit overrides
    """
    env_config = _config_from_env(os.environ if environ is None else environ)
    explicit = {k: v for k, v in (overrides or {}).items() if v is not None}
    effective = CONFIG_SCHEMA({**DEFAULTS, **env_config, **explicit})

    if env_config:
        _LOGGER.debug(
            "[Bridge] Config from environment: %s",
            sorted(k for k in env_config if k != CONF_HASS_TOKEN),
        )
    return effective


async def async_setup(config: Optional[Dict[str, Any]] = None):
    """Create and start a bridge from a configuration dict.

    Raises:
        vol.Invalid: When no access token is configured
    """
    from .bridge import HomeAssistantBridge

    effective = load_config(config)
    if not effective.get(CONF_HASS_TOKEN):
        raise vol.Invalid("hass_token is required (set HASS_TOKEN or API_ACCESS_TOKEN)", path=[CONF_HASS_TOKEN])

    bridge = HomeAssistantBridge(effective)
    await bridge.async_start()
    _LOGGER.info("[Bridge] Home Assistant LLM bridge ready")
    return bridge


async def async_unload(bridge) -> bool:
    """Stop a bridge created by async_setup."""
    await bridge.async_stop()
    return True
