"""Bridge wiring: REST client, tiered cache, registry store and tools."""

import logging
from typing import Any, Dict, Optional

from .cache import TieredCache
from .const import (
    CONF_HASS_TOKEN,
    CONF_HASS_URL,
    CONF_REFRESH_INTERVAL,
    CONF_REQUEST_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
)
from .ha_client import HomeAssistantClient
from .registry import RegistryStore
from .tool_result import ToolResult
from .tools import BridgeTools

_LOGGER = logging.getLogger(__name__)


class HomeAssistantBridge:
    """Owns every long-lived component of one bridge instance."""

    def __init__(
        self,
        config: Dict[str, Any],
        client: Optional[HomeAssistantClient] = None,
        cache: Optional[TieredCache] = None,
    ):
        self.config = config
        self.client = client or HomeAssistantClient(
            config[CONF_HASS_URL],
            config[CONF_HASS_TOKEN],
            timeout=config.get(CONF_REQUEST_TIMEOUT, DEFAULT_REQUEST_TIMEOUT),
        )
        self.cache = cache or TieredCache(config)
        self.registry = RegistryStore(
            self.cache,
            self.client.get_states,
            self.client.get_areas,
            self.client.get_devices,
            refresh_interval=config.get(CONF_REFRESH_INTERVAL),
        )
        self.tools = BridgeTools(self.registry, self.client, config)
        self._started = False

    async def async_start(self) -> None:
        """Prepare the cache directory, load the registry and start auto-refresh."""
        if self._started:
            return
        await self.cache.async_init()
        view = await self.registry.async_startup()
        self._started = True
        _LOGGER.info(
            "[Bridge] Started against %s with %d entities",
            self.client.base_url,
            len(view.snapshot.entities),
        )

    async def async_stop(self) -> None:
        """Cancel refresh timers and close the HTTP session. Cached data stays."""
        self.registry.shutdown()
        self.cache.shutdown()
        await self.client.async_close()
        self._started = False
        _LOGGER.info("[Bridge] Stopped")

    async def call_tool(self, tool: str, args: Optional[Dict[str, Any]] = None) -> ToolResult:
        return await self.tools.dispatch(tool, args)
