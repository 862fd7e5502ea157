"""Home Assistant REST client.

Thin aiohttp wrapper for the endpoints the bridge needs: states, the area
and device registries, and service calls. Every failure surfaces as
HomeAssistantApiError.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .const import (
    API_AREA_REGISTRY,
    API_DEVICE_REGISTRY,
    API_SERVICES,
    API_STATES,
    DEFAULT_REQUEST_TIMEOUT,
)

_LOGGER = logging.getLogger(__name__)


class HomeAssistantApiError(Exception):
    """Remote API failure with the HTTP status when one was received."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class HomeAssistantClient:
    """REST client with bearer auth and a per-request timeout.

    The session is created on first use and closed by async_close().
    """

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = url.rstrip("/")
        self._token = token
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def async_close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        _LOGGER.debug("[HAClient] %s %s", method, path)
        session = self._get_session()
        try:
            async with session.request(
                method, url, json=payload, headers=self._headers(), timeout=self._timeout
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise HomeAssistantApiError(
                        f"HTTP {resp.status} for {method} {path}: {text[:200]}",
                        status=resp.status,
                    )
                if resp.content_length == 0:
                    return None
                try:
                    return await resp.json(content_type=None)
                except ValueError:
                    return None
        except asyncio.TimeoutError as e:
            raise HomeAssistantApiError(f"Timeout for {method} {path}") from e
        except aiohttp.ClientError as e:
            raise HomeAssistantApiError(f"Request failed for {method} {path}: {e}") from e

    async def _get_list(self, path: str, what: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", path)
        if not isinstance(data, list):
            raise HomeAssistantApiError(f"Unexpected {what} payload: {type(data).__name__}")
        return data

    async def get_states(self) -> List[Dict[str, Any]]:
        return await self._get_list(API_STATES, "states")

    async def get_state(self, entity_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{API_STATES}/{entity_id}")

    async def get_areas(self) -> List[Dict[str, Any]]:
        return await self._get_list(API_AREA_REGISTRY, "area registry")

    async def get_devices(self) -> List[Dict[str, Any]]:
        return await self._get_list(API_DEVICE_REGISTRY, "device registry")

    async def call_service(
        self,
        domain: str,
        service: str,
        data: Optional[Dict[str, Any]] = None,
        entity_id: Optional[str] = None,
    ) -> Any:
        """POST /api/services/<domain>/<service> with the target merged into the data."""
        payload: Dict[str, Any] = dict(data or {})
        if entity_id:
            payload["entity_id"] = entity_id
        _LOGGER.info("[HAClient] Calling %s.%s (entity_id=%s)", domain, service, entity_id)
        return await self._request("POST", f"{API_SERVICES}/{domain}/{service}", payload)
