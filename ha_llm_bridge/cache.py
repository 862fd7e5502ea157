"""Two-tier cache with time-based expiry and background auto-refresh.

Fast tier: an in-process dict of CacheRecord.
Durable tier: one JSON file per key under the cache directory, holding
{"data", "timestamp", "ttl"} with times in milliseconds.

Config options:
    cache_dir: Directory for durable records (default: ./cache)
    cache_ttl: Default time-to-live in ms (default: 60000)
    refresh_interval: Default auto-refresh interval in ms (default: 60000)
"""

import asyncio
import json
import logging
import os
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

from .const import (
    CONF_CACHE_DIR,
    CONF_CACHE_TTL,
    CONF_REFRESH_INTERVAL,
    DEFAULT_CACHE_DIR,
    DEFAULT_CACHE_TTL,
    DEFAULT_REFRESH_INTERVAL,
)
from .utils.registry_types import CacheRecord

_LOGGER = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Any]]


def _wall_clock_ms() -> float:
    return time.time() * 1000


class RefreshHandle:
    """Cancellation handle for one auto-refresh registration.

    Cancelling stops future runs. A refresh already in flight is allowed to
    finish and store its value; nothing is scheduled after it.
    """

    def __init__(self, key: str, on_cancel: Callable[["RefreshHandle"], None]):
        self.key = key
        self._on_cancel = on_cancel
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False
        self.in_flight = False

    def attach(self, task: "asyncio.Task") -> None:
        self._task = task

    @property
    def cancelled(self) -> bool:
        return self._cancelled or (self._task is not None and self._task.done())

    def cancel(self) -> None:
        """Stop future refreshes. Idempotent."""
        self._cancelled = True
        if self._task is not None and not self._task.done() and not self.in_flight:
            self._task.cancel()
        self._on_cancel(self)


class TieredCache:
    """Fast in-memory tier backed by a durable JSON tier."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        config = config or {}
        self.cache_dir = config.get(CONF_CACHE_DIR, DEFAULT_CACHE_DIR)
        self.default_ttl = config.get(CONF_CACHE_TTL, DEFAULT_CACHE_TTL)
        self.default_interval = config.get(CONF_REFRESH_INTERVAL, DEFAULT_REFRESH_INTERVAL)
        self._clock = clock or _wall_clock_ms
        self._sleep = sleep or asyncio.sleep
        self._memory: Dict[str, CacheRecord] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self._refreshers: Dict[str, RefreshHandle] = {}
        # Bumped by invalidate (per key) and clear (all keys); a fetch that
        # started under an older generation does not store its value.
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._stats = {"memory_hits": 0, "disk_hits": 0, "misses": 0, "fetches": 0}

        _LOGGER.debug(
            "[Cache] Configured: dir=%s, ttl=%sms, refresh=%sms",
            self.cache_dir,
            self.default_ttl,
            self.default_interval,
        )

    def now(self) -> float:
        return self._clock()

    def _generation(self, key: str) -> tuple:
        return (self._epoch, self._generations.get(key, 0))

    @property
    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    # --- Durable tier (executor-bound file I/O) ---

    def _path(self, key: str) -> str:
        return os.path.join(self.cache_dir, f"{key}.json")

    def _read_file(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_file(self, key: str, record: Dict[str, Any]) -> None:
        os.makedirs(self.cache_dir, exist_ok=True)
        tmp_path = self._path(key) + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(record, f)
        os.replace(tmp_path, self._path(key))

    def _delete_file(self, key: str) -> None:
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)

    def _delete_all_files(self) -> int:
        if not os.path.isdir(self.cache_dir):
            return 0
        removed = 0
        for filename in os.listdir(self.cache_dir):
            if filename.endswith(".json"):
                os.remove(os.path.join(self.cache_dir, filename))
                removed += 1
        return removed

    async def _run_io(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def async_init(self) -> None:
        """Create the cache directory."""
        await self._run_io(partial(os.makedirs, self.cache_dir, exist_ok=True))
        _LOGGER.info("[Cache] Durable tier at %s", os.path.abspath(self.cache_dir))

    async def _read_durable(self, key: str) -> Optional[CacheRecord]:
        try:
            raw = await self._run_io(self._read_file, key)
        except (OSError, ValueError) as e:
            _LOGGER.warning("[Cache] Unreadable record for '%s', treating as miss: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return CacheRecord.from_dict(raw)
        except ValueError as e:
            _LOGGER.warning("[Cache] Malformed record for '%s', treating as miss: %s", key, e)
            return None

    async def _write_durable(self, key: str, record: CacheRecord) -> None:
        try:
            await self._run_io(self._write_file, key, record.to_dict())
        except (OSError, TypeError, ValueError) as e:
            _LOGGER.warning("[Cache] Durable write failed for '%s': %s", key, e)

    # --- Public API ---

    async def get(self, key: str) -> Optional[Any]:
        """Return the fresh value for `key`, or None."""
        now = self.now()
        record = self._memory.get(key)
        if record is not None and record.is_fresh(now):
            self._stats["memory_hits"] += 1
            return record.data

        record = await self._read_durable(key)
        if record is not None and record.is_fresh(self.now()):
            self._memory[key] = record
            self._stats["disk_hits"] += 1
            _LOGGER.debug("[Cache] Promoted '%s' from durable tier", key)
            return record.data

        self._stats["misses"] += 1
        return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store `value` in both tiers. Durable write failures are only logged."""
        record = CacheRecord(
            data=value,
            timestamp=self.now(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        self._memory[key] = record
        await self._write_durable(key, record)

    async def get_or_fetch(self, key: str, fetch_fn: FetchFn, ttl: Optional[float] = None) -> Any:
        """Return the cached value or fetch, store and return a new one.

        Concurrent misses on the same key share one in-flight fetch. Fetch
        errors propagate to every waiter and leave stored data untouched.
        """
        value = await self.get(key)
        if value is not None:
            return value

        inflight = self._inflight.get(key)
        if inflight is None:
            inflight = asyncio.ensure_future(
                self._fetch_and_store(key, fetch_fn, ttl, self._generation(key))
            )
            self._inflight[key] = inflight

            def _done(fut, key=key):
                if self._inflight.get(key) is fut:
                    del self._inflight[key]
                if not fut.cancelled():
                    # Mark retrieved so an unawaited failure is not logged twice.
                    fut.exception()

            inflight.add_done_callback(_done)
        else:
            _LOGGER.debug("[Cache] Joining in-flight fetch for '%s'", key)

        return await asyncio.shield(inflight)

    async def _fetch_and_store(
        self, key: str, fetch_fn: FetchFn, ttl: Optional[float], generation: tuple
    ) -> Any:
        self._stats["fetches"] += 1
        _LOGGER.debug("[Cache] Fetching '%s'", key)
        value = await fetch_fn()
        await self._store_if_current(key, generation, value, ttl)
        return value

    async def _store_if_current(
        self, key: str, generation: tuple, value: Any, ttl: Optional[float]
    ) -> bool:
        if self._generation(key) != generation:
            _LOGGER.debug("[Cache] Dropping value for '%s' fetched before invalidation", key)
            return False
        await self.set(key, value, ttl)
        return True

    async def invalidate(self, key: str) -> None:
        """Remove one key from both tiers."""
        self._generations[key] = self._generations.get(key, 0) + 1
        self._inflight.pop(key, None)
        self._memory.pop(key, None)
        try:
            await self._run_io(self._delete_file, key)
        except OSError as e:
            _LOGGER.warning("[Cache] Could not delete durable record '%s': %s", key, e)

    async def clear(self) -> None:
        """Remove all keys from both tiers and cancel every refresh."""
        self.shutdown()
        self._epoch += 1
        self._inflight.clear()
        self._memory.clear()
        try:
            removed = await self._run_io(self._delete_all_files)
        except OSError as e:
            _LOGGER.warning("[Cache] Could not clear durable tier: %s", e)
            return
        _LOGGER.info("[Cache] Cleared (%d durable records removed)", removed)

    def shutdown(self) -> None:
        """Cancel all refresh timers; stored data is left in place."""
        for handle in list(self._refreshers.values()):
            handle.cancel()
        self._refreshers.clear()

    # --- Auto-refresh ---

    def register_auto_refresh(
        self,
        key: str,
        fetch_fn: FetchFn,
        interval: Optional[float] = None,
        ttl: Optional[float] = None,
    ) -> RefreshHandle:
        """Re-fetch `key` every `interval` ms regardless of demand.

        A previous registration for the same key is cancelled. Failures keep
        the last stored value.
        """
        interval = self.default_interval if interval is None else interval
        previous = self._refreshers.get(key)
        if previous is not None:
            previous.cancel()

        handle = RefreshHandle(key, self._forget_refresher)
        handle.attach(asyncio.ensure_future(self._refresh_loop(handle, fetch_fn, interval, ttl)))
        self._refreshers[key] = handle
        _LOGGER.info("[Cache] Auto-refresh for '%s' every %sms", key, interval)
        return handle

    def _forget_refresher(self, handle: RefreshHandle) -> None:
        if self._refreshers.get(handle.key) is handle:
            del self._refreshers[handle.key]

    async def _refresh_loop(
        self, handle: RefreshHandle, fetch_fn: FetchFn, interval: float, ttl: Optional[float]
    ) -> None:
        key = handle.key
        while not handle.cancelled:
            await self._sleep(interval / 1000)
            if handle.cancelled:
                break
            handle.in_flight = True
            generation = self._generation(key)
            try:
                value = await fetch_fn()
                stored = await self._store_if_current(key, generation, value, ttl)
            except Exception as e:
                _LOGGER.error("[Cache] Auto-refresh failed for '%s', keeping last value: %s", key, e)
                continue
            finally:
                handle.in_flight = False
            if stored:
                _LOGGER.debug("[Cache] Auto-refreshed '%s'", key)
