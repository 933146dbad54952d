from __future__ import annotations

import asyncio
from collections import OrderedDict
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

_MISSING = object()


class QueryCache:
    """TTL + LRU cache where concurrent loads of one key share a single computation."""

    def __init__(self, ttl_seconds: float, max_entries: int) -> None:
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._cache: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._inflight: dict[str, asyncio.Future[Any]] = {}

    def _lookup(self, key: str) -> Any:
        now_ts = datetime.now(UTC).timestamp()
        entry = self._cache.get(key)
        if entry is None:
            return _MISSING
        expires_at, value = entry
        if expires_at <= now_ts:
            del self._cache[key]
            return _MISSING
        self._cache.move_to_end(key)
        return value

    def get(self, key: str) -> Any | None:
        value = self._lookup(key)
        return None if value is _MISSING else value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> Any:
        ttl = self._ttl_seconds if ttl_seconds is None else ttl_seconds
        expires_at = datetime.now(UTC).timestamp() + max(ttl, 0.0)
        self._cache[key] = (expires_at, value)
        self._cache.move_to_end(key)
        while len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)
        return value

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    async def cached(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl_seconds: float | None = None,
    ) -> Any:
        while True:
            existing = self._lookup(key)
            if existing is not _MISSING:
                return existing

            pending = self._inflight.get(key)
            if pending is None:
                break
            try:
                # Waiters must not cancel the shared load when they are cancelled themselves.
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if not pending.cancelled() or (task is not None and task.cancelling()):
                    raise
                # Only the owning caller was cancelled, so load again.

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unobserved failure is not reported at shutdown.
            future.exception()
            raise
        else:
            self.set(key, value, ttl_seconds=ttl_seconds)
            future.set_result(value)
            return value
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]
