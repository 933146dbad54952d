from __future__ import annotations

import asyncio
import unittest

from netstats.services.shared.cache_store import QueryCache


class QueryCacheSingleflightTests(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_callers_share_one_loader(self) -> None:
        cache = QueryCache(ttl_seconds=1.0, max_entries=16)
        calls = 0

        async def loader() -> str:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return "ok"

        results = await asyncio.gather(*(cache.cached("ts-key", loader) for _ in range(5)))

        self.assertEqual(calls, 1, "inflight waiters should not trigger duplicate loader")
        self.assertEqual(results, ["ok"] * 5)

    async def test_loader_failure_reaches_every_waiter_and_is_not_cached(self) -> None:
        cache = QueryCache(ttl_seconds=1.0, max_entries=16)
        calls = 0

        async def failing() -> str:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.02)
            raise RuntimeError("store unreachable")

        results = await asyncio.gather(
            cache.cached("k", failing),
            cache.cached("k", failing),
            return_exceptions=True,
        )
        self.assertEqual(calls, 1)
        self.assertTrue(all(isinstance(r, RuntimeError) for r in results))

        async def healthy() -> str:
            return "recovered"

        self.assertEqual(await cache.cached("k", healthy), "recovered")

    async def test_cancelled_owner_does_not_cancel_waiters(self) -> None:
        cache = QueryCache(ttl_seconds=1.0, max_entries=16)
        calls = 0

        async def loader() -> str:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)
            return "ok"

        owner = asyncio.create_task(cache.cached("k", loader))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(cache.cached("k", loader))
        await asyncio.sleep(0.01)
        owner.cancel()

        self.assertEqual(await waiter, "ok")
        with self.assertRaises(asyncio.CancelledError):
            await owner
        self.assertEqual(calls, 2)
        self.assertEqual(cache.get("k"), "ok")

    async def test_cancelled_waiter_leaves_shared_load_running(self) -> None:
        cache = QueryCache(ttl_seconds=1.0, max_entries=16)

        async def loader() -> str:
            await asyncio.sleep(0.03)
            return "ok"

        owner = asyncio.create_task(cache.cached("k", loader))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(cache.cached("k", loader))
        await asyncio.sleep(0.01)
        waiter.cancel()

        with self.assertRaises(asyncio.CancelledError):
            await waiter
        self.assertEqual(await owner, "ok")

    async def test_expired_entries_are_recomputed_lazily(self) -> None:
        cache = QueryCache(ttl_seconds=1.0, max_entries=16)
        calls = 0

        async def loader() -> int:
            nonlocal calls
            calls += 1
            return calls

        self.assertEqual(await cache.cached("k", loader, ttl_seconds=0.01), 1)
        self.assertEqual(await cache.cached("k", loader, ttl_seconds=0.01), 1)
        await asyncio.sleep(0.03)
        self.assertEqual(await cache.cached("k", loader, ttl_seconds=0.01), 2)

    async def test_falsy_values_are_cached(self) -> None:
        cache = QueryCache(ttl_seconds=1.0, max_entries=16)
        calls = 0

        async def loader() -> list[int]:
            nonlocal calls
            calls += 1
            return []

        await cache.cached("empty", loader)
        await cache.cached("empty", loader)
        self.assertEqual(calls, 1)

    def test_least_recently_used_entry_is_evicted(self) -> None:
        cache = QueryCache(ttl_seconds=60.0, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        self.assertEqual(cache.get("a"), 1)
        cache.set("c", 3)

        self.assertIsNone(cache.get("b"))
        self.assertEqual(cache.get("a"), 1)
        self.assertEqual(cache.get("c"), 3)


if __name__ == "__main__":
    unittest.main()
