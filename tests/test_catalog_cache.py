import asyncio

from services.cache import MemoryCatalogCache, RedisCatalogCache, catalog_key, init_cache


def test_keys_are_scoped():
    assert catalog_key("R1", "/locations/L1/products") == "R1:/locations/L1/products"
    assert catalog_key("", "/locations", "business_id=biz") == "-:/locations:business_id=biz"


def test_memory_cache_expires_entries():
    async def scenario():
        fresh = MemoryCatalogCache(ttl_seconds=300)
        await fresh.set("R1:menu", [{"id": "jollof"}])
        assert await fresh.get("R1:menu") == [{"id": "jollof"}]

        stale = MemoryCatalogCache(ttl_seconds=0)
        await stale.set("R1:menu", [])
        assert await stale.get("R1:menu") is None

    asyncio.run(scenario())


def test_memory_cache_evicts_oldest_first():
    async def scenario():
        cache = MemoryCatalogCache(max_entries=2)
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.set("a", 3)
        await cache.set("c", 4)
        assert await cache.get("b") is None
        assert (await cache.get("a"), await cache.get("c")) == (3, 4)

    asyncio.run(scenario())


def test_invalidate_one_scope():
    async def scenario():
        cache = MemoryCatalogCache()
        await cache.set(catalog_key("R1", "menu"), 1)
        await cache.set(catalog_key("R2", "menu"), 2)
        assert await cache.invalidate("R1") == 1
        assert await cache.get(catalog_key("R2", "menu")) == 2
        await cache.clear()
        assert await cache.get(catalog_key("R2", "menu")) is None

    asyncio.run(scenario())


def test_cache_falls_back_to_memory():
    class DeadRedis:
        async def ping(self):
            raise ConnectionError("refused")

    class LiveRedis:
        async def ping(self):
            return True

    async def scenario():
        assert isinstance(await init_cache(None, ttl_seconds=5), MemoryCatalogCache)
        assert isinstance(await init_cache(DeadRedis(), ttl_seconds=5), MemoryCatalogCache)
        assert isinstance(await init_cache(LiveRedis(), ttl_seconds=5), RedisCatalogCache)

    asyncio.run(scenario())
