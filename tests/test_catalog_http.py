import asyncio

import pytest
from aiohttp import test_utils, web

from services.catalog_http import HttpCatalogProvider
from services.errors import CatalogError


def with_catalog_api(handler, scenario):
    app = web.Application()
    app.router.add_get("/locations", handler)

    async def run():
        server = test_utils.TestServer(app)
        await server.start_server()
        try:
            return await scenario(f"http://{server.host}:{server.port}")
        finally:
            await server.close()
    return asyncio.run(run())


def test_locations_are_fetched_and_parsed():
    async def locations(request):
        assert request.query["business_id"] == "biz"
        return web.json_response({"locations": [{"id": "L1", "name": "Ikeja", "restaurant_id": "R1"}]})

    async def scenario(base_url):
        provider = HttpCatalogProvider(base_url, attempts=1, deadline=5)
        try:
            found = await provider.get_locations("biz")
        finally:
            await provider.close()
        assert [(l.id, l.name, l.restaurant_id) for l in found] == [("L1", "Ikeja", "R1")]

    with_catalog_api(locations, scenario)


def test_slow_catalog_call_is_cut_at_the_deadline():
    async def stalled(request):
        await asyncio.sleep(2)
        return web.json_response([])

    async def scenario(base_url):
        provider = HttpCatalogProvider(base_url, timeout=30, attempts=3, deadline=0.2)
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            with pytest.raises(CatalogError):
                await provider.get_locations("biz")
        finally:
            await provider.close()
        assert loop.time() - started < 1.5

    with_catalog_api(stalled, scenario)
