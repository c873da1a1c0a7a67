from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict

from aiohttp import web
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from .build_info import get_build_info

StatusProvider = Callable[[], Dict[str, Any]]


async def _healthz(_request):
    return web.Response(text="ok", content_type="text/plain")


def build_app(status: StatusProvider) -> web.Application:
    app = web.Application()

    async def _readyz(_request):
        data = status()
        code = 200 if data.get("ready") else 503
        return web.json_response(data, status=code)

    async def _version(_request):
        return web.json_response(get_build_info().as_dict())

    async def _metrics(_request):
        data = generate_latest()
        return web.Response(body=data, headers={"Content-Type": CONTENT_TYPE_LATEST})

    app.add_routes([
        web.get("/healthz", _healthz),
        web.get("/readyz", _readyz),
        web.get("/version", _version),
        web.get("/metrics", _metrics),
    ])
    return app


async def _run_app(port: int, status: StatusProvider):
    runner = web.AppRunner(build_app(status))
    await runner.setup()
    site = web.TCPSite(runner, host="0.0.0.0", port=port)
    await site.start()
    try:
        # Keep running
        while True:
            await asyncio.sleep(3600)
    finally:
        await runner.cleanup()


def start_health_server(loop: asyncio.AbstractEventLoop, port: int, status: StatusProvider) -> asyncio.Task:
    return loop.create_task(_run_app(port, status))
