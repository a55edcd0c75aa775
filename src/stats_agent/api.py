"""HTTP API over the ring buffer.

Routes:
- GET /health: liveness plus buffer and sampling counters
- GET /metrics/latest: newest sample, 404 until the first sample lands
- GET /metrics/history?seconds=N: samples from the last N seconds (default 300)
- /ui/: optional static web UI, with / redirecting to it

Handlers only read from the ring buffer.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from aiohttp import web

from stats_agent.config import DEFAULT_HISTORY_WINDOW

if TYPE_CHECKING:
    from stats_agent.ringbuffer import RingBuffer
    from stats_agent.sampler import SamplingLoop

log = structlog.get_logger()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@dataclass
class QueryContext:
    """What the handlers need: the buffer, the sampling interval, and (optionally) the loop."""

    buffer: RingBuffer
    interval_sec: int
    sampler: SamplingLoop | None = None


CONTEXT_KEY = web.AppKey("context", QueryContext)


def parse_window(raw: str | None, default: int = DEFAULT_HISTORY_WINDOW) -> int:
    """Parse the ?seconds= parameter, falling back to default when absent or not an int."""
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Allow cross-origin GETs and answer preflight requests directly."""
    if request.method == "OPTIONS":
        return web.Response(status=200, headers=CORS_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(CORS_HEADERS)
        raise
    response.headers.update(CORS_HEADERS)
    return response


async def handle_health(request: web.Request) -> web.Response:
    ctx = request.app[CONTEXT_KEY]
    body = {
        "status": "ok",
        "samples": ctx.buffer.size(),
        "capacity": ctx.buffer.capacity,
    }
    if ctx.sampler is not None:
        body["ticks"] = ctx.sampler.ticks
        body["failures"] = ctx.sampler.failures
    return web.json_response(body)


async def handle_latest(request: web.Request) -> web.Response:
    ctx = request.app[CONTEXT_KEY]
    latest = ctx.buffer.get_latest()
    if latest is None:
        return web.json_response({"error": "No data available"}, status=404)
    return web.json_response(latest.to_dict())


async def handle_history(request: web.Request) -> web.Response:
    ctx = request.app[CONTEXT_KEY]
    seconds = parse_window(request.query.get("seconds"))
    history = ctx.buffer.get_history(seconds)
    return web.json_response(
        {
            "interval_sec": ctx.interval_sec,
            "samples": [s.to_dict() for s in history],
        }
    )


async def handle_root(request: web.Request) -> web.Response:
    raise web.HTTPFound("/ui/")


def create_app(
    buffer: RingBuffer,
    interval_sec: int,
    *,
    sampler: SamplingLoop | None = None,
    web_dir: Path | None = None,
) -> web.Application:
    """Build the aiohttp application.

    The static UI is only mounted when web_dir exists; without it, / is a 404.
    """
    app = web.Application(middlewares=[cors_middleware])
    app[CONTEXT_KEY] = QueryContext(buffer=buffer, interval_sec=interval_sec, sampler=sampler)

    app.router.add_get("/health", handle_health)
    app.router.add_get("/metrics/latest", handle_latest)
    app.router.add_get("/metrics/history", handle_history)

    if web_dir is not None and web_dir.is_dir():
        app.router.add_get("/", handle_root)
        # Registered before the static route, which would otherwise claim /ui/
        app.router.add_get("/ui/", _index_handler(web_dir))
        app.router.add_static("/ui", web_dir, show_index=False)
    elif web_dir is not None:
        log.warning("web_dir_missing", path=str(web_dir))

    return app


def _index_handler(web_dir: Path):
    """Serve index.html for the bare /ui/ path."""

    async def handle_index(request: web.Request) -> web.StreamResponse:
        index = web_dir / "index.html"
        if not index.is_file():
            raise web.HTTPNotFound()
        return web.FileResponse(index)

    return handle_index


class HTTPServer:
    """Runs the aiohttp app on a TCP port inside the agent's event loop."""

    def __init__(self, app: web.Application, host: str, port: int) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Bind and start serving."""
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("http_server_started", host=self.host, port=self.port)

    async def stop(self) -> None:
        """Stop serving and release the port."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            log.info("http_server_stopped")
