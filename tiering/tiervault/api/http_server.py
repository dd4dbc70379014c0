"""
HTTP read API for TierVault.

Endpoints:
    GET /records/{record_id}/{created_date}   payload from whichever tier holds it
    GET /v1/health                            liveness plus engine counters
    GET /v1/dead-letters                      administrative dead-letter listing

Read contract:
    200  application/octet-stream payload
    400  created_date is not YYYY-MM-DD
    404  absent from both tiers
    500  transient failure of either tier (never reported as 404)

Invariants:
    - Responses never reveal which tier served or failed a read
    - created_date is required: it determines the cold key

How to change safely:
    - Keep the read contract stable; clients treat 404 as authoritative
    - Add endpoints additively
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import date
from typing import Any

from aiohttp import web

from ..deadletter import DeadLetterSink
from ..read.router import ReadRouter, ReadStatus

logger = logging.getLogger(__name__)

ROUTER_KEY = web.AppKey("router", ReadRouter)
DEAD_LETTERS_KEY = web.AppKey("dead_letters", DeadLetterSink)
STATS_KEY = web.AppKey("stats", Callable)


def create_http_app(
    router: ReadRouter,
    dead_letters: DeadLetterSink | None = None,
    stats: Callable[[], dict[str, Any]] | None = None,
) -> web.Application:
    """Create the HTTP application.

    Args:
        router: Read router serving record reads
        dead_letters: Dead-letter sink for the admin listing (optional)
        stats: Callable returning engine counters for /v1/health (optional)

    Returns:
        aiohttp Application instance
    """
    app = web.Application(middlewares=[error_middleware])
    app[ROUTER_KEY] = router
    if dead_letters is not None:
        app[DEAD_LETTERS_KEY] = dead_letters
    app[STATS_KEY] = stats or dict

    app.router.add_get("/records/{record_id}/{created_date}", handle_get_record)
    app.router.add_get("/v1/health", handle_health)
    app.router.add_get("/v1/dead-letters", handle_list_dead_letters)
    return app


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.error(f"HTTP handler error: {e}", exc_info=True)
        return web.json_response({"error": "internal error", "error_code": "INTERNAL"}, status=500)


def _json_error(status: int, message: str, code: str) -> web.Response:
    return web.json_response({"error": message, "error_code": code}, status=status)


async def handle_get_record(request: web.Request) -> web.StreamResponse:
    """Handle GET /records/{record_id}/{created_date}."""
    record_id = request.match_info["record_id"]
    raw_date = request.match_info["created_date"]
    partition_key = request.query.get("partition_key")

    try:
        created = date.fromisoformat(raw_date)
    except ValueError:
        return _json_error(400, f"created_date must be YYYY-MM-DD, got {raw_date!r}", "BAD_DATE")

    result = await request.app[ROUTER_KEY].read(record_id, created, partition_key)

    if result.status == ReadStatus.FOUND:
        return web.Response(body=result.payload, content_type="application/octet-stream")
    if result.status == ReadStatus.NOT_FOUND:
        return _json_error(404, "record not found", "NOT_FOUND")
    return _json_error(500, "record temporarily unavailable", "UNAVAILABLE")


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET /v1/health."""
    return web.json_response({"status": "ok", "stats": request.app[STATS_KEY]()})


async def handle_list_dead_letters(request: web.Request) -> web.Response:
    """Handle GET /v1/dead-letters?limit=N."""
    if DEAD_LETTERS_KEY not in request.app:
        return _json_error(404, "dead-letter listing disabled", "DISABLED")

    try:
        limit = int(request.query.get("limit", "100"))
    except ValueError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "limit must be an integer"}),
            content_type="application/json",
        )

    entries = await request.app[DEAD_LETTERS_KEY].list(limit=limit)
    return web.json_response({"dead_letters": [e.to_dict() for e in entries]})


class HttpServer:
    """Runs the HTTP app on an aiohttp AppRunner.

    Example:
        >>> server = HttpServer(create_http_app(router), host="0.0.0.0", port=8080)
        >>> await server.start()
        >>> await server.stop()
    """

    def __init__(self, app: web.Application, host: str = "0.0.0.0", port: int = 8080) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app, access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("HTTP server started", extra={"host": self.host, "port": self.port})

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")
