"""Loopback HTTP side-channel: token delivery and liveness for the extension.

Routes::

    GET  /health           → {status, service, version, tokenValid, tokenExpiry}
    POST /gmail-authorize  → {success, expiresAt}   body: {"token": "..."}
    OPTIONS *              → 200 (CORS pre-flight)
    anything else          → 404 {"error": "Not found"}

No route sends mail.
"""

import json
import logging
from collections.abc import Awaitable, Callable

from aiohttp import web

from leedz_broker.mail.token_store import TokenStore, isoformat_z

logger = logging.getLogger(__name__)

SERVICE_NAME = "gmail-mcp"

TOKEN_STORE_KEY = web.AppKey("token_store", TokenStore)
SERVICE_VERSION_KEY = web.AppKey("service_version", str)
ALLOWED_ORIGIN_KEY = web.AppKey("allowed_origin", str)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _cors_headers(origin: str) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }


@web.middleware
async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Answer pre-flights and stamp CORS headers on every response."""
    origin = request.app[ALLOWED_ORIGIN_KEY]
    if request.method == "OPTIONS":
        return web.Response(status=200, headers=_cors_headers(origin))
    response = await handler(request)
    response.headers.update(_cors_headers(origin))
    return response


async def handle_health(request: web.Request) -> web.Response:
    store = request.app[TOKEN_STORE_KEY]
    token_valid = store.current() is not None
    expiry = store.expires_at
    logger.debug("Health check — token valid: %s", token_valid)
    return web.json_response(
        {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": request.app[SERVICE_VERSION_KEY],
            "tokenValid": token_valid,
            "tokenExpiry": isoformat_z(expiry) if expiry is not None else None,
        }
    )


async def handle_authorize(request: web.Request) -> web.Response:
    try:
        data = json.loads(await request.text())
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Error parsing authorize request: %s", exc)
        return web.json_response({"error": "Invalid JSON"}, status=400)

    token = data.get("token") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token.strip():
        return web.json_response({"error": "Missing token"}, status=400)

    stored = request.app[TOKEN_STORE_KEY].authorize(token.strip())
    return web.json_response({"success": True, "expiresAt": isoformat_z(stored.expires_at)})


async def handle_not_found(request: web.Request) -> web.Response:
    logger.debug("404 for %s %s", request.method, request.path)
    return web.json_response({"error": "Not found"}, status=404)


def create_app(
    store: TokenStore,
    service_version: str = "1.0.0",
    allowed_origin: str = "*",
) -> web.Application:
    """Build the side-channel application around a shared TokenStore."""
    app = web.Application(middlewares=[cors_middleware])
    app[TOKEN_STORE_KEY] = store
    app[SERVICE_VERSION_KEY] = service_version
    app[ALLOWED_ORIGIN_KEY] = allowed_origin
    app.router.add_get("/health", handle_health, allow_head=False)
    app.router.add_post("/gmail-authorize", handle_authorize)
    # Registered last: catches unknown paths and wrong methods on known ones
    app.router.add_route("*", "/{tail:.*}", handle_not_found)
    return app


async def start_http_side(
    app: web.Application, host: str, port: int
) -> web.AppRunner:
    """Bind ``app`` on the loopback interface; the caller must ``cleanup()``."""
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("HTTP side-channel listening on http://%s:%d", host, port)
    return runner
