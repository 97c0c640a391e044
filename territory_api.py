import logging
from typing import Optional

from aiohttp import web

from territory_config import HTTP_HOST, HTTP_PORT
from territory_ingest import decode_body
from territory_publisher import TerritoryService

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("territory_service", TerritoryService)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@web.middleware
async def cors_middleware(request: web.Request, handler):
    logger.info("[API] %s %s", request.method, request.path_qs)
    if request.method == "OPTIONS":
        response = web.Response(status=204)
    else:
        response = await handler(request)
    response.headers.update(CORS_HEADERS)
    return response


# =========================================================
# HANDLERS
# =========================================================
async def health(_request: web.Request) -> web.Response:
    return web.Response(text="ok", content_type="text/plain")


async def post_territory(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        raw = await request.read()
        payload = decode_body(raw, request.content_type)
        service.ingest(payload)
    except Exception:
        logger.exception("[API] Error receiving territory data")
        return web.json_response({"error": "Failed to process territory data"}, status=500)
    return web.json_response({"success": True, "message": "Territory data received"})


async def get_territory(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response(service.snapshot.to_dict())


async def get_war(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response(service.store.load_war().to_dict())


def create_app(service: TerritoryService) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[SERVICE_KEY] = service
    app.router.add_get("/health", health)
    app.router.add_get("/api/territory", get_territory)
    app.router.add_post("/api/territory", post_territory)
    app.router.add_get("/api/war", get_war)
    return app


async def start_api(service: TerritoryService, host: str = HTTP_HOST, port: Optional[int] = None) -> web.AppRunner:
    runner = web.AppRunner(create_app(service))
    await runner.setup()
    site = web.TCPSite(runner, host, port if port is not None else HTTP_PORT)
    await site.start()
    logger.info("HTTP API listening on %s:%s (/health, /api/territory, /api/war)", host, port or HTTP_PORT)
    return runner
