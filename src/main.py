"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import settings
from src.am_auction.api.router import counter_router
from src.am_auction.api.router import router as auction_router
from src.am_broadcast.api.router import router as live_router
from src.am_common.database import dispose_engine
from src.am_common.errors import AppError
from src.am_common.redis_client import close_redis, get_redis
from src.am_common.response import error_response
from src.am_gateway.middleware.request_log import RequestLogMiddleware
from src.am_notification.api.router import router as notification_router
from src.container import build_container

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: build the container and verify the store. Shutdown: reverse order."""
    redis = await get_redis()
    container = build_container(settings, redis=redis)
    await container.store.ping()
    app.state.container = container
    await container.start()
    yield
    await container.close()
    if settings.STORE_BACKEND == "sql":
        await dispose_engine()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version=VERSION,
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.PUBLIC_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(
        exc.code,
        exc.message,
        data=exc.details,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


app.include_router(auction_router, prefix="/api/v1")
app.include_router(counter_router, prefix="/api/v1")
app.include_router(notification_router, prefix="/api/v1")
app.include_router(live_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": VERSION}


@app.get("/health/check")
async def health_check(request: Request) -> dict[str, Any]:
    """Dependency diagnostics. Always 200; each service reports its own ok flag."""
    container = request.app.state.container
    services: dict[str, Any] = {}

    try:
        await container.store.ping()
        services["store"] = {"ok": True, "backend": container.config.STORE_BACKEND}
    except Exception as exc:  # noqa: BLE001
        services["store"] = {"ok": False, "backend": container.config.STORE_BACKEND, "error": str(exc)}

    if container.redis is None:
        services["redis"] = {"ok": False, "configured": False}
    else:
        try:
            await container.redis.ping()
            services["redis"] = {"ok": True, "configured": True}
        except Exception as exc:  # noqa: BLE001
            services["redis"] = {"ok": False, "configured": True, "error": str(exc)}

    services["email"] = {"provider": "SendGrid", "configured": container.channels.email_configured}
    services["sms"] = {"provider": "Twilio", "configured": container.channels.sms_configured}
    services["contacts"] = {"configured": container.channels.directory_configured}
    services["live"] = {
        "sessions": container.registry.session_count,
        "origin": container.registry.origin,
    }
    ok = services["store"]["ok"]
    return {"status": "ok" if ok else "degraded", "version": VERSION, "services": services}
