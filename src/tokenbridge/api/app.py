"""
tokenbridge.api.app

FastAPI app factory for the token bridge.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Build the exchange engine once (`services.registry`) and close it on shutdown.
- Map engine errors to structured HTTP responses in one place.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tokenbridge import __version__
from tokenbridge.api.routers.discovery import router as discovery_router
from tokenbridge.api.routers.exchange import router as exchange_router
from tokenbridge.api.routers.health import router as health_router
from tokenbridge.errors import TokenBridgeError
from tokenbridge.observability.logging import configure_logging, get_logger
from tokenbridge.observability.middleware import RequestContextMiddleware
from tokenbridge.services.registry import Bridge, build_bridge
from tokenbridge.settings import Settings

log = get_logger(__name__)


def create_app(*, settings: Settings, bridge: Bridge | None = None) -> FastAPI:
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    # Built eagerly so handlers work even when the server does not run lifespan.
    bridge = bridge or build_bridge(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env, providers=sorted(bridge.orchestrators))
        try:
            yield
        finally:
            await bridge.aclose()
            log.info("shutdown")

    app = FastAPI(
        title="Token Bridge",
        version=__version__,
        docs_url="/docs" if settings.env != "prod" else None,
        openapi_url="/openapi.json" if settings.env != "prod" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.bridge = bridge

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(discovery_router)
    app.include_router(exchange_router)

    @app.exception_handler(TokenBridgeError)
    async def _bridge_error(request: Request, exc: TokenBridgeError) -> JSONResponse:
        log.info("request_failed", status=exc.status_code, error_code=exc.code)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "error_description": exc.message},
            headers={"Cache-Control": "no-store"},
        )

    return app


# --- Module Notes -----------------------------------------------------------
# Only app composition lives here. Exchange logic lives in the trust, signing,
# issuance and orchestrator packages.
