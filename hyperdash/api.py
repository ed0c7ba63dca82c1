"""
HyperDash Gateway FastAPI Application

Mounts the REST proxy routes and the streaming WebSocket gateway on one app.
"""

from typing import Optional
import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from hyperdash import __version__
from hyperdash.config import GatewayConfig
from hyperdash.proxy.api import envelope_response, router as proxy_router
from hyperdash.proxy.rate_limiter import RateLimiter
from hyperdash.proxy.schemas import now_ms
from hyperdash.proxy.service import MarketDataService
from hyperdash.stream.gateway import ConnectionGateway
from hyperdash.stream.ws_server import router as stream_router

LOG = logging.getLogger(__name__)


def create_app(config: Optional[GatewayConfig] = None,
               market_service: Optional[MarketDataService] = None,
               gateway: Optional[ConnectionGateway] = None,
               rate_limiter: Optional[RateLimiter] = None) -> FastAPI:
    """Build the gateway app; collaborators may be injected for tests"""
    config = config or GatewayConfig()

    app = FastAPI(
        title="HyperDash Gateway API",
        description="Market-data proxy and order-book stream relay for the HyperDash dashboard",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.started_at = time.time()
    app.state.market_service = market_service if market_service is not None else MarketDataService(config)
    app.state.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter(config.rate_limit)
    app.state.gateway = gateway if gateway is not None else ConnectionGateway(config.upstream)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        LOG.info(f"{request.method} {request.url.path}")
        return await call_next(request)

    # ========================================================================
    # STARTUP/SHUTDOWN
    # ========================================================================

    @app.on_event("startup")
    async def startup_event():
        LOG.info("HyperDash gateway starting up...")
        LOG.info(f"Config hash: {config.get_config_hash()}")
        LOG.info(f"Exchange info: {config.upstream.info_url}")
        LOG.info(f"Exchange feed: {config.upstream.ws_url}")

    @app.on_event("shutdown")
    async def shutdown_event():
        LOG.info("HyperDash gateway shutting down...")
        await app.state.gateway.shutdown()
        await app.state.market_service.close()
        LOG.info("Shutdown complete")

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc):
        LOG.warning(f"Invalid request to {request.url.path}: {exc.errors()}")
        return envelope_response(False, error="Invalid request body", status_code=400)

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        LOG.error(f"Unhandled exception: {exc}", exc_info=True)
        return envelope_response(False, error="Internal server error", status_code=500)

    # ========================================================================
    # ROUTES
    # ========================================================================

    @app.get("/health")
    async def health_check():
        """Liveness plus a count of live stream sessions and relays"""
        gw = app.state.gateway
        return {
            "ok": True,
            "status": "healthy",
            "timestamp": now_ms(),
            "uptime": round(time.time() - app.state.started_at, 1),
            "sessions": gw.registry.session_count,
            "relays": gw.registry.relay_count,
        }

    app.include_router(proxy_router)
    app.include_router(stream_router)

    return app


app = create_app(GatewayConfig.from_env())
