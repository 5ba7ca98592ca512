"""
Realtime Relay – FastAPI application
====================================
Same relay as ``realtime_proxy.server``, mounted on FastAPI so it can run
under uvicorn next to plain HTTP routes.

Run:
    uvicorn realtime_proxy.main:create_app --factory
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from realtime_proxy.config import Settings
from realtime_proxy.relay.connection import StarletteConnection
from realtime_proxy.relay.manager import SessionManager
from realtime_proxy.relay.session import Connector, handle_client_connection
from realtime_proxy.upstream.client import connect_upstream
from realtime_proxy.utils.logging import setup_logging, get_logger

logger = get_logger("main")

SERVICE_NAME = "Realtime Relay"
VERSION = "1.0.0"


def create_app(
    settings: Optional[Settings] = None,
    connector: Connector = connect_upstream,
) -> FastAPI:
    """
    Build the FastAPI application.

    Settings are constructed here once (unless given) and captured by the
    routes; the app keeps its own session registry on ``app.state``.
    """
    if settings is None:
        settings = Settings()
        setup_logging(settings)

    manager = SessionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # =====================================================================
        # Startup
        # =====================================================================
        logger.info("=" * 60)
        logger.info(f"Starting {SERVICE_NAME}")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Debug: {settings.DEBUG}")
        logger.info(f"Relay path: {settings.LISTEN_PATH}")
        if settings.PUBLIC_URL:
            logger.info(f"Clients should connect to: {settings.PUBLIC_URL}")
        if not settings.has_token:
            logger.warning("TOKEN is not set; upstream connections will be rejected")
        logger.info("=" * 60)

        yield

        # =====================================================================
        # Shutdown
        # =====================================================================
        logger.info("Shutting down...")
        if manager.close_all():
            await manager.wait_closed()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=SERVICE_NAME,
        description="Authenticated relay to the OpenAI Realtime API",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )
    app.state.settings = settings
    app.state.sessions = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    @app.websocket(settings.LISTEN_PATH)
    async def relay_endpoint(websocket: WebSocket):
        """
        Relay endpoint.

        Every message is forwarded verbatim to the upstream realtime API
        and every upstream message verbatim back, e.g.
        - Send: {"type": "input_audio_buffer.append", "audio": "<base64>"}
        - Receive: {"type": "response.done", ...}
        """
        await websocket.accept()
        await handle_client_connection(
            StarletteConnection(websocket),
            settings=settings,
            manager=manager,
            connector=connector,
        )

    # =========================================================================
    # HTTP Endpoints
    # =========================================================================

    @app.get("/health")
    async def health():
        """Health check endpoint for load balancers and monitoring."""
        return {
            "status": "healthy",
            "sessions": manager.active_count,
            "upstream_token": "configured" if settings.has_token else "missing",
        }

    @app.get("/stats")
    async def stats():
        """Server statistics endpoint."""
        return {"sessions": manager.get_stats()}

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": SERVICE_NAME,
            "version": VERSION,
            "websocket": settings.LISTEN_PATH,
            "health": "/health",
            "docs": "/docs" if settings.DEBUG else "disabled",
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"}
        )

    return app


# =============================================================================
# Development Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    _settings = Settings()
    uvicorn.run(
        "realtime_proxy.main:create_app",
        factory=True,
        host=_settings.HOST,
        port=_settings.PORT,
        reload=_settings.DEBUG,
        log_level="debug" if _settings.DEBUG else "info",
    )
