"""
Nobridge realtime service - Main FastAPI application.

Supervises the Supabase realtime channels that deliver conversation messages
and relays them to browsers over WebSocket.
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from nobridge.core.config import settings, validate_supabase_settings
from nobridge.core.api import health, realtime
from nobridge.core.realtime.manager import init_channel_manager, shutdown_channel_manager
from nobridge.core.realtime.transport import SupabaseRealtimeTransport
from nobridge.core.websocket.hub import conversation_hub

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Lifespan event handlers
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the channel manager on startup; disconnect every channel on shutdown."""
    transport = None
    missing = validate_supabase_settings()
    if missing:
        logger.warning("Realtime disabled; missing configuration: %s", ", ".join(missing))
    else:
        try:
            transport = await SupabaseRealtimeTransport.create(settings.supabase_url, settings.supabase_anon_key)
            init_channel_manager(transport)
        except Exception as e:
            logger.error("Could not start realtime channel manager: %s", e, exc_info=True)

    yield

    # Shutdown
    shutdown_channel_manager()
    conversation_hub.reset()
    if transport is not None:
        await transport.aclose()
    logger.info("Nobridge realtime service shutting down")


# Create FastAPI app
app = FastAPI(
    title="Nobridge Realtime",
    description="Realtime conversation channels for the Nobridge marketplace",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests. Status/health endpoints at DEBUG to reduce log spam."""
    path = request.url.path
    skip_info = path in ("/health", "/realtime/status")
    level = logger.debug if skip_info else logger.info
    level("%s %s", request.method, path)
    response = await call_next(request)
    level("%s %s - %s", request.method, path, response.status_code)
    return response


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc) if settings.debug else None,
        },
    )


# WebSocket relay for conversation messages, presence and channel status
from nobridge.core.websocket.routes import websocket_endpoint
app.add_websocket_route("/ws/conversations", websocket_endpoint)

# Include routers
app.include_router(health.router)
app.include_router(realtime.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "nobridge.core.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
