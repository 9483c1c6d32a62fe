"""
Content Workflow Service - FastAPI Application
Editorial stages, deadlines and reminders for the content calendar
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.config import settings
from app.core.logger import configure_logging
from app.database import SessionLocal, init_db
from app.services.workflow_runtime import build_workflow_services
from app.websockets.connection_manager import manager
from app.api import websocket
from app.api.routes import health
from app.api.v1 import content_events, content_workflows

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    configure_logging(settings.log_level)
    logger.info("Starting %s...", settings.app_name)

    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error("Database initialization failed: %s", e)

    services = build_workflow_services(SessionLocal, settings, connections=manager)
    services.start()
    app.state.workflow_services = services
    logger.info("Workflow services started on %s environment", settings.app_env)
    yield
    await services.stop()
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Content workflow engine: stages, deadlines, reminders and analytics",
    version="1.0.0",
    lifespan=lifespan,
)

# Respect proxy forwarded proto/host so redirects don't downgrade to http.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root() -> dict:
    return {
        "name": settings.app_name,
        "environment": settings.app_env,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


app.include_router(health.router, prefix=settings.api_v1_prefix, tags=["Health"])
app.include_router(
    content_workflows.router,
    prefix=f"{settings.api_v1_prefix}/content-workflows",
    tags=["Content Workflows"],
)
app.include_router(
    content_events.router,
    prefix=f"{settings.api_v1_prefix}/content-events",
    tags=["Content Events"],
)
app.include_router(websocket.router, tags=["WebSocket"])
