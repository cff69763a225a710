"""
SitePulse: privacy-friendly web analytics for site owners and their teams.
Main application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from sitepulse.api.analytics import router as analytics_router
from sitepulse.api.errors import install_error_handlers
from sitepulse.api.script import router as script_router
from sitepulse.api.sites import router as sites_router
from sitepulse.api.team import router as team_router
from sitepulse.api.track import router as track_router
from sitepulse.middleware.security import DashboardCORSMiddleware, SecurityHeadersMiddleware
from sitepulse.config import get_settings

import structlog

VERSION = "0.1.0"

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("sitepulse_starting", base_url=get_settings().base_url)
    yield
    logger.info("sitepulse_shutting_down")


app = FastAPI(
    title="SitePulse",
    description="Multi-tenant web analytics: tracking, dashboards, teams.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

install_error_handlers(app)

# Security headers on every response
app.add_middleware(SecurityHeadersMiddleware)

# CORS for the dashboard; /api/track and /api/script answer any origin themselves
ALLOWED_ORIGINS = ["*"] if get_settings().debug else [
    "https://sitepulse.app",
    "https://www.sitepulse.app",
]
app.add_middleware(
    DashboardCORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=not get_settings().debug,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

# --- Routes ---
app.include_router(track_router)
app.include_router(script_router)
app.include_router(sites_router)
app.include_router(analytics_router)
app.include_router(team_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "sitepulse", "version": VERSION}
