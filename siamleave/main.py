"""SiamLeave — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from siamleave.common.exceptions import register_exception_handlers
from siamleave.common.rate_limit import limiter
from siamleave.config import settings
from siamleave.database import async_session_factory, engine
from siamleave.leave.router import reset_router
from siamleave.leave.router import router as leave_router
from siamleave.maintenance.router import router as maintenance_router
from siamleave.maintenance.scheduler import MaintenanceOrchestrator

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    configure_logging()
    orchestrator = MaintenanceOrchestrator(settings, async_session_factory)
    app.state.orchestrator = orchestrator
    orchestrator.start()
    logger.info("SiamLeave started (%s)", settings.ENVIRONMENT)
    try:
        yield
    finally:
        await orchestrator.stop()
        await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="SiamLeave",
        description="Leave balance accounting and leave-type lifecycle maintenance",
        version="1.0.0",
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(leave_router, prefix="/api/v1/leave", tags=["leave"])
    app.include_router(reset_router, prefix="/api/v1/leave-quota-reset", tags=["leave-quota-reset"])
    app.include_router(maintenance_router, prefix="/api/v1/maintenance", tags=["maintenance"])

    return app


app = create_app()
