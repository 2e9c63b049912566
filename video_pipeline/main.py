import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from video_pipeline.api.endpoints import video
from video_pipeline.core.config import get_settings
from video_pipeline.core.logging import setup_logging
from video_pipeline.middleware.error_handling import ErrorHandlingMiddleware
from video_pipeline.middleware.logging import RequestLoggingMiddleware
from video_pipeline.workers.job_system import JobSystem

logger = logging.getLogger(__name__)


def create_app(job_system: Optional[JobSystem] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        job_system: Pre-built JobSystem (tests); built from settings on startup otherwise
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = job_system is None
        app.state.job_system = job_system or JobSystem.from_settings(settings)
        logger.info(f"{settings.app_name} API started")
        try:
            yield
        finally:
            if owned:
                await app.state.job_system.stop()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    if job_system is not None:
        app.state.job_system = job_system

    # Add middleware (order matters - last added runs first)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(video.router, prefix="/api", tags=["video"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": settings.app_name, "version": settings.app_version}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        redis_ok = await app.state.job_system.health()
        return {"status": "healthy", "redis": "connected" if redis_ok else "disconnected"}

    return app


def build_app() -> FastAPI:
    """uvicorn factory: `uvicorn video_pipeline.main:build_app --factory`."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir)
    return create_app()
