"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order
- Can create multiple app instances if needed (e.g., for testing)

The session store, video processor and workspace are built in the
lifespan handler and live on app.state until shutdown.

For local development:
    uvicorn framelabel.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import export, health, images, sessions, video
from .config.settings import Settings, get_settings
from .core.annotation.workspace import AnnotationWorkspace
from .infrastructure.metadata.codec import create_metadata_codec
from .infrastructure.sessions.store import (
    ImageNotFoundError,
    InvalidSessionError,
    SessionSweeper,
    create_session_store,
)
from .infrastructure.video.processor import create_video_processor

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup builds the long-lived collaborators and starts the session
    sweeper. Shutdown stops the sweeper and releases every session's
    media directory.
    """
    settings: Settings = app.state.settings

    logger.info(
        "FrameLabel API starting",
        extra={
            "version": settings.api_version,
            "video_mock_mode": settings.video_mock_mode,
            "media_root": str(settings.media_root_path),
        }
    )

    # Validate configuration
    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )

    store = create_session_store(settings.media_root_path, settings.session_ttl_seconds)
    video_processor = create_video_processor(
        mock_mode=settings.video_mock_mode,
        ffmpeg_path=settings.ffmpeg_path,
        ffprobe_path=settings.ffprobe_path,
        timeout_seconds=settings.subprocess_timeout_seconds,
    )
    app.state.session_store = store
    app.state.video_processor = video_processor
    app.state.workspace = AnnotationWorkspace(
        sessions=store,
        frames=video_processor,
        codec=create_metadata_codec(),
        page_size=settings.page_size,
    )

    sweeper = SessionSweeper(store, settings.sweep_interval_seconds)
    sweeper.start()

    try:
        yield
    finally:
        # Shutdown
        await sweeper.stop()
        store.close()
        logger.info("FrameLabel API shutting down")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application. Tests pass their own
    Settings; otherwise the cached environment settings are used.
    """
    settings = settings or get_settings()

    # Create FastAPI instance
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Session-scoped backend for a browser image annotation tool.

        ## Workflow

        1. **Start a session**: `POST /api/v1/sessions`
           - Send the returned id in the `X-Session-Id` header from then on
           - Keep it alive with `POST /api/v1/sessions/ping`

        2. **Add images**: `POST /api/v1/images` or `POST /api/v1/videos`
           - Videos are sampled into frames at the requested rate

        3. **Annotate**: `PUT /api/v1/images/{image_id}/metadata`
           - Shapes are embedded in the image's EXIF UserComment

        4. **Export**: `GET /api/v1/export/yolo`
           - Zip of images/ and labels/ folders
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # CORS middleware
    # Configure allowed origins via CORS_ORIGINS environment variable
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        sessions.router,
        prefix="/api/v1/sessions",
        tags=["Sessions"],
    )

    app.include_router(
        images.router,
        prefix="/api/v1/images",
        tags=["Images"],
    )

    app.include_router(
        video.router,
        prefix="/api/v1/videos",
        tags=["Videos"],
    )

    app.include_router(
        export.router,
        prefix="/api/v1/export",
        tags=["Export"],
    )

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - points at docs."""
        return {
            "message": "FrameLabel API",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(InvalidSessionError)
    async def invalid_session_handler(request: Request, exc: InvalidSessionError):
        # sessions can expire between dependency resolution and use
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Invalid session ID"},
        )

    @app.exception_handler(ImageNotFoundError)
    async def image_not_found_handler(request: Request, exc: ImageNotFoundError):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": f"Image not found: {exc.image_id}"},
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        In production, this prevents stack traces from leaking to clients.
        We log the full error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error. Please contact support if this persists."
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Create the application instance
# This is what uvicorn imports
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    # Get settings to determine log level
    settings = get_settings()

    uvicorn.run(
        "framelabel.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
