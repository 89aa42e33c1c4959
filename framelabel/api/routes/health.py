"""
Health check endpoints.

We provide two endpoints:
- /health: Basic liveness check (is the process running?)
- /health/ready: Readiness check (can we extract frames and store media?)

The distinction matters in orchestration systems like Kubernetes
where liveness and readiness have different behaviors.
"""

import logging
import os
from typing import Any, Union

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ... import __version__
from ..dependencies import SessionStoreDep, SettingsDep, VideoProcessorDep

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """
    Health check response.

    Standardized format makes it easy for monitoring tools to parse.
    """
    status: str
    version: str
    details: dict[str, Any] = {}


class ReadinessCheck(BaseModel):
    """Individual readiness check result."""
    name: str
    status: str  # "ok" or "error"
    error: str | None = None


class ReadinessResponse(BaseModel):
    """Readiness check response with details."""
    status: str  # "ready" or "not_ready"
    version: str
    checks: list[ReadinessCheck]


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the service is running. Does not check dependencies.",
)
async def health_check(settings: SettingsDep, store: SessionStoreDep) -> HealthResponse:
    """Liveness check - is the process alive?"""
    return HealthResponse(
        status="ok",
        version=__version__,
        details={
            "video_mock_mode": settings.video_mock_mode,
            "active_sessions": store.count(),
        },
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
    description="Returns 200 if the service can handle traffic. Checks FFmpeg and media storage.",
    responses={
        503: {
            "description": "Service not ready",
            "model": ReadinessResponse,
        }
    },
)
async def readiness_check(
    settings: SettingsDep,
    video_processor: VideoProcessorDep,
) -> Union[ReadinessResponse, JSONResponse]:
    """
    Readiness check - can we serve traffic?

    Checks that:
    - Required external tools are configured
    - The video processor can run
    - The media root is writable

    Returns 503 if any check fails, which tells load balancers not
    to route traffic here.
    """
    checks: list[ReadinessCheck] = []

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        checks.append(ReadinessCheck(
            name="configuration",
            status="error",
            error=f"Missing required tools: {', '.join(missing_fields)}"
        ))
    else:
        checks.append(ReadinessCheck(name="configuration", status="ok"))

    if video_processor.is_available():
        checks.append(ReadinessCheck(
            name="video",
            status="ok",
            error="mock mode" if settings.video_mock_mode else None,
        ))
    else:
        checks.append(ReadinessCheck(
            name="video",
            status="error",
            error="FFmpeg is not runnable"
        ))

    media_root = settings.media_root_path
    if media_root.is_dir() and os.access(media_root, os.W_OK):
        checks.append(ReadinessCheck(name="media_storage", status="ok"))
    else:
        checks.append(ReadinessCheck(
            name="media_storage",
            status="error",
            error=f"{media_root} is not a writable directory"
        ))

    all_ok = all(c.status == "ok" for c in checks)
    response = ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        version=__version__,
        checks=checks,
    )

    if all_ok:
        return response

    logger.warning(
        "Readiness check failed",
        extra={
            "checks": [
                {"name": c.name, "status": c.status, "error": c.error}
                for c in checks
            ]
        }
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(),
    )
