"""
Video processing API endpoints.

The client uploads one or more videos with a requested frame rate for
each. The server probes every video's native rate, samples frames at
min(requested, native) and adds each frame to the session as a new
image, in frame order.

Videos in one request are decoded one at a time.
"""

import json
import logging
from typing import Annotated

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel, Field

from ...core.annotation.workspace import UploadedFile
from ...infrastructure.video.processor import VideoProcessingError
from ..dependencies import CurrentSession, SettingsDep, WorkspaceDep

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_CONTENT_TYPES = {"application/octet-stream"}


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class ProcessVideoResponse(BaseModel):
    """Response after extracting frames."""
    message: str = Field(description="Status message")
    frame_count: int = Field(description="Frames added to the session")
    image_ids: list[str] = Field(description="Ids of the new images, in frame order")


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def parse_frame_rates(raw: str) -> list[float]:
    """Parse the frame_rates form field: a JSON array of positive numbers."""
    try:
        rates = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"frame_rates must be a JSON array: {e}")

    if not isinstance(rates, list):
        raise ValueError("frame_rates must be a JSON array")
    for rate in rates:
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
            raise ValueError(f"Invalid frame rate: {rate!r}")
    return rates


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=ProcessVideoResponse,
    status_code=status.HTTP_200_OK,
    summary="Process videos",
    description="Extract frames from each video at its requested rate and store them as images",
)
async def process_videos(
    files: Annotated[list[UploadFile], File(description="Video files (MP4, MOV, etc.)")],
    frame_rates: Annotated[str, Form(description="JSON array with one frame rate per video")],
    session: CurrentSession,
    workspace: WorkspaceDep,
    settings: SettingsDep,
) -> ProcessVideoResponse:
    try:
        rates = parse_frame_rates(frame_rates)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    videos: list[UploadedFile] = []
    for upload in files:
        content_type = upload.content_type or "application/octet-stream"
        if not content_type.startswith("video/") and content_type not in ALLOWED_CONTENT_TYPES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unsupported video type: {content_type}",
            )

        data = await upload.read()
        if len(data) > settings.max_upload_size_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"Video too large. Maximum size: {settings.max_upload_size_mb}MB",
            )
        videos.append(UploadedFile(
            filename=upload.filename or "video.mp4",
            data=data,
            content_type=content_type,
        ))

    try:
        image_ids = await workspace.process_videos(session.id, videos, rates)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except VideoProcessingError as e:
        logger.error(
            "Error processing video files",
            extra={"session_id": session.id, "error": str(e), "diagnostics": e.diagnostics},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error processing video files: {e}. {e.diagnostics}".strip(),
        )

    return ProcessVideoResponse(
        message="Video processed and images stored successfully",
        frame_count=len(image_ids),
        image_ids=image_ids,
    )
