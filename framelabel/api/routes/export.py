"""
Annotation export API endpoints.

Exports pair each image with a detection-label text file derived from its
shapes. Only the YOLO/darknet-style format is produced for now:
one `label x y width height` line per shape.
"""

import logging

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse

from ...core.annotation.export import UnsupportedFormatError
from ..dependencies import CurrentSession, WorkspaceDep
from ..responses import zip_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/{export_format}",
    summary="Export all images",
    description="Zip with images/ and labels/ folders for every image in the session",
    response_class=StreamingResponse,
)
async def export_all_images(
    export_format: str,
    session: CurrentSession,
    workspace: WorkspaceDep,
) -> StreamingResponse:
    try:
        entries = workspace.export_entries(session.id, export_format)
    except UnsupportedFormatError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not entries:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No images to export",
        )

    logger.info(
        "Exporting all images",
        extra={"session_id": session.id, "format": export_format, "entries": len(entries)},
    )
    return zip_response(entries, f"images_{export_format.lower()}.zip")


@router.get(
    "/{export_format}/{image_id}",
    summary="Export one image",
    description="Zip with the image and its label file",
    response_class=StreamingResponse,
)
async def export_single_image(
    export_format: str,
    image_id: str,
    session: CurrentSession,
    workspace: WorkspaceDep,
) -> StreamingResponse:
    # the image must exist before the format is considered
    session.get_image(image_id)

    try:
        entries = workspace.export_entries(session.id, export_format, image_id=image_id)
    except UnsupportedFormatError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return zip_response(entries, f"images_{export_format.lower()}.zip")
