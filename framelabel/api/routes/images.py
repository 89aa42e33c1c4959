"""
Image API endpoints.

Upload images into the session, page through them as zip archives,
fetch or delete single images, and read or write their annotation
shapes. Shapes are written into the image file itself (EXIF
UserComment), so a downloaded image carries its annotation.
"""

import asyncio
import logging
from typing import Annotated, Literal, Optional, Union

from fastapi import APIRouter, File, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse, StreamingResponse
from pydantic import BaseModel, Field

from ...core.annotation.export import ArchiveEntry
from ...core.annotation.models import ShapeParseError, shape_from_dict, shape_to_dict
from ...core.annotation.workspace import UploadedFile
from ...infrastructure.metadata.codec import MetadataError
from ..dependencies import CurrentSession, SettingsDep, WorkspaceDep
from ..responses import zip_response

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class PointModel(BaseModel):
    x: float
    y: float


class _ShapeBase(BaseModel):
    label: str = Field(default="", description="Class name written to label files")
    color: str = Field(default="", description="Display colour (frontend only)")
    thickness: float = Field(default=1, description="Line thickness (frontend only)")


class RectangleModel(_ShapeBase):
    type: Literal["rectangle"]
    x: float
    y: float
    width: float
    height: float


class PolygonModel(_ShapeBase):
    type: Literal["polygon"]
    points: list[PointModel] = Field(min_length=1)


class CircleModel(_ShapeBase):
    type: Literal["circle"]
    cx: float
    cy: float
    radius: float = Field(ge=0)


ShapeModel = Annotated[
    Union[RectangleModel, PolygonModel, CircleModel],
    Field(discriminator="type"),
]


class MetadataRequest(BaseModel):
    """Full annotation of one image. An empty list clears it."""
    shapes: list[ShapeModel] = Field(description="Shapes drawn on the image")


class MetadataResponse(BaseModel):
    """Annotation currently stored for an image."""
    image_id: str
    shapes: Optional[list[dict]] = Field(
        description="Shapes, or null when the image has no recoverable annotation"
    )


class UploadImagesResponse(BaseModel):
    message: str
    image_ids: list[str] = Field(description="Ids of stored images, in upload order")
    failed: list[str] = Field(default_factory=list, description="Filenames that could not be stored")


class ImageCountResponse(BaseModel):
    total_images: int
    page_size: int
    total_pages: int


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=UploadImagesResponse,
    status_code=status.HTTP_200_OK,
    summary="Upload images",
    description="Add images to the session, picking up any annotation already embedded",
)
async def upload_images(
    images: Annotated[list[UploadFile], File(description="Image files")],
    session: CurrentSession,
    workspace: WorkspaceDep,
    settings: SettingsDep,
) -> UploadImagesResponse:
    uploads: list[UploadedFile] = []
    rejected: list[str] = []

    for upload in images:
        data = await upload.read()
        name = upload.filename or "image"
        if len(data) > settings.max_upload_size_bytes:
            logger.warning(
                "Image too large",
                extra={"session_id": session.id, "image_filename": name, "size_bytes": len(data)},
            )
            rejected.append(name)
            continue
        uploads.append(UploadedFile(filename=name, data=data, content_type=upload.content_type))

    report = await asyncio.to_thread(workspace.upload_images, session.id, uploads)

    return UploadImagesResponse(
        message="Images uploaded successfully",
        image_ids=report.image_ids,
        failed=rejected + report.failed,
    )


@router.get(
    "/count",
    response_model=ImageCountResponse,
    summary="Count images",
    description="Total images in the session, for page calculation",
)
async def count_images(
    session: CurrentSession,
    workspace: WorkspaceDep,
) -> ImageCountResponse:
    total = session.image_count
    return ImageCountResponse(
        total_images=total,
        page_size=workspace.page_size,
        total_pages=workspace.total_pages(total),
    )


@router.get(
    "",
    summary="Get a page of images",
    description="Zip of one page of images, named image-{index}-{id}. Pages past the end are empty zips.",
    response_class=StreamingResponse,
)
async def get_image_page(
    session: CurrentSession,
    workspace: WorkspaceDep,
    page: Annotated[int, Query(ge=1, description="1-based page number")] = 1,
) -> StreamingResponse:
    entries = [
        ArchiveEntry(name=f"image-{index}-{image.id}{image.suffix}", path=image.path)
        for index, image in workspace.image_page(session.id, page)
    ]
    return zip_response(entries, "images.zip")


@router.get(
    "/all",
    summary="Get all images",
    description="Zip of every image in the session, in upload order",
    response_class=StreamingResponse,
)
async def get_all_images(session: CurrentSession) -> StreamingResponse:
    entries = [
        ArchiveEntry(name=image.download_name, path=image.path)
        for image in session.images()
    ]
    return zip_response(entries, "images.zip")


@router.get(
    "/{image_id}",
    summary="Get one image",
    description="Raw bytes of a single image",
    response_class=FileResponse,
)
async def get_image(image_id: str, session: CurrentSession) -> FileResponse:
    image = session.get_image(image_id)
    return FileResponse(image.path, filename=image.download_name)


@router.delete(
    "/{image_id}",
    response_model=MessageResponse,
    summary="Delete image",
    description="Remove an image from the session. Deleting a missing image is not an error.",
)
async def delete_image(
    image_id: str,
    session: CurrentSession,
    workspace: WorkspaceDep,
) -> MessageResponse:
    workspace.delete_image(session.id, image_id)
    return MessageResponse(message="Image deleted successfully")


@router.get(
    "/{image_id}/metadata",
    response_model=MetadataResponse,
    summary="Read annotation",
)
async def get_metadata(image_id: str, session: CurrentSession) -> MetadataResponse:
    image = session.get_image(image_id)
    shapes = None if image.metadata is None else [shape_to_dict(s) for s in image.metadata]
    return MetadataResponse(image_id=image.id, shapes=shapes)


@router.put(
    "/{image_id}/metadata",
    response_model=MetadataResponse,
    summary="Write annotation",
    description="Embed shapes in the image's EXIF UserComment and update the session record",
)
async def put_metadata(
    image_id: str,
    request: MetadataRequest,
    session: CurrentSession,
    workspace: WorkspaceDep,
) -> MetadataResponse:
    try:
        shapes = [shape_from_dict(s.model_dump()) for s in request.shapes]
    except ShapeParseError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    # missing image is a 404 before any write is attempted
    session.get_image(image_id)

    try:
        image = await asyncio.to_thread(workspace.attach_metadata, session.id, image_id, shapes)
    except MetadataError as e:
        logger.error(
            "Error embedding metadata in image",
            extra={"session_id": session.id, "image_id": image_id, "error": str(e)},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error embedding metadata in image: {e}",
        )

    return MetadataResponse(
        image_id=image.id,
        shapes=[shape_to_dict(s) for s in image.metadata or []],
    )
