"""
Annotation workspace service.

This is the glue between a client's session and the media pipeline:
uploads and video frames go into the session, shapes are written into
images, and exports are laid out for the archive builder. It knows
nothing about HTTP, FFmpeg or Pillow; those arrive through the protocols
below.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Union

from .export import (
    ArchiveEntry,
    ExportFormat,
    archive_entries,
    export_all,
    export_image,
    parse_export_format,
)
from .models import AnnotatedImage, Shape

logger = logging.getLogger(__name__)

_SUFFIX_PATTERN = re.compile(r"^\.[a-z0-9]{1,5}$")

CONTENT_TYPE_SUFFIXES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/webm": ".webm",
}


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class WorkingSession(Protocol):
    """What the workspace needs from one session."""

    id: str
    expires_at: float

    @property
    def image_count(self) -> int: ...
    def images(self) -> list[AnnotatedImage]: ...
    def page(self, number: int, size: int) -> list[tuple[int, AnnotatedImage]]: ...
    def get_image(self, image_id: str) -> AnnotatedImage: ...
    def add_image(
        self,
        data: bytes,
        suffix: str,
        original_name: str = "",
        metadata_reader: Optional[Callable[[Path], Optional[list[Shape]]]] = None,
    ) -> AnnotatedImage: ...
    def remove_image(self, image_id: str) -> bool: ...
    def attach_metadata(
        self,
        image_id: str,
        shapes: list[Shape],
        writer: Callable[[Path, list[Shape]], None],
    ) -> AnnotatedImage: ...


class SessionTable(Protocol):
    """Session lookup and lifecycle."""

    def create(self) -> WorkingSession: ...
    def get(self, session_id: str) -> WorkingSession: ...
    def touch(self, session_id: str) -> WorkingSession: ...
    def delete(self, session_id: str) -> None: ...


class FrameSource(Protocol):
    """Anything that can turn a video into ordered frames."""

    async def extract_frames(
        self,
        video_data: bytes,
        requested_fps: Any,
        video_index: int = 0,
        suffix: str = ".mp4",
    ) -> list: ...


class ShapeCodec(Protocol):
    """Reads and writes shapes inside image files."""

    def embed(self, path: Path, shapes: list[Shape]) -> None: ...
    def read_shapes(self, path: Path) -> Optional[list[Shape]]: ...


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------

@dataclass
class UploadedFile:
    """A file received from the client, already read into memory."""
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class UploadReport:
    """Outcome of a bulk upload; each file succeeds or fails on its own."""
    image_ids: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def guess_suffix(filename: Optional[str], content_type: Optional[str], default: str = ".png") -> str:
    """Pick a safe file extension from the upload's name or content type."""
    suffix = Path(filename or "").suffix.lower()
    if _SUFFIX_PATTERN.match(suffix):
        return suffix
    if content_type:
        return CONTENT_TYPE_SUFFIXES.get(content_type.split(";")[0].strip().lower(), default)
    return default


# ---------------------------------------------------------------------------
# Workspace Service
# ---------------------------------------------------------------------------

class AnnotationWorkspace:
    """
    Operations a client performs inside its session.

    Stateless apart from its collaborators; all state lives in the
    session store.
    """

    def __init__(
        self,
        sessions: SessionTable,
        frames: FrameSource,
        codec: ShapeCodec,
        page_size: int = 10,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._sessions = sessions
        self._frames = frames
        self._codec = codec
        self._page_size = page_size

    @property
    def page_size(self) -> int:
        return self._page_size

    # Session lifecycle -----------------------------------------------------

    def start_session(self) -> WorkingSession:
        return self._sessions.create()

    def ping_session(self, session_id: str) -> WorkingSession:
        return self._sessions.touch(session_id)

    def end_session(self, session_id: str) -> None:
        self._sessions.delete(session_id)

    def session(self, session_id: str) -> WorkingSession:
        return self._sessions.get(session_id)

    # Ingestion -------------------------------------------------------------

    def upload_images(self, session_id: str, uploads: list[UploadedFile]) -> UploadReport:
        """
        Add uploaded images to the session.

        Shapes already embedded in an image are picked up; an image
        without them gets metadata=None. One file failing to store does
        not stop the others.
        """
        session = self._sessions.get(session_id)
        report = UploadReport()

        for upload in uploads:
            try:
                image = session.add_image(
                    upload.data,
                    suffix=guess_suffix(upload.filename, upload.content_type),
                    original_name=upload.filename,
                    metadata_reader=self._codec.read_shapes,
                )
            except Exception as e:
                logger.error(
                    "Error adding image",
                    extra={"session_id": session_id, "image_filename": upload.filename, "error": str(e)},
                    exc_info=e,
                )
                report.failed.append(upload.filename)
                continue
            report.image_ids.append(image.id)

        logger.info(
            "Images uploaded",
            extra={
                "session_id": session_id,
                "uploaded": len(report.image_ids),
                "failed": len(report.failed),
            },
        )
        return report

    async def process_videos(
        self,
        session_id: str,
        videos: list[UploadedFile],
        frame_rates: list[Union[int, float]],
    ) -> list[str]:
        """
        Extract frames from each video and add them to the session.

        Videos are handled one after another so only one decode runs per
        request. Frames of a video that was fully processed stay in the
        session even if a later video fails.
        """
        if len(frame_rates) != len(videos):
            raise ValueError(
                f"Expected one frame rate per video ({len(videos)}), got {len(frame_rates)}"
            )

        session = self._sessions.get(session_id)
        image_ids: list[str] = []

        for index, (video, rate) in enumerate(zip(videos, frame_rates)):
            logger.info(
                "Processing video",
                extra={"session_id": session_id, "video_index": index, "requested_fps": rate},
            )
            frames = await self._frames.extract_frames(
                video.data,
                rate,
                video_index=index,
                suffix=guess_suffix(video.filename, video.content_type, default=".mp4"),
            )
            image_ids.extend(await asyncio.to_thread(self._add_frames, session, frames))

        logger.info(
            "Videos processed",
            extra={"session_id": session_id, "videos": len(videos), "frames": len(image_ids)},
        )
        return image_ids

    @staticmethod
    def _add_frames(session: WorkingSession, frames: list) -> list[str]:
        return [
            session.add_image(frame.data, suffix=".png", original_name=frame.filename).id
            for frame in frames
        ]

    # Images ----------------------------------------------------------------

    def image_page(self, session_id: str, page: int) -> list[tuple[int, AnnotatedImage]]:
        return self._sessions.get(session_id).page(page, self._page_size)

    def total_pages(self, image_count: int) -> int:
        return -(-image_count // self._page_size)

    def delete_image(self, session_id: str, image_id: str) -> bool:
        return self._sessions.get(session_id).remove_image(image_id)

    def attach_metadata(self, session_id: str, image_id: str, shapes: list[Shape]) -> AnnotatedImage:
        """Write shapes into the image; an empty list clears them."""
        session = self._sessions.get(session_id)
        image = session.attach_metadata(image_id, shapes, self._codec.embed)

        logger.info(
            "Metadata updated",
            extra={"session_id": session_id, "image_id": image_id, "shape_count": len(shapes)},
        )
        return image

    # Export ----------------------------------------------------------------

    def export_entries(
        self,
        session_id: str,
        export_format: str,
        image_id: Optional[str] = None,
    ) -> list[ArchiveEntry]:
        """
        Lay out an export archive.

        With image_id, the archive holds that image and its label file;
        without, every image under images/ and every label under labels/.
        """
        fmt = parse_export_format(export_format)
        session = self._sessions.get(session_id)

        if fmt is ExportFormat.YOLO:
            if image_id is not None:
                return archive_entries([export_image(session.get_image(image_id))], prefixed=False)
            return archive_entries(export_all(session.images()), prefixed=True)

        raise AssertionError(f"Unhandled export format: {fmt}")
