"""
Unit tests for the annotation workspace service.

Uses the real session store and metadata codec with the mock video
processor, so everything runs against a temp directory.
"""

import asyncio
import io
import struct
import threading
import zlib

import pytest
from PIL import Image

from framelabel.core.annotation.export import UnsupportedFormatError
from framelabel.core.annotation.models import Rectangle
from framelabel.core.annotation.workspace import (
    AnnotationWorkspace,
    UploadedFile,
    guess_suffix,
)
from framelabel.infrastructure.metadata.codec import ExifMetadataCodec
from framelabel.infrastructure.sessions.store import InMemorySessionStore, InvalidSessionError
from framelabel.infrastructure.video.processor import MockVideoProcessor


def png_bytes(color=(0, 0, 0)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format="PNG")
    return buffer.getvalue()


def oversized_png_header(width=40000, height=40000) -> bytes:
    """A few dozen bytes claiming a frame far past Pillow's pixel limit."""
    def chunk(kind: bytes, body: bytes) -> bytes:
        return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body))

    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + chunk(b"IHDR", header)
        + chunk(b"IDAT", zlib.compress(b""))
        + chunk(b"IEND", b"")
    )


class FlakyCodec(ExifMetadataCodec):
    """Metadata codec whose reader blows up on the second image it sees."""

    def __init__(self):
        self.calls = 0

    def read_shapes(self, path):
        self.calls += 1
        if self.calls == 2:
            raise RuntimeError("corrupt image")
        return super().read_shapes(path)


class FailingFrames:
    """Frame source that extracts from the first video and fails on the second."""

    def __init__(self):
        self._mock = MockVideoProcessor()

    async def extract_frames(self, video_data, requested_fps, video_index=0, suffix=".mp4"):
        if video_index > 0:
            raise RuntimeError("decode failed")
        return await self._mock.extract_frames(video_data, requested_fps, video_index, suffix)


@pytest.fixture
def store(tmp_path):
    return InMemorySessionStore(tmp_path, ttl_seconds=60.0)


@pytest.fixture
def workspace(store):
    return AnnotationWorkspace(store, MockVideoProcessor(), ExifMetadataCodec(), page_size=2)


class TestGuessSuffix:

    def test_prefers_filename_extension(self):
        assert guess_suffix("Cat.JPG", "image/png") == ".jpg"

    def test_falls_back_to_content_type(self):
        assert guess_suffix("blob", "image/webp") == ".webp"

    def test_defaults_to_png(self):
        assert guess_suffix(None, None) == ".png"

    def test_ignores_odd_extensions(self):
        assert guess_suffix("evil.p/../ng", None) == ".png"


class TestSessions:

    def test_end_session_invalidates_it(self, workspace):
        session = workspace.start_session()

        workspace.end_session(session.id)

        with pytest.raises(InvalidSessionError):
            workspace.session(session.id)

    def test_ping_unknown_session_fails(self, workspace):
        with pytest.raises(InvalidSessionError):
            workspace.ping_session("nope")


class TestUpload:

    def test_upload_stores_files_in_order(self, workspace):
        session = workspace.start_session()
        uploads = [UploadedFile(f"{i}.png", png_bytes((i, i, i)), "image/png") for i in range(3)]

        report = workspace.upload_images(session.id, uploads)

        assert report.failed == []
        assert [image.id for image in session.images()] == report.image_ids

    def test_embedded_annotation_is_picked_up(self, workspace, tmp_path):
        """An image downloaded from one session carries its shapes into the next."""
        source = tmp_path / "annotated.png"
        source.write_bytes(png_bytes())
        shapes = [Rectangle(x=1, y=1, width=2, height=2, label="dot")]
        ExifMetadataCodec().embed(source, shapes)
        session = workspace.start_session()

        report = workspace.upload_images(session.id, [UploadedFile("annotated.png", source.read_bytes())])

        assert session.get_image(report.image_ids[0]).metadata == shapes

    def test_plain_upload_has_no_metadata(self, workspace):
        session = workspace.start_session()

        report = workspace.upload_images(session.id, [UploadedFile("a.png", png_bytes())])

        assert session.get_image(report.image_ids[0]).metadata is None

    def test_oversized_image_does_not_stop_the_batch(self, workspace):
        """An image Pillow refuses to open is stored without metadata, and later files still go in."""
        session = workspace.start_session()
        uploads = [
            UploadedFile("a.png", png_bytes((1, 1, 1))),
            UploadedFile("bomb.png", oversized_png_header()),
            UploadedFile("c.png", png_bytes((3, 3, 3))),
        ]

        report = workspace.upload_images(session.id, uploads)

        assert report.failed == []
        assert [i.original_name for i in session.images()] == ["a.png", "bomb.png", "c.png"]
        assert session.images()[1].metadata is None

    def test_failing_file_is_reported_and_the_rest_are_stored(self, store):
        workspace = AnnotationWorkspace(store, MockVideoProcessor(), FlakyCodec())
        session = workspace.start_session()
        uploads = [UploadedFile(f"{name}.png", png_bytes()) for name in ("a", "b", "c")]

        report = workspace.upload_images(session.id, uploads)

        assert report.failed == ["b.png"]
        assert [i.original_name for i in session.images()] == ["a.png", "c.png"]
        assert sorted(p.name for p in session.media_dir.iterdir()) == sorted(
            i.path.name for i in session.images()
        )


class TestVideos:

    def test_frames_become_images(self, workspace):
        session = workspace.start_session()
        videos = [UploadedFile("a.mp4", b"v1", "video/mp4"), UploadedFile("b.mp4", b"v2", "video/mp4")]

        image_ids = asyncio.run(workspace.process_videos(session.id, videos, [2, 3]))

        assert len(image_ids) == 5
        images = session.images()
        assert [i.id for i in images] == image_ids
        assert images[0].original_name == "frame-0-0.png"
        assert images[2].original_name == "frame-1-0.png"
        assert all(i.suffix == ".png" and i.metadata is None for i in images)

    def test_frames_are_written_off_the_event_loop(self, workspace):
        session = workspace.start_session()
        writer_threads = []
        add_image = session.add_image

        def recording_add_image(*args, **kwargs):
            writer_threads.append(threading.get_ident())
            return add_image(*args, **kwargs)

        session.add_image = recording_add_image

        asyncio.run(workspace.process_videos(session.id, [UploadedFile("a.mp4", b"v")], [3]))

        assert len(writer_threads) == 3
        assert threading.get_ident() not in writer_threads

    def test_rate_count_must_match_videos(self, workspace):
        session = workspace.start_session()

        with pytest.raises(ValueError, match="one frame rate per video"):
            asyncio.run(workspace.process_videos(session.id, [UploadedFile("a.mp4", b"v")], [1, 2]))

        assert session.image_count == 0

    def test_earlier_videos_survive_a_later_failure(self, store):
        workspace = AnnotationWorkspace(store, FailingFrames(), ExifMetadataCodec())
        session = workspace.start_session()
        videos = [UploadedFile("a.mp4", b"v1"), UploadedFile("b.mp4", b"v2")]

        with pytest.raises(RuntimeError):
            asyncio.run(workspace.process_videos(session.id, videos, [2, 2]))

        assert session.image_count == 2


class TestImagesAndExport:

    def test_pages_and_total(self, workspace):
        session = workspace.start_session()
        workspace.upload_images(session.id, [UploadedFile(f"{i}.png", png_bytes()) for i in range(5)])

        assert workspace.total_pages(session.image_count) == 3
        assert [index for index, _ in workspace.image_page(session.id, 3)] == [4]
        assert workspace.image_page(session.id, 4) == []

    def test_total_pages_of_empty_session(self, workspace):
        assert workspace.total_pages(0) == 0

    def test_attach_then_export(self, workspace):
        session = workspace.start_session()
        [image_id] = workspace.upload_images(session.id, [UploadedFile("a.png", png_bytes())]).image_ids
        shapes = [Rectangle(x=1, y=2, width=3, height=4, label="car")]

        workspace.attach_metadata(session.id, image_id, shapes)
        entries = workspace.export_entries(session.id, "yolo", image_id=image_id)

        assert [e.name for e in entries] == [f"image-{image_id}.png", f"image-{image_id}.txt"]
        assert entries[1].data == b"car 1 2 3 4"
        assert ExifMetadataCodec().extract(entries[0].path) == shapes

    def test_export_all_of_empty_session_is_empty(self, workspace):
        session = workspace.start_session()
        assert workspace.export_entries(session.id, "yolo") == []

    def test_unknown_export_format(self, workspace):
        session = workspace.start_session()
        with pytest.raises(UnsupportedFormatError):
            workspace.export_entries(session.id, "voc")

    def test_delete_is_idempotent(self, workspace):
        session = workspace.start_session()
        [image_id] = workspace.upload_images(session.id, [UploadedFile("a.png", png_bytes())]).image_ids

        assert workspace.delete_image(session.id, image_id) is True
        assert workspace.delete_image(session.id, image_id) is False
