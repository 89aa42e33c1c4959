"""
Annotation storage inside image files.

Shapes are kept in the EXIF UserComment field as a JSON array. UserComment
is free text that JPEG, PNG (eXIf chunk) and WebP all carry, so an image
downloaded from a session and uploaded again later brings its annotation
with it.

Writes never leave a half-written file behind: the image is re-saved next
to the original and moved over it with os.replace.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from PIL import ExifTags, Image, UnidentifiedImageError

from ...core.annotation.models import (
    Shape,
    ShapeParseError,
    shapes_from_json,
    shapes_to_json,
)

logger = logging.getLogger(__name__)

USER_COMMENT_TAG = int(ExifTags.Base.UserComment)
EXIF_IFD = int(ExifTags.IFD.Exif)

# EXIF 2.3 §4.6.5: the first 8 bytes of UserComment name its character code
_ASCII_PREFIX = b"ASCII\x00\x00\x00"
_UNICODE_PREFIX = b"UNICODE\x00"
_JIS_PREFIX = b"JIS\x00\x00\x00\x00\x00"
_UNDEFINED_PREFIX = b"\x00" * 8

WRITABLE_FORMATS = {"JPEG", "PNG", "WEBP"}


class MetadataError(Exception):
    """Base class for metadata codec failures."""
    pass


class MetadataAbsentError(MetadataError):
    """The image carries no readable UserComment."""
    pass


class MetadataParseError(MetadataError):
    """UserComment exists but isn't a JSON list of shapes."""
    pass


class MetadataWriteError(MetadataError):
    """The shapes could not be written into the image."""
    pass


class MetadataCodec(Protocol):
    """Protocol for reading and writing shapes in image files."""

    def embed(self, path: Path, shapes: list[Shape]) -> None: ...
    def extract(self, path: Path) -> list[Shape]: ...
    def read_shapes(self, path: Path) -> Optional[list[Shape]]: ...


def encode_user_comment(payload: str) -> bytes:
    return _ASCII_PREFIX + payload.encode("ascii")


def decode_user_comment(value) -> str:
    """Decode a raw UserComment value into text."""
    if isinstance(value, str):
        return value.strip("\x00").strip()
    if isinstance(value, tuple):
        value = bytes(value)
    if not isinstance(value, bytes):
        raise MetadataParseError(f"Unexpected UserComment type: {type(value).__name__}")

    prefix, body = value[:8], value[8:]
    if prefix == _UNICODE_PREFIX:
        # byte order follows the TIFF header; JSON text starts with an ASCII char
        encoding = "utf-16-be" if body[:1] == b"\x00" else "utf-16-le"
        text = body.decode(encoding, errors="replace")
    elif prefix in (_ASCII_PREFIX, _UNDEFINED_PREFIX, _JIS_PREFIX):
        text = body.decode("utf-8", errors="replace")
    else:
        text = value.decode("utf-8", errors="replace")
    return text.strip("\x00").strip()


class ExifMetadataCodec:
    """Reads and writes shapes through Pillow's EXIF support."""

    def embed(self, path: Path, shapes: list[Shape]) -> None:
        """
        Store shapes in the image's UserComment.

        Raises MetadataWriteError if the image can't be read or re-saved;
        the file on disk is left untouched in that case.
        """
        path = Path(path)
        payload = shapes_to_json(shapes)

        try:
            with Image.open(path) as img:
                image_format = img.format
                if image_format not in WRITABLE_FORMATS:
                    raise MetadataWriteError(
                        f"Cannot store metadata in {image_format or 'unknown'} images"
                    )

                exif = img.getexif()
                exif_ifd = dict(exif.get_ifd(EXIF_IFD))
                exif_ifd[USER_COMMENT_TAG] = encode_user_comment(payload)
                exif[EXIF_IFD] = exif_ifd

                save_options = {"format": image_format, "exif": exif}
                if image_format == "JPEG":
                    save_options["quality"] = "keep"

                self._save_atomically(img, path, save_options)
        except MetadataWriteError:
            raise
        except (OSError, ValueError, UnidentifiedImageError) as e:
            logger.error(
                "Failed to write metadata",
                extra={"path": str(path), "error": str(e)},
            )
            raise MetadataWriteError(f"Failed to write metadata to {path.name}: {e}") from e

        logger.debug(
            "UserComment written",
            extra={"path": str(path), "shape_count": len(shapes)},
        )

    def extract(self, path: Path) -> list[Shape]:
        """
        Read shapes back from the image's UserComment.

        Raises MetadataAbsentError when there is nothing to read and
        MetadataParseError when the stored text isn't a list of shapes.
        """
        path = Path(path)
        try:
            with Image.open(path) as img:
                raw = img.getexif().get_ifd(EXIF_IFD).get(USER_COMMENT_TAG)
        except (
            OSError,
            UnidentifiedImageError,
            SyntaxError,
            ValueError,
            Image.DecompressionBombError,
        ) as e:
            raise MetadataAbsentError(f"Cannot read EXIF from {path.name}: {e}") from e

        if raw is None:
            raise MetadataAbsentError(f"UserComment not found in {path.name}")

        text = decode_user_comment(raw)
        if not text:
            raise MetadataAbsentError(f"UserComment is empty in {path.name}")

        try:
            return shapes_from_json(text)
        except ShapeParseError as e:
            raise MetadataParseError(str(e)) from e

    def read_shapes(self, path: Path) -> Optional[list[Shape]]:
        """
        Best-effort read used when images are ingested.

        Returns None instead of raising, so a plain photo without any
        annotation is still accepted.
        """
        try:
            return self.extract(path)
        except MetadataAbsentError:
            return None
        except MetadataParseError as e:
            logger.info(
                "Ignoring unparsable UserComment",
                extra={"path": str(path), "error": str(e)},
            )
            return None

    def _save_atomically(self, img: Image.Image, path: Path, options: dict) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".meta-", suffix=path.suffix)
        os.close(fd)
        try:
            img.save(tmp_name, **options)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def create_metadata_codec() -> MetadataCodec:
    return ExifMetadataCodec()
