"""
Image metadata side channel.

Stores annotation shapes as JSON in the EXIF UserComment of the image.
"""

from .codec import (
    ExifMetadataCodec,
    MetadataAbsentError,
    MetadataCodec,
    MetadataError,
    MetadataParseError,
    MetadataWriteError,
    create_metadata_codec,
)

__all__ = [
    "ExifMetadataCodec",
    "MetadataAbsentError",
    "MetadataCodec",
    "MetadataError",
    "MetadataParseError",
    "MetadataWriteError",
    "create_metadata_codec",
]
