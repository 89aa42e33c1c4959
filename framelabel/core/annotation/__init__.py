"""
Image annotation domain.

Contains the shape models, the detection-label exporter and the
workspace service.
"""

from .export import (
    ArchiveEntry,
    ExportFormat,
    ExportedImage,
    UnsupportedFormatError,
    to_detection_labels,
)
from .models import (
    AnnotatedImage,
    Circle,
    Point,
    Polygon,
    Rectangle,
    Shape,
    ShapeParseError,
)
from .workspace import AnnotationWorkspace, UploadedFile, UploadReport

__all__ = [
    "AnnotatedImage",
    "AnnotationWorkspace",
    "ArchiveEntry",
    "Circle",
    "ExportFormat",
    "ExportedImage",
    "Point",
    "Polygon",
    "Rectangle",
    "Shape",
    "ShapeParseError",
    "UnsupportedFormatError",
    "UploadedFile",
    "UploadReport",
    "to_detection_labels",
]
