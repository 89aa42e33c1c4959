"""
Annotation export to detection-label files.

The label format is the line-oriented darknet/YOLO style used by the
frontend: one line per shape, `label x y width height`, in raw pixel
coordinates. Only rectangles have a native box, so polygons and circles
are reduced to their minimal enclosing axis-aligned box.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from .models import AnnotatedImage, Circle, Polygon, Rectangle, Shape


class UnsupportedFormatError(ValueError):
    """Raised when an export format is requested that we don't produce."""
    pass


class ExportFormat(Enum):
    """Export formats the service can produce."""
    YOLO = "yolo"


def parse_export_format(value: str) -> ExportFormat:
    try:
        return ExportFormat(value.lower())
    except ValueError:
        raise UnsupportedFormatError(f"Format not supported: {value}")


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box: top-left corner plus size."""
    x: float
    y: float
    width: float
    height: float


def bounding_box(shape: Shape) -> BoundingBox:
    """Reduce any shape to the box written in the label file."""
    if isinstance(shape, Rectangle):
        return BoundingBox(shape.x, shape.y, shape.width, shape.height)
    if isinstance(shape, Polygon):
        xs = [p.x for p in shape.points]
        ys = [p.y for p in shape.points]
        return BoundingBox(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))
    if isinstance(shape, Circle):
        return BoundingBox(
            shape.cx - shape.radius,
            shape.cy - shape.radius,
            2 * shape.radius,
            2 * shape.radius,
        )
    raise TypeError(f"Unknown shape variant: {type(shape).__name__}")


def _format_number(value: float) -> str:
    # 10.0 -> "10", 10.5 -> "10.5"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def to_detection_labels(shapes: Optional[list[Shape]]) -> str:
    """
    Render shapes as label lines.

    Returns an empty string when the image has no annotation at all
    (metadata absent) or an empty one.
    """
    if not shapes:
        return ""

    lines = []
    for shape in shapes:
        box = bounding_box(shape)
        fields = [shape.label] + [
            _format_number(v) for v in (box.x, box.y, box.width, box.height)
        ]
        lines.append(" ".join(fields))
    return "\n".join(lines)


@dataclass(frozen=True)
class ExportedImage:
    """One image paired with the label text derived from its shapes."""
    image_name: str
    image_path: Path
    label_name: str
    label_text: str


@dataclass(frozen=True)
class ArchiveEntry:
    """A named member of an export archive; exactly one source is set."""
    name: str
    path: Optional[Path] = None
    data: Optional[bytes] = None


def export_image(image: AnnotatedImage) -> ExportedImage:
    image_name = image.download_name
    label_name = image_name[: -len(image.suffix)] + ".txt" if image.suffix else image_name + ".txt"
    return ExportedImage(
        image_name=image_name,
        image_path=image.path,
        label_name=label_name,
        label_text=to_detection_labels(image.metadata),
    )


def export_all(images: Iterable[AnnotatedImage]) -> list[ExportedImage]:
    """Export every image, keeping session order."""
    return [export_image(image) for image in images]


def archive_entries(exports: list[ExportedImage], prefixed: bool) -> list[ArchiveEntry]:
    """
    Lay out export members for the archive builder.

    Bulk exports put images under images/ and labels under labels/;
    a single-image export keeps both at the archive root.
    """
    image_dir = "images/" if prefixed else ""
    label_dir = "labels/" if prefixed else ""

    entries: list[ArchiveEntry] = []
    for exported in exports:
        entries.append(ArchiveEntry(name=image_dir + exported.image_name, path=exported.image_path))
        entries.append(ArchiveEntry(
            name=label_dir + exported.label_name,
            data=exported.label_text.encode("utf-8"),
        ))
    return entries
