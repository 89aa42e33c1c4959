"""
Domain models for image annotation.

These models represent the core business concepts: the shapes a user draws
on an image and the image records a session holds. They have no dependencies
on FastAPI, Pillow or FFmpeg.

Shapes travel as JSON in two places (the HTTP API and the EXIF UserComment
of the image itself), so the dict form below is a contract with the
frontend and must stay stable.
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union
from uuid import uuid4


class ShapeParseError(ValueError):
    """Raised when a payload cannot be turned into shapes."""
    pass


def _check_number(value: float, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    if not math.isfinite(value):
        raise ValueError(f"{name} must be finite")


@dataclass(frozen=True)
class Point:
    """A polygon vertex in image pixel coordinates."""
    x: float
    y: float

    def __post_init__(self) -> None:
        _check_number(self.x, "x")
        _check_number(self.y, "y")


@dataclass(frozen=True)
class Rectangle:
    """Axis-aligned box anchored at its top-left corner."""
    x: float
    y: float
    width: float
    height: float
    label: str = ""
    color: str = ""
    thickness: float = 1

    def __post_init__(self) -> None:
        for name in ("x", "y", "width", "height", "thickness"):
            _check_number(getattr(self, name), name)


@dataclass(frozen=True)
class Polygon:
    """
    Ordered list of vertices.

    The outline is not closed explicitly; the last point connects
    back to the first when drawn.
    """
    points: tuple[Point, ...]
    label: str = ""
    color: str = ""
    thickness: float = 1

    def __post_init__(self) -> None:
        if not self.points:
            raise ValueError("Polygon needs at least one point")
        _check_number(self.thickness, "thickness")


@dataclass(frozen=True)
class Circle:
    """Circle given by its center and radius."""
    cx: float
    cy: float
    radius: float
    label: str = ""
    color: str = ""
    thickness: float = 1

    def __post_init__(self) -> None:
        for name in ("cx", "cy", "radius", "thickness"):
            _check_number(getattr(self, name), name)
        if self.radius < 0:
            raise ValueError("radius cannot be negative")


Shape = Union[Rectangle, Polygon, Circle]


# ---------------------------------------------------------------------------
# JSON form
# ---------------------------------------------------------------------------

def shape_to_dict(shape: Shape) -> dict[str, Any]:
    """Convert a shape into its wire representation."""
    if isinstance(shape, Rectangle):
        body: dict[str, Any] = {
            "type": "rectangle",
            "x": shape.x,
            "y": shape.y,
            "width": shape.width,
            "height": shape.height,
        }
    elif isinstance(shape, Polygon):
        body = {
            "type": "polygon",
            "points": [{"x": p.x, "y": p.y} for p in shape.points],
        }
    elif isinstance(shape, Circle):
        body = {
            "type": "circle",
            "cx": shape.cx,
            "cy": shape.cy,
            "radius": shape.radius,
        }
    else:
        raise TypeError(f"Unknown shape variant: {type(shape).__name__}")

    body["color"] = shape.color
    body["label"] = shape.label
    body["thickness"] = shape.thickness
    return body


def shape_from_dict(data: Any) -> Shape:
    """
    Build a shape from its wire representation.

    Raises ShapeParseError for unknown types, missing fields or bad values.
    """
    if not isinstance(data, dict):
        raise ShapeParseError("Shape must be a JSON object")

    kind = data.get("type")
    common = {
        "label": str(data.get("label", "")),
        "color": str(data.get("color", "")),
        "thickness": data.get("thickness", 1),
    }

    try:
        if kind == "rectangle":
            return Rectangle(
                x=data["x"],
                y=data["y"],
                width=data["width"],
                height=data["height"],
                **common,
            )
        if kind == "polygon":
            raw_points = data["points"]
            if not isinstance(raw_points, list):
                raise ShapeParseError("Polygon points must be a list")
            points = tuple(_point_from_dict(p) for p in raw_points)
            return Polygon(points=points, **common)
        if kind == "circle":
            return Circle(
                cx=data["cx"],
                cy=data["cy"],
                radius=data["radius"],
                **common,
            )
    except KeyError as e:
        raise ShapeParseError(f"{kind} is missing field {e.args[0]!r}") from e
    except ShapeParseError:
        raise
    except ValueError as e:
        raise ShapeParseError(f"Invalid {kind}: {e}") from e

    raise ShapeParseError(f"Unknown shape type: {kind!r}")


def _point_from_dict(data: Any) -> Point:
    if not isinstance(data, dict):
        raise ShapeParseError("Polygon point must be a JSON object")
    try:
        return Point(x=data["x"], y=data["y"])
    except KeyError as e:
        raise ShapeParseError(f"point is missing field {e.args[0]!r}") from e


def shapes_to_json(shapes: list[Shape]) -> str:
    """Serialize shapes as compact ASCII JSON."""
    return json.dumps(
        [shape_to_dict(s) for s in shapes],
        separators=(",", ":"),
        ensure_ascii=True,
    )


def shapes_from_json(payload: str) -> list[Shape]:
    """Parse a JSON array of shapes."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ShapeParseError(f"Metadata is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ShapeParseError("Metadata must be a JSON array of shapes")

    return [shape_from_dict(item) for item in data]


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

@dataclass
class AnnotatedImage:
    """
    An image held by a session, plus whatever annotation we know for it.

    metadata is None when extraction failed or was never attempted, and
    an empty list when the image is known to carry no shapes.
    """
    path: Path
    suffix: str = ".png"
    original_name: str = ""
    metadata: Optional[list[Shape]] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def download_name(self) -> str:
        return f"image-{self.id}{self.suffix}"

    @property
    def has_metadata(self) -> bool:
        return self.metadata is not None
