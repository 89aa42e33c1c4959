"""
Unit tests for the annotation domain models.

These tests verify the shape types and their JSON form without touching
the file system or any external tool.

Testing philosophy:
- Test behavior, not implementation
- Each test should have a clear "given/when/then" structure
- Use descriptive names that explain what we're testing
"""

import json

import pytest

from framelabel.core.annotation.models import (
    AnnotatedImage,
    Circle,
    Point,
    Polygon,
    Rectangle,
    ShapeParseError,
    shape_from_dict,
    shape_to_dict,
    shapes_from_json,
    shapes_to_json,
)


# ---------------------------------------------------------------------------
# Shape Validation Tests
# ---------------------------------------------------------------------------

class TestShapes:
    """Tests for the shape value objects."""

    def test_polygon_requires_points(self):
        """A polygon with no vertices can't be drawn."""
        with pytest.raises(ValueError, match="at least one point"):
            Polygon(points=())

    def test_circle_rejects_negative_radius(self):
        with pytest.raises(ValueError, match="negative"):
            Circle(cx=1, cy=1, radius=-2)

    def test_zero_radius_circle_is_valid(self):
        """A degenerate circle is still a point the user clicked."""
        assert Circle(cx=3, cy=4, radius=0).radius == 0

    def test_rectangle_rejects_non_finite_numbers(self):
        with pytest.raises(ValueError, match="finite"):
            Rectangle(x=float("nan"), y=0, width=1, height=1)

    def test_point_rejects_booleans(self):
        with pytest.raises(ValueError, match="number"):
            Point(x=True, y=0)


# ---------------------------------------------------------------------------
# JSON Form Tests
# ---------------------------------------------------------------------------

class TestShapeJson:
    """Tests for converting shapes to and from their wire form."""

    def test_rectangle_dict_carries_type_tag_and_style(self):
        rect = Rectangle(x=1, y=2, width=3, height=4, label="car", color="#ff0000", thickness=2)

        data = shape_to_dict(rect)

        assert data == {
            "type": "rectangle",
            "x": 1,
            "y": 2,
            "width": 3,
            "height": 4,
            "color": "#ff0000",
            "label": "car",
            "thickness": 2,
        }

    def test_mixed_shapes_survive_json(self):
        """Every variant comes back equal after a trip through JSON."""
        shapes = [
            Rectangle(x=10, y=20, width=30, height=40, label="box"),
            Polygon(points=(Point(0, 0), Point(5, 0), Point(5, 5)), label="tri"),
            Circle(cx=7.5, cy=8.25, radius=2, label="ball"),
        ]

        assert shapes_from_json(shapes_to_json(shapes)) == shapes

    def test_json_is_compact_ascii(self):
        """Labels outside ASCII are escaped so the payload fits an ASCII UserComment."""
        payload = shapes_to_json([Rectangle(x=0, y=0, width=1, height=1, label="café")])

        assert payload.isascii()
        assert " " not in payload
        assert json.loads(payload)[0]["label"] == "café"

    def test_empty_list_round_trips(self):
        assert shapes_from_json(shapes_to_json([])) == []

    def test_missing_style_fields_take_defaults(self):
        shape = shape_from_dict({"type": "circle", "cx": 1, "cy": 2, "radius": 3})

        assert shape == Circle(cx=1, cy=2, radius=3, label="", color="", thickness=1)

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ShapeParseError, match="Unknown shape type"):
            shape_from_dict({"type": "ellipse", "cx": 0})

    def test_missing_field_is_reported(self):
        with pytest.raises(ShapeParseError, match="width"):
            shape_from_dict({"type": "rectangle", "x": 0, "y": 0, "height": 1})

    def test_invalid_value_becomes_parse_error(self):
        with pytest.raises(ShapeParseError, match="Invalid circle"):
            shape_from_dict({"type": "circle", "cx": 0, "cy": 0, "radius": -1})

    def test_polygon_points_must_be_objects(self):
        with pytest.raises(ShapeParseError, match="point"):
            shape_from_dict({"type": "polygon", "points": [[0, 0]]})

    def test_payload_must_be_an_array(self):
        with pytest.raises(ShapeParseError, match="array"):
            shapes_from_json('{"type": "rectangle"}')

    def test_invalid_json_is_rejected(self):
        with pytest.raises(ShapeParseError, match="not valid JSON"):
            shapes_from_json("not json")


# ---------------------------------------------------------------------------
# AnnotatedImage Tests
# ---------------------------------------------------------------------------

class TestAnnotatedImage:
    """Tests for the per-image record."""

    def test_download_name_uses_id_and_suffix(self, tmp_path):
        image = AnnotatedImage(path=tmp_path / "x.jpg", suffix=".jpg", id="abc")
        assert image.download_name == "image-abc.jpg"

    def test_ids_are_unique(self, tmp_path):
        first = AnnotatedImage(path=tmp_path / "a.png")
        second = AnnotatedImage(path=tmp_path / "b.png")
        assert first.id != second.id

    def test_metadata_absent_versus_empty(self, tmp_path):
        """None means unknown; an empty list means known to have no shapes."""
        unknown = AnnotatedImage(path=tmp_path / "a.png")
        empty = AnnotatedImage(path=tmp_path / "b.png", metadata=[])

        assert not unknown.has_metadata
        assert empty.has_metadata
