"""
Unit tests for detection-label export.
"""

import pytest

from framelabel.core.annotation.export import (
    ExportFormat,
    UnsupportedFormatError,
    archive_entries,
    bounding_box,
    export_all,
    export_image,
    parse_export_format,
    to_detection_labels,
)
from framelabel.core.annotation.models import (
    AnnotatedImage,
    Circle,
    Point,
    Polygon,
    Rectangle,
)


class TestExportFormat:

    def test_yolo_is_case_insensitive(self):
        assert parse_export_format("YOLO") is ExportFormat.YOLO

    def test_unknown_format_is_rejected(self):
        with pytest.raises(UnsupportedFormatError, match="coco"):
            parse_export_format("coco")


class TestBoundingBox:
    """Every shape reduces to an axis-aligned box."""

    def test_rectangle_is_its_own_box(self):
        box = bounding_box(Rectangle(x=10, y=20, width=30, height=40))
        assert (box.x, box.y, box.width, box.height) == (10, 20, 30, 40)

    def test_polygon_uses_minimal_enclosing_box(self):
        polygon = Polygon(points=(Point(5, 9), Point(1, 3), Point(8, 4)))

        box = bounding_box(polygon)

        assert (box.x, box.y, box.width, box.height) == (1, 3, 7, 6)

    def test_circle_box_spans_the_diameter(self):
        box = bounding_box(Circle(cx=10, cy=10, radius=4))
        assert (box.x, box.y, box.width, box.height) == (6, 6, 8, 8)


class TestDetectionLabels:

    def test_absent_metadata_gives_empty_text(self):
        assert to_detection_labels(None) == ""

    def test_empty_metadata_gives_empty_text(self):
        assert to_detection_labels([]) == ""

    def test_one_line_per_shape_in_order(self):
        shapes = [
            Rectangle(x=10, y=20, width=30, height=40, label="car"),
            Circle(cx=5, cy=5, radius=2.5, label="ball"),
            Polygon(points=(Point(0, 0), Point(2, 0), Point(2, 3)), label="sign"),
        ]

        lines = to_detection_labels(shapes).split("\n")

        assert lines == [
            "car 10 20 30 40",
            "ball 2.5 2.5 5 5",
            "sign 0 0 2 3",
        ]


class TestExportLayout:

    def test_label_name_replaces_image_suffix(self, tmp_path):
        image = AnnotatedImage(path=tmp_path / "a.jpg", suffix=".jpg", id="abc")

        exported = export_image(image)

        assert exported.image_name == "image-abc.jpg"
        assert exported.label_name == "image-abc.txt"

    def test_bulk_export_uses_folders_and_keeps_order(self, tmp_path):
        images = [
            AnnotatedImage(path=tmp_path / "1.png", id="one", metadata=[
                Rectangle(x=0, y=0, width=1, height=1, label="a"),
            ]),
            AnnotatedImage(path=tmp_path / "2.png", id="two"),
        ]

        entries = archive_entries(export_all(images), prefixed=True)

        assert [e.name for e in entries] == [
            "images/image-one.png",
            "labels/image-one.txt",
            "images/image-two.png",
            "labels/image-two.txt",
        ]
        assert entries[0].path == tmp_path / "1.png"
        assert entries[1].data == b"a 0 0 1 1"
        assert entries[3].data == b""

    def test_single_export_keeps_files_at_root(self, tmp_path):
        image = AnnotatedImage(path=tmp_path / "1.png", id="one")

        entries = archive_entries([export_image(image)], prefixed=False)

        assert [e.name for e in entries] == ["image-one.png", "image-one.txt"]
