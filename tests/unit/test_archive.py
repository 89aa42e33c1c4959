"""
Unit tests for the streaming zip builder.
"""

import io
import zipfile

import pytest

from framelabel.core.annotation.export import ArchiveEntry
from framelabel.infrastructure.archive.builder import ArchiveError, ZipStreamBuilder


def open_zip(data: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(data))


class TestZipStreamBuilder:

    def test_empty_archive_is_a_valid_zip(self):
        archive = open_zip(ZipStreamBuilder().build())

        assert archive.namelist() == []

    def test_entries_keep_their_order(self, tmp_path):
        (tmp_path / "a.png").write_bytes(b"first")
        builder = ZipStreamBuilder()
        builder.add_file("images/a.png", tmp_path / "a.png")
        builder.add_bytes("labels/a.txt", b"car 1 2 3 4")
        builder.add_bytes("labels/empty.txt", b"")

        archive = open_zip(builder.build())

        assert archive.namelist() == ["images/a.png", "labels/a.txt", "labels/empty.txt"]
        assert archive.read("images/a.png") == b"first"
        assert archive.read("labels/a.txt") == b"car 1 2 3 4"
        assert archive.read("labels/empty.txt") == b""
        assert archive.testzip() is None

    def test_members_are_deflated(self, tmp_path):
        builder = ZipStreamBuilder()
        builder.add_bytes("big.txt", b"a" * 10_000)

        info = open_zip(builder.build()).getinfo("big.txt")

        assert info.compress_type == zipfile.ZIP_DEFLATED
        assert info.compress_size < info.file_size

    def test_large_file_streams_in_several_chunks(self, tmp_path):
        path = tmp_path / "big.bin"
        path.write_bytes(bytes(range(256)) * 2048)
        builder = ZipStreamBuilder(compresslevel=0)
        builder.add_file("big.bin", path)

        chunks = list(builder.stream())

        assert len(chunks) > 1
        assert open_zip(b"".join(chunks)).read("big.bin") == path.read_bytes()

    def test_extend_accepts_archive_entries(self, tmp_path):
        (tmp_path / "x.png").write_bytes(b"x")
        builder = ZipStreamBuilder()
        builder.extend([
            ArchiveEntry(name="x.png", path=tmp_path / "x.png"),
            ArchiveEntry(name="x.txt", data=b"label"),
        ])

        assert len(builder) == 2
        assert open_zip(builder.build()).namelist() == ["x.png", "x.txt"]

    def test_missing_file_fails_the_stream(self, tmp_path):
        builder = ZipStreamBuilder()
        builder.add_file("gone.png", tmp_path / "gone.png")

        with pytest.raises(ArchiveError, match="gone.png"):
            builder.build()
