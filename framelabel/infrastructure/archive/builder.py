"""
Streaming zip archives.

zipfile writes to any object with write(); handing it a buffer that we
drain after every entry lets the archive go out in chunks without ever
holding the whole zip in memory. zipfile notices the stream isn't
seekable and writes data descriptors after each member.
"""

import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class ArchiveError(Exception):
    """Raised when an entry can't be added to the archive."""
    pass


class _ChunkBuffer:
    """Write-only sink that zipfile writes into and we drain."""

    def __init__(self) -> None:
        self._chunks: list[bytes] = []
        self._offset = 0

    def write(self, data: bytes) -> int:
        if data:
            self._chunks.append(bytes(data))
            self._offset += len(data)
        return len(data)

    def tell(self) -> int:
        return self._offset

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


@dataclass(frozen=True)
class _Entry:
    name: str
    path: Optional[Path] = None
    data: Optional[bytes] = None


class ZipStreamBuilder:
    """
    Collects named entries and streams them as a zip.

    Entries are read only when stream() reaches them. If one fails, the
    stream raises instead of finishing, so a client never receives an
    archive that looks complete but is missing members.
    """

    def __init__(self, compresslevel: int = 9) -> None:
        self._entries: list[_Entry] = []
        self._compresslevel = compresslevel

    def __len__(self) -> int:
        return len(self._entries)

    def add_file(self, name: str, path: Path) -> None:
        self._entries.append(_Entry(name=name, path=Path(path)))

    def add_bytes(self, name: str, data: bytes) -> None:
        self._entries.append(_Entry(name=name, data=data))

    def extend(self, entries: Iterable) -> None:
        """Add objects exposing name plus either path or data."""
        for entry in entries:
            if entry.path is not None:
                self.add_file(entry.name, entry.path)
            else:
                self.add_bytes(entry.name, entry.data or b"")

    def stream(self) -> Iterator[bytes]:
        """Yield the archive in chunks. An empty builder yields an empty zip."""
        sink = _ChunkBuffer()
        with zipfile.ZipFile(
            sink,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self._compresslevel,
        ) as archive:
            for entry in self._entries:
                try:
                    yield from self._write_entry(archive, entry, sink)
                except OSError as e:
                    logger.error(
                        "Error creating archive",
                        extra={"entry": entry.name, "error": str(e)},
                    )
                    raise ArchiveError(f"Failed to add {entry.name}: {e}") from e

        tail = sink.drain()
        if tail:
            yield tail

        logger.info("Archive streamed", extra={"entries": len(self._entries)})

    def build(self) -> bytes:
        """Assemble the whole archive in memory."""
        return b"".join(self.stream())

    def _write_entry(self, archive: zipfile.ZipFile, entry: _Entry, sink: _ChunkBuffer) -> Iterator[bytes]:
        if entry.path is None:
            archive.writestr(entry.name, entry.data or b"")
        else:
            with open(entry.path, "rb") as source, archive.open(entry.name, mode="w") as member:
                while True:
                    block = source.read(CHUNK_SIZE)
                    if not block:
                        break
                    member.write(block)
                    data = sink.drain()
                    if data:
                        yield data

        data = sink.drain()
        if data:
            yield data
