"""
Response helpers shared by the routes.
"""

from typing import Iterable

from fastapi.responses import StreamingResponse

from ..infrastructure.archive.builder import ZipStreamBuilder


def zip_response(entries: Iterable, filename: str) -> StreamingResponse:
    """Stream archive entries (name plus path or data) as a zip download."""
    builder = ZipStreamBuilder()
    builder.extend(entries)
    return StreamingResponse(
        builder.stream(),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
