"""
FrameLabel - session-scoped image and video annotation backend.

This package contains the complete application:
- core: Framework-agnostic annotation logic
- infrastructure: Sessions, FFmpeg, EXIF metadata and zip archives
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
