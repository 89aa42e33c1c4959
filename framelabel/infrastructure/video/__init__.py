"""
Video processing infrastructure.

Handles server-side frame extraction using FFmpeg:
- Native frame rate probing with FFprobe
- Rate-capped frame decoding in frame-number order

A mock processor stands in when FFmpeg isn't installed.
"""

from .processor import (
    DecodeFailure,
    ExtractedFrame,
    ProbeFailure,
    VideoProcessingError,
    VideoProcessor,
    create_video_processor,
)

__all__ = [
    "DecodeFailure",
    "ExtractedFrame",
    "ProbeFailure",
    "VideoProcessingError",
    "VideoProcessor",
    "create_video_processor",
]
