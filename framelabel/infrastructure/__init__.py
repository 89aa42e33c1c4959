"""
Infrastructure layer - external tools and process-local state.

Each subdirectory wraps one concern:
- sessions: In-process session table and expiry sweeper
- video: FFmpeg/FFprobe frame extraction
- metadata: EXIF UserComment read/write via Pillow
- archive: Streaming zip output

These wrappers translate between external formats and our domain models.
"""
