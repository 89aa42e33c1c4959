"""
Video frame extraction using FFmpeg.

This module turns an uploaded video into an ordered list of still frames:
1. Probe the video's native frame rate with FFprobe
2. Cap the requested sampling rate at that native rate
3. Decode frames with FFmpeg's fps filter into a private scratch directory
4. Read the frames back in frame-number order and drop the scratch directory

FFprobe reports rates as rationals ("30000/1001"), so rates are carried as
Fractions end to end and handed to FFmpeg in the same rational form.
"""

import asyncio
import io
import logging
import math
import os
import re
import subprocess
import tempfile
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Optional, Protocol, Union

from PIL import Image

logger = logging.getLogger(__name__)

FRAME_FILE_PATTERN = re.compile(r"^(\d+)-frame-(\d+)\.png$")
_RATE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)(?:\s*/\s*(\d+(?:\.\d+)?))?$")

Rate = Union[int, float, Fraction]


class VideoProcessingError(Exception):
    """Base class for FFmpeg/FFprobe failures. Carries the tool's output."""

    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics


class ProbeFailure(VideoProcessingError):
    """FFprobe failed or its frame rate could not be parsed."""
    pass


class DecodeFailure(VideoProcessingError):
    """FFmpeg failed to decode the video into frames."""
    pass


@dataclass
class ExtractedFrame:
    """A decoded frame, tagged with the video it came from."""
    video_index: int
    frame_index: int
    data: bytes  # png image data

    @property
    def filename(self) -> str:
        return f"frame-{self.video_index}-{self.frame_index}.png"


# ---------------------------------------------------------------------------
# Frame rates
# ---------------------------------------------------------------------------

def parse_frame_rate(text: str) -> Fraction:
    """
    Parse FFprobe's r_frame_rate output.

    Accepts "30", "29.97" or "30000/1001". Anything else, including
    zero rates and "0/0" (what FFprobe prints when it doesn't know),
    is a ProbeFailure.
    """
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        raise ProbeFailure("FFprobe reported no frame rate", diagnostics=text or "")

    raw = lines[0]
    match = _RATE_PATTERN.match(raw)
    if match is None:
        raise ProbeFailure(f"Unparsable frame rate: {raw!r}", diagnostics=text)

    numerator = Fraction(match.group(1))
    denominator = Fraction(match.group(2)) if match.group(2) else Fraction(1)
    if denominator == 0:
        raise ProbeFailure(f"Frame rate has zero denominator: {raw!r}", diagnostics=text)

    rate = numerator / denominator
    if rate <= 0:
        raise ProbeFailure(f"Frame rate must be positive: {raw!r}", diagnostics=text)
    return rate


def to_rate(value: Rate) -> Fraction:
    """Convert a requested rate to an exact Fraction."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Fraction)):
        raise ValueError(f"Frame rate must be a number, got {value!r}")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Frame rate must be finite, got {value!r}")
        # str() keeps 29.97 as 2997/100 instead of its binary expansion
        value = Fraction(str(value))
    rate = Fraction(value)
    if rate <= 0:
        raise ValueError(f"Frame rate must be positive, got {value!r}")
    return rate


def effective_frame_rate(requested: Rate, intrinsic: Fraction) -> Fraction:
    """Never sample faster than the video's own rate."""
    return min(to_rate(requested), intrinsic)


def format_rate(rate: Fraction) -> str:
    return f"{rate.numerator}/{rate.denominator}"


def sort_frame_files(names: list[str]) -> list[str]:
    """
    Order decoded frame files by their frame number.

    FFmpeg numbers files 1, 2, ... 10, which sort wrongly as text.
    Files that don't look like frames are left out.
    """
    numbered = []
    for name in names:
        match = FRAME_FILE_PATTERN.match(name)
        if match:
            numbered.append((int(match.group(2)), name))
    numbered.sort()
    return [name for _, name in numbered]


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------

class VideoProcessor(Protocol):
    """Protocol for video processing operations."""

    def is_available(self) -> bool:
        """Whether frames can be extracted right now."""
        ...

    async def probe_frame_rate(self, video_path: Path) -> Fraction:
        """Return the native frame rate of the video."""
        ...

    async def extract_frames(
        self,
        video_data: bytes,
        requested_fps: Rate,
        video_index: int = 0,
        suffix: str = ".mp4",
    ) -> list[ExtractedFrame]:
        """Decode frames at min(requested_fps, native rate), in order."""
        ...


class FFmpegVideoProcessor:
    """
    Video processor using FFmpeg/FFprobe.

    Every extraction gets its own temporary directory holding the video
    and its decoded frames; the directory is removed whether extraction
    succeeds or fails.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize processor with FFmpeg paths.

        Args:
            ffmpeg_path: Path to ffmpeg binary (default assumes it's in PATH)
            ffprobe_path: Path to ffprobe binary
            timeout_seconds: Optional limit per subprocess run
        """
        self._ffmpeg = ffmpeg_path
        self._ffprobe = ffprobe_path
        self._timeout = timeout_seconds

        if not self.is_available():
            raise RuntimeError(
                "FFmpeg not found. Install with: apt-get install ffmpeg"
            )
        logger.info("FFmpeg video processor initialized")

    def is_available(self) -> bool:
        """Check that ffmpeg runs."""
        try:
            result = subprocess.run(
                [self._ffmpeg, "-version"],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    async def probe_frame_rate(self, video_path: Path) -> Fraction:
        cmd = [
            self._ffprobe,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=r_frame_rate",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(video_path),
        ]

        result = await self._run(cmd, ProbeFailure)
        if result.returncode != 0:
            logger.error(
                "FFprobe failed",
                extra={"returncode": result.returncode, "stderr": result.stderr},
            )
            raise ProbeFailure(
                f"FFprobe exited with code {result.returncode}",
                diagnostics=result.stderr,
            )

        return parse_frame_rate(result.stdout)

    async def extract_frames(
        self,
        video_data: bytes,
        requested_fps: Rate,
        video_index: int = 0,
        suffix: str = ".mp4",
    ) -> list[ExtractedFrame]:
        """
        Extract frames at a capped rate.

        Args:
            video_data: Raw video bytes
            requested_fps: Rate asked for by the client
            video_index: Position of the video in its request, used in frame names
            suffix: Container extension of the upload
        """
        requested = to_rate(requested_fps)

        with tempfile.TemporaryDirectory(prefix=f"frames-{video_index}-") as scratch:
            scratch_dir = Path(scratch)
            video_path = scratch_dir / f"source{suffix}"
            video_path.write_bytes(video_data)

            intrinsic = await self.probe_frame_rate(video_path)
            rate = effective_frame_rate(requested, intrinsic)

            logger.info(
                "Extracting frames",
                extra={
                    "video_index": video_index,
                    "requested_fps": float(requested),
                    "native_fps": float(intrinsic),
                    "effective_fps": float(rate),
                },
            )

            output_dir = scratch_dir / "frames"
            output_dir.mkdir()
            cmd = [
                self._ffmpeg,
                "-nostdin",
                "-v", "error",
                "-i", str(video_path),
                "-vf", f"fps={format_rate(rate)}",
                str(output_dir / f"{video_index}-frame-%d.png"),
            ]

            result = await self._run(cmd, DecodeFailure)
            if result.returncode != 0:
                logger.error(
                    "FFmpeg failed",
                    extra={"returncode": result.returncode, "stderr": result.stderr},
                )
                raise DecodeFailure(
                    f"FFmpeg exited with code {result.returncode}",
                    diagnostics=result.stderr,
                )

            names = sort_frame_files(os.listdir(output_dir))
            frames = [
                ExtractedFrame(
                    video_index=video_index,
                    frame_index=position,
                    data=(output_dir / name).read_bytes(),
                )
                for position, name in enumerate(names)
            ]

        logger.info(
            "Extracted frames",
            extra={"video_index": video_index, "count": len(frames)},
        )
        return frames

    async def _run(
        self,
        cmd: list[str],
        failure: type[VideoProcessingError],
    ) -> subprocess.CompletedProcess:
        try:
            return await asyncio.to_thread(
                subprocess.run,
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise failure(f"{cmd[0]} timed out after {self._timeout}s", diagnostics=str(e)) from e
        except OSError as e:
            raise failure(f"Could not run {cmd[0]}: {e}", diagnostics=str(e)) from e


class MockVideoProcessor:
    """
    Mock video processor for local development without FFmpeg.

    Pretends every video is one second long at 30 fps and returns
    small solid-colour PNG frames, honoring the same rate capping.
    """

    def __init__(
        self,
        native_fps: Fraction = Fraction(30),
        duration_seconds: float = 1.0,
        frame_size: tuple[int, int] = (64, 48),
    ):
        self._native_fps = native_fps
        self._duration = duration_seconds
        self._frame_size = frame_size
        logger.info("Initialized mock video processor")

    def is_available(self) -> bool:
        return True

    async def probe_frame_rate(self, video_path: Path) -> Fraction:
        return self._native_fps

    async def extract_frames(
        self,
        video_data: bytes,
        requested_fps: Rate,
        video_index: int = 0,
        suffix: str = ".mp4",
    ) -> list[ExtractedFrame]:
        """Return placeholder frames."""
        rate = effective_frame_rate(requested_fps, self._native_fps)
        count = max(1, math.floor(self._duration * rate))

        frames = []
        for frame_index in range(count):
            shade = (frame_index * 37) % 256
            buffer = io.BytesIO()
            Image.new("RGB", self._frame_size, (shade, 0, 255 - shade)).save(buffer, format="PNG")
            frames.append(ExtractedFrame(
                video_index=video_index,
                frame_index=frame_index,
                data=buffer.getvalue(),
            ))
        return frames


def create_video_processor(
    mock_mode: bool = False,
    ffmpeg_path: str = "ffmpeg",
    ffprobe_path: str = "ffprobe",
    timeout_seconds: Optional[float] = None,
) -> VideoProcessor:
    """
    Factory function for video processor.

    Args:
        mock_mode: If True, return mock processor (no FFmpeg required)

    Returns:
        VideoProcessor implementation
    """
    if mock_mode:
        return MockVideoProcessor()

    return FFmpegVideoProcessor(
        ffmpeg_path=ffmpeg_path,
        ffprobe_path=ffprobe_path,
        timeout_seconds=timeout_seconds,
    )
