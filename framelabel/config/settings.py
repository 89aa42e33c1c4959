"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

Mock mode enables local development without FFmpeg installed.
"""

import shutil
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like cors_origins), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "FrameLabel API"
    api_version: str = "v1"

    # Sessions
    session_ttl_ms: int = Field(
        default=900_000,
        gt=0,
        description="Session lifetime after creation or the last ping, in milliseconds (15 min)."
    )
    sweep_interval_ms: int = Field(
        default=180_000,
        gt=0,
        description="Period of the background sweep that removes expired sessions (3 min)."
    )
    page_size: int = Field(
        default=10,
        gt=0,
        description="Number of images per page when listing a session's images."
    )
    media_root: Optional[str] = Field(
        default=None,
        description="Directory holding per-session image files. Defaults to the system temp dir."
    )

    # Video processing
    ffmpeg_path: str = Field(
        default="ffmpeg",
        description="Path to the ffmpeg binary"
    )
    ffprobe_path: str = Field(
        default="ffprobe",
        description="Path to the ffprobe binary"
    )
    video_mock_mode: bool = Field(
        default=False,
        description="Use a mock frame extractor instead of FFmpeg. Enables local dev without FFmpeg."
    )
    subprocess_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Optional timeout for ffprobe/ffmpeg runs. Unset means wait for completion."
    )

    # Application Behavior
    max_upload_size_mb: int = Field(
        default=500,
        description="Maximum size of a single uploaded file in MB."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:4200",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def session_ttl_seconds(self) -> float:
        return self.session_ttl_ms / 1000.0

    @property
    def sweep_interval_seconds(self) -> float:
        return self.sweep_interval_ms / 1000.0

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def media_root_path(self) -> Path:
        """Resolve where session media lives."""
        if self.media_root:
            return Path(self.media_root)
        return Path(tempfile.gettempdir()) / "framelabel"

    def validate_required_fields(self) -> list[str]:
        """
        Report external tools that are required but missing.

        FFmpeg and FFprobe are only needed when not in mock mode.
        """
        missing = []

        if not self.video_mock_mode:
            if shutil.which(self.ffmpeg_path) is None:
                missing.append("FFMPEG_PATH")
            if shutil.which(self.ffprobe_path) is None:
                missing.append("FFPROBE_PATH")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
