"""
VidSpot Configuration Module
Handles environment variables and application settings.
"""

import shutil
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache

# Fallback install folders checked when a binary is not on PATH
WINDOWS_FFMPEG_DIRS = [
    Path(r"C:\ffmpeg\bin"),
    Path(r"C:\Program Files\ffmpeg\bin"),
]


def winget_packages_dir() -> Path:
    return Path.home() / "AppData/Local/Microsoft/WinGet/Packages"


def locate_binary(name: str) -> Optional[str]:
    """
    Find an FFmpeg-suite executable outside PATH.

    Looks under winget's package folder first, then the usual manual
    install folders. Returns None when nothing is found.
    """
    exe = f"{name}.exe"
    packages = winget_packages_dir()
    if packages.exists():
        for match in packages.rglob(exe):
            return str(match)

    for folder in WINDOWS_FFMPEG_DIRS:
        candidate = folder / exe
        if candidate.exists():
            return str(candidate)
    return None


def find_ffmpeg_path() -> str:
    """Resolve the ffmpeg command, falling back to the bare name."""
    if shutil.which("ffmpeg"):
        return "ffmpeg"
    return locate_binary("ffmpeg") or "ffmpeg"


def find_ffprobe_path() -> str:
    """Resolve the ffprobe command, preferring the copy shipped beside ffmpeg."""
    if shutil.which("ffprobe"):
        return "ffprobe"

    ffmpeg_path = find_ffmpeg_path()
    if ffmpeg_path != "ffmpeg":
        sibling = Path(ffmpeg_path).parent / "ffprobe.exe"
        if sibling.exists():
            return str(sibling)

    return locate_binary("ffprobe") or "ffprobe"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    gemini_api_key: str = ""  # Required unless use_mock_data is set

    # Detection
    gemini_model: str = "gemini-2.5-flash"
    detection_max_attempts: int = 3
    detection_retry_base_delay: float = 1.0  # seconds, doubles per retry
    use_mock_data: bool = False  # Canned results, no Gemini calls

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = True

    # FFmpeg paths (auto-detected if not set)
    ffmpeg_path: str = ""
    ffprobe_path: str = ""

    # Frame output
    jpeg_quality: int = 90

    # Uploads
    upload_dir: str = "storage/uploads"
    max_upload_mb: int = 0  # 0 = no limit

    # Base directory (project root)
    base_dir: Path = Path(__file__).parent.parent

    def get_ffmpeg_path(self) -> str:
        """Get FFmpeg path, auto-detecting if not configured."""
        if self.ffmpeg_path:
            return self.ffmpeg_path
        return find_ffmpeg_path()

    def get_ffprobe_path(self) -> str:
        """Get FFprobe path, auto-detecting if not configured."""
        if self.ffprobe_path:
            return self.ffprobe_path
        return find_ffprobe_path()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def upload_path(self) -> Path:
        path = self.base_dir / self.upload_dir
        path.mkdir(parents=True, exist_ok=True)
        return path


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
