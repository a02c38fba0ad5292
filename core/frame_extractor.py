"""
VidSpot Frame Extractor Module
Extracts single frames from video using FFmpeg.
"""

import asyncio
import io
import json
import logging
from pathlib import Path
from typing import List

from PIL import Image

from .errors import FrameExtractionError

logger = logging.getLogger(__name__)


class FrameExtractor:
    """Extract frames from video files using FFmpeg (async subprocesses)."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe", jpeg_quality: int = 90):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.jpeg_quality = jpeg_quality

    async def _run(self, cmd: List[str]) -> bytes:
        """Run a command and return its stdout, raising on a non-zero exit."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise FrameExtractionError(f"Failed to start {cmd[0]}: {e}") from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            logger.error(f"{Path(cmd[0]).name} error: {message}")
            raise FrameExtractionError(f"{Path(cmd[0]).name} exited with {proc.returncode}: {message}")
        return stdout

    async def get_video_info(self, video_path: Path) -> dict:
        """Get video metadata using ffprobe."""
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(video_path)
        ]

        stdout = await self._run(cmd)
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as e:
            logger.error(f"JSON parse error: {e}")
            raise FrameExtractionError("Failed to parse video metadata") from e

        video_stream = None
        audio_stream = None
        for stream in data.get("streams", []):
            if stream.get("codec_type") == "video" and not video_stream:
                video_stream = stream
            elif stream.get("codec_type") == "audio" and not audio_stream:
                audio_stream = stream

        if not video_stream:
            raise FrameExtractionError("No video stream found")

        # Parse frame rate ("30000/1001", "25/1", or "0/0" when unknown)
        fps_parts = video_stream.get("r_frame_rate", "30/1").split("/")
        try:
            fps = float(fps_parts[0]) / float(fps_parts[1]) if len(fps_parts) == 2 else float(fps_parts[0])
        except (ValueError, ZeroDivisionError):
            fps = 0.0

        duration = data.get("format", {}).get("duration") or video_stream.get("duration") or 0
        try:
            duration = float(duration)
        except ValueError:
            duration = 0.0

        return {
            "width": int(video_stream.get("width", 0)),
            "height": int(video_stream.get("height", 0)),
            "fps": fps,
            "duration": duration,
            "codec": video_stream.get("codec_name", "unknown"),
            "has_audio": audio_stream is not None
        }

    @staticmethod
    def clamp_timestamp(timestamp: float, duration: float, fps: float = 0.0) -> float:
        """
        Clamp a timestamp into [0, duration] and pull it back to the last decodable frame.

        A seek to exactly `duration` yields no frame, so the upper bound is
        one frame interval before the end when the frame rate is known.
        """
        t = max(0.0, float(timestamp))
        if duration > 0:
            t = min(t, duration)
            last_frame = duration - (1.0 / fps if fps > 0 else 0.0)
            t = min(t, max(0.0, last_frame))
        return t

    async def extract_frame(self, video_path: Path, timestamp: float) -> bytes:
        """
        Extract a single JPEG frame at (or nearest to) the given timestamp.

        Args:
            video_path: Path to the video file
            timestamp: Time in seconds; out-of-range values are clamped

        Returns:
            JPEG-encoded frame at the video's native resolution
        """
        video_info = await self.get_video_info(video_path)
        seek_time = self.clamp_timestamp(timestamp, video_info["duration"], video_info["fps"])
        if seek_time != timestamp:
            logger.info(f"Clamped timestamp {timestamp}s to {seek_time:.3f}s (duration {video_info['duration']}s)")

        cmd = [
            self.ffmpeg_path,
            "-v", "error",
            "-ss", f"{seek_time:.3f}",
            "-i", str(video_path),
            "-frames:v", "1",
            "-f", "image2pipe",
            "-vcodec", "png",
            "-"
        ]

        png_bytes = await self._run(cmd)
        if not png_bytes:
            raise FrameExtractionError(f"No frame decoded at {seek_time:.3f}s")

        try:
            image = Image.open(io.BytesIO(png_bytes)).convert("RGB")
        except OSError as e:
            raise FrameExtractionError(f"Failed to decode extracted frame: {e}") from e

        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=self.jpeg_quality)
        return buffer.getvalue()
