"""Shared fixtures."""

from __future__ import annotations

import io
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image


SAMPLE_OBJECTS = [
    {
        "name": "IKEA Poang Armchair",
        "description": "Birch frame armchair with beige cushion.",
        "timestamp": 2.5,
        "boundingBox": {"x_min": 0.25, "y_min": 0.4, "x_max": 0.45, "y_max": 0.6},
        "price": "$100 - $150",
    },
    {
        "name": "West Elm Harmony Sofa",
        "description": "Grey velvet three-seat sofa.",
        "timestamp": 5.0,
        "boundingBox": {"x_min": 0.1, "y_min": 0.3, "x_max": 0.8, "y_max": 0.5},
        "price": "$2000 - $2500",
    },
]


def make_jpeg(width: int = 400, height: int = 400, color=(128, 128, 128)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


def make_png(width: int = 320, height: int = 240, color=(10, 120, 200)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def ffprobe_json(duration: float = 10.0, fps: str = "25/1", width: int = 320, height: int = 240) -> bytes:
    return json.dumps({
        "streams": [
            {"codec_type": "video", "codec_name": "h264", "width": width, "height": height, "r_frame_rate": fps},
        ],
        "format": {"duration": str(duration)},
    }).encode()


@pytest.fixture
def sample_response_text():
    return json.dumps(SAMPLE_OBJECTS)


@pytest.fixture
def fake_genai_client():
    """genai.Client stand-in exposing client.aio.models.generate_content."""
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    return client


@pytest.fixture
def video_file(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42fake-video")
    return path
