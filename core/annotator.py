"""
VidSpot Annotator Module
Draws a bounding box overlay on an extracted frame.
"""

import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFilter

from .detection_models import BoundingBox

logger = logging.getLogger(__name__)

BOX_COLOR = (255, 255, 0)
HALO_COLOR = (0, 0, 0, 204)  # 80% opaque black


def box_to_pixels(box: BoundingBox, width: int, height: int) -> Optional[Tuple[float, float, float, float]]:
    """
    Convert a normalized box to clamped pixel bounds (x1, y1, x2, y2).

    Returns None when the clamped box has no positive area.
    """
    x1 = max(0, box.x_min * width)
    y1 = max(0, box.y_min * height)
    x2 = min(width, box.x_max * width)
    y2 = min(height, box.y_max * height)

    if x2 - x1 <= 0 or y2 - y1 <= 0:
        return None
    return x1, y1, x2, y2


def line_width_for(width: int, height: int) -> int:
    return max(2, round(min(width, height) / 250))


def annotate(image_bytes: bytes, box: BoundingBox, jpeg_quality: int = 90) -> bytes:
    """
    Draw a yellow box with a soft shadow onto a JPEG frame.

    Inverted or degenerate boxes leave the image untouched and the
    input bytes are returned as-is.
    """
    image = Image.open(io.BytesIO(image_bytes)).convert("RGB")
    width, height = image.size

    bounds = box_to_pixels(box, width, height)
    if bounds is None:
        logger.info(f"Skipping degenerate box {box.model_dump()} on {width}x{height} frame")
        return image_bytes

    x1, y1, x2, y2 = (round(v) for v in bounds)
    if x2 <= x1 or y2 <= y1:
        logger.info(f"Skipping sub-pixel box {box.model_dump()} on {width}x{height} frame")
        return image_bytes

    line_width = line_width_for(width, height)

    # Shadow layer: same outline in translucent black, blurred
    halo = Image.new("RGBA", image.size, (0, 0, 0, 0))
    ImageDraw.Draw(halo).rectangle([x1, y1, x2 - 1, y2 - 1], outline=HALO_COLOR, width=line_width)
    halo = halo.filter(ImageFilter.GaussianBlur(radius=line_width))

    annotated = Image.alpha_composite(image.convert("RGBA"), halo).convert("RGB")
    ImageDraw.Draw(annotated).rectangle([x1, y1, x2 - 1, y2 - 1], outline=BOX_COLOR, width=line_width)

    buffer = io.BytesIO()
    # Full-resolution chroma keeps thin coloured strokes crisp
    annotated.save(buffer, format="JPEG", quality=jpeg_quality, subsampling=0)
    return buffer.getvalue()
