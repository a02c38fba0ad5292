"""
VidSpot Detection Models
Pydantic schemas for objects returned by the detection model.
"""

from typing import List, NamedTuple

from pydantic import BaseModel, ConfigDict, Field


class BoundingBox(BaseModel):
    """
    Normalized bounding box (fractions of frame width/height).

    The model does not guarantee x_min < x_max or y_min < y_max, and values
    may fall slightly outside [0, 1]; the annotator clamps and skips such boxes.
    """
    model_config = ConfigDict(allow_inf_nan=False)

    x_min: float
    y_min: float
    x_max: float
    y_max: float


class DetectedObject(BaseModel):
    """A single object instance as reported by the model."""
    model_config = ConfigDict(allow_inf_nan=False, populate_by_name=True)

    name: str
    description: str
    timestamp: float = Field(..., description="Time in seconds when the object is best seen")
    bounding_box: BoundingBox = Field(..., alias="boundingBox")
    price: str = Field(..., description="Free-form USD estimate, e.g. '$450 - $550'")


class DetectionResult(NamedTuple):
    """Parsed objects plus the unmodified JSON text they came from."""
    objects: List[DetectedObject]
    raw_json: str
