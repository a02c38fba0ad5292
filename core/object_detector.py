"""
Gemini Object Detector - Find and price named objects in a video using Gemini.
Uses native video understanding: the whole clip is sent inline with a
structured-output schema, and the JSON array that comes back is validated locally.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError

from .detection_models import DetectedObject, DetectionResult
from .errors import ConfigurationError, DetectionError, InvalidInputError

logger = logging.getLogger(__name__)

# Gemini model for video object detection (native video support)
GEMINI_DETECTION_MODEL = "gemini-2.5-flash"

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 1.0

# Substrings that mark a provider-side overload/unavailable error
TRANSIENT_ERROR_MARKERS = ("503", "unavailable", "overloaded")


# JSON Schema for structured output (array of detected objects)
OBJECT_DETECTION_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "The specific model/type of the object (e.g. 'Herman Miller Aeron Chair')."},
            "description": {"type": "string", "description": "A brief visual description of the object."},
            "timestamp": {"type": "number", "description": "The time in seconds when the object is most clearly visible."},
            "boundingBox": {
                "type": "object",
                "description": "Normalized (0-1) coordinates of a tight bounding box around the object.",
                "properties": {
                    "x_min": {"type": "number"},
                    "y_min": {"type": "number"},
                    "x_max": {"type": "number"},
                    "y_max": {"type": "number"}
                },
                "required": ["x_min", "y_min", "x_max", "y_max"]
            },
            "price": {"type": "string", "description": "Estimated market price in USD as a formatted string."}
        },
        "required": ["name", "description", "timestamp", "boundingBox", "price"]
    }
}


DETECTION_PROMPT = """You are a precision object detection system. Scan this video exhaustively and identify EVERY instance of the following items: **{targets}**.

## Directives:
1. **Specific naming**: Name each object as specifically as you can (e.g. "Red 2021 Honda Civic" rather than "car", "IKEA Poang armchair" rather than "chair").
2. **Every physical instance**: Return one entry per physically separate object. If four identical chairs are visible, return four entries. Never group or de-duplicate separate items.
3. **Exhaustive search**: Include objects in the background, objects that appear only briefly, and objects that are partially occluded or in cluttered scenes.
4. **Tight bounding boxes**: Coordinates are normalized (0-1) as x_min, y_min, x_max, y_max and must hug the visible pixels of the object with minimal padding.
5. **Realistic pricing**: Give a realistic current market price range in USD (e.g. "$450 - $550").
6. **High confidence only**: Distinguish real items from look-alikes. Leave out anything you are not confident about.

## Response Requirements:
Return ONLY a JSON array. Each element has exactly these keys:
- "name": most specific name possible
- "description": concise visual description
- "timestamp": time in seconds (e.g. 12.75) when the object is best seen
- "boundingBox": {{"x_min", "y_min", "x_max", "y_max"}} in normalized coordinates
- "price": estimated USD price as a string

Review your answer for missed or wrongly grouped items before responding.
If no instances are found, return an empty array: []"""


def parse_target_objects(query: Optional[str]) -> List[str]:
    """
    Split a comma-separated query into target object names.

    Surrounding whitespace is stripped and blank entries are dropped,
    so "  , chair ,,sofa " becomes ["chair", "sofa"].

    Raises:
        InvalidInputError: if no target names remain
    """
    targets = [part.strip() for part in (query or "").split(",")]
    targets = [t for t in targets if t]
    if not targets:
        raise InvalidInputError("Please specify what objects to identify.")
    return targets


def build_detection_prompt(target_objects: List[str]) -> str:
    return DETECTION_PROMPT.format(targets=", ".join(target_objects))


def is_transient_error(error: BaseException) -> bool:
    """
    Decide whether a provider error signals temporary unavailability.

    Classification is by error content (HTTP code, status, message),
    not by exception type.
    """
    if getattr(error, "code", None) == 503:
        return True
    text = f"{getattr(error, 'status', '') or ''} {error}".lower()
    return any(marker in text for marker in TRANSIENT_ERROR_MARKERS)


def parse_detection_response(text: Optional[str]) -> DetectionResult:
    """
    Validate the model's JSON text into DetectedObjects.

    Empty text and "[]" are a valid "nothing found" outcome. Elements that
    fail validation are dropped; a body that is not a JSON array is an error.
    """
    text = (text or "").strip()
    if not text:
        return DetectionResult(objects=[], raw_json="[]")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DetectionError(f"Model returned invalid JSON: {e}") from e

    if not isinstance(data, list):
        raise DetectionError(f"Model returned {type(data).__name__}, expected a JSON array")

    if not data:
        return DetectionResult(objects=[], raw_json="[]")

    objects = []
    for i, item in enumerate(data):
        try:
            objects.append(DetectedObject.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping malformed object #{i} from model response: {e.errors()}")

    return DetectionResult(objects=objects, raw_json=text)


class GeminiObjectDetector:
    """
    Detect named objects in a video using Gemini structured output.
    Transient overload errors are retried with exponential backoff.
    """

    def __init__(
        self,
        api_key: str = None,
        model: str = GEMINI_DETECTION_MODEL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        client: Any = None
    ):
        """
        Initialize Gemini Object Detector.

        Args:
            api_key: Gemini API key (or uses GEMINI_API_KEY env var)
            model: Gemini model name
            max_attempts: Total attempts for transient failures (including the first)
            retry_base_delay: Seconds to wait before the first retry; doubles each retry
            client: Pre-built genai client (mainly for tests)
        """
        self.model = model
        self.max_attempts = max(1, max_attempts)
        self.retry_base_delay = retry_base_delay

        if client is None:
            from google import genai

            self.api_key = api_key or os.getenv("GEMINI_API_KEY")
            if not self.api_key:
                raise ConfigurationError("GEMINI_API_KEY not set")
            client = genai.Client(api_key=self.api_key)

        self.client = client
        logger.info(f"Gemini Object Detector initialized ({self.model})")

    def _build_request(self, video_bytes: bytes, mime_type: str, target_objects: List[str]) -> dict:
        from google.genai import types

        return {
            "model": self.model,
            "contents": [
                types.Content(
                    role="user",
                    parts=[
                        types.Part.from_text(text=build_detection_prompt(target_objects)),
                        types.Part.from_bytes(data=video_bytes, mime_type=mime_type)
                    ]
                )
            ],
            "config": types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=OBJECT_DETECTION_SCHEMA
            )
        }

    async def detect(
        self,
        video_path: str | Path,
        target_objects: List[str],
        mime_type: str = "video/mp4"
    ) -> DetectionResult:
        """
        Identify every instance of the target objects in a video.

        Args:
            video_path: Path to the video file
            target_objects: Non-empty list of object names to look for
            mime_type: MIME type of the video

        Returns:
            DetectionResult(objects, raw_json)

        Raises:
            DetectionError: on a non-transient failure or once retries are exhausted
        """
        video_path = Path(video_path)
        video_bytes = await asyncio.to_thread(video_path.read_bytes)
        logger.info(
            f"Detecting {target_objects} in {video_path.name} "
            f"({len(video_bytes) / 1024 / 1024:.1f}MB, {mime_type})"
        )

        request = self._build_request(video_bytes, mime_type, target_objects)

        delay = self.retry_base_delay
        attempt = 0
        while attempt < self.max_attempts:
            attempt += 1
            try:
                response = await self.client.aio.models.generate_content(**request)
            except Exception as e:
                if is_transient_error(e) and attempt < self.max_attempts:
                    logger.warning(
                        f"Gemini API is overloaded. Retrying in {delay:g}s... "
                        f"(Attempt {attempt}/{self.max_attempts})"
                    )
                    await asyncio.sleep(delay)
                    delay *= 2
                    continue

                logger.error(f"Gemini detection failed on attempt {attempt}/{self.max_attempts}: {e}")
                raise DetectionError(
                    "Failed to identify objects in the video. The model may have returned "
                    "an error or invalid data after multiple retries."
                ) from e

            result = parse_detection_response(response.text)
            logger.info(f"Detection complete: {len(result.objects)} objects")
            return result

        raise DetectionError("Exhausted all retries to the Gemini API.")


class MockObjectDetector:
    """
    Offline stand-in for GeminiObjectDetector with the same detect() contract.
    Useful for UI development without API calls or costs.
    """

    def __init__(self):
        logger.warning("Using mock detection data. Set USE_MOCK_DATA=false to call the Gemini API.")

    async def detect(
        self,
        video_path: str | Path,
        target_objects: List[str],
        mime_type: str = "video/mp4"
    ) -> DetectionResult:
        first = target_objects[0] if target_objects else "Object"
        items = [
            {
                "name": "Mock Herman Miller Aeron Chair",
                "description": "A mock black mesh office chair.",
                "timestamp": 2.5,
                "boundingBox": {"x_min": 0.25, "y_min": 0.4, "x_max": 0.45, "y_max": 0.6},
                "price": "$900 - $1200"
            },
            {
                "name": "Mock IKEA Kivik Sofa",
                "description": "A mock grey three-seat sofa.",
                "timestamp": 5.1,
                "boundingBox": {"x_min": 0.1, "y_min": 0.3, "x_max": 0.8, "y_max": 0.5},
                "price": "$600 - $800"
            },
            {
                "name": "Mock Sony Bravia TV",
                "description": "A mock wall-mounted television.",
                "timestamp": 8.9,
                "boundingBox": {"x_min": 0.3, "y_min": 0.6, "x_max": 0.9, "y_max": 0.8},
                "price": "$500 - $700"
            },
            {
                "name": f"Mock {first}",
                "description": "A generic mock item based on your query.",
                "timestamp": 11.2,
                "boundingBox": {"x_min": 0.6, "y_min": 0.1, "x_max": 0.8, "y_max": 0.3},
                "price": "$100 - $200"
            }
        ]
        return parse_detection_response(json.dumps(items, indent=2))
