"""
VidSpot Session Module
Per-upload state: the stored video and the results of the latest detection run.
"""

import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Status of the latest detection run."""
    IDLE = "idle"
    DETECTING = "detecting"
    COMPLETED = "completed"
    NO_MATCHES = "no_matches"
    FAILED = "failed"


@dataclass
class DisplayObject:
    """A detected object as shown to the user. The image arrives later."""
    name: str
    price: str
    timestamp: float
    image: Optional[bytes] = None

    @property
    def image_url(self) -> Optional[str]:
        if self.image is None:
            return None
        return "data:image/jpeg;base64," + base64.b64encode(self.image).decode("ascii")


@dataclass
class DetectionSession:
    """State container for one uploaded video."""
    session_id: str
    video_path: Optional[Path] = None
    mime_type: str = "video/mp4"
    video_info: dict = field(default_factory=dict)

    # Bumped on every run; async frame results carry the generation they were started for
    generation: int = 0
    status: SessionStatus = SessionStatus.IDLE
    objects: List[DisplayObject] = field(default_factory=list)
    raw_json: Optional[str] = None
    error: Optional[str] = None
    message: str = ""

    def begin_run(self) -> int:
        """Discard previous results and start a new run."""
        self.generation += 1
        self.status = SessionStatus.DETECTING
        self.objects = []
        self.raw_json = None
        self.error = None
        self.message = ""
        return self.generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def publish(self, generation: int, objects: List[DisplayObject], raw_json: str) -> bool:
        """Store detection results if the run is still current."""
        if not self.is_current(generation):
            logger.debug(f"Dropping stale detection results for {self.session_id} (run {generation})")
            return False

        self.objects = objects
        self.raw_json = raw_json
        if objects:
            self.status = SessionStatus.COMPLETED
            self.message = f"Found {len(objects)} objects."
        else:
            self.status = SessionStatus.NO_MATCHES
            self.message = "No matching objects were found in the video."
        return True

    def fail(self, generation: int, error: str) -> bool:
        if not self.is_current(generation):
            return False
        self.objects = []
        self.status = SessionStatus.FAILED
        self.error = error
        return True

    def apply_image(self, generation: int, index: int, name: str, image: bytes) -> bool:
        """
        Fill in one object's image.

        The update is dropped unless it still refers to the current run
        and the slot at `index` still holds an object called `name`.
        """
        if not self.is_current(generation):
            logger.debug(f"Dropping stale image for '{name}' (run {generation}, current {self.generation})")
            return False
        if index >= len(self.objects) or self.objects[index].name != name:
            logger.debug(f"Dropping image for '{name}': slot {index} no longer matches")
            return False

        self.objects[index].image = image
        return True
