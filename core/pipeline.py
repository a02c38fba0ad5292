"""
VidSpot Pipeline Module
Orchestrates detection and the per-object frame/annotation jobs.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Dict, Optional, Set

from .annotator import annotate
from .detection_models import DetectedObject
from .errors import InvalidInputError
from .frame_extractor import FrameExtractor
from .object_detector import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_BASE_DELAY,
    GEMINI_DETECTION_MODEL,
    GeminiObjectDetector,
    MockObjectDetector,
    parse_target_objects,
)
from .session import DetectionSession, DisplayObject

logger = logging.getLogger(__name__)


class ObjectIdentificationPipeline:
    """
    Main orchestrator for video object identification.

    Workflow:
    1. Upload video -> session
    2. Detect objects with Gemini (awaited)
    3. For each object, extract its frame and draw the box (concurrent, unawaited)
    """

    def __init__(
        self,
        gemini_api_key: str = "",
        gemini_model: str = GEMINI_DETECTION_MODEL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        jpeg_quality: int = 90,
        use_mock_data: bool = False,
        detector=None,
        frame_extractor: Optional[FrameExtractor] = None
    ):
        self.frame_extractor = frame_extractor or FrameExtractor(
            ffmpeg_path=ffmpeg_path,
            ffprobe_path=ffprobe_path,
            jpeg_quality=jpeg_quality
        )
        self.jpeg_quality = jpeg_quality

        # Lazy-initialized detector (requires Gemini key unless mocked)
        self._detector = detector
        self._gemini_api_key = gemini_api_key
        self._gemini_model = gemini_model
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self.use_mock_data = use_mock_data

        # In-memory session storage
        self.sessions: Dict[str, DetectionSession] = {}
        self._frame_tasks: Set[asyncio.Task] = set()

    @property
    def detector(self):
        """Lazy load the detector; raises ConfigurationError without a key."""
        if self._detector is None:
            if self.use_mock_data:
                self._detector = MockObjectDetector()
            else:
                self._detector = GeminiObjectDetector(
                    api_key=self._gemini_api_key,
                    model=self._gemini_model,
                    max_attempts=self._max_attempts,
                    retry_base_delay=self._retry_base_delay
                )
        return self._detector

    def create_session(self, video_path: Path, mime_type: str = "video/mp4") -> DetectionSession:
        session = DetectionSession(
            session_id=str(uuid.uuid4()),
            video_path=Path(video_path),
            mime_type=mime_type
        )
        self.sessions[session.session_id] = session
        logger.info(f"Created session {session.session_id} for {session.video_path.name}")
        return session

    def get_session(self, session_id: str) -> Optional[DetectionSession]:
        return self.sessions.get(session_id)

    async def identify(self, session_id: str, query: str) -> DetectionSession:
        """
        Run detection for a session and start frame jobs for each result.

        Returns as soon as detection finishes; object images are filled in
        by background tasks as they complete.

        Raises:
            InvalidInputError: unknown session, missing video, or empty query
            ConfigurationError: Gemini key missing
            DetectionError: terminal detection failure
        """
        session = self.get_session(session_id)
        if session is None:
            raise InvalidInputError(f"Session not found: {session_id}")
        if not session.video_path or not session.video_path.exists():
            raise InvalidInputError("Please upload a video file first.")

        target_objects = parse_target_objects(query)
        detector = self.detector

        generation = session.begin_run()
        logger.info(f"Session {session_id} run {generation}: looking for {target_objects}")

        try:
            result = await detector.detect(session.video_path, target_objects, session.mime_type)
        except Exception as e:
            session.fail(generation, str(e))
            raise

        display_objects = [
            DisplayObject(name=obj.name, price=obj.price, timestamp=obj.timestamp)
            for obj in result.objects
        ]
        if not session.publish(generation, display_objects, result.raw_json):
            return session

        for index, obj in enumerate(result.objects):
            task = asyncio.create_task(self._render_object(session, generation, index, obj))
            self._frame_tasks.add(task)
            task.add_done_callback(self._frame_tasks.discard)

        return session

    async def _render_object(
        self,
        session: DetectionSession,
        generation: int,
        index: int,
        obj: DetectedObject
    ) -> None:
        """Extract and annotate one object's frame, then fill in its slot."""
        try:
            frame = await self.frame_extractor.extract_frame(session.video_path, obj.timestamp)
            # Decode, blur and re-encode stay off the event loop
            image = await asyncio.to_thread(annotate, frame, obj.bounding_box, self.jpeg_quality)
        except Exception as e:
            logger.error(f"Failed to process frame for {obj.name}: {e}")
            return

        if session.apply_image(generation, index, obj.name, image):
            logger.info(f"Frame ready for '{obj.name}' ({index + 1}/{len(session.objects)})")

    @property
    def pending_frames(self) -> int:
        return len(self._frame_tasks)

    async def drain(self) -> None:
        """Wait for all in-flight frame jobs."""
        while self._frame_tasks:
            await asyncio.gather(*list(self._frame_tasks), return_exceptions=True)
