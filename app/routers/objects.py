"""
VidSpot Object Identification Router
API endpoints for video upload, object identification, and results.
"""

import json
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, UploadFile, File, HTTPException, Depends
from fastapi.responses import FileResponse, Response

from ..config import Settings, get_settings
from ..models import (
    VideoUploadResponse,
    IdentifyRequest,
    SessionResponse,
    RawJsonResponse,
)
from core.errors import ConfigurationError, DetectionError, FrameExtractionError, InvalidInputError
from core.pipeline import ObjectIdentificationPipeline
from core.session import DetectionSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["objects"])

UPLOAD_CHUNK_SIZE = 1024 * 1024

# Pipeline instance (initialized on first request)
_pipeline: Optional[ObjectIdentificationPipeline] = None


def get_pipeline(settings: Settings = Depends(get_settings)) -> ObjectIdentificationPipeline:
    """Get or create pipeline instance."""
    global _pipeline
    if _pipeline is None:
        _pipeline = ObjectIdentificationPipeline(
            gemini_api_key=settings.gemini_api_key,
            gemini_model=settings.gemini_model,
            max_attempts=settings.detection_max_attempts,
            retry_base_delay=settings.detection_retry_base_delay,
            ffmpeg_path=settings.get_ffmpeg_path(),
            ffprobe_path=settings.get_ffprobe_path(),
            jpeg_quality=settings.jpeg_quality,
            use_mock_data=settings.use_mock_data
        )
    return _pipeline


def _require_session(pipeline: ObjectIdentificationPipeline, session_id: str) -> DetectionSession:
    session = pipeline.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.post("/upload", response_model=VideoUploadResponse)
async def upload_video(
    file: UploadFile = File(...),
    pipeline: ObjectIdentificationPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings)
):
    """
    Upload a video file and return a session ID.
    No format check here; unsupported videos fail later at decode time.
    """
    filename = Path(file.filename or "video").name
    limit = settings.max_upload_mb * 1024 * 1024 if settings.max_upload_mb > 0 else None
    too_large = HTTPException(
        status_code=413,
        detail=f"Video exceeds the {settings.max_upload_mb}MB upload limit"
    )

    # Reject on the declared size before touching disk
    if limit and file.size is not None and file.size > limit:
        raise too_large

    video_path = settings.upload_path / f"{uuid.uuid4().hex}_{filename}"
    written = 0
    try:
        with open(video_path, "wb") as buffer:
            while True:
                chunk = await file.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if limit and written > limit:
                    break
                buffer.write(chunk)
    except OSError as e:
        video_path.unlink(missing_ok=True)
        logger.error(f"Upload failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if limit and written > limit:
        video_path.unlink(missing_ok=True)
        logger.warning(f"Rejected upload {filename}: over {settings.max_upload_mb}MB")
        raise too_large

    mime_type = file.content_type
    if not mime_type or not mime_type.startswith("video/"):
        mime_type = mimetypes.guess_type(filename)[0] or "video/mp4"

    session = pipeline.create_session(video_path, mime_type=mime_type)

    # Metadata is informational only; a failed probe does not reject the upload
    try:
        session.video_info = await pipeline.frame_extractor.get_video_info(video_path)
    except FrameExtractionError as e:
        logger.warning(f"Could not read video info for {filename}: {e}")

    return VideoUploadResponse(
        session_id=session.session_id,
        message="Video uploaded successfully.",
        video_info=session.video_info
    )


@router.post("/identify", response_model=SessionResponse)
async def identify_objects(
    request: IdentifyRequest,
    pipeline: ObjectIdentificationPipeline = Depends(get_pipeline)
):
    """
    Identify objects in the uploaded video.

    Returns once detection finishes. Object images are rendered in the
    background; poll GET /api/sessions/{session_id} until they appear.
    """
    _require_session(pipeline, request.session_id)

    try:
        session = await pipeline.identify(request.session_id, request.query)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except DetectionError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return SessionResponse.from_session(session)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session_state(
    session_id: str,
    pipeline: ObjectIdentificationPipeline = Depends(get_pipeline)
):
    """Get the latest results for a session."""
    return SessionResponse.from_session(_require_session(pipeline, session_id))


@router.get("/sessions/{session_id}/raw", response_model=RawJsonResponse)
async def get_raw_json(
    session_id: str,
    pipeline: ObjectIdentificationPipeline = Depends(get_pipeline)
):
    """Get the raw JSON returned by the model, plus a pretty-printed copy."""
    session = _require_session(pipeline, session_id)
    if session.raw_json is None:
        raise HTTPException(status_code=404, detail="No detection results yet")

    return RawJsonResponse(
        session_id=session_id,
        raw_json=session.raw_json,
        pretty=json.dumps(json.loads(session.raw_json), indent=2)
    )


@router.get("/sessions/{session_id}/objects/{index}/image")
async def get_object_image(
    session_id: str,
    index: int,
    pipeline: ObjectIdentificationPipeline = Depends(get_pipeline)
):
    """Get the annotated frame for a detected object."""
    session = _require_session(pipeline, session_id)

    if index < 0 or index >= len(session.objects):
        raise HTTPException(status_code=400, detail="Object index out of range")

    image = session.objects[index].image
    if image is None:
        raise HTTPException(status_code=404, detail="Image not ready")

    return Response(content=image, media_type="image/jpeg")


@router.get("/sessions/{session_id}/video")
async def get_video(
    session_id: str,
    pipeline: ObjectIdentificationPipeline = Depends(get_pipeline)
):
    """Stream the uploaded video (for seeking to an object's timestamp)."""
    session = _require_session(pipeline, session_id)
    if not session.video_path or not session.video_path.exists():
        raise HTTPException(status_code=404, detail="Video not found")

    return FileResponse(path=session.video_path, media_type=session.mime_type)
