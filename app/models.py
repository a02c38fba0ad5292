"""
VidSpot Pydantic Models
Request/Response schemas for API endpoints.
"""

from pydantic import BaseModel, Field
from typing import Optional, List

from core.session import DetectionSession, SessionStatus


class VideoUploadResponse(BaseModel):
    """Response after uploading a video."""
    session_id: str
    message: str
    video_info: dict = Field(default_factory=dict)


class IdentifyRequest(BaseModel):
    """Request to identify objects in an uploaded video."""
    session_id: str = Field(..., description="Session ID from video upload")
    query: str = Field(..., description="Comma-separated object names (e.g. 'chair, sofa')")


class DisplayObjectModel(BaseModel):
    """A detected object card. image_url stays null until its frame is ready."""
    index: int
    name: str
    price: str
    timestamp: float
    image_url: Optional[str] = None


class SessionResponse(BaseModel):
    """Current state of a session's latest detection run."""
    session_id: str
    generation: int
    status: SessionStatus
    objects: List[DisplayObjectModel] = Field(default_factory=list)
    raw_json: Optional[str] = None
    message: str = ""
    error: Optional[str] = None

    @classmethod
    def from_session(cls, session: DetectionSession) -> "SessionResponse":
        return cls(
            session_id=session.session_id,
            generation=session.generation,
            status=session.status,
            objects=[
                DisplayObjectModel(
                    index=i,
                    name=obj.name,
                    price=obj.price,
                    timestamp=obj.timestamp,
                    image_url=obj.image_url
                )
                for i, obj in enumerate(session.objects)
            ],
            raw_json=session.raw_json,
            message=session.message,
            error=session.error
        )


class RawJsonResponse(BaseModel):
    """Raw model output from the latest run, for debugging."""
    session_id: str
    raw_json: str
    pretty: str
