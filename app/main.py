"""
VidSpot FastAPI Application
Main entry point for the video object identification API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .routers import objects

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    logger.info("Starting VidSpot API...")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"FFmpeg path: {settings.get_ffmpeg_path()}")
    logger.info(f"FFprobe path: {settings.get_ffprobe_path()}")

    if settings.use_mock_data:
        logger.warning("Mock detection data enabled; Gemini will not be called")
    elif not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set; /api/identify will fail until it is configured")

    # Ensure storage directory exists
    settings.upload_path

    yield

    if objects._pipeline is not None and objects._pipeline.pending_frames:
        logger.info(f"Waiting for {objects._pipeline.pending_frames} frame jobs...")
        await objects._pipeline.drain()
    logger.info("Shutting down VidSpot API...")


# Create FastAPI app
app = FastAPI(
    title="VidSpot API",
    description="Find, name and price objects in a video with Gemini",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware (allow frontend origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173", "*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(objects.router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "VidSpot API",
        "version": "1.0.0",
        "description": "Video Object Identifier",
        "docs": "/docs",
        "endpoints": {
            "upload": "POST /api/upload",
            "identify": "POST /api/identify",
            "session": "GET /api/sessions/{session_id}",
            "raw_json": "GET /api/sessions/{session_id}/raw",
            "object_image": "GET /api/sessions/{session_id}/objects/{index}/image",
            "video": "GET /api/sessions/{session_id}/video"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "gemini_configured": bool(settings.gemini_api_key),
        "mock_data": settings.use_mock_data,
        "ffmpeg_path": settings.get_ffmpeg_path()
    }


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
