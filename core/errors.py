"""
VidSpot Errors
Exception types shared by the detection client, frame pipeline and API.
"""


class ConfigurationError(ValueError):
    """Required configuration (e.g. the Gemini API key) is missing."""


class InvalidInputError(ValueError):
    """User input rejected locally, before any remote call."""


class DetectionError(RuntimeError):
    """Terminal failure of the remote detection call."""


class FrameExtractionError(RuntimeError):
    """Probe, seek or decode failure for a single frame."""
