"""Tests for the identification pipeline."""

from __future__ import annotations

import asyncio
import json
import threading
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import SAMPLE_OBJECTS, make_jpeg
from core.errors import ConfigurationError, DetectionError, FrameExtractionError, InvalidInputError
from core.object_detector import MockObjectDetector, parse_detection_response
from core.pipeline import ObjectIdentificationPipeline
from core.session import SessionStatus


@pytest.fixture
def detector(sample_response_text):
    detector = MagicMock()
    detector.detect = AsyncMock(return_value=parse_detection_response(sample_response_text))
    return detector


@pytest.fixture
def frame_extractor():
    extractor = MagicMock()
    extractor.extract_frame = AsyncMock(return_value=make_jpeg(400, 400))
    return extractor


@pytest.fixture
def pipeline(detector, frame_extractor):
    return ObjectIdentificationPipeline(detector=detector, frame_extractor=frame_extractor)


@pytest.mark.asyncio
async def test_identify_returns_before_images(pipeline, video_file, sample_response_text):
    session = pipeline.create_session(video_file)

    result = await pipeline.identify(session.session_id, "  , chair ,,sofa ")

    assert result is session
    assert session.status == SessionStatus.COMPLETED
    assert session.raw_json == sample_response_text
    assert [o.name for o in session.objects] == [o["name"] for o in SAMPLE_OBJECTS]
    assert all(o.image is None for o in session.objects)
    pipeline._detector.detect.assert_awaited_once_with(video_file, ["chair", "sofa"], "video/mp4")

    await pipeline.drain()

    assert all(o.image_url.startswith("data:image/jpeg;base64,") for o in session.objects)
    assert pipeline.pending_frames == 0


@pytest.mark.asyncio
async def test_frames_not_deduplicated(pipeline, frame_extractor, video_file, detector):
    same_time = [dict(SAMPLE_OBJECTS[0], timestamp=4.0), dict(SAMPLE_OBJECTS[1], timestamp=4.0)]
    detector.detect.return_value = parse_detection_response(json.dumps(same_time))
    session = pipeline.create_session(video_file)

    await pipeline.identify(session.session_id, "chair")
    await pipeline.drain()

    assert frame_extractor.extract_frame.await_count == 2


@pytest.mark.asyncio
async def test_no_matches(pipeline, detector, frame_extractor, video_file):
    detector.detect.return_value = parse_detection_response("[]")
    session = pipeline.create_session(video_file)

    await pipeline.identify(session.session_id, "unicorn")

    assert session.status == SessionStatus.NO_MATCHES
    assert session.objects == []
    assert session.raw_json == "[]"
    assert session.error is None
    frame_extractor.extract_frame.assert_not_awaited()


@pytest.mark.asyncio
async def test_detection_failure_clears_results(pipeline, detector, video_file):
    session = pipeline.create_session(video_file)
    await pipeline.identify(session.session_id, "chair")
    await pipeline.drain()

    detector.detect.side_effect = DetectionError("Failed to identify objects in the video.")
    with pytest.raises(DetectionError):
        await pipeline.identify(session.session_id, "chair")

    assert session.status == SessionStatus.FAILED
    assert session.objects == []
    assert session.raw_json is None
    assert session.error == "Failed to identify objects in the video."


@pytest.mark.asyncio
async def test_empty_query_makes_no_remote_call(pipeline, detector, video_file):
    session = pipeline.create_session(video_file)

    with pytest.raises(InvalidInputError):
        await pipeline.identify(session.session_id, " , ,")

    detector.detect.assert_not_awaited()
    assert session.generation == 0


@pytest.mark.asyncio
async def test_missing_video_rejected(pipeline, detector, tmp_path):
    session = pipeline.create_session(tmp_path / "gone.mp4")

    with pytest.raises(InvalidInputError):
        await pipeline.identify(session.session_id, "chair")

    detector.detect.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_session(pipeline):
    with pytest.raises(InvalidInputError):
        await pipeline.identify("nope", "chair")


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_run(video_file, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    pipeline = ObjectIdentificationPipeline(gemini_api_key="")
    session = pipeline.create_session(video_file)

    with pytest.raises(ConfigurationError):
        await pipeline.identify(session.session_id, "chair")

    assert session.generation == 0
    assert session.status == SessionStatus.IDLE


@pytest.mark.asyncio
async def test_frame_failure_isolated(pipeline, frame_extractor, video_file):
    frame_extractor.extract_frame.side_effect = [
        FrameExtractionError("seek failed"),
        make_jpeg(400, 400),
    ]
    session = pipeline.create_session(video_file)

    await pipeline.identify(session.session_id, "chair, sofa")
    await pipeline.drain()

    assert session.status == SessionStatus.COMPLETED
    assert session.objects[0].image is None
    assert session.objects[1].image is not None


@pytest.mark.asyncio
async def test_late_frame_from_previous_run_dropped(pipeline, frame_extractor, detector, video_file):
    release_first_run = asyncio.Event()

    async def extract(video_path, timestamp):
        if not release_first_run.is_set() and frame_extractor.extract_frame.await_count <= 2:
            await release_first_run.wait()
            return make_jpeg(400, 400, color=(255, 0, 0))
        return make_jpeg(400, 400, color=(0, 0, 255))

    frame_extractor.extract_frame.side_effect = extract
    session = pipeline.create_session(video_file)

    # First run: frame jobs block
    await pipeline.identify(session.session_id, "chair, sofa")
    await asyncio.sleep(0)
    first_gen = session.generation

    # Second run with identical names at identical indices
    await pipeline.identify(session.session_id, "chair, sofa")
    second_objects = session.objects
    assert session.generation == first_gen + 1

    # Let the second run's jobs finish, then release the stale ones
    while any(o.image is None for o in second_objects):
        await asyncio.sleep(0)
    second_images = [o.image for o in second_objects]

    release_first_run.set()
    await pipeline.drain()

    assert [o.image for o in session.objects] == second_images
    assert session.objects is second_objects


@pytest.mark.asyncio
async def test_mock_mode_needs_no_key(video_file, frame_extractor, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    pipeline = ObjectIdentificationPipeline(use_mock_data=True, frame_extractor=frame_extractor)
    session = pipeline.create_session(video_file)

    with patch("core.pipeline.GeminiObjectDetector") as gemini:
        await pipeline.identify(session.session_id, "lamp")
        await pipeline.drain()

    gemini.assert_not_called()
    assert isinstance(pipeline.detector, MockObjectDetector)
    assert len(session.objects) == 4
    assert all(o.image is not None for o in session.objects)


@pytest.mark.asyncio
async def test_annotation_runs_off_event_loop(pipeline, video_file):
    loop_thread = threading.get_ident()
    annotate_threads = []

    def annotate(frame, box, jpeg_quality):
        annotate_threads.append(threading.get_ident())
        return frame

    session = pipeline.create_session(video_file)
    with patch("core.pipeline.annotate", side_effect=annotate):
        await pipeline.identify(session.session_id, "chair, sofa")
        await pipeline.drain()

    assert len(annotate_threads) == 2
    assert loop_thread not in annotate_threads
    assert all(o.image is not None for o in session.objects)
