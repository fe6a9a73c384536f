"""GuidelineRenderer 单元测试"""

import cv2
import numpy as np
import pytest

from display.renderer import (
    GuidelineRenderer,
    _COLOR_ALIGNED,
    _COLOR_UNALIGNED,
    format_debug,
)
from models.data_models import (
    AlignmentReason,
    AlignmentVerdict,
    CaptureSession,
    SessionPhase,
)


# --------------- helpers ---------------

def _make_frame(w=1280, h=720):
    """创建黑色测试帧。"""
    return np.zeros((h, w, 3), dtype=np.uint8)


def _has_color(image, color):
    return bool(np.any(np.all(image == np.array(color, dtype=np.uint8), axis=2)))


def _verdict(aligned=True, distance=12.0, scale=0.8, reason=AlignmentReason.ALIGNED):
    return AlignmentVerdict(aligned=aligned, reason=reason, distance=distance, scale=scale, face_count=1)


@pytest.fixture
def renderer():
    return GuidelineRenderer()


# --------------- format_debug tests ---------------

class TestFormatDebug:
    def test_distance_and_scale(self):
        assert format_debug(_verdict(distance=150.4, scale=0.834), 72) == "D: 150/72 | S: 0.83"

    def test_none_verdict(self):
        assert format_debug(None, 72) == ""

    def test_missing_measurements(self):
        verdict = AlignmentVerdict(aligned=False, reason=AlignmentReason.NO_FACE)
        assert format_debug(verdict, 72) == ""


# --------------- determine_prompt tests ---------------

class TestDeterminePrompt:
    @pytest.mark.parametrize("phase, expected", [
        (SessionPhase.READY, "unaligned"),
        (SessionPhase.UNALIGNED, "unaligned"),
        (SessionPhase.ALIGNED, "aligned"),
        (SessionPhase.CAPTURING, "capturing"),
        (SessionPhase.CAPTURED, "captured"),
        (SessionPhase.ACCEPTED, "accepted"),
    ])
    def test_phase_prompts(self, phase, expected):
        assert GuidelineRenderer.determine_prompt(CaptureSession(phase=phase)) == expected

    def test_loading_model(self):
        session = CaptureSession()
        assert GuidelineRenderer.determine_prompt(session, detector_loaded=False) == "loading_model"

    def test_preparing_camera(self):
        session = CaptureSession()
        prompt = GuidelineRenderer.determine_prompt(session, detector_loaded=True, source_ready=False)
        assert prompt == "preparing_camera"


# --------------- render tests ---------------

class TestRender:
    @pytest.mark.parametrize("w, h", [(1280, 720), (480, 640), (500, 500)])
    def test_output_is_visible_square(self, renderer, w, h):
        out = renderer.render(_make_frame(w, h), CaptureSession(phase=SessionPhase.READY))
        assert out.shape == (min(w, h), min(w, h), 3)

    def test_input_frame_not_modified(self, renderer):
        frame = _make_frame()
        renderer.render(frame, CaptureSession(phase=SessionPhase.ALIGNED, last_verdict=_verdict()))
        assert not frame.any()

    def test_aligned_guide_color(self, renderer):
        session = CaptureSession(phase=SessionPhase.ALIGNED, last_verdict=_verdict())
        out = renderer.render(_make_frame(), session)
        assert _has_color(out, _COLOR_ALIGNED)
        assert not _has_color(out, _COLOR_UNALIGNED)

    def test_unaligned_guide_color(self, renderer):
        verdict = _verdict(aligned=False, reason=AlignmentReason.UNALIGNED)
        out = renderer.render(_make_frame(), CaptureSession(phase=SessionPhase.UNALIGNED, last_verdict=verdict))
        assert _has_color(out, _COLOR_UNALIGNED)
        assert not _has_color(out, _COLOR_ALIGNED)

    def test_no_guide_while_initializing(self, renderer):
        out = renderer.render(_make_frame(), CaptureSession(), detector_loaded=False)
        assert not _has_color(out, _COLOR_ALIGNED)
        assert not _has_color(out, _COLOR_UNALIGNED)

    def test_mirror_flips_visible_square(self, renderer):
        frame = _make_frame(400, 200)
        # 可见区域为 x 在 [100, 300) 的正方形，左侧一列标记为蓝色
        frame[:, 100:105] = (255, 0, 0)
        session = CaptureSession(phase=SessionPhase.CAPTURED)
        mirrored = renderer.render(frame, session, mirror=True)
        plain = renderer.render(frame, session, mirror=False)
        assert tuple(plain[199, 0]) == (255, 0, 0)
        assert tuple(mirrored[199, 199]) == (255, 0, 0)


# --------------- render_captured tests ---------------

class TestRenderCaptured:
    def test_decodes_image(self, renderer):
        ok, buffer = cv2.imencode(".jpg", np.zeros((180, 180, 3), dtype=np.uint8))
        assert ok
        session = CaptureSession(phase=SessionPhase.CAPTURED)
        out = renderer.render_captured(buffer.tobytes(), session)
        assert out.shape == (180, 180, 3)

    def test_garbage_returns_none(self, renderer):
        session = CaptureSession(phase=SessionPhase.CAPTURED)
        assert renderer.render_captured(b"not an image", session) is None
