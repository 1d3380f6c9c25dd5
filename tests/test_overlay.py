"""
Tests for overlay rendering.
"""

import numpy as np

from vision_bot.models import Detection, score_percent
from vision_bot.overlay import BOX_COLOR, OverlayCanvas, render_overlay

from conftest import RecordingCanvas


DETECTIONS = [
    Detection("person", 0.92, (10.0, 20.0, 100.0, 200.0)),
    Detection("dog", 0.455, (300.0, 250.0, 80.0, 60.0)),
    Detection("cup", 0.5, (500.0, 40.0, 30.0, 30.0)),
]


class TestRenderOverlay:
    def test_one_rectangle_per_detection(self):
        canvas = RecordingCanvas()

        render_overlay(canvas, DETECTIONS, (640, 480))

        assert canvas.rects == [d.bbox for d in DETECTIONS]
        assert canvas.texts == ["person (92%)", "dog (46%)", "cup (50%)"]

    def test_empty_set_clears(self):
        canvas = RecordingCanvas()
        render_overlay(canvas, DETECTIONS, (640, 480))

        render_overlay(canvas, [], (640, 480))

        assert canvas.rects == []
        assert not canvas.snapshot().any()

    def test_sized_to_video_every_call(self):
        canvas = OverlayCanvas()

        render_overlay(canvas, DETECTIONS[:1], (640, 480))
        assert canvas.size == (640, 480)

        render_overlay(canvas, DETECTIONS[:1], (1280, 720))
        assert canvas.size == (1280, 720)
        assert canvas.snapshot().shape == (720, 1280, 4)

    def test_box_is_drawn_at_bbox(self):
        canvas = OverlayCanvas()

        render_overlay(canvas, DETECTIONS[:1], (640, 480))

        image = canvas.snapshot()
        # Left edge of the box, below the label tag
        assert tuple(image[150, 10]) == (*BOX_COLOR, 255)
        # Inside the box stays transparent
        assert image[150, 60, 3] == 0

    def test_label_tag_sits_above_box(self):
        canvas = OverlayCanvas()

        render_overlay(canvas, DETECTIONS[:1], (640, 480))

        image = canvas.snapshot()
        assert image[0:20, 12:20, 3].all()


class TestComposite:
    def test_transparent_overlay_leaves_frame(self):
        canvas = OverlayCanvas(640, 480)
        frame = np.full((480, 640, 3), 90, dtype=np.uint8)

        out = canvas.composite(frame)

        assert np.array_equal(out, frame)
        assert out is not frame

    def test_box_pixels_replace_frame(self):
        canvas = OverlayCanvas()
        render_overlay(canvas, DETECTIONS[:1], (640, 480))
        frame = np.zeros((480, 640, 3), dtype=np.uint8)

        out = canvas.composite(frame)

        assert tuple(out[150, 10]) == BOX_COLOR
        assert tuple(out[400, 400]) == (0, 0, 0)

    def test_overlay_scaled_to_frame(self):
        canvas = OverlayCanvas()
        render_overlay(canvas, DETECTIONS[:1], (640, 480))
        frame = np.zeros((240, 320, 3), dtype=np.uint8)

        out = canvas.composite(frame)

        assert out.shape == (240, 320, 3)


def test_score_percent_rounds_half_up():
    assert score_percent(0.92) == 92
    assert score_percent(0.455) == 46
    assert score_percent(0.005) == 1
    assert score_percent(1.0) == 100
    assert score_percent(0.0) == 0
