"""
Tests for detector backends and backend fallback.
"""

import numpy as np
import pytest

from vision_bot.config import DetectionConfig
from vision_bot.detector import HailoDetector, UltralyticsDetector, load_detector
from vision_bot.errors import ModelUnavailable
from vision_bot.utils import COCO_CLASSES

from conftest import FakeDetector


def failing(config):
    raise ModelUnavailable("device not found")


class TestLoadDetector:
    def test_preferred_backend_wins(self):
        preferred = FakeDetector()
        fallback_calls = []

        def fallback(config):
            fallback_calls.append(config)
            return FakeDetector()

        detector = load_detector(
            DetectionConfig(), backends={"hailo": lambda c: preferred, "cpu": fallback}
        )

        assert detector is preferred
        assert fallback_calls == []

    def test_falls_back_when_preferred_unavailable(self):
        fallback = FakeDetector()

        detector = load_detector(
            DetectionConfig(), backends={"hailo": failing, "cpu": lambda c: fallback}
        )

        assert detector is fallback

    def test_any_backend_error_triggers_fallback(self):
        def broken(config):
            raise RuntimeError("driver crashed")

        fallback = FakeDetector()
        detector = load_detector(
            DetectionConfig(), backends={"hailo": broken, "cpu": lambda c: fallback}
        )

        assert detector is fallback

    def test_all_backends_fail(self):
        with pytest.raises(ModelUnavailable, match="hailo.*cpu"):
            load_detector(DetectionConfig(), backends={"hailo": failing, "cpu": failing})

    def test_configured_order_is_respected(self):
        order = []

        def factory(name):
            def build(config):
                order.append(name)
                raise ModelUnavailable(name)
            return build

        with pytest.raises(ModelUnavailable):
            load_detector(
                DetectionConfig(backends=["cpu", "hailo"]),
                backends={"hailo": factory("hailo"), "cpu": factory("cpu")},
            )

        assert order == ["cpu", "hailo"]

    def test_missing_factory_is_skipped(self):
        fallback = FakeDetector()

        detector = load_detector(DetectionConfig(), backends={"cpu": lambda c: fallback})

        assert detector is fallback


class FakeEngine:
    def __init__(self, outputs):
        self.outputs = outputs
        self.inputs = []
        self.cleaned_up = False

    def preprocess(self, image):
        return image

    def infer(self, image):
        self.inputs.append(image)
        return self.outputs

    def cleanup(self):
        self.cleaned_up = True


def hailo_outputs(rows_by_class):
    outputs = [np.zeros((0, 5), dtype=np.float32) for _ in COCO_CLASSES]
    for class_id, rows in rows_by_class.items():
        outputs[class_id] = np.array(rows, dtype=np.float32)
    return outputs


class TestHailoDetector:
    # 640x480 frame letterboxed into 640x640: scale 1.0, 80 px top padding
    FRAME = np.zeros((480, 640, 3), dtype=np.uint8)

    def test_boxes_mapped_to_frame(self):
        # Frame box x=10 y=20 w=100 h=200 is (10, 100)-(110, 300) in the model input
        outputs = hailo_outputs({0: [[100 / 640, 10 / 640, 300 / 640, 110 / 640, 0.92]]})
        engine = FakeEngine(outputs)
        detector = HailoDetector(DetectionConfig(), engine=engine)

        detections = detector.detect(self.FRAME)

        assert len(detections) == 1
        assert detections[0].class_name == "person"
        assert detections[0].score == pytest.approx(0.92)
        assert detections[0].bbox == pytest.approx((10.0, 20.0, 100.0, 200.0))
        assert engine.inputs[0].shape == (640, 640, 3)

    def test_filters_low_confidence_and_invalid_rows(self):
        outputs = hailo_outputs({
            2: [[0.2, 0.2, 0.4, 0.4, 0.3]],   # below threshold
            16: [[0.2, 0.2, 1.4, 0.4, 0.9]],  # out of range
            17: [[0.4, 0.2, 0.4, 0.4, 0.9]],  # zero height
            15: [[0.3, 0.2, 0.5, 0.4, 0.7]],
        })
        detector = HailoDetector(DetectionConfig(), engine=FakeEngine(outputs))

        detections = detector.detect(self.FRAME)

        assert [d.class_name for d in detections] == ["cat"]

    def test_missing_output_raises(self):
        detector = HailoDetector(DetectionConfig(), engine=FakeEngine(None))

        with pytest.raises(RuntimeError):
            detector.detect(self.FRAME)

    def test_close_releases_engine(self):
        engine = FakeEngine([])
        HailoDetector(DetectionConfig(), engine=engine).close()
        assert engine.cleaned_up


class FakeBoxes:
    def __init__(self, xyxy, conf, cls):
        self.xyxy = np.array(xyxy, dtype=np.float64)
        self.conf = np.array(conf, dtype=np.float64)
        self.cls = np.array(cls, dtype=np.float64)


class FakeResult:
    def __init__(self, boxes, names):
        self.boxes = boxes
        self.names = names


class FakeYOLO:
    def __init__(self, results):
        self.results = results
        self.kwargs = None

    def predict(self, **kwargs):
        self.kwargs = kwargs
        return self.results


class TestUltralyticsDetector:
    def test_converts_xyxy_to_xywh(self):
        boxes = FakeBoxes([[10, 20, 110, 220], [0, 0, 5, 5]], [0.92, 0.6], [0, 99])
        model = FakeYOLO([FakeResult(boxes, {0: "person"})])
        detector = UltralyticsDetector(DetectionConfig(confidence_threshold=0.4), model=model)

        detections = detector.detect(np.zeros((480, 640, 3), dtype=np.uint8))

        assert [d.class_name for d in detections] == ["person", "class_99"]
        assert detections[0].bbox == pytest.approx((10.0, 20.0, 100.0, 200.0))
        assert detections[0].score == pytest.approx(0.92)
        assert model.kwargs["conf"] == 0.4
        assert model.kwargs["device"] == "cpu"

    def test_no_results(self):
        detector = UltralyticsDetector(DetectionConfig(), model=FakeYOLO([]))
        assert detector.detect(np.zeros((10, 10, 3), dtype=np.uint8)) == []

    def test_no_boxes(self):
        detector = UltralyticsDetector(DetectionConfig(), model=FakeYOLO([FakeResult(None, {})]))
        assert detector.detect(np.zeros((10, 10, 3), dtype=np.uint8)) == []
