"""
YOLOv8 detectors and backend selection.

Every backend returns Detection objects with (x, y, width, height) boxes in
the pixel space of the frame that was passed in.
"""

import logging
import numpy as np
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .config import DetectionConfig
from .errors import ModelUnavailable
from .models import Detection
from .utils import Letterbox, class_name, letterbox_image, unletterbox_xyxy

logger = logging.getLogger(__name__)


class Detector(Protocol):
    backend: str

    def detect(self, frame: np.ndarray) -> List[Detection]:
        ...

    def close(self) -> None:
        ...


class HailoDetector:
    """YOLOv8 object detector using Hailo-8 acceleration."""

    backend = "hailo"

    def __init__(self, config: DetectionConfig, engine=None):
        self.config = config

        if engine is None:
            from .inference import HailoInference
            try:
                engine = HailoInference(config.model_path)
            except ImportError as e:
                raise ModelUnavailable(f"HailoRT is not installed: {e}") from e
            if not engine.initialize():
                raise ModelUnavailable(f"Hailo device could not load {config.model_path}")

        self.engine = engine

    def detect(self, frame: np.ndarray) -> List[Detection]:
        letterbox = letterbox_image(frame, self.config.input_size)
        outputs = self.engine.infer(self.engine.preprocess(letterbox.image))
        if outputs is None:
            raise RuntimeError("Hailo inference returned no output")

        h, w = frame.shape[:2]
        return self._postprocess(outputs, letterbox, (w, h))

    def _postprocess(self, outputs: Sequence, letterbox: Letterbox,
                     frame_size) -> List[Detection]:
        """Convert class-separated NMS rows into frame-space detections."""
        size = self.config.input_size
        detections = []

        for class_id, rows in enumerate(outputs):
            if rows is None:
                continue
            rows = np.asarray(rows, dtype=np.float32)
            if rows.size == 0:
                continue
            rows = rows.reshape(-1, rows.shape[-1])
            if rows.shape[1] != 5:
                continue

            for y1, x1, y2, x2, score in rows:
                if score < self.config.confidence_threshold:
                    continue
                if not all(0.0 <= v <= 1.0 for v in (x1, y1, x2, y2)):
                    continue

                x_min, x_max = sorted((float(x1), float(x2)))
                y_min, y_max = sorted((float(y1), float(y2)))
                if x_max <= x_min or y_max <= y_min:
                    continue

                bbox = unletterbox_xyxy(
                    (x_min * size, y_min * size, x_max * size, y_max * size),
                    letterbox, frame_size,
                )
                if bbox[2] <= 0 or bbox[3] <= 0:
                    continue
                detections.append(Detection(class_name(class_id), float(score), bbox))

        return detections

    def close(self):
        self.engine.cleanup()


class UltralyticsDetector:
    """YOLOv8 on CPU through Ultralytics."""

    backend = "cpu"

    def __init__(self, config: DetectionConfig, model=None):
        self.config = config

        if model is None:
            try:
                from ultralytics import YOLO
            except ImportError as e:
                raise ModelUnavailable(
                    "Ultralytics is not installed. Install with `pip install vision-bot[cpu]`"
                ) from e
            try:
                model = YOLO(config.cpu_model)
            except Exception as e:
                raise ModelUnavailable(f"Failed to load {config.cpu_model}: {e}") from e

        self.model = model

    def detect(self, frame: np.ndarray) -> List[Detection]:
        results = self.model.predict(
            source=frame,
            conf=self.config.confidence_threshold,
            iou=self.config.nms_threshold,
            device="cpu",
            verbose=False,
        )
        if not results:
            return []

        result = results[0]
        names = getattr(result, "names", None) or {}
        boxes = getattr(result, "boxes", None)
        if boxes is None:
            return []

        xyxy = _to_numpy(boxes.xyxy)
        conf = _to_numpy(boxes.conf)
        cls = _to_numpy(boxes.cls)

        detections = []
        for (x1, y1, x2, y2), score, k in zip(xyxy, conf, cls):
            class_id = int(k)
            label = names.get(class_id) or class_name(class_id)
            bbox = (float(x1), float(y1), float(x2 - x1), float(y2 - y1))
            detections.append(Detection(label, float(score), bbox))

        return detections

    def close(self):
        self.model = None


def _to_numpy(values) -> np.ndarray:
    if hasattr(values, "cpu"):
        return values.cpu().numpy()
    return np.asarray(values)


BACKENDS: Dict[str, Callable[[DetectionConfig], Detector]] = {
    "hailo": HailoDetector,
    "cpu": UltralyticsDetector,
}


def load_detector(config: DetectionConfig,
                  backends: Optional[Dict[str, Callable[[DetectionConfig], Detector]]] = None
                  ) -> Detector:
    """
    Load the first backend from config.backends that initializes.

    Args:
        config: Detection configuration
        backends: Backend factories by name, defaults to BACKENDS

    Returns:
        Ready detector

    Raises:
        ModelUnavailable: If no configured backend could be initialized
    """
    if backends is None:
        backends = BACKENDS

    failures = []
    for name in config.backends:
        factory = backends.get(name)
        if factory is None:
            logger.warning(f"Unknown inference backend '{name}', skipping")
            failures.append(f"{name}: unknown backend")
            continue

        try:
            detector = factory(config)
        except Exception as e:
            logger.warning(f"{name} backend not available, falling back: {e}")
            failures.append(f"{name}: {e}")
            continue

        logger.info(f"Using {name} backend")
        return detector

    raise ModelUnavailable("No inference backend available (" + "; ".join(failures) + ")")
