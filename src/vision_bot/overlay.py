"""
Overlay surface for bounding boxes and labels.

The overlay is a transparent BGRA image sized to the live video. It is drawn
by the detection loop and composited over camera frames by the streamer.
"""

import cv2
import threading
import numpy as np
from typing import Sequence, Tuple

from .models import Detection
from .utils import hex_to_bgr


BOX_COLOR = hex_to_bgr("#3b82f6")
TEXT_COLOR = (255, 255, 255)
LINE_WIDTH = 3
LABEL_HEIGHT = 25
LABEL_PADDING = 5
FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 0.5
FONT_THICKNESS = 1


class OverlayCanvas:
    """
    Thread-safe BGRA drawing surface.

    Hold `lock` around a sequence of drawing calls so that readers never see
    a half-drawn overlay.
    """

    def __init__(self, width: int = 0, height: int = 0):
        self.lock = threading.RLock()
        self._image = np.zeros((height, width, 4), dtype=np.uint8)

    @property
    def size(self) -> Tuple[int, int]:
        return self._image.shape[1], self._image.shape[0]

    def resize(self, width: int, height: int):
        """Match the surface to the video. Resizing discards the contents."""
        with self.lock:
            if (width, height) != self.size:
                self._image = np.zeros((height, width, 4), dtype=np.uint8)

    def clear(self):
        with self.lock:
            self._image[:] = 0

    def stroke_rect(self, x: float, y: float, width: float, height: float,
                    color: Tuple[int, int, int] = BOX_COLOR, line_width: int = LINE_WIDTH):
        with self.lock:
            cv2.rectangle(
                self._image,
                (int(round(x)), int(round(y))),
                (int(round(x + width)), int(round(y + height))),
                (*color, 255),
                line_width,
            )

    def fill_rect(self, x: float, y: float, width: float, height: float,
                  color: Tuple[int, int, int] = BOX_COLOR):
        with self.lock:
            cv2.rectangle(
                self._image,
                (int(round(x)), int(round(y))),
                (int(round(x + width)), int(round(y + height))),
                (*color, 255),
                -1,
            )

    def fill_text(self, text: str, x: float, y: float,
                  color: Tuple[int, int, int] = TEXT_COLOR):
        """Draw text with its baseline starting at (x, y)."""
        with self.lock:
            cv2.putText(
                self._image, text, (int(round(x)), int(round(y))),
                FONT, FONT_SCALE, (*color, 255), FONT_THICKNESS, cv2.LINE_AA,
            )

    def measure_text(self, text: str) -> int:
        (width, _), _ = cv2.getTextSize(text, FONT, FONT_SCALE, FONT_THICKNESS)
        return width

    def snapshot(self) -> np.ndarray:
        with self.lock:
            return self._image.copy()

    def composite(self, frame: np.ndarray) -> np.ndarray:
        """Blend the overlay over a BGR frame and return the result."""
        overlay = self.snapshot()
        if overlay.size == 0 or not overlay[..., 3].any():
            return frame.copy()

        h, w = frame.shape[:2]
        if overlay.shape[:2] != (h, w):
            overlay = cv2.resize(overlay, (w, h), interpolation=cv2.INTER_NEAREST)

        alpha = overlay[..., 3:4].astype(np.float32) / 255.0
        blended = frame.astype(np.float32) * (1.0 - alpha) + overlay[..., :3].astype(np.float32) * alpha
        return blended.astype(np.uint8)


def render_overlay(canvas: OverlayCanvas, detections: Sequence[Detection],
                   frame_size: Tuple[int, int]):
    """
    Redraw the overlay for a detection set.

    The canvas is resized to the native video size on every call since the
    camera may renegotiate its resolution mid-session.

    Args:
        canvas: Overlay surface
        detections: Current detection set
        frame_size: Native (width, height) of the video
    """
    with canvas.lock:
        canvas.resize(*frame_size)
        canvas.clear()

        for detection in detections:
            x, y, width, height = detection.bbox
            canvas.stroke_rect(x, y, width, height)

            label = detection.label
            text_width = canvas.measure_text(label)
            canvas.fill_rect(x, y - LABEL_HEIGHT, text_width + 2 * LABEL_PADDING, LABEL_HEIGHT)
            canvas.fill_text(label, x + LABEL_PADDING, y - 7)
