"""
Pytest configuration and shared fixtures.
"""

import asyncio
import threading
import time

import numpy as np
import pytest

from vision_bot.capture import (
    CameraSource, CameraStream, TrackSettings, TrackState, VideoTrack,
)
from vision_bot.config import Config
from vision_bot.controller import DetectionController
from vision_bot.errors import CameraUnavailable
from vision_bot.models import Detection
from vision_bot.overlay import OverlayCanvas


class FakeTrack(VideoTrack):
    """Track that always has a blank 640x480 frame."""

    def __init__(self, width: int = 640, height: int = 480):
        super().__init__(TrackSettings(width=width, height=height, fps=30.0))
        self.frame = np.zeros((height, width, 3), dtype=np.uint8)
        self.stop_calls = 0

    def read(self):
        if self.state is TrackState.ENDED:
            return None
        return self.frame

    def stop(self):
        self.stop_calls += 1
        self.state = TrackState.ENDED


class FakeCamera(CameraSource):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests = []
        self.streams = []

    async def acquire(self, width, height):
        self.requests.append((width, height))
        if self.fail:
            raise CameraUnavailable("permission denied")
        stream = CameraStream([FakeTrack(width, height)])
        self.streams.append(stream)
        return stream


class SlowCapture:
    """cv2.VideoCapture stand-in whose read() blocks like a stalled device."""

    def __init__(self, delay: float = 0.3):
        self.delay = delay
        self.reading = threading.Event()
        self.released = False

    def read(self):
        self.reading.set()
        time.sleep(self.delay)
        return True, np.zeros((480, 640, 3), dtype=np.uint8)

    def release(self):
        self.released = True


class StaticCamera(CameraSource):
    """Camera that always hands out the same prepared stream."""

    def __init__(self, stream: CameraStream):
        self.stream = stream
        self.requests = []

    async def acquire(self, width, height):
        self.requests.append((width, height))
        return self.stream


class FakeDetector:
    """
    Detector returning canned results. With a gate, detect() blocks until the
    gate is set, which lets tests hold an inference in flight.
    """

    backend = "fake"

    def __init__(self, results=None, gate: threading.Event = None, error: Exception = None):
        self.results = list(results or [[]])
        self.gate = gate
        self.error = error
        self.entered = threading.Event()
        self.calls = 0
        self.closed = False

    def detect(self, frame):
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5.0)
        if self.error is not None:
            raise self.error
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    def close(self):
        self.closed = True


class RecordingCanvas(OverlayCanvas):
    """Overlay canvas that also records the shapes and text drawn on it."""

    def __init__(self):
        super().__init__()
        self.rects = []
        self.texts = []

    def clear(self):
        super().clear()
        self.rects = []
        self.texts = []

    def stroke_rect(self, x, y, width, height, *args, **kwargs):
        self.rects.append((x, y, width, height))
        super().stroke_rect(x, y, width, height, *args, **kwargs)

    def fill_text(self, text, x, y, *args, **kwargs):
        self.texts.append(text)
        super().fill_text(text, x, y, *args, **kwargs)


PERSON = Detection("person", 0.92, (10.0, 20.0, 100.0, 200.0))


@pytest.fixture
def person():
    return PERSON


@pytest.fixture
def make_config():
    """Config factory; the default interval keeps the schedule out of the way."""
    def factory(interval_ms: int = 10000) -> Config:
        return Config(detection={"interval_ms": interval_ms})
    return factory


@pytest.fixture
def make_controller(make_config):
    def factory(detector=None, camera=None, interval_ms: int = 10000, loader=None):
        detector = detector if detector is not None else FakeDetector()
        camera = camera if camera is not None else FakeCamera()
        if loader is None:
            def loader(config):
                return detector
        controller = DetectionController(
            make_config(interval_ms), camera, canvas=RecordingCanvas(), loader=loader
        )
        return controller, camera, detector
    return factory


async def wait_for(event: threading.Event, timeout: float = 2.0):
    """Wait for a thread event without blocking the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not event.is_set():
        if loop.time() > deadline:
            raise AssertionError("Timed out waiting for event")
        await asyncio.sleep(0.005)


async def start_detection(controller: DetectionController):
    """Initialize, start and wait until the video surface has a frame."""
    await controller.initialize()
    await controller.start()
    loop = asyncio.get_running_loop()
    assert await loop.run_in_executor(None, controller.video.wait_for_frame, 2.0)
