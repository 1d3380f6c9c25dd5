"""
Detection loop controller.

Owns the camera stream and the recurring detection tick for one session and
guarantees both are released when detection stops or the controller's
lifetime scope ends:

    async with DetectionController(config, camera) as controller:
        await controller.initialize()
        await controller.start()
        ...

Ticks that find an inference still in flight are skipped, so results are
applied in the order their ticks were scheduled. A result that resolves after
stop() belongs to a finished session and is discarded.
"""

import time
import asyncio
import logging
from contextlib import AsyncExitStack, suppress
from dataclasses import replace
from typing import Callable, Optional, Set, Tuple

from .capture import CameraSource, CameraStream, ReadyState, VideoSurface
from .config import Config, DetectionConfig
from .detector import Detector, load_detector
from .errors import CameraUnavailable, InvalidState, ModelUnavailable
from .models import Detection, SessionSnapshot, SessionState, SessionStats
from .overlay import OverlayCanvas, render_overlay


logger = logging.getLogger(__name__)

MODEL_ERROR_MESSAGE = "Failed to load AI model. Please refresh the page."
CAMERA_ERROR_MESSAGE = "Failed to access camera. Please grant camera permissions."
CAMERA_LOST_MESSAGE = "Camera stream ended. Stop and start detection to reconnect."


class DetectionController:
    """Camera lifecycle, recurring inference tick and overlay for one view."""

    def __init__(self, config: Config, camera: CameraSource,
                 video: Optional[VideoSurface] = None,
                 canvas: Optional[OverlayCanvas] = None,
                 loader: Optional[Callable[[DetectionConfig], Detector]] = None):
        self.config = config
        self.camera = camera
        self.video = video if video is not None else VideoSurface()
        self.canvas = canvas if canvas is not None else OverlayCanvas()
        self.detector: Optional[Detector] = None

        self._loader = loader if loader is not None else load_detector
        self._state = SessionState.UNLOADED
        self._detections: Tuple[Detection, ...] = ()
        self._message: Optional[str] = None
        self._stats = SessionStats()

        self._transition = asyncio.Lock()
        self._session: Optional[AsyncExitStack] = None
        self._schedule: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()
        self._generation = 0
        self._in_flight = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def detections(self) -> Tuple[Detection, ...]:
        return self._detections

    @property
    def scheduled(self) -> bool:
        """Whether the recurring tick is currently scheduled."""
        return self._schedule is not None and not self._schedule.done()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            backend=self.detector.backend if self.detector is not None else None,
            detections=self._detections,
            message=self._message,
            stats=self._stats,
        )

    async def __aenter__(self) -> "DetectionController":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def initialize(self):
        """
        Load the detector, trying the configured backends in order.

        Raises:
            InvalidState: If called more than once
            ModelUnavailable: If no backend could be initialized
        """
        if self._state is not SessionState.UNLOADED:
            raise InvalidState(f"Model already {self._state.value}")

        self._state = SessionState.LOADING
        logger.info(f"Loading detection model (backends: {', '.join(self.config.detection.backends)})")

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._loader, self.config.detection)
        try:
            # Shielded so a cancelled load still hands its detector to _discard_detector
            detector = await asyncio.shield(future)
        except asyncio.CancelledError:
            self._state = SessionState.FAILED
            self._message = MODEL_ERROR_MESSAGE
            logger.warning("Model loading cancelled")
            future.add_done_callback(_discard_detector)
            raise
        except Exception as e:
            self._state = SessionState.FAILED
            self._message = MODEL_ERROR_MESSAGE
            logger.error(f"Model loading error: {e}")
            if isinstance(e, ModelUnavailable):
                raise
            raise ModelUnavailable(str(e)) from e

        self.detector = detector
        self._state = SessionState.READY
        logger.info(f"Model ready on {detector.backend} backend")

    async def start(self):
        """
        Acquire the camera and begin the recurring detection tick.

        Raises:
            InvalidState: If the model is not ready or detection is active
            CameraUnavailable: If the camera cannot be opened; state stays READY
        """
        async with self._transition:
            if self._state is not SessionState.READY:
                raise InvalidState(f"Cannot start detection while {self._state.value}")

            video_config = self.config.video
            try:
                stream = await self.camera.acquire(video_config.width, video_config.height)
            except CameraUnavailable as e:
                self._message = CAMERA_ERROR_MESSAGE
                logger.error(f"Camera error: {e}")
                raise

            session = AsyncExitStack()
            session.push_async_callback(self._release_stream, stream)
            try:
                self.video.attach(stream)
                self.video.play()
            except Exception:
                await session.aclose()
                raise

            self._generation += 1
            self._state = SessionState.ACTIVE
            self._message = None
            self._stats = SessionStats()

            self._schedule = asyncio.create_task(self._run_schedule())
            session.push_async_callback(self._cancel_schedule)
            self._session = session

            logger.info(
                f"Detection started ({video_config.width}x{video_config.height}, "
                f"every {self.config.detection.interval_ms} ms)"
            )

    async def stop(self):
        """Stop detection and release the camera. Safe to call when inactive."""
        async with self._transition:
            session, self._session = self._session, None
            self._generation += 1

            if session is not None:
                logger.info("Stopping detection")
                await session.aclose()

            self._detections = ()
            self.canvas.clear()
            if self._state is SessionState.ACTIVE:
                self._state = SessionState.READY

    async def close(self):
        """Stop detection, wait for in-flight ticks and release the detector."""
        await self.stop()
        if self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)
        if self.detector is not None:
            self.detector.close()

    async def tick(self) -> bool:
        """
        Run one detection step. Invoked by the schedule.

        Returns:
            True if a new detection set was applied
        """
        if self._state is not SessionState.ACTIVE or self.detector is None:
            return False
        if self.video.ready_state < ReadyState.HAVE_ENOUGH_DATA:
            if self.video.ended and self._message is None:
                logger.warning("Camera stream ended while detection was active")
                self._message = CAMERA_LOST_MESSAGE
            return False
        if self._in_flight:
            self._stats = replace(self._stats, skipped_ticks=self._stats.skipped_ticks + 1)
            logger.debug("Previous detection still running, skipping tick")
            return False

        frame = self.video.current_frame()
        if frame is None:
            return False

        generation = self._generation
        self._in_flight = True
        self._stats = replace(self._stats, ticks=self._stats.ticks + 1)
        loop = asyncio.get_running_loop()
        inference_start = time.monotonic()
        try:
            detections = await loop.run_in_executor(None, self.detector.detect, frame)
        except Exception as e:
            logger.warning(f"Detection failed, skipping this cycle: {e}")
            return False
        finally:
            self._in_flight = False
        inference_time = time.monotonic() - inference_start

        if generation != self._generation or self._state is not SessionState.ACTIVE:
            logger.debug("Discarding detections from a stopped session")
            return False

        self._detections = tuple(detections)
        render_overlay(self.canvas, self._detections, self.video.video_size)
        self._stats = replace(
            self._stats,
            frames_processed=self._stats.frames_processed + 1,
            last_inference_time=inference_time,
        )
        return True

    async def _run_schedule(self):
        interval = self.config.detection.interval
        loop = asyncio.get_running_loop()
        next_at = loop.time() + interval
        while True:
            await asyncio.sleep(max(0.0, next_at - loop.time()))
            next_at += interval
            task = asyncio.create_task(self.tick())
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)

    async def _cancel_schedule(self):
        task, self._schedule = self._schedule, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _release_stream(self, stream: CameraStream):
        # Both calls can block on the device and the reader thread
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, stream.stop)
        await loop.run_in_executor(None, self.video.detach)
        logger.info("Camera released")


def _discard_detector(future: asyncio.Future):
    """Close a detector whose load finished after initialize() was cancelled."""
    if future.cancelled() or future.exception() is not None:
        return
    logger.info("Closing detector loaded after cancellation")
    future.result().close()
