"""
Camera acquisition and the video surface the detection loop reads from.

A CameraSource hands out a CameraStream made of stoppable VideoTracks. The
stream is attached to a VideoSurface, which keeps the most recent frame on a
reader thread and reports how ready it is to produce one.
"""

import asyncio
import cv2
import time
import logging
import threading
import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import List, Optional, Tuple

from .config import VideoConfig
from .errors import CameraUnavailable


logger = logging.getLogger(__name__)

VIDEO_FILE_EXTENSIONS = ('.mp4', '.avi', '.mkv', '.mov', '.webm')


class TrackState(str, Enum):
    LIVE = "live"
    ENDED = "ended"


class ReadyState(IntEnum):
    """How much media the surface has, mirroring HTML media readiness levels."""
    HAVE_NOTHING = 0
    HAVE_METADATA = 1
    HAVE_ENOUGH_DATA = 4


@dataclass(frozen=True)
class TrackSettings:
    width: int
    height: int
    fps: float = 0.0


class VideoTrack(ABC):
    """A single video track of a camera stream."""

    def __init__(self, settings: TrackSettings):
        self.settings = settings
        self.state = TrackState.LIVE

    @abstractmethod
    def read(self) -> Optional[np.ndarray]:
        """Next frame (BGR), or None if no frame is available."""

    @abstractmethod
    def stop(self) -> None:
        """Release the underlying device. Safe to call more than once."""


class OpenCVTrack(VideoTrack):
    """
    Video track backed by cv2.VideoCapture.

    The lock only guards state. A blocking read runs outside it, so stop()
    returns at once; a device stopped mid-read is released by the reader
    when that read returns.
    """

    def __init__(self, cap: cv2.VideoCapture, settings: TrackSettings, paced: bool = False):
        super().__init__(settings)
        self._cap = cap
        self._lock = threading.Lock()
        self._reading = False
        self._released = False
        # Files decode faster than real time, cameras block on the sensor
        self._frame_period = 1.0 / settings.fps if paced and settings.fps > 0 else 0.0
        self._last_read = 0.0

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self.state is TrackState.ENDED or self._reading:
                return None
            self._reading = True

        try:
            if self._frame_period:
                wait = self._last_read + self._frame_period - time.monotonic()
                if wait > 0:
                    time.sleep(wait)
                self._last_read = time.monotonic()

            ret, frame = self._cap.read()
        finally:
            with self._lock:
                self._reading = False
                stopped = self.state is TrackState.ENDED
                if stopped:
                    self._release()

        if stopped:
            return None
        if not ret or frame is None:
            logger.warning("Failed to read frame from camera, ending track")
            with self._lock:
                self.state = TrackState.ENDED
                self._release()
            return None
        return frame

    def stop(self):
        with self._lock:
            if self.state is TrackState.ENDED:
                return
            logger.info("Stopping video track")
            self.state = TrackState.ENDED
            if not self._reading:
                self._release()

    @property
    def released(self) -> bool:
        return self._released

    def _release(self):
        if not self._released:
            self._cap.release()
            self._released = True


class CameraStream:
    """A set of tracks owned by whoever acquired the stream."""

    def __init__(self, tracks: List[VideoTrack]):
        self._tracks = list(tracks)

    def get_tracks(self) -> List[VideoTrack]:
        return list(self._tracks)

    @property
    def video_track(self) -> Optional[VideoTrack]:
        return self._tracks[0] if self._tracks else None

    @property
    def active(self) -> bool:
        return any(track.state is TrackState.LIVE for track in self._tracks)

    def stop(self):
        """Stop every track."""
        for track in self._tracks:
            track.stop()


class CameraSource(ABC):
    """Supplies live camera streams on request."""

    @abstractmethod
    async def acquire(self, width: int, height: int) -> CameraStream:
        """
        Request a stream at the given resolution.

        Raises:
            CameraUnavailable: If no stream can be supplied
        """


class OpenCVCamera(CameraSource):
    """
    Camera source using OpenCV, with the V4L2 backend for /dev/video* devices.
    """

    def __init__(self, config: VideoConfig):
        self.config = config

    async def acquire(self, width: int, height: int) -> CameraStream:
        loop = asyncio.get_running_loop()
        track = await loop.run_in_executor(None, self._open, width, height)
        return CameraStream([track])

    def _open(self, width: int, height: int) -> OpenCVTrack:
        device = self.config.device
        logger.info(f"Opening video device: {device}")

        is_video_file = device.lower().endswith(VIDEO_FILE_EXTENSIONS)
        try:
            if device.isdigit():
                cap = cv2.VideoCapture(int(device))
            elif device.startswith('/dev/video'):
                cap = cv2.VideoCapture(device, cv2.CAP_V4L2)
            else:
                cap = cv2.VideoCapture(device)
        except Exception as e:
            raise CameraUnavailable(f"Error opening {device}: {e}") from e

        if not cap.isOpened():
            cap.release()
            raise CameraUnavailable(f"Failed to open {device}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        cap.set(cv2.CAP_PROP_FPS, self.config.fps)

        if not self._wait_for_first_frame(cap):
            cap.release()
            raise CameraUnavailable(
                f"No frames from {device} within {self.config.frame_timeout:.1f}s"
            )

        settings = TrackSettings(
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            fps=float(cap.get(cv2.CAP_PROP_FPS) or self.config.fps),
        )
        logger.info(f"Camera opened: {settings.width}x{settings.height} @ {settings.fps:.0f} FPS")

        return OpenCVTrack(cap, settings, paced=is_video_file)

    def _wait_for_first_frame(self, cap: cv2.VideoCapture) -> bool:
        deadline = time.monotonic() + self.config.frame_timeout
        while time.monotonic() < deadline:
            if cap.grab():
                return True
            time.sleep(0.05)
        return False


class VideoSurface:
    """
    Plays an attached camera stream, keeping only the most recent frame.
    """

    def __init__(self):
        self._stream: Optional[CameraStream] = None
        self._frame: Optional[np.ndarray] = None
        self._frame_lock = threading.Lock()
        self._first_frame = threading.Event()
        self._playing = threading.Event()
        self._reader: Optional[threading.Thread] = None
        self.frame_count = 0

    @property
    def src_object(self) -> Optional[CameraStream]:
        return self._stream

    @property
    def ready_state(self) -> ReadyState:
        if self._stream is None:
            return ReadyState.HAVE_NOTHING
        if self.ended or self._reader is None or not self._reader.is_alive():
            return ReadyState.HAVE_METADATA
        if self._playing.is_set() and self._frame is not None:
            return ReadyState.HAVE_ENOUGH_DATA
        return ReadyState.HAVE_METADATA

    @property
    def ended(self) -> bool:
        """True when a stream is attached but its video track has stopped."""
        track = self._stream.video_track if self._stream is not None else None
        return track is not None and track.state is not TrackState.LIVE

    @property
    def video_size(self) -> Tuple[int, int]:
        """Native (width, height) of the frames being played."""
        frame = self._frame
        if frame is not None:
            return frame.shape[1], frame.shape[0]
        if self._stream is not None and self._stream.video_track is not None:
            settings = self._stream.video_track.settings
            return settings.width, settings.height
        return 0, 0

    def attach(self, stream: CameraStream):
        if self._stream is not None:
            self.detach()
        self._stream = stream

    def play(self):
        """Start buffering frames from the attached stream."""
        if self._stream is None or self._stream.video_track is None:
            raise RuntimeError("No video stream attached")
        if self._reader is not None and self._reader.is_alive():
            return

        self._playing.set()
        self._reader = threading.Thread(
            target=self._read_loop, args=(self._stream.video_track,),
            name="video-surface", daemon=True
        )
        self._reader.start()

    def _read_loop(self, track: VideoTrack):
        while self._playing.is_set() and track.state is TrackState.LIVE:
            frame = track.read()
            if frame is None:
                time.sleep(0.01)
                continue

            with self._frame_lock:
                self._frame = frame
                self.frame_count += 1
            self._first_frame.set()

            # Let the event loop and HTTP threads run between reads
            time.sleep(0.001)

        logger.debug("Video surface reader exited")

    def wait_for_frame(self, timeout: Optional[float] = None) -> bool:
        return self._first_frame.wait(timeout)

    def current_frame(self) -> Optional[np.ndarray]:
        with self._frame_lock:
            return self._frame

    def detach(self):
        """Stop playback and drop the stream. Tracks are left to their owner."""
        self._playing.clear()
        if self._reader is not None:
            self._reader.join(timeout=2.0)
            if self._reader.is_alive():
                logger.warning("Video surface reader did not exit in time")
            self._reader = None
        with self._frame_lock:
            self._frame = None
        self._first_frame.clear()
        self._stream = None
