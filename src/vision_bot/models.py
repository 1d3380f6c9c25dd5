"""
Data model for detection sessions.
"""

import math
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Tuple


BBox = Tuple[float, float, float, float]


def score_percent(score: float) -> int:
    """Confidence as a whole percentage, rounding halves up."""
    return int(math.floor(score * 100 + 0.5))


@dataclass(frozen=True)
class Detection:
    """One recognized object in a single frame.

    Attributes:
        class_name: Category label
        score: Confidence in [0, 1]
        bbox: (x, y, width, height) in source frame pixels
    """
    class_name: str
    score: float
    bbox: BBox

    @property
    def percent(self) -> int:
        return score_percent(self.score)

    @property
    def label(self) -> str:
        return f"{self.class_name} ({self.percent}%)"

    def to_dict(self) -> dict:
        return {
            'class': self.class_name,
            'score': round(self.score, 4),
            'percent': self.percent,
            'bbox': [round(v, 1) for v in self.bbox],
        }


class SessionState(str, Enum):
    """Lifecycle of the detection controller."""
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    ACTIVE = "active"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionStats:
    ticks: int = 0
    skipped_ticks: int = 0
    frames_processed: int = 0
    last_inference_time: float = 0.0

    def to_dict(self) -> dict:
        return {
            'ticks': self.ticks,
            'skipped_ticks': self.skipped_ticks,
            'frames_processed': self.frames_processed,
            'inference_time': round(self.last_inference_time, 3),
        }


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of the controller, safe to hand to other threads."""
    state: SessionState
    backend: Optional[str] = None
    detections: Tuple[Detection, ...] = ()
    message: Optional[str] = None
    stats: SessionStats = field(default_factory=SessionStats)

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def to_dict(self) -> dict:
        return {
            'state': self.state.value,
            'backend': self.backend,
            'message': self.message,
            'num_detections': len(self.detections),
            'stats': self.stats.to_dict(),
        }
