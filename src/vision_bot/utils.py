"""
Image geometry helpers and COCO class names.
"""

import cv2
import numpy as np
from typing import NamedTuple, Tuple


# COCO dataset classes in YOLOv8 output order
COCO_CLASSES = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck",
    "boat", "traffic light", "fire hydrant", "stop sign", "parking meter", "bench",
    "bird", "cat", "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra",
    "giraffe", "backpack", "umbrella", "handbag", "tie", "suitcase", "frisbee",
    "skis", "snowboard", "sports ball", "kite", "baseball bat", "baseball glove",
    "skateboard", "surfboard", "tennis racket", "bottle", "wine glass", "cup",
    "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch",
    "potted plant", "bed", "dining table", "toilet", "tv", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy bear", "hair drier",
    "toothbrush",
)


def class_name(class_id: int) -> str:
    """Name for a COCO class id, or a placeholder for ids outside the table."""
    if 0 <= class_id < len(COCO_CLASSES):
        return COCO_CLASSES[class_id]
    return f"class_{class_id}"


class Letterbox(NamedTuple):
    image: np.ndarray
    scale: float
    pad: Tuple[int, int]


def letterbox_image(image: np.ndarray, target_size: int) -> Letterbox:
    """
    Fit an image into a gray square of target_size, keeping aspect ratio.

    Args:
        image: Input image (BGR format)
        target_size: Square side in pixels (e.g. 640)

    Returns:
        Letterbox with the padded image, the resize factor and (pad_x, pad_y)
    """
    h, w = image.shape[:2]
    scale = min(target_size / w, target_size / h)
    new_w, new_h = int(w * scale), int(h * scale)

    resized = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    pad_x = (target_size - new_w) // 2
    pad_y = (target_size - new_h) // 2
    padded = np.full((target_size, target_size, 3), 114, dtype=np.uint8)
    padded[pad_y:pad_y + new_h, pad_x:pad_x + new_w] = resized

    return Letterbox(padded, scale, (pad_x, pad_y))


def unletterbox_xyxy(box: Tuple[float, float, float, float], letterbox: Letterbox,
                     frame_size: Tuple[int, int]) -> Tuple[float, float, float, float]:
    """
    Map a letterboxed pixel box (x1, y1, x2, y2) back to an (x, y, w, h) box
    in the original frame, clipped to the frame.

    Args:
        box: Corners in letterboxed model-input pixels
        letterbox: Letterbox used to prepare the model input
        frame_size: Original (width, height)
    """
    pad_x, pad_y = letterbox.pad
    w, h = frame_size

    x1 = min(max((box[0] - pad_x) / letterbox.scale, 0.0), w)
    y1 = min(max((box[1] - pad_y) / letterbox.scale, 0.0), h)
    x2 = min(max((box[2] - pad_x) / letterbox.scale, 0.0), w)
    y2 = min(max((box[3] - pad_y) / letterbox.scale, 0.0), h)

    return (x1, y1, x2 - x1, y2 - y1)


def hex_to_bgr(color: str) -> Tuple[int, int, int]:
    """Convert '#rrggbb' to an OpenCV BGR tuple."""
    value = color.lstrip('#')
    if len(value) != 6:
        raise ValueError(f"Expected #rrggbb color, got {color!r}")
    r, g, b = (int(value[i:i + 2], 16) for i in (0, 2, 4))
    return (b, g, r)
