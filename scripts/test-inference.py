#!/usr/bin/env python3
"""
Run detection on a single image (or one camera frame) through the same
backend selection the service uses, and save the annotated result.
"""

import os
import sys
import time
import logging
import argparse

import cv2

# Add src to path for testing before installation
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from vision_bot.config import load_config
from vision_bot.detector import load_detector
from vision_bot.errors import ModelUnavailable
from vision_bot.overlay import OverlayCanvas, render_overlay

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def grab_frame(device: str):
    cap = cv2.VideoCapture(device)
    try:
        ret, frame = cap.read()
    finally:
        cap.release()
    return frame if ret else None


def main():
    parser = argparse.ArgumentParser(description='Vision Bot single-frame inference test')
    parser.add_argument('-c', '--config', default=None, help='Configuration file')
    parser.add_argument('-i', '--image', help='Image to run on (default: grab from camera)')
    parser.add_argument('-o', '--output', default='/tmp/test_detections.jpg')
    args = parser.parse_args()

    config = load_config(args.config)

    try:
        detector = load_detector(config.detection)
    except ModelUnavailable as e:
        logger.error(f"No backend available: {e}")
        return 1

    frame = cv2.imread(args.image) if args.image else grab_frame(config.video.device)
    if frame is None:
        logger.error("Failed to get an input frame")
        return 1
    logger.info(f"Input frame: {frame.shape}, dtype: {frame.dtype}")

    try:
        start = time.monotonic()
        detections = detector.detect(frame)
        logger.info(f"{detector.backend} inference took {(time.monotonic() - start) * 1000:.1f} ms")
    finally:
        detector.close()

    for detection in detections:
        logger.info(f"  {detection.label} at {[round(v) for v in detection.bbox]}")

    canvas = OverlayCanvas()
    render_overlay(canvas, detections, (frame.shape[1], frame.shape[0]))
    cv2.imwrite(args.output, canvas.composite(frame))
    logger.info(f"Saved {len(detections)} detections to {args.output}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
