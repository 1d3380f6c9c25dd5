"""
Vision Bot

Real-time object detection from a live camera feed. Runs a pretrained YOLOv8
model (Hailo-8 accelerator, CPU fallback) on a fixed interval and serves the
video with bounding-box overlays through a small web UI.
"""

__version__ = "1.0.0"
__license__ = "MIT"
