#!/usr/bin/env python3
"""
Camera test utility: checks that the configured device can be acquired at
the detection resolution and that the video surface receives frames.
"""

import os
import sys
import asyncio
import argparse

import cv2

# Add src to path for testing before installation
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from vision_bot.capture import OpenCVCamera, ReadyState, VideoSurface
from vision_bot.config import VideoConfig
from vision_bot.errors import CameraUnavailable


async def check_camera(config: VideoConfig, output_path: str) -> bool:
    print(f"[1/3] Acquiring {config.device} at {config.width}x{config.height}...")
    try:
        stream = await OpenCVCamera(config).acquire(config.width, config.height)
    except CameraUnavailable as e:
        print(f"  ✗ {e}")
        if config.device.startswith('/dev/video'):
            found = [f"/dev/video{i}" for i in range(10) if os.path.exists(f"/dev/video{i}")]
            print(f"  Available video devices: {', '.join(found) or 'none'}")
        return False

    settings = stream.video_track.settings
    print(f"  ✓ Negotiated {settings.width}x{settings.height} @ {settings.fps:.0f} FPS")
    print()

    video = VideoSurface()
    try:
        print("[2/3] Playing stream...")
        video.attach(stream)
        video.play()
        if not video.wait_for_frame(config.frame_timeout):
            print("  ✗ No frame received")
            return False
        assert video.ready_state is ReadyState.HAVE_ENOUGH_DATA
        print(f"  ✓ Frame size: {video.video_size[0]}x{video.video_size[1]}")
        print()

        print("[3/3] Saving test frame...")
        cv2.imwrite(output_path, video.current_frame())
        print(f"  ✓ Test frame saved to: {output_path}")
        print()
    finally:
        stream.stop()
        video.detach()

    print("Camera is ready for detection.")
    return True


def main():
    parser = argparse.ArgumentParser(description='Vision Bot camera check')
    parser.add_argument('device', nargs='?', default='/dev/video0')
    parser.add_argument('-o', '--output', default='test_frame.jpg')
    args = parser.parse_args()

    print("=" * 70)
    print("Vision Bot - Camera Test Utility")
    print("=" * 70)
    print()

    success = asyncio.run(check_camera(VideoConfig(device=args.device), args.output))
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
