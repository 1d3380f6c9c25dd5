"""
Main entry point for the Vision Bot service.
"""

import sys
import signal
import asyncio
import logging
import argparse

from . import __version__
from .config import Config, DEFAULT_CONFIG_PATH, load_config, save_example_config
from .capture import OpenCVCamera
from .controller import DetectionController
from .errors import ModelUnavailable
from .streamer import MJPEGStreamer


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO"):
    """
    Setup logging configuration.

    Args:
        level: Logging level
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Vision Bot Object Detection Service')
    parser.add_argument(
        '-c', '--config',
        default=DEFAULT_CONFIG_PATH,
        help='Path to configuration file'
    )
    parser.add_argument(
        '-d', '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--write-example-config',
        metavar='PATH',
        help='Write an example configuration file and exit'
    )
    return parser.parse_args(argv)


async def serve(config: Config):
    """
    Run the web UI and detection controller until SIGINT/SIGTERM.

    Leaving the controller scope stops any active session, so the camera is
    released even if detection was never stopped from the UI.
    """
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    def request_shutdown(signum):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, request_shutdown, signum)

    camera = OpenCVCamera(config.video)
    async with DetectionController(config, camera) as controller:
        streamer = MJPEGStreamer(config.stream, controller, loop)
        streamer.start()
        logger.info(f"UI available at http://<your-ip>:{config.stream.port}/")

        try:
            try:
                await controller.initialize()
            except ModelUnavailable as e:
                # Surfaced through the UI; the server keeps running to show it
                logger.error(f"Detection unavailable: {e}")

            await shutdown.wait()
        finally:
            logger.info("Cleaning up...")
            streamer.stop()


def main(argv=None) -> int:
    """Main application entry."""
    args = parse_args(argv)

    if args.write_example_config:
        save_example_config(args.write_example_config)
        print(f"Example configuration written to {args.write_example_config}")
        return 0

    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"ERROR: Failed to load configuration: {e}", file=sys.stderr)
        return 1

    log_level = "DEBUG" if args.debug else config.logging.level
    setup_logging(log_level)

    logger.info("=" * 70)
    logger.info(f"Vision Bot v{__version__}")
    logger.info("=" * 70)

    try:
        asyncio.run(serve(config))
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    logger.info("Shutdown complete")
    return 0


if __name__ == '__main__':
    sys.exit(main())
