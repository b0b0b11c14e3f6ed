"""Command-line entry point for the voxd daemon."""

import argparse
import asyncio
import logging
import sys

from .audio.capture import AudioCapture
from .config import load_config
from .daemon import Daemon

logger = logging.getLogger(__name__)


def print_transcription(text: str) -> None:
    print(text, flush=True)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="voxd - offline voice dictation daemon")
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (default: $VOXD_CONFIG or ~/.config/voxd/settings.yaml)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Control API host (default: from config)",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Control API port (default: from config)",
    )
    parser.add_argument(
        "--no-web",
        action="store_true",
        help="Disable the control API",
    )
    parser.add_argument(
        "--print",
        dest="print_text",
        action="store_true",
        help="Write each transcription to stdout",
    )
    parser.add_argument(
        "--list-audio",
        action="store_true",
        help="List available audio devices",
    )
    args = parser.parse_args()

    # List devices if requested
    if args.list_audio:
        print("Available audio devices:")
        for dev in AudioCapture.list_devices():
            print(f"  [{dev['id']}] {dev['name']} ({dev['channels']}ch)")
        return

    # Load configuration
    config = load_config(args.config)
    config.setup_logging()

    logger.info("=" * 50)
    logger.info("voxd - offline voice dictation daemon")
    logger.info("=" * 50)

    daemon = Daemon(
        config,
        text_sink=print_transcription if args.print_text else None,
    )

    try:
        asyncio.run(daemon.run(enable_web=not args.no_web, host=args.host, port=args.port))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Daemon failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
