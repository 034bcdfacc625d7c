#!/usr/bin/env python3
"""
jt9stream main entry point.

Allows jt9stream to be run as a module: python3 -m jt9stream

Examples:
    # Decode a WAV file
    python3 -m jt9stream -j /usr/bin/jt9 -m FT8 capture.wav

    # Decode a live 12 kHz s16le mono stream from stdin
    arecord -f S16_LE -r 12000 -c 1 -t raw | python3 -m jt9stream -j /usr/bin/jt9 -m FT8 -s
"""

import argparse
import logging
import logging.handlers
import signal
import sys
from typing import List, Optional

from jt9stream.config import Jt9StreamConfig
from jt9stream.modes import Mode
from jt9stream.service import EXIT_FATAL, EXIT_OK, Jt9StreamService

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_FILE_BACKUP_COUNT = 5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jt9stream",
        description="Drive the jt9 decoder from a WAV file or a live 12 kHz PCM stream on stdin.",
    )
    parser.add_argument("-j", "--jt9", dest="jt9_path", help="Path to the jt9 executable")
    parser.add_argument(
        "-m", "--mode",
        type=str.upper,
        choices=[m.name for m in Mode],
        help="Decode mode (default: FT2)",
    )
    parser.add_argument("-d", "--depth", type=int, choices=[1, 2, 3], help="Decode depth 1-3 (default: 3)")
    parser.add_argument(
        "-t", "--multithread",
        action="store_true",
        default=None,
        help="Enable multithreaded FT8 decoding",
    )
    parser.add_argument(
        "-s", "--stream",
        action="store_true",
        help="Stream mode: read s16le mono 12000 Hz samples from stdin",
    )
    parser.add_argument("wav_file", nargs="?", help="WAV file to decode (file mode)")
    parser.add_argument("--freq-low", type=int, help="Low frequency limit in Hz (default: 200)")
    parser.add_argument("--freq-high", type=int, help="High frequency limit in Hz (default: 5000)")
    parser.add_argument("--log-file", help="Also write logs to this file (rotated at 10MB, 5 backups)")
    return parser


def setup_logging(level: str, log_file: Optional[str] = None) -> None:
    """
    Configure root logging on stderr, plus an optional rotating log file.

    stdout is reserved for decode results.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    if log_file:
        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUP_COUNT,
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.stream and args.wav_file:
        parser.error("Cannot use both -s and a WAV file")
    if not args.stream and not args.wav_file:
        parser.error("Either -s or a WAV file is required")

    try:
        config = Jt9StreamConfig.load_config().with_overrides(
            jt9_path=args.jt9_path,
            mode=args.mode,
            depth=args.depth,
            multithread=args.multithread,
            stream=args.stream,
            wav_file=args.wav_file,
            freq_low=args.freq_low,
            freq_high=args.freq_high,
        )
    except ValueError as e:
        setup_logging("INFO", args.log_file)
        logging.error(f"Invalid configuration: {e}")
        return EXIT_FATAL

    setup_logging(config.log_level, args.log_file)
    logger = logging.getLogger("jt9stream")

    try:
        config.validate()
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FATAL

    service = Jt9StreamService(config)
    signal.signal(signal.SIGTERM, lambda signum, frame: service.stop())

    try:
        return service.run()
    except KeyboardInterrupt:
        logger.info("jt9stream shutdown requested")
        return EXIT_OK
    except Exception as e:
        logger.error(f"jt9stream failed: {e}", exc_info=True)
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
