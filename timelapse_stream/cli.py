"""
Command line entrypoint for the timelapse stream server.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from dotenv import load_dotenv

from timelapse_stream.app import TimelapseStreamServer
from timelapse_stream.config import ConfigError, load_settings


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse settings, load the capture groups and run the server.

    Returns a non-zero status when configuration is invalid.
    """
    load_dotenv()

    try:
        settings = load_settings(argv)
        server = TimelapseStreamServer(settings)
    except ConfigError as exc:
        logging.getLogger("timelapse_stream").error("Invalid configuration: %s", exc)
        return 1

    server.run()
    return 0


__all__ = ["main"]
