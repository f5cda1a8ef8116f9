"""CLI entrypoint for the timelapse stream server."""

import sys

from timelapse_stream.cli import main


if __name__ == "__main__":
    sys.exit(main())
