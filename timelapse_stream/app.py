"""
Timelapse Stream Server
Regenerates timelapse videos from captured frames on a cron schedule and
streams them over HTTP with byte-range support.
"""

from __future__ import annotations

import uvicorn

from timelapse_stream.catalog import Catalog
from timelapse_stream.config import Settings, iter_group_summaries, load_capture_groups
from timelapse_stream.encoder import FfmpegEncoder
from timelapse_stream.logging_setup import configure_logging
from timelapse_stream.pipeline import GenerationPipeline
from timelapse_stream.scheduler import GenerationScheduler
from timelapse_stream.server import create_app


class TimelapseStreamServer:
    """Wire configuration, generation and HTTP serving into one process."""

    def __init__(self, settings: Settings):
        self.settings = settings

        # Setup logging
        self.setup_logging()
        self.logger.info("Settings: %s", settings)

        # Config errors surface here, before anything is scheduled or served.
        self.capture_groups = load_capture_groups(settings.config_path)
        self.catalog = Catalog.from_groups(self.capture_groups)

        self.encoder = FfmpegEncoder(
            ffmpeg_bin=settings.ffmpeg_bin,
            video_codec=settings.video_codec,
            timeout_seconds=settings.encode_timeout_seconds,
            logger=self.logger,
        )
        self.pipeline = GenerationPipeline(
            self.encoder,
            logger=self.logger,
            abort_on_encoder_failure=settings.abort_on_encoder_failure,
        )
        self.scheduler = GenerationScheduler(
            self.capture_groups,
            self.pipeline,
            settings.cron_spec,
            logger=self.logger,
        )
        self.app = create_app(
            self.catalog,
            self.capture_groups,
            templates_dir=settings.templates_dir,
            static_dir=settings.static_dir,
            logger=self.logger,
        )

    def setup_logging(self):
        """Setup logging configuration"""
        self.logger = configure_logging(
            "timelapse_stream",
            debug=self.settings.debug,
            log_file=self.settings.log_file,
        )

    def run(self):
        """Start generation in the background and serve HTTP until interrupted."""
        self.logger.info("Video server started")
        self.logger.info("Serving %s videos from %s capture groups:", len(self.catalog), len(self.capture_groups))
        for summary in iter_group_summaries(self.capture_groups):
            self.logger.info("  - %s", summary)

        self.scheduler.start()
        try:
            uvicorn.run(
                self.app,
                host=self.settings.host,
                port=self.settings.port,
                log_config=None,
                proxy_headers=True,
                forwarded_allow_ips=self.settings.trusted_proxies,
            )
        finally:
            self.scheduler.shutdown()
            self.logger.info("Video server stopped")


__all__ = ["TimelapseStreamServer"]
