"""
Scheduled timelapse generation and byte-range video streaming.
"""

from .catalog import Catalog, DuplicateVideoError
from .config import ConfigError, Settings, load_capture_groups, load_settings
from .encoder import EncoderError, FfmpegEncoder
from .models import ByteRange, CaptureGroup, GenerationResult
from .pipeline import GenerationPipeline
from .scheduler import GenerationScheduler, parse_cron_spec

__all__ = [
    "ByteRange",
    "CaptureGroup",
    "Catalog",
    "ConfigError",
    "DuplicateVideoError",
    "EncoderError",
    "FfmpegEncoder",
    "GenerationPipeline",
    "GenerationResult",
    "GenerationScheduler",
    "Settings",
    "load_capture_groups",
    "load_settings",
    "parse_cron_spec",
]
