"""Frame discovery, encoding and atomic publication for capture groups."""

from __future__ import annotations

import glob
import logging
import os
from pathlib import Path
from typing import Any, List, Optional

from timelapse_stream.encoder import EncoderError
from timelapse_stream.models import (
    STATUS_ENCODE_FAILED,
    STATUS_NO_FRAMES,
    STATUS_PUBLISH_FAILED,
    STATUS_PUBLISHED,
    CaptureGroup,
    GenerationResult,
)


def resolve_frames(pattern: str) -> List[Path]:
    """Return files matching ``pattern`` in lexical order.

    Frame names must be zero-padded for lexical order to match capture order.
    """
    return [Path(match) for match in sorted(glob.glob(pattern)) if os.path.isfile(match)]


class GenerationPipeline:
    """Encode every frame rate of a capture group and publish the results.

    ``encoder`` is any object exposing ``encode(frame_paths, fps, output_path)``
    that raises `EncoderError` on failure.
    """

    def __init__(
        self,
        encoder: Any,
        *,
        logger: Optional[logging.Logger] = None,
        abort_on_encoder_failure: bool = False,
    ) -> None:
        self.encoder = encoder
        self.logger = logger or logging.getLogger(__name__)
        self.abort_on_encoder_failure = abort_on_encoder_failure

    def generate(self, group: CaptureGroup) -> List[GenerationResult]:
        self.logger.info("Generating videos for '%s' (%s)", group.title, group.name)

        frames = resolve_frames(group.pattern)
        if not frames:
            self.logger.info("No frames found for '%s' with pattern %s", group.name, group.pattern)
            return [
                GenerationResult(group=group.name, fps=fps, status=STATUS_NO_FRAMES)
                for fps in group.frame_rates
            ]

        return [self._generate_rate(group, frames, fps) for fps in group.frame_rates]

    def _generate_rate(self, group: CaptureGroup, frames: List[Path], fps: int) -> GenerationResult:
        temp_path = group.save_path / group.temp_filename(fps)
        final_path = group.save_path / group.video_filename(fps)

        self.logger.info(
            "Encoding %s frames for '%s' at %s fps into %s",
            len(frames),
            group.name,
            fps,
            temp_path,
        )
        try:
            self.encoder.encode(frames, fps, temp_path)
        except EncoderError as exc:
            self.logger.error("Failed to create video for '%s' at %s fps: %s", group.name, fps, exc)
            self._discard(temp_path)
            if self.abort_on_encoder_failure:
                raise
            return GenerationResult(
                group=group.name,
                fps=fps,
                status=STATUS_ENCODE_FAILED,
                frame_count=len(frames),
                error=str(exc),
            )

        try:
            os.replace(temp_path, final_path)
        except OSError as exc:
            self.logger.error(
                "Failed to publish %s as %s, temp file left in place: %s",
                temp_path,
                final_path,
                exc,
            )
            return GenerationResult(
                group=group.name,
                fps=fps,
                status=STATUS_PUBLISH_FAILED,
                frame_count=len(frames),
                output_path=temp_path,
                error=str(exc),
            )

        self.logger.info("Published %s (%s frames at %s fps)", final_path, len(frames), fps)
        return GenerationResult(
            group=group.name,
            fps=fps,
            status=STATUS_PUBLISHED,
            frame_count=len(frames),
            output_path=final_path,
        )

    def _discard(self, temp_path: Path) -> None:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            self.logger.warning("Could not remove partial output %s: %s", temp_path, exc)
            return
        self.logger.debug("Removed partial output %s", temp_path)


__all__ = ["GenerationPipeline", "resolve_frames"]
