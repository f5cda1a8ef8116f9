"""Data models used across the timelapse stream server."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

VIDEO_SUFFIX = "_fps.mp4"

STATUS_PUBLISHED = "published"
STATUS_NO_FRAMES = "no_frames"
STATUS_ENCODE_FAILED = "encode_failed"
STATUS_PUBLISH_FAILED = "publish_failed"


@dataclass(frozen=True)
class CaptureGroup:
    """One named frame source and the videos generated from it."""

    name: str
    title: str
    pattern: str
    frame_rates: Tuple[int, ...]
    save_path: Path

    def video_filename(self, fps: int) -> str:
        """Published filename for the given frame rate."""
        return f"{self.name}_{fps}{VIDEO_SUFFIX}"

    def temp_filename(self, fps: int) -> str:
        """Filename the encoder writes to before publishing."""
        return f"{self.name}_temp_{fps}{VIDEO_SUFFIX}"

    def video_filenames(self) -> Tuple[str, ...]:
        return tuple(self.video_filename(fps) for fps in self.frame_rates)


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of encoding one capture group at one frame rate."""

    group: str
    fps: int
    status: str
    frame_count: int = 0
    output_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def published(self) -> bool:
        return self.status == STATUS_PUBLISHED


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte window of a file of ``size`` bytes."""

    start: int
    end: int
    size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.size}"

    @property
    def satisfiable(self) -> bool:
        return self.start <= self.end


__all__ = [
    "ByteRange",
    "CaptureGroup",
    "GenerationResult",
    "STATUS_ENCODE_FAILED",
    "STATUS_NO_FRAMES",
    "STATUS_PUBLISHED",
    "STATUS_PUBLISH_FAILED",
]
