"""Read-only index from published video filenames to their capture groups."""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Optional, Tuple

from timelapse_stream.config import ConfigError
from timelapse_stream.models import CaptureGroup


class DuplicateVideoError(ConfigError):
    """Two capture groups would publish a video under the same filename."""


class Catalog:
    """Index over video names only; file contents and sizes are never cached."""

    def __init__(self, entries: Dict[str, CaptureGroup]) -> None:
        self._entries = MappingProxyType(dict(entries))

    @classmethod
    def from_groups(cls, groups: Iterable[CaptureGroup]) -> "Catalog":
        """Index every published filename, rejecting names two groups would share.

        A group's temporary output must not land on another group's published
        video in the same directory, or an encode would overwrite a file that
        is being served.
        """
        groups = tuple(groups)
        entries: Dict[str, CaptureGroup] = {}
        for group in groups:
            for filename in group.video_filenames():
                owner = entries.get(filename)
                if owner is not None and owner is not group:
                    raise DuplicateVideoError(
                        f"Video {filename!r} is produced by both '{owner.name}' and '{group.name}'"
                    )
                entries[filename] = group

        for group in groups:
            for fps in group.frame_rates:
                temp_name = group.temp_filename(fps)
                owner = entries.get(temp_name)
                if owner is not None and _same_directory(owner.save_path, group.save_path):
                    raise DuplicateVideoError(
                        f"Temporary file {temp_name!r} of '{group.name}' would overwrite "
                        f"the video published by '{owner.name}'"
                    )
        return cls(entries)

    def lookup(self, filename: str) -> Optional[CaptureGroup]:
        return self._entries.get(filename)

    def path_for(self, filename: str) -> Optional[Path]:
        group = self.lookup(filename)
        if group is None:
            return None
        return group.save_path / filename

    def filenames(self) -> Tuple[str, ...]:
        return tuple(self._entries)

    def __contains__(self, filename: object) -> bool:
        return filename in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def _same_directory(first: Path, second: Path) -> bool:
    return first.resolve() == second.resolve()


__all__ = ["Catalog", "DuplicateVideoError"]
