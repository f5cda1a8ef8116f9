"""ffmpeg-backed encoder turning an ordered frame sequence into an MP4 file."""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from collections import deque
from pathlib import Path
from time import perf_counter
from typing import BinaryIO, Deque, List, Optional, Sequence, Tuple

import cv2

# image2pipe decoders keyed by frame file suffix; unknown suffixes are probed by ffmpeg.
PIPE_DECODERS = {
    ".png": "png",
    ".jpg": "mjpeg",
    ".jpeg": "mjpeg",
    ".bmp": "bmp",
    ".webp": "webp",
}

WRITE_CHUNK_SIZE = 1024 * 1024
STDERR_CHUNK_SIZE = 64 * 1024
# Only the tail of ffmpeg's stderr is kept for error messages.
STDERR_TAIL_CHUNKS = 16


class EncoderError(RuntimeError):
    """Raised when a video could not be produced."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: bytes = b"") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        message = super().__str__()
        detail = self.stderr.decode("utf-8", errors="replace").strip()
        if detail:
            return f"{message}: {detail.splitlines()[-1]}"
        return message


def even_crop_filter(frame_shape: Tuple[int, int]) -> Optional[str]:
    """Return a crop filter trimming odd dimensions, or ``None`` when already even.

    yuv420p output needs even width and height.
    """
    height, width = frame_shape
    even_width = width - (width % 2)
    even_height = height - (height % 2)
    if even_width < 2 or even_height < 2:
        raise EncoderError(f"Frame too small to encode: {width}x{height}")
    if (even_width, even_height) == (width, height):
        return None
    return f"crop={even_width}:{even_height}:0:0"


def read_frame_shape(frame_path: Path) -> Tuple[int, int]:
    image = cv2.imread(str(frame_path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise EncoderError(f"Unable to read frame {frame_path}")
    return image.shape[0], image.shape[1]


class FfmpegEncoder:
    """Encode frames by streaming their bytes to an ``ffmpeg`` subprocess."""

    def __init__(
        self,
        *,
        ffmpeg_bin: str = "ffmpeg",
        video_codec: str = "libx264",
        timeout_seconds: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.video_codec = video_codec
        self.timeout_seconds = timeout_seconds
        self.logger = logger or logging.getLogger(__name__)

    def build_command(
        self,
        fps: int,
        output_path: Path,
        *,
        input_decoder: Optional[str],
        video_filter: Optional[str],
    ) -> List[str]:
        cmd = [
            self.ffmpeg_bin,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-f",
            "image2pipe",
            "-framerate",
            str(fps),
        ]
        if input_decoder:
            cmd += ["-c:v", input_decoder]
        cmd += ["-i", "-"]
        if video_filter:
            cmd += ["-vf", video_filter]
        cmd += [
            "-c:v",
            self.video_codec,
            "-pix_fmt",
            "yuv420p",
            "-movflags",
            "+faststart",
            "-f",
            "mp4",
            str(output_path),
        ]
        return cmd

    def encode(self, frame_paths: Sequence[Path], fps: int, output_path: Path) -> None:
        """Write a video of ``frame_paths`` at ``fps`` to ``output_path``.

        Raises
        ------
        EncoderError
            If ffmpeg is missing, exits non-zero, or exceeds the configured timeout.
        """
        if not frame_paths:
            raise EncoderError("No frames to encode")
        if fps <= 0:
            raise EncoderError(f"Frame rate must be positive, got {fps}")
        if shutil.which(self.ffmpeg_bin) is None:
            raise EncoderError(f"{self.ffmpeg_bin} not found on PATH. Install ffmpeg with libx264.")

        first_frame = Path(frame_paths[0])
        cmd = self.build_command(
            fps,
            output_path,
            input_decoder=PIPE_DECODERS.get(first_frame.suffix.lower()),
            video_filter=even_crop_filter(read_frame_shape(first_frame)),
        )
        self.logger.debug("Running %s", " ".join(cmd))

        started = perf_counter()
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        assert process.stdin is not None and process.stderr is not None

        stderr_tail: Deque[bytes] = deque(maxlen=STDERR_TAIL_CHUNKS)
        drain = threading.Thread(
            target=_drain_stream,
            args=(process.stderr, stderr_tail),
            name="ffmpeg-stderr",
            daemon=True,
        )
        drain.start()

        try:
            self._write_frames(process, frame_paths, started)
            returncode = process.wait(timeout=self._remaining(started))
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            raise EncoderError(
                f"ffmpeg exceeded {self.timeout_seconds}s encoding {output_path.name}"
            ) from None
        except OSError as exc:
            process.kill()
            process.wait()
            raise EncoderError(f"Failed to feed frames to ffmpeg: {exc}") from exc
        finally:
            if process.returncode is None:
                process.kill()
                process.wait()
            drain.join()
            process.stderr.close()

        stderr_bytes = b"".join(stderr_tail)

        if returncode != 0:
            raise EncoderError(
                f"ffmpeg exited with status {returncode}",
                returncode=returncode,
                stderr=stderr_bytes,
            )

        self.logger.debug(
            "Encoded %s frames into %s in %.1fs",
            len(frame_paths),
            output_path,
            perf_counter() - started,
        )

    def _remaining(self, started: float) -> Optional[float]:
        if self.timeout_seconds is None:
            return None
        return max(0.0, self.timeout_seconds - (perf_counter() - started))

    def _write_frames(self, process: subprocess.Popen, frame_paths: Sequence[Path], started: float) -> None:
        stdin = process.stdin
        try:
            for frame_path in frame_paths:
                remaining = self._remaining(started)
                if remaining is not None and remaining <= 0:
                    raise subprocess.TimeoutExpired(process.args, self.timeout_seconds or 0)
                with open(frame_path, "rb") as frame:
                    while True:
                        chunk = frame.read(WRITE_CHUNK_SIZE)
                        if not chunk:
                            break
                        stdin.write(chunk)
        except BrokenPipeError:
            # ffmpeg exited early; its status and stderr explain why.
            pass
        finally:
            try:
                stdin.close()
            except BrokenPipeError:
                pass


def _drain_stream(stream: BinaryIO, sink: Deque[bytes]) -> None:
    """Read ``stream`` until EOF so ffmpeg never blocks on a full stderr pipe."""
    for chunk in iter(lambda: stream.read(STDERR_CHUNK_SIZE), b""):
        sink.append(chunk)


__all__ = ["EncoderError", "FfmpegEncoder", "even_crop_filter", "read_frame_shape"]
