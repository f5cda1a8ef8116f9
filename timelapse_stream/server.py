"""HTTP layer: the listing page and byte-range video streaming."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from timelapse_stream.catalog import Catalog
from timelapse_stream.models import ByteRange, CaptureGroup
from timelapse_stream.ranges import resolve_byte_range

DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
FILENAME_PATTERN = re.compile(r"[A-Za-z0-9_.-]+")
STREAM_CHUNK_SIZE = 256 * 1024
VIDEO_MEDIA_TYPE = "video/mp4"


def is_valid_filename(filename: str) -> bool:
    return bool(FILENAME_PATTERN.fullmatch(filename))


def iter_byte_range(
    handle: BinaryIO,
    byte_range: ByteRange,
    filename: str,
    logger: logging.Logger,
    chunk_size: int = STREAM_CHUNK_SIZE,
) -> Iterator[bytes]:
    """Yield ``byte_range`` from an open file, closing it when done.

    Read errors end the stream early; the status line is already on the wire
    by then, so they are only logged. Closing the generator before the last
    chunk was taken counts as a client disconnect and is logged too.
    """
    remaining = byte_range.length
    try:
        handle.seek(byte_range.start)
        while remaining > 0:
            chunk = handle.read(min(chunk_size, remaining))
            if not chunk:
                logger.error("Video %s ended %s bytes short of %s", filename, remaining, byte_range.content_range)
                return
            yield chunk
            remaining -= len(chunk)
        logger.debug("Response complete for %s (%s)", filename, byte_range.content_range)
    except OSError as exc:
        logger.error("Failed to copy file content for %s: %s", filename, exc)
    except GeneratorExit:
        if remaining > 0:
            logger.error(
                "Client disconnected from %s with %s bytes of %s unsent",
                filename,
                remaining,
                byte_range.content_range,
            )
        raise
    finally:
        handle.close()


class ByteRangeResponse(StreamingResponse):
    """206 response streaming one byte range of an open video file.

    The body generator and the file handle are closed once the response ends,
    including when a send to the client fails part way through.
    """

    def __init__(
        self,
        handle: BinaryIO,
        byte_range: ByteRange,
        filename: str,
        logger: logging.Logger,
    ) -> None:
        self._handle = handle
        self._chunks = iter_byte_range(handle, byte_range, filename, logger, chunk_size=STREAM_CHUNK_SIZE)
        super().__init__(
            self._chunks,
            status_code=206,
            media_type=VIDEO_MEDIA_TYPE,
            headers={
                "Accept-Ranges": "bytes",
                "Content-Range": byte_range.content_range,
                "Content-Length": str(byte_range.length),
            },
        )

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self._chunks.close()
            self._handle.close()


def stream_video(
    catalog: Catalog,
    filename: str,
    range_header: Optional[str],
    *,
    logger: Optional[logging.Logger] = None,
) -> Response:
    """Build the response for ``GET /stream/{filename}``."""
    log = logger or logging.getLogger(__name__)

    if not is_valid_filename(filename):
        return PlainTextResponse("Invalid filename.", status_code=400)

    video_path = catalog.path_for(filename)
    if video_path is None:
        return PlainTextResponse("Video not found.", status_code=404)

    try:
        handle = video_path.open("rb")
    except OSError:
        return PlainTextResponse("Video not found.", status_code=404)

    try:
        size = os.fstat(handle.fileno()).st_size
    except OSError as exc:
        handle.close()
        log.error("Failed to get file info for %s: %s", video_path, exc)
        return PlainTextResponse("Failed to get file info.", status_code=500)

    byte_range = resolve_byte_range(range_header, size)
    if not byte_range.satisfiable:
        handle.close()
        return PlainTextResponse(
            "Invalid byte range.",
            status_code=416,
            headers={"Content-Range": f"bytes */{size}"},
        )

    log.debug(
        "Request %s range=%r size=%s content_range=%s content_length=%s",
        filename,
        range_header,
        size,
        byte_range.content_range,
        byte_range.length,
    )

    return ByteRangeResponse(handle, byte_range, filename, log)


def create_app(
    catalog: Catalog,
    groups: Sequence[CaptureGroup],
    *,
    templates_dir: Optional[Path] = None,
    static_dir: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> FastAPI:
    """Create the FastAPI application serving the listing page and video streams."""
    log = logger or logging.getLogger(__name__)
    app = FastAPI(title="Timelapse Stream", docs_url=None, redoc_url=None, openapi_url=None)
    templates = Jinja2Templates(directory=str(templates_dir or DEFAULT_TEMPLATES_DIR))

    app.state.catalog = catalog
    app.state.capture_groups = tuple(groups)

    if static_dir is not None and Path(static_dir).is_dir():
        app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

    @app.get("/", response_class=HTMLResponse)
    def index(request: Request) -> Response:
        return templates.TemplateResponse(
            request,
            "videos.html",
            {"capture_groups": app.state.capture_groups},
        )

    # ``:path`` lets slashes reach the handler so they are rejected with 400.
    @app.get("/stream/{filename:path}")
    def stream(filename: str, request: Request) -> Response:
        return stream_video(catalog, filename, request.headers.get("range"), logger=log)

    return app


__all__ = ["ByteRangeResponse", "create_app", "is_valid_filename", "iter_byte_range", "stream_video"]
