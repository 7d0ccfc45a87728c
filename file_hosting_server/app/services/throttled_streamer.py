import asyncio
import os
import stat
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Optional
from urllib.parse import quote

import aiofiles
import aiofiles.os
from fastapi.responses import Response, StreamingResponse
from starlette.requests import ClientDisconnect

import config
from app.services.errors import NotFound, StorageError, is_missing
from app.services.rate_limiter import RateLimiter
from logger_config import setup_logger

logger = setup_logger()

# Characters encodeURIComponent leaves as-is besides alphanumerics
_URI_COMPONENT_SAFE = "-_.!~*'()"


def encode_filename(filename: str) -> str:
    """Percent-encode a filename for the RFC 5987 filename* parameter.

    URI component encoding, then ' ( ) and * escaped explicitly since they
    are meaningful in the header syntax, and %20 turned back into a space.
    """
    encoded = quote(filename, safe=_URI_COMPONENT_SAFE, encoding="utf-8")
    encoded = encoded.replace("'", "%27").replace("(", "%28").replace(")", "%29")
    encoded = encoded.replace("*", "%2A")
    return encoded.replace("%20", " ")


def content_disposition(filename: str) -> str:
    return f"attachment; filename*=UTF-8''{encode_filename(filename)}"


@dataclass
class DownloadSession:
    file_path: Path
    bytes_sent: int = 0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time


class ThrottledFileResponse(StreamingResponse):
    """Streaming response that treats a client going away as a normal end."""

    def __init__(self, content, session: DownloadSession, **kwargs):
        super().__init__(content, **kwargs)
        self.session = session

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except (ClientDisconnect, ConnectionError) as e:
            logger.debug(
                f"Client disconnected from {self.session.file_path.name} after "
                f"{self.session.bytes_sent} bytes ({type(e).__name__})"
            )
        except OSError as e:
            # Sending on a closed transport surfaces as a bare OSError on some servers
            logger.debug(f"Send failed for {self.session.file_path.name}: {e}")
        finally:
            # Release the file now rather than when the generator is collected
            await self.body_iterator.aclose()


class ThrottledStreamer:
    """Serves files as attachments, drawing every chunk from a shared RateLimiter."""

    def __init__(self, rate_limiter: RateLimiter, chunk_size: Optional[int] = None):
        self.rate_limiter = rate_limiter
        self.chunk_size = chunk_size or config.CHUNK_SIZE
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

    async def stat_file(self, resolved_path: Path) -> os.stat_result:
        """Stat resolved_path, raising NotFound unless it is a regular file."""
        try:
            file_stat = await aiofiles.os.stat(resolved_path)
        except OSError as e:
            if is_missing(e):
                raise NotFound("File not found") from e
            raise StorageError(f"Cannot stat file: {e.strerror or e}") from e

        if not stat.S_ISREG(file_stat.st_mode):
            raise NotFound("Not a regular file")
        return file_stat

    def download_headers(self, resolved_path: Path, file_stat: os.stat_result) -> dict:
        return {
            "content-disposition": content_disposition(Path(resolved_path).name),
            "content-length": str(file_stat.st_size),
        }

    async def head(self, resolved_path: Path) -> Response:
        """Headers of the download without a body, for HEAD requests."""
        file_stat = await self.stat_file(resolved_path)
        return Response(
            media_type="application/octet-stream",
            headers=self.download_headers(resolved_path, file_stat),
        )

    async def open(self, resolved_path: Path) -> ThrottledFileResponse:
        """Open resolved_path and return a response streaming it.

        Raises NotFound if the path is missing or is not a regular file,
        StorageError for any other filesystem failure.
        """
        file_stat = await self.stat_file(resolved_path)

        # Open before building the response so a file removed after the stat is still a 404
        try:
            handle = await aiofiles.open(resolved_path, 'rb')
        except IsADirectoryError as e:
            raise NotFound("Not a regular file") from e
        except OSError as e:
            if is_missing(e):
                raise NotFound("File not found") from e
            raise StorageError(f"Cannot open file: {e.strerror or e}") from e

        session = DownloadSession(file_path=Path(resolved_path))
        logger.info(f"Starting download: {session.file_path.name} ({file_stat.st_size} bytes)")

        return ThrottledFileResponse(
            self.iter_chunks(handle, session),
            session=session,
            media_type="application/octet-stream",
            headers=self.download_headers(resolved_path, file_stat),
        )

    async def iter_chunks(self, handle, session: DownloadSession) -> AsyncIterator[bytes]:
        """Yield the file in chunks, waiting on the rate limiter before each one."""
        completed = False
        try:
            while True:
                try:
                    chunk = await handle.read(self.chunk_size)
                except OSError as e:
                    logger.error(f"Read failed for {session.file_path.name} after {session.bytes_sent} bytes: {e}",
                                 exc_info=True)
                    raise StorageError("Error reading file") from e
                if not chunk:
                    break
                await self.rate_limiter.acquire(len(chunk))
                yield chunk
                session.bytes_sent += len(chunk)
            completed = True
        except (asyncio.CancelledError, GeneratorExit):
            logger.debug(f"Download of {session.file_path.name} aborted after {session.bytes_sent} bytes")
            raise
        finally:
            await handle.close()
            if completed:
                logger.info(
                    f"Finished download: {session.file_path.name} "
                    f"({session.bytes_sent} bytes in {session.elapsed:.2f}s)"
                )
