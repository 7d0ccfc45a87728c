import asyncio
import os
import stat
from contextlib import asynccontextmanager
from pathlib import Path

import aiofiles.os
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from app.services.directory_walker import walk_directory
from app.services.errors import Forbidden, NotFound, StorageError, is_missing
from app.services.listing_presenter import render_index, render_listing
from app.services.path_resolver import resolve_request_path
from app.services.rate_limiter import RateLimiter
from app.services.throttled_streamer import ThrottledStreamer
from logger_config import setup_logger

# Logger setup
logger = setup_logger()


def hosting_root() -> Path:
    """Absolute, symlink-free path of the hosted directory."""
    return Path(os.path.realpath(config.ROOT_DIRECTORY))


def create_rate_limiter() -> RateLimiter:
    return RateLimiter(config.capacity_bytes_per_second(config.SPEED_LIMIT_ENABLED, config.SPEED_LIMIT_MBPS))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One limiter for the whole process, shared by every download
    root = hosting_root()
    root.mkdir(parents=True, exist_ok=True)
    app.state.root = root
    app.state.rate_limiter = create_rate_limiter()
    yield
    logger.info(f"Rate limiter usage: {app.state.rate_limiter.stats}")


# Create FastAPI app with lifespan
app = FastAPI(title="File Hosting Server", lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def plain_text_http_exception(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as short plain-text messages."""
    detail = exc.detail
    if exc.status_code == 404 and detail == "Not Found":
        detail = "File not found"
    return PlainTextResponse(str(detail), status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.get("/", response_class=HTMLResponse)
async def index():
    return HTMLResponse(render_index(config.SPEED_LIMIT_ENABLED, config.SPEED_LIMIT_MBPS))


@app.get("/robots.txt", response_class=PlainTextResponse)
async def robots():
    return PlainTextResponse("User-agent: *\nDisallow: /files")


@app.api_route("/files", methods=["GET", "HEAD"])
async def get_files_root(request: Request):
    return await get_files(request, "")


@app.api_route("/files/{request_path:path}", methods=["GET", "HEAD"])
async def get_files(request: Request, request_path: str):
    """List a directory or download a file below the hosting root."""
    root = request.app.state.root
    logger.info(f"Receiving files request for path: /{request_path}")

    try:
        resolved = resolve_request_path(root, request_path)
    except Forbidden:
        logger.info(f"Rejected path outside root: /{request_path}")
        raise HTTPException(status_code=403, detail="Access denied")

    try:
        file_stat = await aiofiles.os.stat(resolved)
    except OSError as e:
        if is_missing(e):
            logger.debug(f"Path not found: /{request_path}")
            raise HTTPException(status_code=404, detail="File not found")
        logger.error(f"Error accessing /{request_path}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error reading directory")

    if stat.S_ISDIR(file_stat.st_mode):
        return await list_directory(request, resolved, root)

    if stat.S_ISREG(file_stat.st_mode):
        return await download_file(request, resolved, request_path)

    logger.debug(f"Not a file or directory: /{request_path}")
    raise HTTPException(status_code=404, detail="File not found")


async def list_directory(request: Request, resolved: Path, root: Path) -> Response:
    try:
        tree = await asyncio.to_thread(walk_directory, resolved, root)
    except StorageError as e:
        logger.error(f"Error listing directory: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error reading directory")

    logger.debug(f"Listed /{tree.relative_path} with {len(tree.children)} entries")
    html = render_listing(tree, config.SPEED_LIMIT_ENABLED, config.SPEED_LIMIT_MBPS)
    if request.method == "HEAD":
        return HTMLResponse(headers={"content-length": str(len(html.encode("utf-8")))})
    return HTMLResponse(html)


async def download_file(request: Request, resolved: Path, request_path: str) -> Response:
    streamer = ThrottledStreamer(request.app.state.rate_limiter, config.CHUNK_SIZE)
    try:
        if request.method == "HEAD":
            return await streamer.head(resolved)
        return await streamer.open(resolved)
    except NotFound:
        logger.debug(f"File vanished before download: /{request_path}")
        raise HTTPException(status_code=404, detail="File not found")
    except StorageError as e:
        logger.error(f"Error opening file: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error reading file")


if __name__ == "__main__":
    logger.info("Starting File Hosting Server...")
    logger.info(f"Root directory: {hosting_root()}")
    if config.SPEED_LIMIT_ENABLED:
        logger.info(f"Download speed limit: {config.SPEED_LIMIT_MBPS}Mbps")
    else:
        logger.info("Speed limit is disabled")
    uvicorn.run(app, host=config.HOST, port=config.PORT)
