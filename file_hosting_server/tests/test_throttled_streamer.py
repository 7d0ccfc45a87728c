import os
import sys
import logging
from urllib.parse import unquote

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.services import throttled_streamer
from app.services.errors import NotFound
from app.services.rate_limiter import RateLimiter
from app.services.throttled_streamer import (
    ThrottledStreamer,
    content_disposition,
    encode_filename,
)


class RecordingLimiter(RateLimiter):
    """Unlimited limiter that remembers every chunk it was asked about."""

    def __init__(self):
        super().__init__(0)
        self.calls = []

    async def acquire(self, n_bytes: int) -> None:
        self.calls.append(n_bytes)


@pytest.fixture
def limiter():
    return RecordingLimiter()


@pytest.mark.parametrize("name, expected", [
    ("plain.txt", "plain.txt"),
    ("my file (v2)*.txt", "my file %28v2%29%2A.txt"),
    ("it's.txt", "it%27s.txt"),
    ("résumé.pdf", "r%C3%A9sum%C3%A9.pdf"),
    ("50%.txt", "50%25.txt"),
    ("a!b~c-d_e.f", "a!b~c-d_e.f"),
])
def test_encode_filename(name, expected):
    assert encode_filename(name) == expected


@pytest.mark.parametrize("name", [
    "my file (v2)*.txt",
    "it's (final) copy*.tar.gz",
    "日本語 ファイル.pdf",
    "a%20b.txt",
    "semi;colon,comma&amp.txt",
])
def test_encoded_filename_decodes_to_original(name):
    encoded = encode_filename(name)
    assert encoded.isascii()
    assert unquote(encoded) == name


def test_content_disposition_header():
    assert content_disposition("a b.txt") == "attachment; filename*=UTF-8''a b.txt"


def test_chunk_size_must_be_positive(limiter):
    with pytest.raises(ValueError):
        ThrottledStreamer(limiter, chunk_size=-1)


@pytest.mark.asyncio
async def test_open_missing_file(tmp_path, limiter):
    streamer = ThrottledStreamer(limiter, chunk_size=4)
    with pytest.raises(NotFound):
        await streamer.open(tmp_path / "missing.bin")


@pytest.mark.asyncio
async def test_open_directory_is_not_found(tmp_path, limiter):
    streamer = ThrottledStreamer(limiter, chunk_size=4)
    with pytest.raises(NotFound):
        await streamer.open(tmp_path)


@pytest.mark.asyncio
async def test_file_removed_before_open(tmp_path, limiter, monkeypatch):
    path = tmp_path / "racy.bin"
    path.write_bytes(b"data")

    async def vanished(*args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(throttled_streamer.aiofiles, "open", vanished)
    streamer = ThrottledStreamer(limiter, chunk_size=4)
    with pytest.raises(NotFound):
        await streamer.open(path)


@pytest.mark.asyncio
async def test_every_chunk_goes_through_limiter(tmp_path, limiter):
    path = tmp_path / "ten.bin"
    path.write_bytes(b"0123456789")

    streamer = ThrottledStreamer(limiter, chunk_size=4)
    response = await streamer.open(path)

    assert response.media_type == "application/octet-stream"
    assert response.headers["content-length"] == "10"
    assert response.headers["content-disposition"] == "attachment; filename*=UTF-8''ten.bin"

    chunks = [chunk async for chunk in response.body_iterator]
    assert chunks == [b"0123", b"4567", b"89"]
    assert limiter.calls == [4, 4, 2]
    assert response.session.bytes_sent == 10


@pytest.mark.asyncio
async def test_abort_mid_stream_is_quiet(tmp_path, limiter, caplog):
    path = tmp_path / "big.bin"
    path.write_bytes(b"x" * 100)

    streamer = ThrottledStreamer(limiter, chunk_size=10)
    response = await streamer.open(path)

    with caplog.at_level(logging.DEBUG, logger="file_hosting"):
        first = await response.body_iterator.__anext__()
        await response.body_iterator.aclose()

    assert first == b"x" * 10
    assert response.session.bytes_sent == 0
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
    assert any("aborted" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_client_disconnect_is_not_an_error(tmp_path, limiter, caplog):
    path = tmp_path / "big.bin"
    path.write_bytes(b"x" * 100)

    streamer = ThrottledStreamer(limiter, chunk_size=10)
    response = await streamer.open(path)

    async def receive():
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.body":
            raise ConnectionResetError(104, "Connection reset by peer")

    scope = {"type": "http", "asgi": {"version": "3.0", "spec_version": "2.4"}, "method": "GET"}
    with caplog.at_level(logging.DEBUG, logger="file_hosting"):
        await response(scope, receive, send)
        await response.body_iterator.aclose()

    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


@pytest.mark.asyncio
async def test_symlink_loop_is_not_found(tmp_path, limiter):
    os.symlink(tmp_path / "loop", tmp_path / "loop")
    streamer = ThrottledStreamer(limiter, chunk_size=4)
    with pytest.raises(NotFound):
        await streamer.open(tmp_path / "loop")
    with pytest.raises(NotFound):
        await streamer.head(tmp_path / "loop")


@pytest.mark.asyncio
async def test_head_has_download_headers_and_no_body(tmp_path, limiter):
    path = tmp_path / "my file (v2)*.txt"
    path.write_bytes(b"0123456789")

    streamer = ThrottledStreamer(limiter, chunk_size=4)
    response = await streamer.head(path)

    assert response.body == b""
    assert response.media_type == "application/octet-stream"
    assert response.headers["content-length"] == "10"
    assert response.headers["content-disposition"] == "attachment; filename*=UTF-8''my file %28v2%29%2A.txt"
    assert limiter.calls == []
