import os
from pathlib import Path
from typing import List, Union

from app.services.errors import Forbidden

# Only separators the host uses; "\" is an ordinary filename character on POSIX
_SEPARATORS = tuple(sep for sep in (os.sep, os.altsep) if sep and sep != "/")


def _split_segments(request_path: str) -> List[str]:
    """Normalize a request path into clean segments without touching the filesystem."""
    if "\x00" in request_path:
        raise Forbidden("Invalid character in path")

    for sep in _SEPARATORS:
        request_path = request_path.replace(sep, "/")

    segments: List[str] = []
    for segment in request_path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not segments:
                raise Forbidden("Path escapes root")
            segments.pop()
            continue
        segments.append(segment)
    return segments


def _is_contained(root: str, candidate: str) -> bool:
    # Compare against root plus separator so "/data/files-x" does not match "/data/files"
    return candidate == root or candidate.startswith(root.rstrip(os.sep) + os.sep)


def resolve_request_path(root: Union[str, Path], request_path: str) -> Path:
    """Resolve a client supplied path against root.

    Returns root itself for an empty path or "/". Raises Forbidden when the
    path, after normalization or after following symlinks, leaves root.
    """
    root_str = os.path.abspath(str(root))
    segments = _split_segments(request_path or "")

    joined = os.path.join(root_str, *segments) if segments else root_str
    if not _is_contained(root_str, joined):
        raise Forbidden("Path escapes root")

    real_root = os.path.realpath(root_str)
    real_path = os.path.realpath(joined)
    if not _is_contained(real_root, real_path):
        raise Forbidden("Path escapes root")

    return Path(joined)


def relative_request_path(root: Union[str, Path], resolved: Union[str, Path]) -> str:
    """Return resolved relative to root with forward slashes ("" for root itself)."""
    relative = os.path.relpath(str(resolved), os.path.abspath(str(root)))
    if relative == os.curdir:
        return ""
    return relative.replace(os.sep, "/")
