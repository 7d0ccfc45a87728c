"""Failures raised by the file hosting services.

The request handler maps each class to an HTTP status; services never
build responses for these themselves.
"""
import errno

# stat/open failures that mean "nothing servable here" rather than a fault:
# missing entry, a file used as a directory, or a symlink loop
MISSING_ERRNOS = (errno.ENOENT, errno.ENOTDIR, errno.ELOOP)


def is_missing(error: OSError) -> bool:
    return error.errno in MISSING_ERRNOS


class FileHostingError(Exception):
    """Base class for file hosting failures."""


class Forbidden(FileHostingError):
    """The requested path would escape the hosting root (403)."""


class NotFound(FileHostingError):
    """The path does not exist, vanished, or is not a regular file/directory (404)."""


class StorageError(FileHostingError):
    """Unexpected filesystem failure while listing or reading (500)."""
