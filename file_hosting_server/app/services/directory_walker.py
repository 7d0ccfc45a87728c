import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

import config
from app.services.errors import StorageError
from app.services.path_resolver import relative_request_path
from logger_config import setup_logger

logger = setup_logger()


@dataclass
class Node:
    """One entry of a directory listing."""
    name: str
    relative_path: str
    is_directory: bool
    children: List["Node"] = field(default_factory=list)
    is_symlink: bool = False


def _sort_key(entry: os.DirEntry) -> Tuple[bool, str, str]:
    return (not entry.is_dir(follow_symlinks=False), entry.name.casefold(), entry.name)


def _symlink_target_inside(real_root: str, entry: os.DirEntry) -> Optional[str]:
    """Return the symlink's real target if it stays inside root, else None."""
    target = os.path.realpath(entry.path)
    if target == real_root or target.startswith(real_root.rstrip(os.sep) + os.sep):
        return target
    return None


def _scan(path: str) -> List[os.DirEntry]:
    try:
        with os.scandir(path) as it:
            return sorted(it, key=_sort_key)
    except OSError as e:
        raise StorageError(f"Cannot read directory: {e.strerror or e}") from e


def walk_directory(dir_path: Union[str, Path], root: Union[str, Path],
                   max_depth: Optional[int] = None) -> Node:
    """Build the Node tree for dir_path and everything below it.

    Symlinks are never descended: a symlinked directory pointing inside root is
    listed as an empty directory node flagged is_symlink, one pointing outside
    root is left out. Any read failure aborts the whole walk with StorageError.
    """
    if max_depth is None:
        max_depth = config.MAX_LISTING_DEPTH

    dir_path = str(dir_path)
    real_root = os.path.realpath(str(root))
    relative = relative_request_path(root, dir_path)
    top = Node(
        name=os.path.basename(dir_path.rstrip(os.sep)) if relative else "",
        relative_path=relative,
        is_directory=True,
    )

    # Explicit stack instead of recursion keeps deep trees off the call stack
    pending: List[Tuple[Node, str, int]] = [(top, dir_path, 0)]
    while pending:
        node, path, depth = pending.pop()
        if depth > max_depth:
            raise StorageError(f"Directory tree deeper than {max_depth} levels")

        for entry in _scan(path):
            child_relative = f"{node.relative_path}/{entry.name}" if node.relative_path else entry.name

            if entry.is_symlink():
                target = _symlink_target_inside(real_root, entry)
                if target is None:
                    logger.debug(f"Skipping symlink leaving root: {child_relative}")
                    continue
                node.children.append(Node(
                    name=entry.name,
                    relative_path=child_relative,
                    is_directory=os.path.isdir(target),
                    is_symlink=True,
                ))
                continue

            try:
                is_directory = entry.is_dir(follow_symlinks=False)
            except OSError as e:
                raise StorageError(f"Cannot stat entry: {e.strerror or e}") from e

            child = Node(name=entry.name, relative_path=child_relative, is_directory=is_directory)
            node.children.append(child)
            if is_directory:
                pending.append((child, entry.path, depth + 1))

    return top
