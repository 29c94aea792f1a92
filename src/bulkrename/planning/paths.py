"""Path helpers shared by the planner and executor."""

from __future__ import annotations

import os
import platform
from pathlib import Path, PurePath
from typing import Iterable, Optional, Union

PathLike = Union[str, os.PathLike]

CASE_INSENSITIVE = platform.system() in ("Windows", "Darwin")


def normalize_path(path: PathLike) -> Path:
    """Return an absolute, normalized path without resolving symlinks."""
    return Path(os.path.normpath(os.path.abspath(os.path.expanduser(os.fspath(path)))))


def is_same_path(left: PathLike, right: PathLike) -> bool:
    """Compare two paths the way the host filesystem usually does."""
    a = os.path.normpath(os.fspath(left))
    b = os.path.normpath(os.fspath(right))
    if CASE_INSENSITIVE:
        return a.casefold() == b.casefold()
    return a == b


def path_key(path: PathLike) -> str:
    """Return a string key under which two spellings of one path compare equal."""
    text = os.path.normpath(os.fspath(path))
    return text.casefold() if CASE_INSENSITIVE else text


def common_paths_root(left: PathLike, right: PathLike) -> Optional[Path]:
    """Return the longest shared segment prefix of two paths.

    Segments are compared whole, so ``/foo/ba`` and ``/foo/bar`` share ``/foo``.
    """
    shared: list[str] = []
    for a, b in zip(PurePath(left).parts, PurePath(right).parts):
        if a != b:
            break
        shared.append(a)
    return Path(*shared) if shared else None


def find_common_directory(paths: Iterable[PathLike]) -> Optional[Path]:
    """Return the deepest directory containing every path, or ``None``.

    The comparison starts from each path's parent directory, so a single file
    yields its own directory.
    """
    common: Optional[Path] = None
    for index, path in enumerate(paths):
        parent = Path(path).parent
        if index == 0:
            common = parent
            continue
        if common is None:
            return None
        common = common_paths_root(common, parent)
    return common


__all__ = [
    "CASE_INSENSITIVE",
    "common_paths_root",
    "find_common_directory",
    "is_same_path",
    "normalize_path",
    "path_key",
]
