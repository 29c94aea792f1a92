"""Batch-wide template variables and helpers."""

from __future__ import annotations

import logging
import os
import random
import re
import shlex
import string
import tempfile
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence

LOGGER = logging.getLogger(__name__)

PLATFORM_FOLDER_NAMES = (
    "home",
    "desktop",
    "documents",
    "downloads",
    "music",
    "pictures",
    "videos",
    "tmp",
)

_XDG_KEYS = {
    "desktop": "XDG_DESKTOP_DIR",
    "documents": "XDG_DOCUMENTS_DIR",
    "downloads": "XDG_DOWNLOAD_DIR",
    "music": "XDG_MUSIC_DIR",
    "pictures": "XDG_PICTURES_DIR",
    "videos": "XDG_VIDEOS_DIR",
}
_XDG_LINE = re.compile(r"^(XDG_[A-Z]+_DIR)=(.*)$")
_UID_ALPHABET = string.digits + string.ascii_lowercase


class PlatformFolders(Protocol):
    """Resolves well-known user folders by name."""

    def resolve(self, name: str) -> Optional[str]: ...


class UserFolders:
    """Resolve user folders from the XDG user-dirs file, falling back to ``~/<Name>``."""

    def __init__(self, home: Path | None = None) -> None:
        self._home = home or Path.home()
        self._xdg: Dict[str, str] | None = None

    def resolve(self, name: str) -> Optional[str]:
        if name == "home":
            return str(self._home)
        if name == "tmp":
            return tempfile.gettempdir()
        if name not in _XDG_KEYS:
            return None
        configured = self._xdg_dirs().get(_XDG_KEYS[name])
        if configured:
            return configured
        return str(self._home / name.capitalize())

    def _xdg_dirs(self) -> Dict[str, str]:
        if self._xdg is not None:
            return self._xdg
        self._xdg = {}
        config_home = Path(os.environ.get("XDG_CONFIG_HOME") or self._home / ".config")
        user_dirs = config_home / "user-dirs.dirs"
        try:
            lines = user_dirs.read_text(encoding="utf-8").splitlines()
        except OSError:
            return self._xdg
        for line in lines:
            match = _XDG_LINE.match(line.strip())
            if not match:
                continue
            try:
                value = shlex.split(match.group(2))[0]
            except (ValueError, IndexError):
                LOGGER.debug("Ignoring malformed user-dirs entry: %s", line)
                continue
            self._xdg[match.group(1)] = value.replace("$HOME", str(self._home))
        return self._xdg


class PathHelpers:
    """Path manipulation helpers exposed to templates as ``Path``."""

    sep = os.sep

    @staticmethod
    def join(*parts: str) -> str:
        return os.path.join(*parts)

    @staticmethod
    def basename(path: str, suffix: str | None = None) -> str:
        name = os.path.basename(path)
        if suffix and name.endswith(suffix) and name != suffix:
            return name[: -len(suffix)]
        return name

    @staticmethod
    def dirname(path: str) -> str:
        return os.path.dirname(path)

    @staticmethod
    def extname(path: str) -> str:
        return os.path.splitext(path)[1]

    @staticmethod
    def relative(start: str, to: str) -> str:
        return os.path.relpath(to, start)

    @staticmethod
    def resolve(*parts: str) -> str:
        return os.path.abspath(os.path.join(*parts))

    @staticmethod
    def normalize(path: str) -> str:
        return os.path.normpath(path)


def make_time(value: float | None = None, fmt: str | None = None) -> datetime | str:
    """Build a local datetime from POSIX seconds (now when omitted), formatted when ``fmt`` is set."""
    moment = datetime.now() if value is None else datetime.fromtimestamp(float(value))
    return moment.strftime(fmt) if fmt else moment


def uid(size: int = 10) -> str:
    """Return a short random base-36 identifier."""
    return "".join(random.choice(_UID_ALPHABET) for _ in range(size))


def build_common_variables(
    template: str,
    *,
    starttime: float,
    commondir: Optional[Path],
    folders: PlatformFolders,
) -> Dict[str, Any]:
    """Assemble the variables shared by every file of a batch.

    Platform folders are only resolved when their name appears in the template.
    ``files`` is filled in by the planner once per-file data is complete.
    """
    variables: Dict[str, Any] = {
        "starttime": starttime,
        "files": (),
        "commondir": str(commondir) if commondir is not None else None,
        "Path": PathHelpers(),
        "Time": make_time,
        "uid": uid,
    }
    for name in PLATFORM_FOLDER_NAMES:
        if name in template:
            variables[name] = folders.resolve(name)
    return variables


def freeze_files(file_variables: Sequence[Mapping[str, Any]]) -> tuple[Mapping[str, Any], ...]:
    """Return read-only views of per-file variables for the ``files`` list."""
    return tuple(MappingProxyType(dict(variables)) for variables in file_variables)


__all__ = [
    "PLATFORM_FOLDER_NAMES",
    "PathHelpers",
    "PlatformFolders",
    "UserFolders",
    "build_common_variables",
    "freeze_files",
    "make_time",
    "uid",
]
