"""Input normalization and directory expansion."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Iterator

from bulkrename.planning.errors import PlanningError
from bulkrename.planning.paths import normalize_path


def _is_hidden(path: Path) -> bool:
    return any(part.startswith(".") for part in path.parts if part not in (".", ".."))


class InputCollector:
    """Turn user-supplied paths into the list of entries a batch will rename."""

    def __init__(self, *, expand_directories: bool = False, include_hidden: bool = True) -> None:
        self.expand_directories = expand_directories
        self.include_hidden = include_hidden

    def collect(self, paths: Iterable[str | os.PathLike]) -> list[Path]:
        """Normalize inputs, dropping duplicates and expanding directories when enabled.

        Args:
            paths: Files and/or directories supplied by the caller.

        Returns:
            list[Path]: Absolute paths in arrival order.

        Raises:
            PlanningError: If an input does not exist.
        """
        seen: set[Path] = set()
        collected: list[Path] = []
        for raw in paths:
            path = normalize_path(raw)
            if not os.path.lexists(path):
                raise PlanningError(f"Input path does not exist: {path}")
            candidates = self._expand(path) if self.expand_directories and path.is_dir() else [path]
            for candidate in candidates:
                if candidate not in seen:
                    seen.add(candidate)
                    collected.append(candidate)
        return collected

    def _expand(self, root: Path) -> Iterator[Path]:
        """Yield regular files beneath ``root`` in a stable, sorted walk order."""
        for directory, dirnames, filenames in os.walk(root):
            dirnames.sort()
            base = Path(directory)
            if not self.include_hidden:
                dirnames[:] = [name for name in dirnames if not name.startswith(".")]
            for name in sorted(filenames):
                path = base / name
                if not self.include_hidden and _is_hidden(path.relative_to(root)):
                    continue
                if path.is_file():
                    yield path


__all__ = ["InputCollector"]
