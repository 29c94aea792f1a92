"""Path sanitization for computed destinations."""

from __future__ import annotations

import os
import re

DEFAULT_REPLACEMENT = "!"
DEFAULT_MAX_LENGTH = 100

_RESERVED_CHARACTERS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WINDOWS_RESERVED_NAMES = re.compile(r"^(con|prn|aux|nul|com\d|lpt\d)(\..*)?$", re.IGNORECASE)
_DRIVE_PREFIX = re.compile(r"^[a-zA-Z]:$")
_SEPARATORS = re.compile(r"[\\/]+") if os.sep == "\\" else re.compile(r"/+")


def sanitize_path(
    raw_path: str,
    *,
    replacement: str = DEFAULT_REPLACEMENT,
    max_length: int = DEFAULT_MAX_LENGTH,
    base: str | None = None,
) -> str:
    """Return ``raw_path`` with every segment made valid as a file name.

    The leading root or drive segment is kept as is, and so are the segments of
    ``base`` when ``raw_path`` starts with it. Every other segment has reserved
    characters replaced and is truncated to ``max_length``; the final segment
    keeps its extension when possible and is always sanitized.

    Args:
        raw_path: Path produced by template expansion.
        replacement: Text substituted for reserved characters.
        max_length: Maximum length of a single segment.
        base: Leading directory that already exists and must not be rewritten.

    Returns:
        str: Sanitized path joined with the platform separator.
    """
    segments = _SEPARATORS.split(raw_path)
    cleaned: list[str] = []
    last = len(segments) - 1
    kept = _shared_prefix(segments, base)

    for index, segment in enumerate(segments):
        if index < kept:
            cleaned.append(segment)
            continue
        if index == 0 and (segment == "" or _DRIVE_PREFIX.match(segment)):
            cleaned.append(segment)
            continue
        if not segment:
            continue
        name = sanitize_segment(segment, replacement=replacement)
        cleaned.append(truncate_segment(name, max_length, keep_extension=index == last))

    if cleaned == [""]:
        return os.sep
    return os.sep.join(cleaned)


def _shared_prefix(segments: list[str], base: str | None) -> int:
    if not base:
        return 0
    prefix = _SEPARATORS.split(base)
    if len(prefix) > 1 and prefix[-1] == "":
        prefix.pop()
    # The final segment is always the name being produced.
    if len(prefix) >= len(segments) or segments[: len(prefix)] != prefix:
        return 0
    return len(prefix)


def sanitize_segment(segment: str, *, replacement: str = DEFAULT_REPLACEMENT) -> str:
    """Replace characters that are not valid in a file name on any common filesystem."""
    if segment in {".", ".."}:
        return replacement or "_"

    name = _RESERVED_CHARACTERS.sub(replacement, segment)
    if replacement:
        escaped = re.escape(replacement)
        name = re.sub(f"(?:{escaped}){{2,}}", replacement, name)
        if len(name) > 1:
            name = re.sub(f"^(?:{escaped})+|(?:{escaped})+$", "", name)

    name = name.rstrip(". ")
    if _WINDOWS_RESERVED_NAMES.match(name):
        name += replacement
    return name or replacement or "_"


def truncate_segment(segment: str, max_length: int, *, keep_extension: bool = False) -> str:
    """Shorten a segment to ``max_length`` characters.

    With ``keep_extension`` the part after the last dot survives as long as it
    is shorter than the limit, and at least one base character is kept.
    """
    if len(segment) <= max_length:
        return segment
    if not keep_extension:
        return segment[:max_length]

    dot = segment.rfind(".")
    if dot <= 0:
        return segment[:max_length]
    base, extension = segment[:dot], segment[dot:]
    if len(extension) >= max_length:
        return segment[:max_length]
    keep = max(1, min(max_length - len(extension), len(base)))
    return base[:keep] + extension


__all__ = [
    "DEFAULT_MAX_LENGTH",
    "DEFAULT_REPLACEMENT",
    "sanitize_path",
    "sanitize_segment",
    "truncate_segment",
]
