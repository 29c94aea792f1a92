"""Metadata and checksum collection for planned files.

Collection runs on a bounded thread pool. Each worker only touches its own
:class:`FileRecord`, and a lock-protected counter feeds progress reporting.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import os
import re
import subprocess
import threading
import zlib
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Sequence

from .errors import PlanningCancelled, ProbeError
from .models import CHECKSUM_ALGORITHMS, FileRecord

LOGGER = logging.getLogger(__name__)

_META_REFERENCE = re.compile(r"(^|\W)meta\s*(\.|\[)")
_CHUNK_SIZE = 1024 * 1024

ProgressCallback = Callable[[float], None]

DIRECTORY_META_ERROR = (
    "The template requests metadata, but this input is a directory and directories have no "
    "metadata. Enable directory expansion to rename the files inside it instead."
)


def template_requests_meta(template: str) -> bool:
    """Return whether the template reads ``meta.<key>`` or ``meta[...]``."""
    return _META_REFERENCE.search(template) is not None


def requested_checksums(template: str) -> list[str]:
    """Return the checksum algorithms whose names appear in the template."""
    lowered = template.lower()
    return [algorithm for algorithm in CHECKSUM_ALGORITHMS if algorithm in lowered]


def default_worker_count() -> int:
    """Roughly 80% of the available CPUs, never fewer than one."""
    return max(1, math.floor((os.cpu_count() or 1) * 0.8))


class MetadataProbe(Protocol):
    """Retrieves structured metadata for a file."""

    def probe(self, path: str) -> Dict[str, Any]: ...


class FFProbe:
    """Media metadata probe backed by the ``ffprobe`` executable."""

    def __init__(self, executable: str = "ffprobe") -> None:
        self.executable = executable

    def probe(self, path: str) -> Dict[str, Any]:
        """Run ffprobe on ``path`` and return normalized metadata.

        Raises:
            ProbeError: If ffprobe is missing, fails, or prints unparsable output.
        """
        command = [
            self.executable,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            path,
        ]
        try:
            proc = subprocess.run(
                command, capture_output=True, text=True, encoding="utf-8", errors="replace"
            )
        except OSError as exc:
            raise ProbeError(f"Unable to run {self.executable}: {exc}") from exc
        if proc.returncode != 0:
            detail = proc.stderr.strip() or f"exit status {proc.returncode}"
            raise ProbeError(f"ffprobe failed: {detail}")
        try:
            data = json.loads(proc.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ProbeError(f"ffprobe returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ProbeError(f"ffprobe returned {type(data).__name__} instead of an object")
        return normalize_ffprobe(data)


def normalize_ffprobe(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten raw ffprobe JSON into template-friendly keys."""
    fmt = data.get("format") or {}
    streams = [stream for stream in data.get("streams") or [] if isinstance(stream, dict)]
    meta: Dict[str, Any] = {
        "container": fmt.get("format_name"),
        "duration": _to_number(fmt.get("duration")),
        "bitrate": _to_number(fmt.get("bit_rate")),
        "streams": streams,
    }

    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    if video is not None:
        meta.update(
            width=video.get("width"),
            height=video.get("height"),
            codec=video.get("codec_name"),
            framerate=_frame_rate(video.get("avg_frame_rate") or video.get("r_frame_rate")),
        )
    if audio is not None:
        meta.update(
            audio_codec=audio.get("codec_name"),
            channels=audio.get("channels"),
            samplerate=_to_number(audio.get("sample_rate")),
        )
        meta.setdefault("codec", audio.get("codec_name"))
    meta["type"] = "video" if video is not None else "audio" if audio is not None else None

    for key, value in (fmt.get("tags") or {}).items():
        meta.setdefault(str(key).lower(), value)
    return {key: value for key, value in meta.items() if value is not None}


def _to_number(value: Any) -> Optional[float]:
    if value in (None, "", "N/A"):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return int(number) if number.is_integer() else number


def _frame_rate(value: Any) -> Optional[float]:
    if not isinstance(value, str) or "/" not in value:
        return _to_number(value)
    numerator, _, denominator = value.partition("/")
    try:
        den = float(denominator)
        return round(float(numerator) / den, 3) if den else None
    except ValueError:
        return None


class ChecksumComputer:
    """Compute content digests by streaming file contents."""

    def __init__(self, chunk_size: int = _CHUNK_SIZE) -> None:
        self.chunk_size = chunk_size

    def digest(self, path: str, algorithm: str) -> str:
        """Return the lowercase hex digest of ``path``.

        Args:
            path: File to read.
            algorithm: One of ``crc32``, ``md5``, ``sha1``, ``sha256``, ``sha512``.

        Returns:
            str: Hex digest; crc32 is zero padded to eight digits.
        """
        if algorithm not in CHECKSUM_ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm: {algorithm}")

        if algorithm == "crc32":
            crc = 0
            for chunk in self._chunks(path):
                crc = zlib.crc32(chunk, crc)
            return f"{crc & 0xFFFFFFFF:08x}"

        hasher = hashlib.new(algorithm)
        for chunk in self._chunks(path):
            hasher.update(chunk)
        return hasher.hexdigest()

    def _chunks(self, path: str) -> Iterable[bytes]:
        with open(path, "rb") as handle:
            while chunk := handle.read(self.chunk_size):
                yield chunk


class MetadataCollector:
    """Populate records with metadata and checksums on a bounded worker pool."""

    def __init__(
        self,
        probe: MetadataProbe | None = None,
        checksums: ChecksumComputer | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.probe = probe or FFProbe()
        self.checksums = checksums or ChecksumComputer()
        self.max_workers = max(1, max_workers) if max_workers else default_worker_count()

    def collect(
        self,
        records: Sequence[FileRecord],
        *,
        want_meta: bool,
        algorithms: Sequence[str] = (),
        on_progress: ProgressCallback | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> None:
        """Fill in metadata and checksums for every record.

        Args:
            records: Records to enrich in place.
            want_meta: Whether to probe metadata.
            algorithms: Checksum algorithms to compute for regular files.
            on_progress: Receives the fraction of completed records.
            should_cancel: Polled as results arrive; a true result stops the run.

        Raises:
            PlanningCancelled: If ``should_cancel`` requested cancellation.
        """
        total = len(records)
        if total == 0:
            return

        completed = 0
        lock = threading.Lock()

        def work(record: FileRecord) -> None:
            nonlocal completed
            self._collect_one(record, want_meta, algorithms)
            with lock:
                completed += 1
                if on_progress is not None:
                    on_progress(completed / total)

        LOGGER.debug("Collecting data for %d files with %d workers", total, self.max_workers)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(work, record) for record in records]
            for future in as_completed(futures):
                if should_cancel is not None and should_cancel():
                    executor.shutdown(wait=True, cancel_futures=True)
                    raise PlanningCancelled("Planning was cancelled.")
                future.result()

    def _collect_one(self, record: FileRecord, want_meta: bool, algorithms: Sequence[str]) -> None:
        if want_meta:
            record.meta = {}
            if not record.isfile:
                record.meta_error = DIRECTORY_META_ERROR
                record.meta_fatal = True
            else:
                try:
                    record.meta = self.probe.probe(record.path)
                except ProbeError as exc:
                    LOGGER.info("Metadata unavailable for %s: %s", record.path, exc)
                    record.meta_error = (
                        f'Meta couldn\'t be retrieved for file "{record.path}": {exc}'
                    )
                except Exception as exc:
                    LOGGER.warning("Metadata probe crashed for %s", record.path, exc_info=True)
                    record.meta = {}
                    record.meta_error = (
                        f'Meta couldn\'t be retrieved for file "{record.path}": '
                        f"{type(exc).__name__}: {exc}"
                    )

        if record.isfile:
            for algorithm in algorithms:
                try:
                    record.checksums[algorithm] = self.checksums.digest(record.path, algorithm)
                except OSError as exc:
                    record.checksum_error = f'Checksum {algorithm} failed for "{record.path}": {exc}'
                    break


__all__ = [
    "ChecksumComputer",
    "DIRECTORY_META_ERROR",
    "FFProbe",
    "MetadataCollector",
    "MetadataProbe",
    "default_worker_count",
    "normalize_ffprobe",
    "requested_checksums",
    "template_requests_meta",
]
