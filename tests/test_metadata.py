"""Tests for metadata probing and checksum collection."""

import hashlib
import os
import threading
import zlib
from pathlib import Path
from typing import Any, Dict

import pytest

from bulkrename.planning.errors import PlanningCancelled, ProbeError
from bulkrename.planning.metadata import (
    DIRECTORY_META_ERROR,
    ChecksumComputer,
    FFProbe,
    MetadataCollector,
    default_worker_count,
    normalize_ffprobe,
    requested_checksums,
    template_requests_meta,
)
from bulkrename.planning.models import FileRecord


class FakeProbe:
    """Probe returning canned metadata, failing for names containing 'broken'."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def probe(self, path: str) -> Dict[str, Any]:
        with self._lock:
            self.calls.append(path)
        if "broken" in path:
            raise ProbeError("no streams")
        return {"title": Path(path).stem.title(), "duration": 12.5}


def _record(path: Path) -> FileRecord:
    return FileRecord(
        path=str(path),
        basename=path.name,
        filename=path.stem,
        extname=path.suffix,
        ext=path.suffix.lstrip("."),
        dirname=str(path.parent),
        dirbasename=path.parent.name,
        size=0,
        atime=0.0,
        mtime=0.0,
        ctime=0.0,
        birthtime=0.0,
        isfile=path.is_file(),
        isdirectory=path.is_dir(),
    )


def test_template_requests_meta() -> None:
    assert template_requests_meta("${meta.title}")
    assert template_requests_meta("${meta ['title']}")
    assert template_requests_meta("${files[0].meta.title}")
    assert not template_requests_meta("${metadata}")
    assert not template_requests_meta("${basename}")


def test_requested_checksums_are_case_insensitive() -> None:
    assert requested_checksums("${md5}-${SHA256}") == ["md5", "sha256"]
    assert requested_checksums("${basename}") == []


@pytest.mark.parametrize("algorithm", ["md5", "sha1", "sha256", "sha512"])
def test_checksum_matches_hashlib(tmp_path: Path, algorithm: str) -> None:
    payload = b"bulk rename " * 1000
    target = tmp_path / "data.bin"
    target.write_bytes(payload)

    digest = ChecksumComputer(chunk_size=7).digest(str(target), algorithm)

    assert digest == hashlib.new(algorithm, payload).hexdigest()


def test_crc32_is_zero_padded(tmp_path: Path) -> None:
    target = tmp_path / "data.bin"
    target.write_bytes(b"abc")

    digest = ChecksumComputer().digest(str(target), "crc32")

    assert digest == f"{zlib.crc32(b'abc') & 0xFFFFFFFF:08x}"
    assert len(digest) == 8


def test_collect_fills_metadata_and_checksums(tmp_path: Path) -> None:
    files = []
    for name in ("one.mp3", "two.mp3", "broken.mp3"):
        path = tmp_path / name
        path.write_bytes(name.encode())
        files.append(path)
    folder = tmp_path / "folder"
    folder.mkdir()
    records = [_record(path) for path in [*files, folder]]
    probe = FakeProbe()
    progress: list[float] = []

    MetadataCollector(probe=probe, max_workers=2).collect(
        records, want_meta=True, algorithms=["md5"], on_progress=progress.append
    )

    one, two, broken, directory = records
    assert one.meta == {"title": "One", "duration": 12.5}
    assert two.checksums["md5"] == hashlib.md5(b"two.mp3").hexdigest()
    assert broken.meta == {}
    assert broken.meta_error is not None and "no streams" in broken.meta_error
    assert not broken.meta_fatal
    assert directory.meta_error == DIRECTORY_META_ERROR
    assert directory.meta_fatal
    assert directory.checksums == {}
    assert str(folder) not in probe.calls
    assert sorted(progress) == progress
    assert progress[-1] == pytest.approx(1.0)
    assert len(progress) == 4


class CrashingProbe:
    def probe(self, path: str) -> Dict[str, Any]:
        if "bad" in path:
            raise AttributeError("'list' object has no attribute 'get'")
        return {"title": "ok"}


def test_unexpected_probe_failure_stays_with_its_file(tmp_path: Path) -> None:
    records = []
    for name in ("good.mp3", "bad.mp3"):
        path = tmp_path / name
        path.write_bytes(b"x")
        records.append(_record(path))

    MetadataCollector(probe=CrashingProbe(), max_workers=2).collect(records, want_meta=True)

    good, bad = records
    assert good.meta == {"title": "ok"}
    assert good.meta_error is None
    assert bad.meta == {}
    assert bad.meta_error is not None and "AttributeError" in bad.meta_error
    assert not bad.meta_fatal


def test_collect_skips_probe_when_meta_not_wanted(tmp_path: Path) -> None:
    path = tmp_path / "file.txt"
    path.write_text("x", encoding="utf-8")
    record = _record(path)
    probe = FakeProbe()

    MetadataCollector(probe=probe).collect([record], want_meta=False, algorithms=["crc32"])

    assert probe.calls == []
    assert record.meta is None
    assert "crc32" in record.checksums


def test_collect_can_be_cancelled(tmp_path: Path) -> None:
    records = []
    for index in range(5):
        path = tmp_path / f"{index}.txt"
        path.write_text("x", encoding="utf-8")
        records.append(_record(path))

    with pytest.raises(PlanningCancelled):
        MetadataCollector(probe=FakeProbe(), max_workers=1).collect(
            records, want_meta=True, should_cancel=lambda: True
        )


def test_checksum_failure_is_recorded(tmp_path: Path) -> None:
    path = tmp_path / "gone.txt"
    path.write_text("x", encoding="utf-8")
    record = _record(path)
    path.unlink()

    MetadataCollector(probe=FakeProbe()).collect([record], want_meta=False, algorithms=["sha1"])

    assert record.checksum_error is not None
    assert "sha1" in record.checksum_error


def test_normalize_ffprobe_output() -> None:
    raw = {
        "format": {
            "format_name": "mov,mp4",
            "duration": "61.500000",
            "bit_rate": "128000",
            "tags": {"TITLE": "Holiday", "artist": "Someone"},
        },
        "streams": [
            {
                "codec_type": "video",
                "codec_name": "h264",
                "width": 1920,
                "height": 1080,
                "avg_frame_rate": "30000/1001",
            },
            {"codec_type": "audio", "codec_name": "aac", "channels": 2, "sample_rate": "48000"},
        ],
    }

    meta = normalize_ffprobe(raw)

    assert meta["container"] == "mov,mp4"
    assert meta["duration"] == pytest.approx(61.5)
    assert meta["bitrate"] == 128000
    assert (meta["width"], meta["height"], meta["codec"]) == (1920, 1080, "h264")
    assert meta["framerate"] == pytest.approx(29.97)
    assert (meta["audio_codec"], meta["channels"], meta["samplerate"]) == ("aac", 2, 48000)
    assert meta["type"] == "video"
    assert meta["title"] == "Holiday"
    assert meta["artist"] == "Someone"
    assert len(meta["streams"]) == 2


def test_normalize_ffprobe_drops_empty_values() -> None:
    meta = normalize_ffprobe({"format": {"duration": "N/A"}, "streams": []})

    assert "duration" not in meta
    assert "type" not in meta
    assert meta["streams"] == []


def test_ffprobe_missing_executable_raises_probe_error(tmp_path: Path) -> None:
    target = tmp_path / "clip.mp4"
    target.write_bytes(b"")

    with pytest.raises(ProbeError):
        FFProbe(str(tmp_path / "missing-ffprobe")).probe(str(target))


@pytest.mark.skipif(os.name == "nt", reason="uses a shell script as ffprobe")
def test_ffprobe_rejects_json_that_is_not_an_object(tmp_path: Path) -> None:
    fake = tmp_path / "ffprobe"
    fake.write_text("#!/bin/sh\necho '[]'\n", encoding="utf-8")
    fake.chmod(0o755)
    target = tmp_path / "clip.mp4"
    target.write_bytes(b"")

    with pytest.raises(ProbeError, match="list"):
        FFProbe(str(fake)).probe(str(target))


def test_default_worker_count_is_positive() -> None:
    assert default_worker_count() >= 1
