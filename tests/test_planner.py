"""Tests for building rename tables."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from bulkrename.config.models import RenameOptions
from bulkrename.planning import (
    MetadataCollector,
    PlanningError,
    ProbeError,
    RenamePlanner,
    RenameTable,
    TemplateSyntaxError,
)


class FakeProbe:
    def probe(self, path: str) -> Dict[str, Any]:
        if "broken" in path:
            raise ProbeError("unreadable")
        return {"title": Path(path).stem.upper()}


class FakeFolders:
    def resolve(self, name: str) -> Optional[str]:
        return f"/fake/{name}"


def _planner() -> RenamePlanner:
    return RenamePlanner(
        collector=MetadataCollector(probe=FakeProbe(), max_workers=2),
        folders=FakeFolders(),
        clock=lambda: 1_000.0,
    )


def _touch(root: Path, *names: str) -> list[Path]:
    paths = []
    for name in names:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(name, encoding="utf-8")
        paths.append(path)
    return paths


def _plan(inputs: list[Path], template: str, **options: Any) -> RenameTable:
    return _planner().build_plan(inputs, RenameOptions(template=template, **options))


def _outputs(table: RenameTable) -> list[Optional[str]]:
    return [item.output_path.name if item.output_path else None for item in table.items]


def _assert_invariants(table: RenameTable) -> None:
    for item in table.items:
        if item.message is not None and item.message.variant == "error":
            assert item.skip
    outputs = [item.output_path for item in table.items if not item.skip]
    assert len(outputs) == len(set(outputs))


def test_template_builds_numbered_names(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "f10.txt", "f2.txt", "f1.txt")

    table = _plan(inputs, "${filename}-${N}${extname}", sorting="natural")

    assert _outputs(table) == ["f1-1.txt", "f2-2.txt", "f10-3.txt"]
    assert all(item.output_path.parent == tmp_path for item in table.items)
    assert not table.has_errors
    assert table.common_input_dir == tmp_path
    _assert_invariants(table)


def test_index_padding_follows_batch_size(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, *[f"{index}.txt" for index in range(11)])

    table = _plan(inputs, "${I}_${N}_${offsetN(99)}", sorting="natural")

    assert _outputs(table)[0] == "00_01_100"
    assert _outputs(table)[10] == "10_11_110"


def test_default_template_is_a_noop(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt", "b.txt")

    table = _plan(inputs, "${basename}")

    assert all(item.is_noop for item in table.items)
    assert table.existing_paths == []
    assert not table.has_errors


def test_duplicate_destinations_flag_both_items(tmp_path: Path) -> None:
    first, second = _touch(tmp_path, "a.txt", "b.txt")

    table = _plan([first, second], "same.txt")

    assert all(item.skip for item in table.items)
    assert len(table.errors) == 2
    message = table.items[1].message.message
    assert "to be renamed to a same path" in message
    assert str(first) in message and str(second) in message
    assert table.actionable == []
    _assert_invariants(table)


def test_existing_destination_requires_overwrite(tmp_path: Path) -> None:
    (source,) = _touch(tmp_path, "a.txt")
    (taken,) = _touch(tmp_path, "taken.txt")

    table = _plan([source], "taken.txt")

    assert table.items[0].skip
    assert "already exists" in table.items[0].message.message
    assert table.existing_paths == [taken]

    table = _plan([source], "taken.txt", overwrite=True)

    assert not table.items[0].skip
    assert table.items[0].message is None
    assert table.existing_paths == [taken]
    assert table.overwrite


def test_swapping_names_is_not_a_conflict(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt", "b.txt")

    table = _plan(inputs, "${'b' if filename == 'a' else 'a'}${extname}")

    assert _outputs(table) == ["b.txt", "a.txt"]
    assert not table.has_errors
    assert table.existing_paths == []


def test_missing_meta_skip_policy(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "one.mp3", "broken.mp3", "two.mp3")

    table = _plan(inputs, "${meta.title}${extname}", on_missing_meta="skip")

    one, broken, two = table.items
    assert one.output_path == tmp_path / "ONE.mp3" and not one.skip
    assert two.output_path == tmp_path / "TWO.mp3" and not two.skip
    assert broken.skip
    assert broken.message.variant == "warning"
    assert "unreadable" in broken.message.message
    assert not table.has_errors
    assert [item.input_path.name for item in table.actionable] == ["one.mp3", "two.mp3"]


def test_missing_meta_abort_policy(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "one.mp3", "broken.mp3")

    table = _plan(inputs, "${meta.title}${extname}")

    broken = table.items[1]
    assert broken.skip
    assert broken.message.variant == "error"
    assert "Missing meta: meta.title" in broken.message.message
    _assert_invariants(table)


def test_missing_meta_ignore_policy(tmp_path: Path) -> None:
    (broken,) = _touch(tmp_path, "broken.mp3")

    table = _plan([broken], "${meta.title or filename}-x${extname}", on_missing_meta="ignore")

    item = table.items[0]
    assert not item.skip
    assert item.output_path == tmp_path / "broken-x.mp3"
    assert item.message.variant == "warning"
    assert "Missing meta: meta.title" in item.message.message


def test_directories_cannot_provide_meta(tmp_path: Path) -> None:
    folder = tmp_path / "folder"
    folder.mkdir()

    table = _plan([folder], "${meta.title}", on_missing_meta="ignore")

    assert table.items[0].skip
    assert table.items[0].message.variant == "error"


def test_evaluation_errors_skip_the_item(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt")

    table = _plan(inputs, "${size / 0}")

    item = table.items[0]
    assert item.skip
    assert item.output_path is None
    assert "Template expansion error" in item.message.message


def test_empty_expansion_is_an_error(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt")

    table = _plan(inputs, "${''}")

    assert table.items[0].skip
    assert table.items[0].output_path is None


def test_syntax_errors_fail_the_batch(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt")

    with pytest.raises(TemplateSyntaxError):
        _plan(inputs, "${basename")


def test_missing_input_fails_the_batch(tmp_path: Path) -> None:
    with pytest.raises(PlanningError):
        _plan([tmp_path / "absent.txt"], "${basename}")


def test_destination_of_a_stationary_input_is_protected(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "b.mp3", "broken.mp3")

    table = _plan(
        inputs,
        "${'broken' if filename == 'b' else meta.title}${extname}",
        on_missing_meta="skip",
    )

    moved, stationary = table.items
    assert stationary.skip and stationary.message.variant == "warning"
    assert moved.skip
    assert moved.message.variant == "error"
    assert "will not be renamed" in moved.message.message
    _assert_invariants(table)


def test_outputs_are_sanitized(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt")

    table = _plan(inputs, "${filename}?:${extname}", max_length=10)

    assert table.items[0].output_path == tmp_path / "a!.txt"


@pytest.mark.skipif(os.name == "nt", reason="colons are not valid in Windows names")
def test_existing_directories_are_never_rewritten(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "Meeting: notes?/a.txt", "a-rather-long-folder/b.txt")

    table = _plan(inputs, "${basename}", max_length=10)

    assert [item.output_path for item in table.items] == inputs
    assert all(item.is_noop and not item.skip for item in table.items)


def test_only_new_segments_are_sanitized(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a-rather-long-folder/b.txt")

    table = _plan(inputs, "new:dir/${filename}?${extname}", max_length=10)

    assert table.items[0].output_path == tmp_path / "a-rather-long-folder" / "new!dir" / "b!.txt"


def test_outputs_can_move_into_new_directories(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt", "b.txt")

    table = _plan(inputs, "sorted/${basename}")

    assert [item.output_path for item in table.items] == [
        tmp_path / "sorted" / "a.txt",
        tmp_path / "sorted" / "b.txt",
    ]
    assert table.common_output_dir == tmp_path / "sorted"
    assert table.common_dir == tmp_path


def test_common_variables_are_available(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt", "b.txt")

    table = _plan(
        inputs,
        "${int(starttime)}-${len(files)}-${files[0].basename}-${Path.basename(commondir)}"
        "-${Path.basename(home)}-${n}${extname}",
    )

    assert _outputs(table)[1] == f"1000-2-a.txt-{tmp_path.name}-home-2.txt"


def test_checksums_are_exposed_in_both_cases(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt")

    table = _plan(inputs, "${crc32}-${CRC32}")

    lower, upper = table.items[0].output_path.name.split("-")
    assert lower == upper.lower()
    assert len(lower) == 8


def test_progress_is_reported_without_metadata(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "a.txt", "b.txt")
    progress: list[float] = []

    _planner().build_plan(inputs, RenameOptions(), on_progress=progress.append)

    assert progress == [0.5, 1.0]


def test_planning_is_idempotent(tmp_path: Path) -> None:
    inputs = _touch(tmp_path, "x.mp3", "broken.mp3", "y.mp3")
    options = RenameOptions(template="${meta.title}-${n}${extname}", on_missing_meta="skip")

    first = _planner().build_plan(inputs, options)
    second = _planner().build_plan(inputs, options)

    assert first.model_dump() == second.model_dump()
