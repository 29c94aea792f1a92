"""Planner turning inputs and a template into a rename table."""

from __future__ import annotations

import logging
import os
import time
from collections import ChainMap
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from bulkrename.config.models import MissingMetaPolicy, RenameOptions

from .errors import PlanningError, TemplateEvaluationError
from .metadata import MetadataCollector, requested_checksums, template_requests_meta
from .models import FileRecord, RenameItem, RenameTable
from .paths import find_common_directory, is_same_path, normalize_path, path_key
from .sanitize import sanitize_path
from .sorting import sort_items
from .template import Template, normalize_template
from .variables import PlatformFolders, UserFolders, build_common_variables, freeze_files

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class RenamePlanner:
    """Derive a :class:`RenameTable` from inputs and rename options."""

    def __init__(
        self,
        collector: MetadataCollector | None = None,
        folders: PlatformFolders | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.collector = collector or MetadataCollector()
        self.folders = folders or UserFolders()
        self._clock = clock

    def build_plan(
        self,
        inputs: Iterable[str | os.PathLike],
        options: RenameOptions,
        *,
        on_progress: ProgressCallback | None = None,
        should_cancel: Callable[[], bool] | None = None,
    ) -> RenameTable:
        """Produce a rename table for ``inputs``.

        Per-item problems never raise; they are recorded as item messages.

        Args:
            inputs: Paths of the files and directories to rename.
            options: Template, sorting, overwrite and sanitization settings.
            on_progress: Receives the fraction of files whose data has been collected.
            should_cancel: Polled during metadata collection.

        Returns:
            RenameTable: Items in batch order with warnings, errors and common directories.

        Raises:
            PlanningError: If an input cannot be stat-ed.
            PlanningCancelled: If ``should_cancel`` requested cancellation.
            TemplateSyntaxError: If the template cannot be compiled.
        """
        source = normalize_template(options.template)
        template = Template.compile(source)

        records = sort_items(
            (self._stat(path) for path in inputs), options.sorting, key=lambda record: record.path
        )
        for index, record in enumerate(records):
            record.assign_index(index, len(records))

        common_input_dir = find_common_directory(record.path for record in records)
        common = build_common_variables(
            source,
            starttime=self._clock(),
            commondir=common_input_dir,
            folders=self.folders,
        )

        want_meta = template_requests_meta(source)
        algorithms = requested_checksums(source)
        if want_meta or algorithms:
            self.collector.collect(
                records,
                want_meta=want_meta,
                algorithms=algorithms,
                on_progress=on_progress,
                should_cancel=should_cancel,
            )
        elif on_progress is not None:
            for index in range(len(records)):
                on_progress((index + 1) / len(records))

        file_variables = [record.template_variables() for record in records]
        common["files"] = freeze_files(file_variables)

        items: List[RenameItem] = []
        claims: Dict[str, int] = {}
        flagged_owners: set[int] = set()
        existing: Dict[str, Path] = {}
        original_keys = {path_key(record.path) for record in records}

        for index, (record, variables) in enumerate(zip(records, file_variables)):
            item = RenameItem(input_path=Path(record.path), meta=record.meta)
            items.append(item)
            self._apply_collection_errors(item, record, options.on_missing_meta)

            output = self._expand(template, item, record, ChainMap(variables, common), options)
            if output is None:
                continue
            item.output_path = output

            key = path_key(output)
            owner_index = claims.get(key)
            if owner_index is not None:
                owner = items[owner_index]
                text = (
                    f'Template would cause these paths:\n\n"{record.path}"\n"{owner.input_path}"'
                    f'\n\nto be renamed to a same path:\n\n"{output}"'
                )
                item.mark_error(text)
                if owner_index not in flagged_owners:
                    flagged_owners.add(owner_index)
                    owner.mark_error(text)
                continue
            claims[key] = index

            if (
                not is_same_path(record.path, output)
                and key not in original_keys
                and os.path.lexists(output)
            ):
                existing.setdefault(key, output)
                if not options.overwrite:
                    item.mark_error(
                        f'Path:\n\n"{record.path}"\n\nwould be renamed to:\n\n"{output}"'
                        "\n\nbut this path already exists."
                    )

        _protect_stationary_inputs(items)

        common_output_dir = find_common_directory(
            item.output_path for item in items if item.output_path is not None
        )
        common_dir = None
        if common_input_dir is not None and common_output_dir is not None:
            common_dir = find_common_directory(
                [common_input_dir / "noop", common_output_dir / "noop"]
            )

        table = RenameTable(
            items=items,
            common_input_dir=common_input_dir,
            common_output_dir=common_output_dir,
            common_dir=common_dir,
            existing_paths=list(existing.values()),
            overwrite=options.overwrite,
        )
        LOGGER.info(
            "Planned %d items: %d actionable, %d warnings, %d errors",
            len(items),
            len(table.actionable),
            len(table.warnings),
            len(table.errors),
        )
        return table

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #

    def _stat(self, raw: str | os.PathLike) -> FileRecord:
        path = str(normalize_path(raw))
        try:
            stat = os.stat(path)
        except OSError as exc:
            raise PlanningError(f"Unable to read input {path}: {exc}") from exc

        basename = os.path.basename(path)
        filename, extname = os.path.splitext(basename)
        dirname = os.path.dirname(path)
        return FileRecord(
            path=path,
            basename=basename,
            filename=filename,
            extname=extname,
            ext=extname[1:] if extname.startswith(".") else extname,
            dirname=dirname,
            dirbasename=os.path.basename(dirname),
            size=stat.st_size,
            atime=stat.st_atime,
            mtime=stat.st_mtime,
            ctime=stat.st_ctime,
            birthtime=getattr(stat, "st_birthtime", stat.st_ctime),
            isfile=os.path.isfile(path),
            isdirectory=os.path.isdir(path),
        )

    def _apply_collection_errors(
        self, item: RenameItem, record: FileRecord, policy: MissingMetaPolicy
    ) -> None:
        if record.checksum_error:
            item.mark_error(record.checksum_error)
        if record.meta_error is None:
            return
        if record.meta_fatal or policy == "abort":
            item.mark_error(record.meta_error)
        elif policy == "skip":
            item.skip = True
            item.add_message("warning", record.meta_error)

    def _expand(
        self,
        template: Template,
        item: RenameItem,
        record: FileRecord,
        variables: ChainMap[str, Any],
        options: RenameOptions,
    ) -> Optional[Path]:
        missing: List[str] = []
        try:
            name = template.expand(variables, on_missing=missing.append).strip()
        except TemplateEvaluationError as exc:
            item.mark_error(f"Template expansion error: {exc}")
            return None

        if missing:
            _apply_missing_policy(item, list(dict.fromkeys(missing)), options.on_missing_meta)
        if not name:
            item.mark_error(f'Template produced an empty name for "{record.path}".')
            return None

        joined = os.path.normpath(os.path.join(record.dirname, name))
        return Path(
            sanitize_path(
                joined,
                replacement=options.replacement,
                max_length=options.max_length,
                base=_existing_ancestor(joined),
            )
        )


def _existing_ancestor(path: str) -> str:
    """Return the deepest parent of ``path`` that is already on disk."""
    current = os.path.dirname(path)
    while not os.path.lexists(current):
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return current


def _apply_missing_policy(item: RenameItem, names: List[str], policy: MissingMetaPolicy) -> None:
    message = f"Missing meta: {', '.join(names)}"
    if policy == "abort":
        item.mark_error(message)
        return
    if policy == "skip":
        item.skip = True
    item.add_message("warning", message)


def _protect_stationary_inputs(items: List[RenameItem]) -> None:
    """Flag items whose destination is an input that stays where it is."""
    changed = True
    while changed:
        changed = False
        stationary = {path_key(item.input_path) for item in items if item.skip}
        for item in items:
            if item.skip or item.output_path is None:
                continue
            if is_same_path(item.input_path, item.output_path):
                continue
            if path_key(item.output_path) in stationary:
                item.mark_error(
                    f'Path:\n\n"{item.input_path}"\n\nwould be renamed to:\n\n"{item.output_path}"'
                    "\n\nwhich is another input of this batch that will not be renamed."
                )
                changed = True


__all__ = ["RenamePlanner"]
