"""Executor applying rename tables with rollback support."""

from __future__ import annotations

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Callable, List, Set, Tuple

from bulkrename.planning.models import RenameTable
from bulkrename.planning.paths import path_key
from bulkrename.planning.variables import uid

from .errors import ExecutionError, PlanHasErrorsError
from .models import DeleteStep, ExecutionResult, RenameStep, RewindStep

LOGGER = logging.getLogger(__name__)


class _Run:
    """Mutable bookkeeping for one execution."""

    def __init__(self, run_id: str, existing: Set[str]) -> None:
        self.run_id = run_id
        self.existing = existing
        self.log: List[RewindStep] = []
        self.pending_deletes: List[Path] = []
        self.touched_dirs: Set[Path] = set()


class RenameExecutor:
    """Apply rename tables in two phases, rewinding every step on failure.

    Sources are first staged under temporary names next to themselves, which
    frees every original path so swaps and chains work. Staged entries are then
    moved to their destinations in plan order.
    """

    def __init__(self, id_factory: Callable[[], str] = uid) -> None:
        self._id_factory = id_factory

    def execute(
        self,
        table: RenameTable,
        dry_run: bool = False,
        allow_errors: bool = False,
    ) -> ExecutionResult:
        """Apply the given table.

        Args:
            table: Rename table computed by the planner.
            dry_run: When true, only log what would happen.
            allow_errors: Run the non-skipped items even when the table has errors.

        Returns:
            ExecutionResult: Applied pairs plus cleanup warnings.

        Raises:
            PlanHasErrorsError: If the table has errors and ``allow_errors`` is false.
            ExecutionError: If a step failed; the filesystem has been rewound.
        """
        if table.has_errors and not allow_errors:
            raise PlanHasErrorsError(
                f"Plan contains {len(table.errors)} error item(s); nothing was renamed."
            )

        pairs: List[Tuple[Path, Path]] = [
            (item.input_path, item.output_path)
            for item in table.actionable
            if item.output_path is not None and not item.is_noop
        ]

        if dry_run:
            for source, target in pairs:
                LOGGER.info("Would rename %s -> %s", source, target)
            return ExecutionResult(renamed=pairs, dry_run=True)
        if not pairs:
            return ExecutionResult()

        run = _Run(self._id_factory(), {path_key(path) for path in table.existing_paths})
        try:
            staged = [(source, self._stage(run, source), target) for source, target in pairs]
            for source, temp, target in staged:
                self._commit(run, source, temp, target, overwrite=table.overwrite)
        except BaseException as exc:
            LOGGER.error("Rename failed, rewinding %d step(s): %s", len(run.log), exc)
            failures = self._rewind(run.log)
            if not isinstance(exc, Exception):
                raise
            raise ExecutionError(f"Renaming failed: {exc}", failures) from exc

        warnings = self._delete_pending(run.pending_deletes)
        directories = set(run.touched_dirs)
        if table.common_input_dir is not None:
            directories.add(table.common_input_dir)
        removed = self._remove_empty_directories(directories)
        for source, target in pairs:
            LOGGER.info("Renamed %s -> %s", source, target)
        return ExecutionResult(renamed=pairs, warnings=warnings, removed_directories=removed)

    # ------------------------------------------------------------------ #
    # Phases                                                             #
    # ------------------------------------------------------------------ #

    def _stage(self, run: _Run, source: Path) -> Path:
        temp = source.with_name(f"{source.name}.tmp-{run.run_id}")
        if os.path.lexists(temp):
            raise ExecutionError(f"Temporary path already exists: {temp}")
        os.rename(source, temp)
        run.log.append(RenameStep(source=temp, target=source))
        return temp

    def _commit(self, run: _Run, source: Path, temp: Path, target: Path, *, overwrite: bool) -> None:
        run.touched_dirs.add(source.parent)

        if os.path.lexists(target):
            if path_key(target) not in run.existing:
                raise ExecutionError(f"Destination appeared after planning: {target}")
            self._back_up(run, target)

        self._prepare_parent(run, target.parent, overwrite=overwrite)

        try:
            os.rename(temp, target)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            LOGGER.debug("Cross-device rename of %s, copying instead", target)
            run.log.append(DeleteStep(path=target))
            _copy(temp, target)
            run.pending_deletes.append(temp)
        else:
            run.log.append(RenameStep(source=target, target=temp))

    def _back_up(self, run: _Run, path: Path) -> None:
        backup = path.with_name(f"{path.name}.tmp-{self._id_factory()}")
        os.rename(path, backup)
        run.log.append(RenameStep(source=backup, target=path))
        run.pending_deletes.append(backup)

    def _prepare_parent(self, run: _Run, parent: Path, *, overwrite: bool) -> None:
        missing: List[Path] = []
        current = parent
        while not os.path.lexists(current):
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent

        if os.path.lexists(current) and not os.path.isdir(current):
            if not overwrite:
                raise ExecutionError(f"Destination parent is a file: {current}")
            self._back_up(run, current)
            missing.append(current)

        if missing:
            run.log.append(DeleteStep(path=missing[-1]))
            os.makedirs(parent)

    # ------------------------------------------------------------------ #
    # Completion                                                         #
    # ------------------------------------------------------------------ #

    def _rewind(self, log: List[RewindStep]) -> List[str]:
        failures: List[str] = []
        for step in reversed(log):
            try:
                if isinstance(step, RenameStep):
                    os.makedirs(step.target.parent, exist_ok=True)
                    os.rename(step.source, step.target)
                else:
                    _remove(step.path)
            except OSError as exc:
                message = f"Could not rewind {step.kind} step for {_step_path(step)}: {exc}"
                LOGGER.error(message)
                failures.append(message)
        return failures

    def _delete_pending(self, paths: List[Path]) -> List[str]:
        warnings: List[str] = []
        for path in paths:
            try:
                _remove(path)
            except OSError as exc:
                message = f"Could not delete {path}: {exc}"
                LOGGER.warning(message)
                warnings.append(message)
        return warnings

    def _remove_empty_directories(self, directories: Set[Path]) -> List[Path]:
        removed: List[Path] = []
        for directory in sorted(directories, key=lambda path: len(str(path)), reverse=True):
            try:
                os.rmdir(directory)
            except OSError:
                continue
            LOGGER.debug("Removed empty directory %s", directory)
            removed.append(directory)
        return removed


def _copy(source: Path, target: Path) -> None:
    if os.path.isdir(source) and not os.path.islink(source):
        shutil.copytree(source, target, symlinks=True)
    else:
        shutil.copy2(source, target, follow_symlinks=False)


def _remove(path: Path) -> None:
    if os.path.islink(path) or os.path.isfile(path):
        os.unlink(path)
    elif os.path.isdir(path):
        shutil.rmtree(path)


def _step_path(step: RewindStep) -> Path:
    return step.source if isinstance(step, RenameStep) else step.path


__all__ = ["RenameExecutor"]
