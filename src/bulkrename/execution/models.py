"""Execution data models."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, List, Literal, Tuple, Union

from pydantic import BaseModel, Field


class RenameStep(BaseModel):
    """Rewind step renaming ``source`` back to ``target``."""

    kind: Literal["rename"] = "rename"
    source: Path
    target: Path


class DeleteStep(BaseModel):
    """Rewind step removing ``path`` (a file, a copy, or a created directory)."""

    kind: Literal["delete"] = "delete"
    path: Path


RewindStep = Annotated[Union[RenameStep, DeleteStep], Field(discriminator="kind")]


class ExecutionResult(BaseModel):
    """Outcome of executing a rename table.

    Attributes:
        renamed: ``(input, output)`` pairs that were applied, or would be on a dry run.
        warnings: Non-fatal problems met while cleaning up.
        dry_run: Whether the filesystem was left untouched.
        removed_directories: Directories removed because they ended up empty.
    """

    renamed: List[Tuple[Path, Path]] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    dry_run: bool = False
    removed_directories: List[Path] = Field(default_factory=list)


__all__ = ["DeleteStep", "ExecutionResult", "RenameStep", "RewindStep"]
