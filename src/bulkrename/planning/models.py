"""Rename plan data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Variant = Literal["warning", "error"]

CHECKSUM_ALGORITHMS = ("crc32", "md5", "sha1", "sha256", "sha512")


class Message(BaseModel):
    """Diagnostic attached to a rename item.

    Attributes:
        variant: Severity of the diagnostic.
        message: Human-readable body.
    """

    variant: Variant
    message: str


class RenameItem(BaseModel):
    """Proposed rename for one input.

    Attributes:
        input_path: Path of the input at plan time.
        output_path: Computed destination; absent when no destination could be computed.
        skip: Whether the executor must leave this input alone.
        message: Optional diagnostic describing why the item is skipped or suspicious.
        meta: Snapshot of the metadata used while expanding the template.
    """

    input_path: Path
    output_path: Optional[Path] = None
    skip: bool = False
    message: Optional[Message] = None
    meta: Optional[Dict[str, Any]] = None

    def add_message(self, variant: Variant, text: str) -> None:
        """Append a diagnostic, keeping the most severe variant."""
        if self.message is None:
            self.message = Message(variant=variant, message=text)
            return
        combined: Variant = "error" if "error" in (variant, self.message.variant) else "warning"
        self.message = Message(variant=combined, message=f"{self.message.message}\n\n{text}")

    def mark_error(self, text: str) -> None:
        """Record an error; errors always skip the item."""
        self.skip = True
        self.add_message("error", text)

    @property
    def is_noop(self) -> bool:
        return self.output_path is not None and self.output_path == self.input_path


class RenameTable(BaseModel):
    """The rename plan: every item plus derived views and common directories.

    Attributes:
        items: All rename items in batch order.
        common_input_dir: Longest shared directory of the inputs.
        common_output_dir: Longest shared directory of the computed outputs.
        common_dir: Shared ancestor of the two common directories.
        existing_paths: Destinations that already existed on disk at plan time.
        overwrite: Whether existing destinations may be replaced when executing.
    """

    items: List[RenameItem] = Field(default_factory=list)
    common_input_dir: Optional[Path] = None
    common_output_dir: Optional[Path] = None
    common_dir: Optional[Path] = None
    existing_paths: List[Path] = Field(default_factory=list)
    overwrite: bool = False

    @property
    def warnings(self) -> List[RenameItem]:
        return [item for item in self.items if item.message and item.message.variant == "warning"]

    @property
    def errors(self) -> List[RenameItem]:
        return [item for item in self.items if item.message and item.message.variant == "error"]

    @property
    def has_errors(self) -> bool:
        return any(item.message and item.message.variant == "error" for item in self.items)

    @property
    def actionable(self) -> List[RenameItem]:
        """Items the executor will apply."""
        return [item for item in self.items if not item.skip and item.output_path is not None]


@dataclass(slots=True)
class FileRecord:
    """Per-input facts gathered while planning.

    Records live only for one planning pass. ``template_variables`` renders the
    record into the mapping templates see.
    """

    path: str
    basename: str
    filename: str
    extname: str
    ext: str
    dirname: str
    dirbasename: str
    size: int
    atime: float
    mtime: float
    ctime: float
    birthtime: float
    isfile: bool
    isdirectory: bool
    i: int = 0
    I: str = ""  # noqa: E741
    n: int = 0
    N: str = ""
    batch_size: int = 0
    meta: Optional[Dict[str, Any]] = None
    meta_error: Optional[str] = None
    meta_fatal: bool = False
    checksum_error: Optional[str] = None
    checksums: Dict[str, str] = field(default_factory=dict)

    def assign_index(self, index: int, batch_size: int) -> None:
        """Set the 0- and 1-based batch positions, zero padded to the batch width."""
        self.batch_size = batch_size
        self.i = index
        self.I = str(index).zfill(len(str(max(batch_size - 1, 0))))
        self.n = index + 1
        self.N = str(index + 1).zfill(len(str(batch_size)))

    def template_variables(self) -> Dict[str, Any]:
        """Return the per-file variables exposed to templates."""
        variables: Dict[str, Any] = {
            "path": self.path,
            "basename": self.basename,
            "filename": self.filename,
            "extname": self.extname,
            "ext": self.ext,
            "dirname": self.dirname,
            "dirbasename": self.dirbasename,
            "size": self.size,
            "atime": self.atime,
            "mtime": self.mtime,
            "ctime": self.ctime,
            "birthtime": self.birthtime,
            "isfile": self.isfile,
            "isdirectory": self.isdirectory,
            "i": self.i,
            "I": self.I,
            "n": self.n,
            "N": self.N,
            "pad": _pad,
            "offsetI": self._offset(self.i, self.batch_size - 1),
            "offsetN": self._offset(self.n, self.batch_size),
        }
        if self.meta is not None:
            variables["meta"] = self.meta
        for algorithm, digest in self.checksums.items():
            variables[algorithm] = digest
            variables[algorithm.upper()] = digest.upper()
        return variables

    @staticmethod
    def _offset(value: int, last: int) -> Callable[[int], str]:
        def offset(amount: int) -> str:
            return str(value + amount).zfill(len(str(last + amount)))

        return offset


def _pad(value: Any, length: int, fill: str = "0") -> str:
    text = str(value)
    if not fill or len(text) >= length:
        return text
    padding = (fill * length)[: length - len(text)]
    return padding + text


__all__ = [
    "CHECKSUM_ALGORITHMS",
    "FileRecord",
    "Message",
    "RenameItem",
    "RenameTable",
    "Variant",
]
