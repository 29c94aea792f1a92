"""Configuration models describing bulkrename settings."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SortingMode = Literal["disabled", "lexicographical", "natural"]
MissingMetaPolicy = Literal["abort", "skip", "ignore"]


class BulkRenameBaseModel(BaseModel):
    """Shared configuration for bulkrename Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class RenameOptions(BulkRenameBaseModel):
    """Options governing how a batch is planned and applied.

    Attributes:
        template: Template expanded for every input to produce its new name.
        expand_directories: Rename files inside directories instead of the directories.
        sorting: Ordering applied to the batch before indices are assigned.
        overwrite: Whether pre-existing destination files may be replaced.
        emit: Whether final paths are emitted after a successful run.
        on_missing_meta: Policy applied when metadata cannot be retrieved or is incomplete.
        replacement: Text substituted for characters that are not valid in file names.
        max_length: Maximum length of each path segment.
    """

    template: str = "${basename}"
    expand_directories: bool = False
    sorting: SortingMode = "disabled"
    overwrite: bool = False
    emit: bool = False
    on_missing_meta: MissingMetaPolicy = "abort"
    replacement: str = "!"
    max_length: int = Field(default=100, ge=1, le=255)


class ProbeSettings(BulkRenameBaseModel):
    """Settings for metadata and checksum collection.

    Attributes:
        ffprobe_path: Executable used to probe media metadata.
        max_workers: Worker count for concurrent collection; derived from CPUs when unset.
    """

    ffprobe_path: str = "ffprobe"
    max_workers: Optional[int] = Field(default=None, ge=1)


class LoggingSettings(BulkRenameBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file path; disabled when unset.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    file: Optional[str] = None
    max_size_mb: int = 10
    backup_count: int = 3


class CLIOptions(BulkRenameBaseModel):
    """CLI behavior defaults and presentation preferences.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
        summary_default: Whether commands only print summary lines by default.
    """

    quiet_default: bool = False
    summary_default: bool = False


class BulkRenameConfig(BulkRenameBaseModel):
    """Top-level configuration struct for bulkrename.

    Attributes:
        rename: Planning and execution options.
        probe: Metadata collection settings.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    rename: RenameOptions = Field(default_factory=RenameOptions)
    probe: ProbeSettings = Field(default_factory=ProbeSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "BulkRenameBaseModel",
    "SortingMode",
    "MissingMetaPolicy",
    "RenameOptions",
    "ProbeSettings",
    "LoggingSettings",
    "CLIOptions",
    "BulkRenameConfig",
]
