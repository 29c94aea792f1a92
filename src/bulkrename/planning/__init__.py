"""Rename planning: templates, metadata collection and the plan builder."""

from .errors import (
    PlanningCancelled,
    PlanningError,
    ProbeError,
    TemplateError,
    TemplateEvaluationError,
    TemplateSyntaxError,
)
from .metadata import ChecksumComputer, FFProbe, MetadataCollector, MetadataProbe
from .models import CHECKSUM_ALGORITHMS, FileRecord, Message, RenameItem, RenameTable
from .planner import RenamePlanner
from .sanitize import sanitize_path
from .template import MISSING, Template
from .variables import PlatformFolders, UserFolders

__all__ = [
    "CHECKSUM_ALGORITHMS",
    "ChecksumComputer",
    "FFProbe",
    "FileRecord",
    "MISSING",
    "Message",
    "MetadataCollector",
    "MetadataProbe",
    "PlanningCancelled",
    "PlanningError",
    "PlatformFolders",
    "ProbeError",
    "RenameItem",
    "RenamePlanner",
    "RenameTable",
    "Template",
    "TemplateError",
    "TemplateEvaluationError",
    "TemplateSyntaxError",
    "UserFolders",
    "sanitize_path",
]
