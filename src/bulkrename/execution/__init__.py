"""Execution of rename tables."""

from .errors import ExecutionError, PlanHasErrorsError
from .executor import RenameExecutor
from .models import DeleteStep, ExecutionResult, RenameStep, RewindStep

__all__ = [
    "DeleteStep",
    "ExecutionError",
    "ExecutionResult",
    "PlanHasErrorsError",
    "RenameExecutor",
    "RenameStep",
    "RewindStep",
]
