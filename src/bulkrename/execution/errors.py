"""Execution errors."""

from __future__ import annotations


class ExecutionError(Exception):
    """Raised when a run fails; the filesystem has been rewound before it propagates.

    Attributes:
        rewind_failures: Messages describing rewind steps that could not be replayed.
    """

    def __init__(self, message: str, rewind_failures: list[str] | None = None) -> None:
        super().__init__(message)
        self.rewind_failures = list(rewind_failures or [])


class PlanHasErrorsError(ExecutionError):
    """Raised when asked to execute a plan that still contains error items."""
