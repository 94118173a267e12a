"""Custom exceptions for the workflow engine.

Domain failures never use these: they travel as ``Left`` values. The classes
below cover misuse of the builder and faults of the engine itself.
"""
from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for workflow related errors."""


class WorkflowConfigurationError(WorkflowError):
    """Raised when a workflow is assembled with invalid stages."""


class UnsupportedFeatureError(WorkflowError):
    """Raised when no executor is registered for a feature kind."""

    def __init__(self, kind: Any) -> None:
        self.kind = kind
        super().__init__(f"No executor registered for feature kind '{kind}'")


class WorkflowCancelledError(WorkflowError):
    """Raised when the cancellation token fires before a stage starts."""

    def __init__(self, stage: Optional[str] = None) -> None:
        self.stage = stage
        message = "Workflow execution cancelled"
        if stage:
            message += f" before stage '{stage}'"
        super().__init__(message)


class InvalidStageResultError(WorkflowError):
    """Raised when a stage returns something other than its declared result type."""

    def __init__(self, stage: str, expected: str, actual: Any) -> None:
        self.stage = stage
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Stage '{stage}' must return {expected}, got {type(actual).__name__}"
        )


class SettingsError(WorkflowError):
    """Raised when workflow settings cannot be loaded or fail validation."""
