"""bee_workflow: an in-process, railway-oriented workflow engine."""

__version__ = "0.1.0"

from .builder import WorkflowBuilder, create_workflow
from .cancellation import CancellationToken
from .concurrency import BranchRunner, DetachedHandle, DetachedTracker
from .config import WorkflowSettings, configure_logging
from .either import NOTHING, UNIT, Either, Left, Nothing, Option, Right, Some, Unit
from .errors import (
    InvalidStageResultError,
    SettingsError,
    UnsupportedFeatureError,
    WorkflowCancelledError,
    WorkflowConfigurationError,
    WorkflowError,
)
from .executors import FeatureExecutor, FeatureExecutorRegistry
from .features import Context, Detached, Feature, FeatureKind, Group, Parallel, ParallelDetached
from .merge import merge_changed_fields, merge_non_default_fields
from .models import ExecutionStatus
from .monitoring import EventLogger, MetricsRecorder, NullMetricsRecorder, TracingManager
from .workflow import Workflow

__all__ = [
    "WorkflowBuilder",
    "create_workflow",
    "Workflow",
    "WorkflowSettings",
    "configure_logging",
    "CancellationToken",
    "BranchRunner",
    "DetachedHandle",
    "DetachedTracker",
    "Either",
    "Left",
    "Right",
    "Option",
    "Some",
    "Nothing",
    "NOTHING",
    "Unit",
    "UNIT",
    "Feature",
    "FeatureKind",
    "Group",
    "Context",
    "Detached",
    "Parallel",
    "ParallelDetached",
    "FeatureExecutor",
    "FeatureExecutorRegistry",
    "ExecutionStatus",
    "merge_changed_fields",
    "merge_non_default_fields",
    "EventLogger",
    "MetricsRecorder",
    "NullMetricsRecorder",
    "TracingManager",
    "WorkflowError",
    "WorkflowConfigurationError",
    "UnsupportedFeatureError",
    "WorkflowCancelledError",
    "InvalidStageResultError",
    "SettingsError",
]
