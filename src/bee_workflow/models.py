"""Core data models used by the workflow executor."""
from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, Tuple

from .cancellation import CancellationToken
from .features import Feature
from .monitoring import EventLogger, MetricsRecorder, TracingManager
from .stages import Activity, ConditionalActivity, Guard, Validation

if TYPE_CHECKING:  # pragma: no cover
    from .concurrency import BranchRunner, DetachedHandle, DetachedTracker


class ExecutionStatus(str, enum.Enum):
    """Final outcome of a single ``Workflow.execute`` call."""

    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    ERRORED = "errored"


@dataclass(frozen=True)
class WorkflowDefinition:
    """Frozen snapshot of everything registered on a builder."""

    payload_factory: Callable[[Any], Any]
    result_selector: Callable[[Any], Any]
    name: str = "workflow"
    validations: Tuple[Validation, ...] = ()
    guards: Tuple[Guard, ...] = ()
    activities: Tuple[Activity, ...] = ()
    conditional_activities: Tuple[ConditionalActivity, ...] = ()
    features: Tuple[Feature, ...] = ()
    finally_activities: Tuple[Activity, ...] = ()


@dataclass
class ExecutionContext:
    """Runtime services and identity for one execution."""

    workflow_name: str
    execution_id: str
    token: CancellationToken
    runner: "BranchRunner"
    events: EventLogger
    metrics: MetricsRecorder
    tracer: TracingManager
    tracker: Optional["DetachedTracker"] = None
    start_time: float = field(default_factory=time.time)

    def checkpoint(self, stage: str) -> None:
        """Refuse to start ``stage`` once cancellation has been requested."""
        if self.token.is_cancelled:
            self.events.log(
                "stage_cancelled",
                workflow=self.workflow_name,
                execution_id=self.execution_id,
                stage=stage,
            )
        self.token.raise_if_cancelled(stage)

    def track(self, handle: "DetachedHandle") -> None:
        if self.tracker is not None:
            self.tracker.add(handle)

    def labels(self, **extra: str) -> dict:
        return {"workflow": self.workflow_name, **extra}
