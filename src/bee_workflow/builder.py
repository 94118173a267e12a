"""Fluent registration API producing executable workflows."""
from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from .builders import (
    ContextBuilder,
    DetachedBuilder,
    GroupBuilder,
    ParallelBuilder,
    ParallelDetachedBuilder,
)
from .config import WorkflowSettings
from .errors import WorkflowConfigurationError
from .executors import FeatureExecutorRegistry
from .features import Context, Detached, Feature, Group, Parallel, ParallelDetached
from .merge import MergeFunction
from .models import WorkflowDefinition
from .monitoring import EventLogger, MetricsRecorder, TracingManager
from .stages import Activity, ConditionalActivity, Guard, Predicate, Validation
from .workflow import Workflow

LOGGER = logging.getLogger("bee_workflow.builder")


class WorkflowBuilder:
    """Accumulates stages in registration order and freezes them on ``build()``.

    Activities registered with :meth:`do` run first, then conditional
    activities registered with :meth:`do_if`, then features (groups, contexts,
    detached chains, parallel blocks) in the order they were registered.

    Feature methods accept an optional ``configure`` callable receiving the
    feature's builder; with it the workflow builder is returned for chaining,
    without it the feature's builder is returned and ``end()`` comes back here.
    """

    def __init__(
        self,
        payload_factory: Callable[[Any], Any],
        result_selector: Callable[[Any], Any],
        *,
        name: str = "workflow",
        settings: Optional[WorkflowSettings] = None,
        registry: Optional[FeatureExecutorRegistry] = None,
        metrics: Optional[MetricsRecorder] = None,
        events: Optional[EventLogger] = None,
        tracer: Optional[TracingManager] = None,
    ) -> None:
        if not callable(payload_factory):
            raise WorkflowConfigurationError("payload_factory must be callable")
        if not callable(result_selector):
            raise WorkflowConfigurationError("result_selector must be callable")
        self._payload_factory = payload_factory
        self._result_selector = result_selector
        self._name = name
        self._settings = settings
        self._registry = registry
        self._metrics = metrics
        self._events = events
        self._tracer = tracer

        self._validations: List[Validation] = []
        self._guards: List[Guard] = []
        self._activities: List[Activity] = []
        self._conditional_activities: List[ConditionalActivity] = []
        self._features: List[Feature] = []
        self._finally_activities: List[Activity] = []

    @classmethod
    def parameterless(
        cls,
        payload_factory: Callable[[], Any],
        result_selector: Callable[[Any], Any],
        **options: Any,
    ) -> "WorkflowBuilder":
        """Builder for workflows executed without a request."""
        if not callable(payload_factory):
            raise WorkflowConfigurationError("payload_factory must be callable")
        return cls(lambda _request: payload_factory(), result_selector, **options)

    # Request stages

    def validate(self, validation: Callable[..., Any], name: Optional[str] = None) -> "WorkflowBuilder":
        self._validations.append(Validation(validation, name))
        return self

    def guard(self, guard: Callable[..., Any], name: Optional[str] = None) -> "WorkflowBuilder":
        self._guards.append(Guard(guard, name))
        return self

    # Payload stages

    def do(self, activity: Callable[..., Any], name: Optional[str] = None) -> "WorkflowBuilder":
        self._activities.append(Activity(activity, name))
        return self

    def do_all(self, *activities: Callable[..., Any]) -> "WorkflowBuilder":
        for activity in activities:
            self.do(activity)
        return self

    def do_if(
        self,
        condition: Predicate,
        activity: Callable[..., Any],
        name: Optional[str] = None,
    ) -> "WorkflowBuilder":
        self._conditional_activities.append(
            ConditionalActivity(condition, Activity(activity, name))
        )
        return self

    def finally_(self, activity: Callable[..., Any], name: Optional[str] = None) -> "WorkflowBuilder":
        """Register cleanup that runs once per execution after a payload exists."""
        self._finally_activities.append(Activity(activity, name))
        return self

    # Features

    def group(
        self,
        configure: Optional[Callable[[GroupBuilder], Any]] = None,
        *,
        condition: Optional[Predicate] = None,
        name: Optional[str] = None,
    ) -> Any:
        feature = Group(condition=condition, name=name)
        return self._open(feature, GroupBuilder(self, feature), configure)

    def with_context(
        self,
        local_state_factory: Callable[[Any], Any],
        configure: Optional[Callable[[ContextBuilder], Any]] = None,
        *,
        condition: Optional[Predicate] = None,
        name: Optional[str] = None,
    ) -> Any:
        if not callable(local_state_factory):
            raise WorkflowConfigurationError("local_state_factory must be callable")
        feature = Context(local_state_factory, condition=condition, name=name)
        return self._open(feature, ContextBuilder(self, feature), configure)

    def detach(
        self,
        configure: Optional[Callable[[DetachedBuilder], Any]] = None,
        *,
        condition: Optional[Predicate] = None,
        name: Optional[str] = None,
    ) -> Any:
        feature = Detached(condition=condition, name=name)
        return self._open(feature, DetachedBuilder(self, feature), configure)

    def parallel(
        self,
        configure: Optional[Callable[[ParallelBuilder], Any]] = None,
        *,
        condition: Optional[Predicate] = None,
        name: Optional[str] = None,
        merge: Optional[MergeFunction] = None,
    ) -> Any:
        if merge is not None and not callable(merge):
            raise WorkflowConfigurationError("merge must be callable")
        feature = Parallel(condition=condition, name=name, merge=merge)
        return self._open(feature, ParallelBuilder(self, feature), configure)

    def parallel_detached(
        self,
        configure: Optional[Callable[[ParallelDetachedBuilder], Any]] = None,
        *,
        condition: Optional[Predicate] = None,
        name: Optional[str] = None,
    ) -> Any:
        feature = ParallelDetached(condition=condition, name=name)
        return self._open(feature, ParallelDetachedBuilder(self, feature), configure)

    def branch(
        self,
        condition: Optional[Predicate] = None,
        configure: Optional[Callable[[GroupBuilder], Any]] = None,
        *,
        name: Optional[str] = None,
    ) -> Any:
        """Older spelling of :meth:`group`."""
        return self.group(configure, condition=condition, name=name)

    def branch_with_local_payload(
        self,
        local_payload_factory: Callable[[Any], Any],
        configure: Optional[Callable[[ContextBuilder], Any]] = None,
        *,
        condition: Optional[Predicate] = None,
        name: Optional[str] = None,
    ) -> Any:
        """Older spelling of :meth:`with_context`."""
        return self.with_context(
            local_payload_factory, configure, condition=condition, name=name
        )

    def _open(self, feature: Feature, builder: Any, configure: Optional[Callable[[Any], Any]]) -> Any:
        if feature.condition is not None and not callable(feature.condition):
            raise WorkflowConfigurationError("condition must be callable")
        self._features.append(feature)
        if configure is None:
            return builder
        configure(builder)
        return self

    def build(self) -> Workflow:
        """Freeze the registered stages into an executable workflow.

        The builder may keep being used afterwards; later registrations do not
        affect workflows already built.
        """
        definition = WorkflowDefinition(
            payload_factory=self._payload_factory,
            result_selector=self._result_selector,
            name=self._name,
            validations=tuple(self._validations),
            guards=tuple(self._guards),
            activities=tuple(self._activities),
            conditional_activities=tuple(self._conditional_activities),
            features=tuple(feature.freeze() for feature in self._features),
            finally_activities=tuple(self._finally_activities),
        )
        LOGGER.debug(
            "Built workflow '%s' with %d activities and %d features",
            self._name,
            len(definition.activities),
            len(definition.features),
        )
        return Workflow(
            definition,
            settings=self._settings,
            registry=self._registry,
            metrics=self._metrics,
            events=self._events,
            tracer=self._tracer,
        )


def create_workflow(
    payload_factory: Callable[[], Any],
    result_selector: Callable[[Any], Any],
    configure: Callable[[WorkflowBuilder], Any],
    **options: Any,
) -> Workflow:
    """Configure and build a parameterless workflow in one call."""
    builder = WorkflowBuilder.parameterless(payload_factory, result_selector, **options)
    configure(builder)
    return builder.build()
