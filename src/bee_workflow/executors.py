"""Feature executors and the registry dispatching on feature kind."""
from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from functools import partial
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Sequence

from .either import Either, Left, Right
from .errors import UnsupportedFeatureError
from .features import (
    Context,
    Detached,
    Feature,
    FeatureKind,
    Group,
    Parallel,
    ParallelDetached,
)
from .merge import merge_changed_fields
from .models import ExecutionContext
from .stages import Activity, resolve

LOGGER = logging.getLogger("bee_workflow.executors")


async def run_activity_chain(
    activities: Sequence[Activity],
    payload: Any,
    context: ExecutionContext,
    scope: str,
    honour_cancellation: bool = True,
) -> Either:
    """Run ``activities`` in order, stopping at the first ``Left``."""
    current = payload
    for activity in activities:
        stage = f"{scope}/{activity.label}"
        if honour_cancellation:
            context.checkpoint(stage)
        start = time.time()
        with context.tracer.span(stage, execution_id=context.execution_id):
            result = await activity.execute(current, context.token)
        context.metrics.observe(
            "stage_duration_seconds",
            time.time() - start,
            labels=context.labels(stage_type="feature_activity"),
        )
        if isinstance(result, Left):
            context.events.log(
                "activity_failed",
                workflow=context.workflow_name,
                execution_id=context.execution_id,
                stage=stage,
            )
            return result
        current = result.value
    return Right(current)


class FeatureExecutor(ABC):
    """Executes one kind of feature."""

    kind: ClassVar[FeatureKind]

    @abstractmethod
    async def execute(self, feature: Feature, payload: Any, context: ExecutionContext) -> Either:
        """Run ``feature`` against ``payload``."""


class GroupExecutor(FeatureExecutor):
    kind = FeatureKind.GROUP

    async def execute(self, feature: Group, payload: Any, context: ExecutionContext) -> Either:
        return await run_activity_chain(feature.activities, payload, context, feature.label)


class ContextExecutor(FeatureExecutor):
    """Threads a private local state alongside the payload.

    Only the payload leaves the feature; the local state is dropped with the
    frame of this call.
    """

    kind = FeatureKind.CONTEXT

    async def execute(self, feature: Context, payload: Any, context: ExecutionContext) -> Either:
        local_state = await resolve(feature.local_state_factory(payload))
        current = payload
        for activity in feature.activities:
            stage = f"{feature.label}/{activity.label}"
            context.checkpoint(stage)
            with context.tracer.span(stage, execution_id=context.execution_id):
                result = await activity.execute(current, local_state, context.token)
            if isinstance(result, Left):
                context.events.log(
                    "activity_failed",
                    workflow=context.workflow_name,
                    execution_id=context.execution_id,
                    stage=stage,
                )
                return result
            current, local_state = result.value
        return Right(current)


async def _detached_chain(
    activities: Sequence[Activity], payload: Any, context: ExecutionContext, label: str
) -> Either:
    # Already spawned work keeps running after cancellation.
    result = await run_activity_chain(
        activities, payload, context, label, honour_cancellation=False
    )
    if isinstance(result, Left):
        context.events.warning(
            "detached_failed",
            workflow=context.workflow_name,
            execution_id=context.execution_id,
            stage=label,
        )
    return result


class DetachedExecutor(FeatureExecutor):
    kind = FeatureKind.DETACHED

    async def execute(self, feature: Detached, payload: Any, context: ExecutionContext) -> Either:
        if feature.activities:
            handle = context.runner.spawn(
                feature.label,
                partial(_detached_chain, feature.activities, payload, context, feature.label),
            )
            context.track(handle)
        return Right(payload)


class ParallelExecutor(FeatureExecutor):
    """Runs the enabled groups concurrently and merges their payloads.

    Every branch sees the same snapshot. When branches fail, the failure of
    the lowest branch index wins, whether a ``Left`` or a raised exception.
    """

    kind = FeatureKind.PARALLEL

    async def execute(self, feature: Parallel, payload: Any, context: ExecutionContext) -> Either:
        branches = [
            (index, group)
            for index, group in enumerate(feature.groups)
            if await group.is_enabled(payload)
        ]
        if not branches:
            return Right(payload)

        results = await context.runner.run_all(
            [
                partial(
                    run_activity_chain,
                    group.activities,
                    payload,
                    context,
                    f"{feature.label}[{index}]",
                )
                for index, group in branches
            ]
        )

        successes: List[Any] = []
        for (index, _group), result in zip(branches, results):
            if isinstance(result, BaseException):
                LOGGER.error("Parallel branch %s of '%s' raised", index, feature.label)
                raise result
            if isinstance(result, Left):
                context.events.log(
                    "parallel_branch_failed",
                    workflow=context.workflow_name,
                    execution_id=context.execution_id,
                    stage=feature.label,
                    branch=index,
                )
                return result
            successes.append(result.value)

        merge = feature.merge or merge_changed_fields
        return Right(merge(payload, successes))


class ParallelDetachedExecutor(FeatureExecutor):
    kind = FeatureKind.PARALLEL_DETACHED

    async def execute(
        self, feature: ParallelDetached, payload: Any, context: ExecutionContext
    ) -> Either:
        for index, branch in enumerate(feature.branches):
            if not branch.activities or not await branch.is_enabled(payload):
                continue
            label = f"{feature.label}[{index}]"
            handle = context.runner.spawn(
                label, partial(_detached_chain, branch.activities, payload, context, label)
            )
            context.track(handle)
        return Right(payload)


class FeatureExecutorRegistry:
    """Maps each feature kind to the executor that runs it."""

    def __init__(self, executors: Optional[Iterable[FeatureExecutor]] = None) -> None:
        self._executors: Dict[FeatureKind, FeatureExecutor] = {}
        for executor in executors if executors is not None else default_executors():
            self.register(executor)

    def register(self, executor: FeatureExecutor) -> None:
        self._executors[executor.kind] = executor

    def get(self, kind: FeatureKind) -> FeatureExecutor:
        executor = self._executors.get(kind)
        if executor is None:
            raise UnsupportedFeatureError(kind)
        return executor

    def kinds(self) -> List[FeatureKind]:
        return list(self._executors)

    async def execute(self, feature: Feature, payload: Any, context: ExecutionContext) -> Either:
        """Evaluate the feature's condition, then dispatch to its executor."""
        if not await feature.is_enabled(payload):
            context.events.log(
                "feature_skipped",
                workflow=context.workflow_name,
                execution_id=context.execution_id,
                stage=feature.label,
            )
            return Right(payload)
        executor = self.get(feature.kind)
        start = time.time()
        with context.tracer.span(feature.label, execution_id=context.execution_id):
            result = await executor.execute(feature, payload, context)
        context.metrics.observe(
            "stage_duration_seconds",
            time.time() - start,
            labels=context.labels(stage_type=feature.kind.value),
        )
        return result


def default_executors() -> List[FeatureExecutor]:
    return [
        GroupExecutor(),
        ContextExecutor(),
        DetachedExecutor(),
        ParallelExecutor(),
        ParallelDetachedExecutor(),
    ]
