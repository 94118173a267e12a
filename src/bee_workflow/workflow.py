"""Executor for built workflows."""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Optional, Tuple

from .cancellation import CancellationToken
from .concurrency import BranchRunner, DetachedTracker
from .config import WorkflowSettings
from .either import UNIT, Either, Left, Right, is_either
from .errors import InvalidStageResultError, WorkflowCancelledError
from .executors import FeatureExecutorRegistry
from .models import ExecutionContext, ExecutionStatus, WorkflowDefinition
from .monitoring import EventLogger, MetricsRecorder, NullMetricsRecorder, TracingManager
from .stages import Activity, resolve

LOGGER = logging.getLogger("bee_workflow.workflow")


class _Run:
    """Last payload produced by a successful stage of one execution."""

    __slots__ = ("payload",)

    def __init__(self, payload: Any) -> None:
        self.payload = payload


class Workflow:
    """Immutable, reusable pipeline produced by ``WorkflowBuilder.build()``.

    One instance may serve many concurrent ``execute`` calls; per-call state
    lives in the :class:`ExecutionContext` created for each call.

    Parallel and detached branches may start worker threads owned by the
    workflow. Call :meth:`close` when done, or use the workflow as a
    context manager (``with`` or ``async with``).
    """

    def __init__(
        self,
        definition: WorkflowDefinition,
        *,
        settings: Optional[WorkflowSettings] = None,
        registry: Optional[FeatureExecutorRegistry] = None,
        metrics: Optional[MetricsRecorder] = None,
        events: Optional[EventLogger] = None,
        tracer: Optional[TracingManager] = None,
    ) -> None:
        self.definition = definition
        self.settings = settings or WorkflowSettings()
        self.registry = registry or FeatureExecutorRegistry()
        if metrics is None:
            metrics = MetricsRecorder() if self.settings.record_metrics else NullMetricsRecorder()
        self.metrics = metrics
        self.events = events or EventLogger()
        self.tracer = tracer or TracingManager()
        self.runner = BranchRunner(self.settings)

    @property
    def name(self) -> str:
        return self.definition.name

    async def execute(
        self,
        request: Any = UNIT,
        cancellation: Optional[CancellationToken] = None,
        tracker: Optional[DetachedTracker] = None,
    ) -> Either:
        """Run the workflow for ``request``.

        Returns ``Right(result_selector(payload))`` or the first ``Left``
        produced by a stage. Exceptions raised by stages propagate after the
        finally activities have run.
        """
        context = ExecutionContext(
            workflow_name=self.name,
            execution_id=uuid.uuid4().hex,
            token=cancellation or CancellationToken.none(),
            runner=self.runner,
            events=self.events,
            metrics=self.metrics,
            tracer=self.tracer,
            tracker=tracker,
        )
        self.events.log(
            "workflow_started", workflow=self.name, execution_id=context.execution_id
        )
        try:
            status, result = await self._execute(request, context)
        except (WorkflowCancelledError, asyncio.CancelledError):
            self._finish(context, ExecutionStatus.CANCELLED)
            raise
        except Exception:
            self._finish(context, ExecutionStatus.ERRORED)
            raise
        self._finish(context, status)
        return result

    def close(self, wait: bool = True) -> None:
        """Release the worker threads used for parallel and detached branches."""
        self.runner.shutdown(wait=wait)

    def __enter__(self) -> "Workflow":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    async def __aenter__(self) -> "Workflow":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    async def _execute(
        self, request: Any, context: ExecutionContext
    ) -> Tuple[ExecutionStatus, Either]:
        rejection = await self._check_request(request, context)
        if rejection is not None:
            return ExecutionStatus.REJECTED, rejection

        context.checkpoint("payload_factory")
        run = _Run(await resolve(self.definition.payload_factory(request)))

        try:
            outcome = await self._run_pipeline(run, context)
            if isinstance(outcome, Right):
                outcome = Right(await resolve(self.definition.result_selector(run.payload)))
        except BaseException:
            await self._run_finally(run.payload, context, propagating=True)
            raise

        finally_error = await self._run_finally(run.payload, context, propagating=False)
        if isinstance(outcome, Left):
            if finally_error is not None:
                self.events.log(
                    "finally_error_discarded",
                    workflow=self.name,
                    execution_id=context.execution_id,
                )
            return ExecutionStatus.FAILED, outcome
        if finally_error is not None:
            return ExecutionStatus.FAILED, finally_error
        return ExecutionStatus.COMPLETED, outcome

    async def _check_request(self, request: Any, context: ExecutionContext) -> Optional[Either]:
        """Validations first, then guards. Returns the rejection, if any."""
        for validation in self.definition.validations:
            context.checkpoint(validation.label)
            error = await validation.validate(request, context.token)
            if error.is_some:
                self.events.log(
                    "validation_failed",
                    workflow=self.name,
                    execution_id=context.execution_id,
                    stage=validation.label,
                )
                return Left(error.unwrap())
        for guard in self.definition.guards:
            context.checkpoint(guard.label)
            verdict = await guard.check(request, context.token)
            if isinstance(verdict, Left):
                self.events.log(
                    "guard_failed",
                    workflow=self.name,
                    execution_id=context.execution_id,
                    stage=guard.label,
                )
                return verdict
        return None

    async def _run_pipeline(self, run: _Run, context: ExecutionContext) -> Either:
        definition = self.definition
        for activity in definition.activities:
            outcome = await self._run_activity(activity, run.payload, context, "activity")
            if isinstance(outcome, Left):
                return outcome
            run.payload = outcome.value

        for conditional in definition.conditional_activities:
            context.checkpoint(conditional.label)
            if not await conditional.should_execute(run.payload):
                LOGGER.debug("Skipping conditional activity '%s'", conditional.label)
                continue
            outcome = await self._run_activity(
                conditional.activity, run.payload, context, "conditional_activity"
            )
            if isinstance(outcome, Left):
                return outcome
            run.payload = outcome.value

        for feature in definition.features:
            context.checkpoint(feature.label)
            outcome = await self.registry.execute(feature, run.payload, context)
            if not is_either(outcome):
                raise InvalidStageResultError(feature.label, "Either", outcome)
            if isinstance(outcome, Left):
                return outcome
            if feature.should_merge:
                run.payload = outcome.value
        return Right(run.payload)

    async def _run_activity(
        self, activity: Activity, payload: Any, context: ExecutionContext, stage_type: str
    ) -> Either:
        context.checkpoint(activity.label)
        start = time.time()
        with self.tracer.span(activity.label, execution_id=context.execution_id):
            result = await activity.execute(payload, context.token)
        self.metrics.observe(
            "stage_duration_seconds",
            time.time() - start,
            labels=context.labels(stage_type=stage_type),
        )
        if isinstance(result, Left):
            self.events.log(
                "activity_failed",
                workflow=self.name,
                execution_id=context.execution_id,
                stage=activity.label,
            )
        return result

    async def _run_finally(
        self, payload: Any, context: ExecutionContext, propagating: bool
    ) -> Optional[Either]:
        """Run every finally activity and return the first ``Left`` they produced.

        The first exception raised by a finally activity is re-raised once all
        of them have run, unless ``propagating`` says another exception is
        already on its way out.
        """
        first_error: Optional[Either] = None
        first_exception: Optional[BaseException] = None
        current = payload
        for activity in self.definition.finally_activities:
            stage = f"finally/{activity.label}"
            try:
                with self.tracer.span(stage, execution_id=context.execution_id):
                    result = await activity.execute(current, context.token)
            except Exception as exc:
                self.events.error(
                    "finally_failed",
                    exc_info=True,
                    workflow=self.name,
                    execution_id=context.execution_id,
                    stage=stage,
                )
                if first_exception is None:
                    first_exception = exc
                continue
            if isinstance(result, Left):
                self.events.warning(
                    "finally_failed",
                    workflow=self.name,
                    execution_id=context.execution_id,
                    stage=stage,
                )
                if first_error is None:
                    first_error = result
                continue
            current = result.value

        if first_exception is not None and not propagating:
            raise first_exception
        return first_error

    def _finish(self, context: ExecutionContext, status: ExecutionStatus) -> None:
        duration = time.time() - context.start_time
        self.metrics.inc("workflow_runs_total", labels=context.labels(outcome=status.value))
        self.metrics.observe(
            "workflow_duration_seconds", duration, labels=context.labels()
        )
        fields = {
            "workflow": self.name,
            "execution_id": context.execution_id,
            "outcome": status.value,
            "duration": duration,
        }
        if status is ExecutionStatus.COMPLETED:
            self.events.log("workflow_completed", **fields)
        elif status is ExecutionStatus.CANCELLED:
            self.events.warning("workflow_cancelled", **fields)
        elif status is ExecutionStatus.ERRORED:
            self.events.error("workflow_errored", exc_info=True, **fields)
        else:
            self.events.log("workflow_failed", **fields)

    def __repr__(self) -> str:
        return f"Workflow({self.name!r})"
