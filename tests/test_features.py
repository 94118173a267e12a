import asyncio
import threading
from dataclasses import dataclass, replace

import pytest

from bee_workflow import (
    DetachedTracker,
    FeatureExecutorRegistry,
    FeatureKind,
    InvalidStageResultError,
    Left,
    Right,
    UnsupportedFeatureError,
    WorkflowBuilder,
)
from bee_workflow.executors import GroupExecutor


@dataclass(frozen=True)
class Calculation:
    a: int = 0
    b: int = 0
    sum: int = 0
    product: int = 0
    total: int = 0
    note: str = ""


def start(request):
    return Calculation(a=request["a"], b=request["b"])


def identity(payload):
    return payload


def compute_sum(payload):
    return Right(replace(payload, sum=payload.a + payload.b))


def compute_product(payload):
    return Right(replace(payload, product=payload.a * payload.b))


def fail_with(error):
    def _fail(payload):
        return Left(error)

    return _fail


class TestGroupAndContext:
    @pytest.mark.asyncio
    async def test_group_runs_when_condition_holds(self, build):
        workflow = build(
            WorkflowBuilder(start, identity)
            .group(lambda g: g.do(compute_sum).do(compute_product), condition=lambda p: p.a > 0)
        )

        result = await workflow.execute({"a": 2, "b": 3})

        assert result == Right(Calculation(a=2, b=3, sum=5, product=6))

    @pytest.mark.asyncio
    async def test_false_condition_leaves_payload_untouched(self, build):
        calls = []

        def record(payload):
            calls.append(payload)
            return Right(replace(payload, note="changed"))

        builder = WorkflowBuilder(start, identity)
        builder.branch(lambda p: False, lambda g: g.do(record))
        builder.parallel(condition=lambda p: False).group().do(record)
        builder.with_context(lambda p: {}, lambda c: c.do(record), condition=lambda p: False)
        workflow = build(builder)

        result = await workflow.execute({"a": 1, "b": 1})

        assert result == Right(Calculation(a=1, b=1))
        assert calls == []

    @pytest.mark.asyncio
    async def test_group_error_stops_later_features(self, build):
        calls = []

        def record(payload):
            calls.append(payload)
            return Right(payload)

        workflow = build(
            WorkflowBuilder(start, identity)
            .group(lambda g: g.do(compute_sum).do(fail_with("GROUP_FAILED")).do(record))
            .group(lambda g: g.do(record))
        )

        assert await workflow.execute({"a": 1, "b": 1}) == Left("GROUP_FAILED")
        assert calls == []

    @pytest.mark.asyncio
    async def test_context_threads_local_state(self, build):
        def add_cost(payload, local):
            return Right((replace(payload, total=payload.total + local["cost"]), local))

        def raise_cost(payload, local):
            return Right((payload, {"cost": local["cost"] + 2}))

        workflow = build(
            WorkflowBuilder(start, identity).with_context(
                lambda p: {"cost": 5},
                lambda c: c.do(add_cost).do(raise_cost).do(add_cost),
            )
        )

        result = await workflow.execute({"a": 0, "b": 0})

        assert result == Right(Calculation(total=12))

    @pytest.mark.asyncio
    async def test_context_factory_sees_current_payload(self, build):
        def add_cost(payload, local, token):
            return Right((replace(payload, total=local["cost"]), local))

        workflow = build(
            WorkflowBuilder(start, identity)
            .do(compute_sum)
            .branch_with_local_payload(lambda p: {"cost": p.sum * 10})
            .do(add_cost)
            .end()
        )

        result = await workflow.execute({"a": 1, "b": 2})

        assert result.value.total == 30

    @pytest.mark.asyncio
    async def test_context_error_is_returned(self, build):
        workflow = build(
            WorkflowBuilder(start, identity).with_context(
                lambda p: {"cost": 5}, lambda c: c.do(lambda p, local: Left("NO_BUDGET"))
            )
        )

        assert await workflow.execute({"a": 0, "b": 0}) == Left("NO_BUDGET")

    @pytest.mark.asyncio
    async def test_context_activity_must_return_pair(self, build):
        workflow = build(
            WorkflowBuilder(start, identity).with_context(
                lambda p: {}, lambda c: c.do(lambda p, local: Right(p), name="bad-context")
            )
        )

        with pytest.raises(InvalidStageResultError) as exc_info:
            await workflow.execute({"a": 0, "b": 0})
        assert exc_info.value.stage == "bad-context"


class TestParallel:
    @pytest.mark.asyncio
    async def test_branch_results_are_merged(self, build, settings):
        workflow = build(
            WorkflowBuilder(start, identity, settings=settings).parallel(
                lambda p: p.group(lambda g: g.do(compute_sum)).group(lambda g: g.do(compute_product))
            )
        )

        result = await workflow.execute({"a": 3, "b": 7})

        assert result.value.sum == 10
        assert result.value.product == 21

    @pytest.mark.asyncio
    async def test_failing_branch_discards_other_edits(self, build, settings):
        seen = []

        def record(payload):
            seen.append(payload)
            return Right(payload)

        workflow = build(
            WorkflowBuilder(start, identity, settings=settings)
            .parallel()
            .group()
            .do(compute_sum)
            .end()
            .group()
            .do(fail_with("BRANCH_FAILED"))
            .end()
            .end()
            .finally_(record)
        )

        result = await workflow.execute({"a": 1, "b": 2})

        assert result == Left("BRANCH_FAILED")
        assert seen == [Calculation(a=1, b=2)]

    @pytest.mark.asyncio
    async def test_lowest_failing_branch_wins(self, build, settings):
        async def slow_failure(payload):
            await asyncio.sleep(0.05)
            return Left("FIRST")

        workflow = build(
            WorkflowBuilder(start, identity, settings=settings).parallel(
                lambda p: p.group(lambda g: g.do(slow_failure))
                .group(lambda g: g.do(fail_with("SECOND")))
            )
        )

        assert await workflow.execute({"a": 1, "b": 1}) == Left("FIRST")

    @pytest.mark.asyncio
    async def test_branch_exception_ordering(self, build, settings):
        def crash(payload):
            raise RuntimeError("branch crashed")

        left_first = build(
            WorkflowBuilder(start, identity, settings=settings).parallel(
                lambda p: p.group(lambda g: g.do(fail_with("FIRST"))).group(lambda g: g.do(crash))
            )
        )
        crash_first = build(
            WorkflowBuilder(start, identity, settings=settings).parallel(
                lambda p: p.group(lambda g: g.do(crash)).group(lambda g: g.do(fail_with("SECOND")))
            )
        )

        assert await left_first.execute({"a": 1, "b": 1}) == Left("FIRST")
        with pytest.raises(RuntimeError, match="branch crashed"):
            await crash_first.execute({"a": 1, "b": 1})

    @pytest.mark.asyncio
    async def test_disabled_branches_are_skipped(self, build, settings):
        workflow = build(
            WorkflowBuilder(start, identity, settings=settings).parallel(
                lambda p: p.group(lambda g: g.do(compute_sum))
                .group(lambda g: g.do(fail_with("SKIPPED")), condition=lambda c: c.a > 100)
            )
        )

        result = await workflow.execute({"a": 1, "b": 2})

        assert result.value.sum == 3

    @pytest.mark.asyncio
    async def test_no_runnable_branch_returns_payload(self, build, settings):
        workflow = build(
            WorkflowBuilder(start, identity, settings=settings).parallel(
                lambda p: p.group(lambda g: g.do(compute_sum), condition=lambda c: False)
            )
        )

        assert await workflow.execute({"a": 1, "b": 2}) == Right(Calculation(a=1, b=2))

    @pytest.mark.asyncio
    async def test_custom_merge_strategy(self, build, settings):
        def add_totals(original, results):
            return replace(original, total=sum(result.total for result in results))

        workflow = build(
            WorkflowBuilder(start, identity, settings=settings).parallel(
                lambda p: p.group(lambda g: g.do(lambda c: Right(replace(c, total=c.a))))
                .group(lambda g: g.do(lambda c: Right(replace(c, total=c.b)))),
                merge=add_totals,
            )
        )

        result = await workflow.execute({"a": 4, "b": 5})

        assert result.value.total == 9

    @pytest.mark.asyncio
    async def test_branch_reset_to_zero_is_kept(self, build, settings):
        workflow = build(
            WorkflowBuilder(start, identity, settings=settings).parallel(
                lambda p: p.group(lambda g: g.do(lambda c: Right(replace(c, a=0))))
                .group(lambda g: g.do(compute_product))
            )
        )

        result = await workflow.execute({"a": 4, "b": 5})

        assert result.value.a == 0
        assert result.value.product == 20


class TestDetached:
    @pytest.mark.asyncio
    async def test_detached_never_changes_result(self, build, settings, tracker):
        workflow = build(
            WorkflowBuilder(start, identity, settings=settings)
            .detach(lambda d: d.do(compute_sum).do(compute_product))
            .detach(lambda d: d.do(fail_with("IGNORED")))
        )

        result = await workflow.execute({"a": 2, "b": 3}, tracker=tracker)
        outcomes = await tracker.wait_all(timeout=5)

        assert result == Right(Calculation(a=2, b=3))
        assert outcomes == [
            Right(Calculation(a=2, b=3, sum=5, product=6)),
            Left("IGNORED"),
        ]

    @pytest.mark.asyncio
    async def test_detached_exception_is_kept_on_handle(self, build, settings, tracker):
        def crash(payload):
            raise ValueError("detached crash")

        workflow = build(
            WorkflowBuilder(start, identity, settings=settings)
            .detach(name="audit")
            .do(crash)
            .end()
            .do(compute_sum)
        )

        result = await workflow.execute({"a": 2, "b": 3}, tracker=tracker)
        outcomes = await tracker.wait_all(timeout=5)

        assert result.value.sum == 5
        assert isinstance(outcomes[0], ValueError)
        handle = tracker.handles[0]
        assert handle.label == "audit"
        assert handle.done()
        assert isinstance(handle.exception(), ValueError)

    @pytest.mark.asyncio
    async def test_parallel_detached_spawns_each_enabled_branch(self, build, settings, tracker):
        workflow = build(
            WorkflowBuilder(start, identity, settings=settings).parallel_detached(
                lambda p: p.detached(lambda d: d.do(compute_sum))
                .detached(lambda d: d.do(compute_product))
                .detached(lambda d: d.do(compute_sum), condition=lambda c: False)
            )
        )

        result = await workflow.execute({"a": 2, "b": 4}, tracker=tracker)
        outcomes = await tracker.wait_all(timeout=5)

        assert result == Right(Calculation(a=2, b=4))
        assert len(outcomes) == 2
        assert outcomes[0].value.sum == 6
        assert outcomes[1].value.product == 8

    def test_detached_runs_on_worker_thread_by_default(self):
        async def runner():
            threads = []

            def record_thread(payload):
                threads.append(threading.current_thread().name)
                return Right(payload)

            builder = WorkflowBuilder(start, identity)
            builder.detach().do(record_thread)
            workflow = builder.build()
            tracker = DetachedTracker()
            result = await workflow.execute({"a": 1, "b": 1}, tracker=tracker)
            await tracker.wait_all(timeout=5)
            workflow.close()

            assert result.is_right
            assert tracker.pending == 0
            assert threads[0].startswith("bee-detached")

        asyncio.run(runner())


class TestRegistry:
    @pytest.mark.asyncio
    async def test_missing_executor_raises(self, build):
        workflow = build(
            WorkflowBuilder(start, identity, registry=FeatureExecutorRegistry([]))
            .group(lambda g: g.do(compute_sum))
        )

        with pytest.raises(UnsupportedFeatureError) as exc_info:
            await workflow.execute({"a": 1, "b": 1})
        assert exc_info.value.kind is FeatureKind.GROUP

    @pytest.mark.asyncio
    async def test_replacement_executor_is_used(self, build):
        class CountingGroupExecutor(GroupExecutor):
            runs = 0

            async def execute(self, feature, payload, context):
                CountingGroupExecutor.runs += 1
                return await super().execute(feature, payload, context)

        registry = FeatureExecutorRegistry()
        registry.register(CountingGroupExecutor())
        workflow = build(
            WorkflowBuilder(start, identity, registry=registry).group(lambda g: g.do(compute_sum))
        )

        result = await workflow.execute({"a": 1, "b": 1})

        assert result.value.sum == 2
        assert CountingGroupExecutor.runs == 1
        assert set(registry.kinds()) == set(FeatureKind)


class TestAsyncCallables:
    @pytest.mark.asyncio
    async def test_async_conditions_are_awaited(self, build, settings, tracker):
        async def never(payload):
            return False

        async def always(payload):
            return True

        workflow = build(
            WorkflowBuilder(start, identity, settings=settings)
            .do_if(never, lambda c: Right(replace(c, total=99)))
            .do_if(always, lambda c: Right(replace(c, note="ran")))
            .group(lambda g: g.do(lambda c: Right(replace(c, total=c.total + 1))), condition=never)
            .parallel(
                lambda p: p.group(lambda g: g.do(compute_sum))
                .group(lambda g: g.do(compute_product), condition=never)
            )
            .parallel_detached(
                lambda p: p.detached(lambda d: d.do(compute_sum), condition=always)
                .detached(lambda d: d.do(compute_product), condition=never)
            )
        )

        result = await workflow.execute({"a": 2, "b": 3}, tracker=tracker)
        await tracker.wait_all(timeout=5)

        assert result == Right(Calculation(a=2, b=3, sum=5, note="ran"))
        assert len(tracker.handles) == 1

    @pytest.mark.asyncio
    async def test_async_local_state_factory(self, build):
        async def load_cost(payload):
            await asyncio.sleep(0)
            return {"cost": payload.a * 5}

        def add_cost(payload, local):
            return Right((replace(payload, total=payload.total + local["cost"]), local))

        workflow = build(
            WorkflowBuilder(start, identity).with_context(load_cost, lambda c: c.do(add_cost))
        )

        result = await workflow.execute({"a": 2, "b": 0})

        assert result.value.total == 10
