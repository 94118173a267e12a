"""Execution of concurrent branches and bookkeeping for detached work."""
from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Set, Union

from .config import WorkflowSettings

LOGGER = logging.getLogger("bee_workflow.concurrency")

BranchFactory = Callable[[], Awaitable[Any]]


def _run_in_new_loop(factory: BranchFactory) -> Any:
    """Drive one branch to completion on a private event loop (worker thread)."""
    return asyncio.run(_await(factory))


async def _await(factory: BranchFactory) -> Any:
    return await factory()


class DetachedHandle:
    """Observable handle to one spawned detached chain.

    Nothing in the workflow waits on it; callers that want to can await it or
    poll ``done()``. ``result()`` returns the chain's final ``Either`` or raises
    the exception that ended it.
    """

    def __init__(
        self,
        label: str,
        future: Union[concurrent.futures.Future, "asyncio.Future[Any]"],
    ) -> None:
        self.label = label
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> Any:
        if isinstance(self._future, concurrent.futures.Future):
            return self._future.result(timeout)
        return self._future.result()

    def exception(self) -> Optional[BaseException]:
        if not self._future.done():
            return None
        if self._future.cancelled():
            return asyncio.CancelledError()
        return self._future.exception()

    async def wait(self) -> Any:
        if isinstance(self._future, concurrent.futures.Future):
            return await asyncio.wrap_future(self._future)
        return await self._future

    def __await__(self):
        return self.wait().__await__()

    def __repr__(self) -> str:
        state = "done" if self.done() else "running"
        return f"DetachedHandle({self.label!r}, {state})"


class DetachedTracker:
    """Collects the handles spawned during the executions it is passed to."""

    def __init__(self) -> None:
        self._handles: List[DetachedHandle] = []
        self._lock = threading.Lock()

    def add(self, handle: DetachedHandle) -> None:
        with self._lock:
            self._handles.append(handle)

    @property
    def handles(self) -> List[DetachedHandle]:
        with self._lock:
            return list(self._handles)

    @property
    def pending(self) -> int:
        return sum(1 for handle in self.handles if not handle.done())

    async def wait_all(self, timeout: Optional[float] = None) -> List[Any]:
        """Wait for every tracked handle; exceptions are returned, not raised."""
        handles = self.handles
        if not handles:
            return []
        gathered = asyncio.gather(
            *(handle.wait() for handle in handles), return_exceptions=True
        )
        return await asyncio.wait_for(gathered, timeout)


class BranchRunner:
    """Runs parallel branches and spawns detached chains.

    In ``threads`` mode every branch gets its own event loop on a pool worker
    thread. In ``asyncio`` mode branches are tasks on the caller's loop.
    """

    def __init__(self, settings: Optional[WorkflowSettings] = None) -> None:
        self.settings = settings or WorkflowSettings()
        self._parallel_pool: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._detached_pool: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._pool_lock = threading.Lock()
        # Strong references keep asyncio-mode detached tasks alive until done.
        self._background: Set["asyncio.Task[Any]"] = set()

    @property
    def uses_threads(self) -> bool:
        return self.settings.concurrency_mode == "threads"

    async def run_all(self, branches: Sequence[BranchFactory]) -> List[Any]:
        """Run every branch concurrently and wait for all of them.

        The result list is in branch order; an exception raised by a branch is
        placed in its slot instead of being raised.
        """
        if not branches:
            return []
        if self.uses_threads:
            loop = asyncio.get_running_loop()
            pool = self._get_parallel_pool()
            awaitables = [
                loop.run_in_executor(pool, _run_in_new_loop, branch) for branch in branches
            ]
        else:
            awaitables = [_await(branch) for branch in branches]
        return list(await asyncio.gather(*awaitables, return_exceptions=True))

    def spawn(self, label: str, branch: BranchFactory) -> DetachedHandle:
        """Start ``branch`` without waiting for it."""
        if self.uses_threads:
            future = self._get_detached_pool().submit(_run_in_new_loop, branch)
            future.add_done_callback(lambda f: self._report(label, f))
            return DetachedHandle(label, future)
        task = asyncio.ensure_future(_await(branch))
        self._background.add(task)
        task.add_done_callback(lambda t: self._finish_task(label, t))
        return DetachedHandle(label, task)

    def shutdown(self, wait: bool = True) -> None:
        with self._pool_lock:
            pools = [self._parallel_pool, self._detached_pool]
            self._parallel_pool = None
            self._detached_pool = None
        for pool in pools:
            if pool is not None:
                pool.shutdown(wait=wait)

    def _finish_task(self, label: str, task: "asyncio.Task[Any]") -> None:
        self._background.discard(task)
        self._report(label, task)

    def _report(self, label: str, future: Any) -> None:
        if future.cancelled():
            LOGGER.info("Detached branch '%s' was cancelled", label)
            return
        # Retrieving the exception marks it handled; it stays on the handle.
        exc = future.exception()
        if exc is not None:
            LOGGER.error(
                "Detached branch '%s' raised", label, exc_info=(type(exc), exc, exc.__traceback__)
            )

    def _get_parallel_pool(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._pool_lock:
            if self._parallel_pool is None:
                self._parallel_pool = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.settings.max_parallel_workers,
                    thread_name_prefix="bee-parallel",
                )
            return self._parallel_pool

    def _get_detached_pool(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._pool_lock:
            if self._detached_pool is None:
                self._detached_pool = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.settings.max_detached_workers,
                    thread_name_prefix="bee-detached",
                )
            return self._detached_pool
