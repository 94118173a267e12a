"""
Shared fixtures for the workflow tests
"""
from typing import Callable, List

import pytest

from bee_workflow import DetachedTracker, MetricsRecorder, Workflow, WorkflowBuilder, WorkflowSettings


@pytest.fixture(params=["threads", "asyncio"])
def settings(request) -> WorkflowSettings:
    """Settings for each concurrency mode."""
    return WorkflowSettings(concurrency_mode=request.param)


@pytest.fixture
def tracker() -> DetachedTracker:
    return DetachedTracker()


@pytest.fixture
def metrics() -> MetricsRecorder:
    return MetricsRecorder()


@pytest.fixture
def build() -> Callable[[WorkflowBuilder], Workflow]:
    """Build workflows and release their worker threads after the test."""
    built: List[Workflow] = []

    def _build(builder: WorkflowBuilder) -> Workflow:
        workflow = builder.build()
        built.append(workflow)
        return workflow

    yield _build
    for workflow in built:
        workflow.close()
