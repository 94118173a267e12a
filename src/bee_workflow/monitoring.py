"""Simple monitoring utilities for workflow executions."""
from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional


class MetricsRecorder:
    """In-memory metrics recorder used for tests and embedded deployments."""

    def __init__(self) -> None:
        self.counters: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self.histograms: Dict[str, Dict[str, List[float]]] = defaultdict(dict)
        # Branches running in worker threads record into the same instance.
        self._lock = threading.Lock()

    def inc(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 1) -> None:
        labels_key = self._labels_key(labels)
        with self._lock:
            self.counters[name][labels_key] += value

    def observe(
        self, name: str, value: float, labels: Optional[Dict[str, str]] = None
    ) -> None:
        labels_key = self._labels_key(labels)
        with self._lock:
            bucket = self.histograms[name].setdefault(labels_key, [])
            bucket.append(value)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        labels_key = self._labels_key(labels)
        with self._lock:
            return self.counters[name].get(labels_key, 0.0)

    def get_observations(
        self, name: str, labels: Optional[Dict[str, str]] = None
    ) -> List[float]:
        labels_key = self._labels_key(labels)
        with self._lock:
            return list(self.histograms[name].get(labels_key, []))

    def _labels_key(self, labels: Optional[Dict[str, str]]) -> str:
        if not labels:
            return "__no_labels__"
        sorted_items = sorted(labels.items())
        return "|".join(f"{k}={v}" for k, v in sorted_items)


class NullMetricsRecorder(MetricsRecorder):
    """Recorder installed when ``record_metrics`` is disabled."""

    def inc(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 1) -> None:
        return None

    def observe(
        self, name: str, value: float, labels: Optional[Dict[str, str]] = None
    ) -> None:
        return None


class TracingManager:
    """Very small tracing helper producing structured logs."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("bee_workflow.tracing")

    @contextmanager
    def span(self, name: str, **attrs: Any) -> Iterator[None]:
        start = time.time()
        self.logger.debug("Span start", extra={"span": name, **attrs})
        try:
            yield
        finally:
            duration = time.time() - start
            self.logger.debug(
                "Span end", extra={"span": name, "duration": duration, **attrs}
            )


class EventLogger:
    """Structured event logger for workflow executions."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("bee_workflow.events")

    def log(self, event: str, **payload: Any) -> None:
        self.logger.info(event, extra=payload)

    def warning(self, event: str, **payload: Any) -> None:
        self.logger.warning(event, extra=payload)

    def error(self, event: str, exc_info: Any = None, **payload: Any) -> None:
        self.logger.error(event, exc_info=exc_info, extra=payload)
