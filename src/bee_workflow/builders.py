"""Fluent builders for the activities nested inside features."""
from __future__ import annotations

from typing import Any, Callable, Optional

from .features import Context, Detached, Group, Parallel, ParallelDetached
from .stages import Activity, ContextActivity, Predicate


class _FeatureBuilder:
    def __init__(self, parent: Any) -> None:
        self._parent = parent

    def end(self) -> Any:
        """Return to the builder this one was opened from."""
        return self._parent


class GroupBuilder(_FeatureBuilder):
    """Adds activities to a group."""

    def __init__(self, parent: Any, group: Group) -> None:
        super().__init__(parent)
        self._group = group

    def do(self, activity: Callable[..., Any], name: Optional[str] = None) -> "GroupBuilder":
        self._group.activities.append(Activity(activity, name))
        return self

    def do_all(self, *activities: Callable[..., Any]) -> "GroupBuilder":
        for activity in activities:
            self.do(activity)
        return self


class DetachedBuilder(_FeatureBuilder):
    """Adds activities to a detached chain."""

    def __init__(self, parent: Any, detached: Detached) -> None:
        super().__init__(parent)
        self._detached = detached

    def do(self, activity: Callable[..., Any], name: Optional[str] = None) -> "DetachedBuilder":
        self._detached.activities.append(Activity(activity, name))
        return self

    def do_all(self, *activities: Callable[..., Any]) -> "DetachedBuilder":
        for activity in activities:
            self.do(activity)
        return self


class ContextBuilder(_FeatureBuilder):
    """Adds ``(payload, local_state)`` activities to a context."""

    def __init__(self, parent: Any, context: Context) -> None:
        super().__init__(parent)
        self._context = context

    def do(self, activity: Callable[..., Any], name: Optional[str] = None) -> "ContextBuilder":
        self._context.activities.append(ContextActivity(activity, name))
        return self

    def do_all(self, *activities: Callable[..., Any]) -> "ContextBuilder":
        for activity in activities:
            self.do(activity)
        return self


class ParallelBuilder(_FeatureBuilder):
    """Adds branches (groups) to a parallel feature."""

    def __init__(self, parent: Any, parallel: Parallel) -> None:
        super().__init__(parent)
        self._parallel = parallel

    def group(
        self,
        configure: Optional[Callable[[GroupBuilder], Any]] = None,
        *,
        condition: Optional[Predicate] = None,
        name: Optional[str] = None,
    ) -> Any:
        """Add a branch; without ``configure`` the branch's builder is returned."""
        group = Group(condition=condition, name=name)
        self._parallel.groups.append(group)
        builder = GroupBuilder(self, group)
        if configure is None:
            return builder
        configure(builder)
        return self


class ParallelDetachedBuilder(_FeatureBuilder):
    """Adds detached branches to a parallel-detached feature."""

    def __init__(self, parent: Any, feature: ParallelDetached) -> None:
        super().__init__(parent)
        self._feature = feature

    def detached(
        self,
        configure: Optional[Callable[[DetachedBuilder], Any]] = None,
        *,
        condition: Optional[Predicate] = None,
        name: Optional[str] = None,
    ) -> Any:
        """Add a branch; without ``configure`` the branch's builder is returned."""
        detached = Detached(condition=condition, name=name)
        self._feature.branches.append(detached)
        builder = DetachedBuilder(self, detached)
        if configure is None:
            return builder
        configure(builder)
        return self
