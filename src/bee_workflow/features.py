"""Feature descriptors: gated sub-pipelines registered on a workflow."""
from __future__ import annotations

import enum
from abc import ABC
from dataclasses import dataclass, field, replace
from typing import Any, Callable, ClassVar, List, Optional, Sequence

from .stages import Activity, ContextActivity, Predicate, describe, resolve


class FeatureKind(str, enum.Enum):
    """Kinds of features understood by the executor registry."""

    GROUP = "group"
    CONTEXT = "context"
    DETACHED = "detached"
    PARALLEL = "parallel"
    PARALLEL_DETACHED = "parallel_detached"


class Feature(ABC):
    """Base for all features.

    ``should_merge`` tells the workflow whether the executor's resulting payload
    replaces the enclosing one.
    """

    kind: ClassVar[FeatureKind]
    should_merge: ClassVar[bool]

    condition: Optional[Predicate]
    name: Optional[str]

    async def is_enabled(self, payload: Any) -> bool:
        if self.condition is None:
            return True
        return bool(await resolve(self.condition(payload)))

    @property
    def label(self) -> str:
        return self.name or self.kind.value

    def freeze(self) -> "Feature":
        """Return a copy whose nested collections are tuples."""
        raise NotImplementedError


@dataclass
class Group(Feature):
    """Optionally gated sequential sub-pipeline."""

    kind: ClassVar[FeatureKind] = FeatureKind.GROUP
    should_merge: ClassVar[bool] = True

    condition: Optional[Predicate] = None
    name: Optional[str] = None
    activities: Sequence[Activity] = field(default_factory=list)

    def freeze(self) -> "Group":
        return replace(self, activities=tuple(self.activities))


@dataclass
class Context(Feature):
    """Sub-pipeline whose activities also thread a private local state."""

    kind: ClassVar[FeatureKind] = FeatureKind.CONTEXT
    should_merge: ClassVar[bool] = True

    local_state_factory: Callable[[Any], Any]
    condition: Optional[Predicate] = None
    name: Optional[str] = None
    activities: Sequence[ContextActivity] = field(default_factory=list)

    def freeze(self) -> "Context":
        return replace(self, activities=tuple(self.activities))

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        return f"context[{describe(self.local_state_factory)}]"


@dataclass
class Detached(Feature):
    """Fire-and-forget chain; never merged and never propagates errors."""

    kind: ClassVar[FeatureKind] = FeatureKind.DETACHED
    should_merge: ClassVar[bool] = False

    condition: Optional[Predicate] = None
    name: Optional[str] = None
    activities: Sequence[Activity] = field(default_factory=list)

    def freeze(self) -> "Detached":
        return replace(self, activities=tuple(self.activities))


@dataclass
class Parallel(Feature):
    """Groups run concurrently against the same payload snapshot, then merged."""

    kind: ClassVar[FeatureKind] = FeatureKind.PARALLEL
    should_merge: ClassVar[bool] = True

    condition: Optional[Predicate] = None
    name: Optional[str] = None
    groups: Sequence[Group] = field(default_factory=list)
    # (original, [branch payloads]) -> merged payload; None uses the default strategy.
    merge: Optional[Callable[[Any, List[Any]], Any]] = None

    def freeze(self) -> "Parallel":
        return replace(self, groups=tuple(group.freeze() for group in self.groups))


@dataclass
class ParallelDetached(Feature):
    """Detached chains spawned side by side; the workflow does not wait."""

    kind: ClassVar[FeatureKind] = FeatureKind.PARALLEL_DETACHED
    should_merge: ClassVar[bool] = False

    condition: Optional[Predicate] = None
    name: Optional[str] = None
    branches: Sequence[Detached] = field(default_factory=list)

    def freeze(self) -> "ParallelDetached":
        return replace(self, branches=tuple(branch.freeze() for branch in self.branches))
