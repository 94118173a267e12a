"""Stage descriptors wrapping caller supplied callables.

Every stage callable may be a plain function or a coroutine function, and may
either accept the cancellation token as its last positional argument or leave
it out. The calling convention is resolved once, when the descriptor is built.
"""
from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .cancellation import CancellationToken
from .either import Either, Option, Right, is_either, is_option
from .errors import InvalidStageResultError, WorkflowConfigurationError

Predicate = Callable[[Any], bool]


def accepts_token(func: Callable[..., Any], arity: int) -> bool:
    """Return True when ``func`` takes one positional argument beyond ``arity``."""
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return False
    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind == inspect.Parameter.VAR_POSITIONAL:
            return True
        if parameter.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            positional += 1
    return positional > arity


def describe(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or repr(func)


def _require_callable(func: Any, role: str) -> None:
    if not callable(func):
        raise WorkflowConfigurationError(f"{role} must be callable, got {type(func).__name__}")


async def resolve(value: Any) -> Any:
    """Await ``value`` when a caller supplied callable returned an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


async def _invoke(func: Callable[..., Any], takes_token: bool, token: CancellationToken, *args: Any) -> Any:
    result = func(*args, token) if takes_token else func(*args)
    return await resolve(result)


@dataclass(frozen=True)
class _Stage:
    func: Callable[..., Any]
    name: Optional[str] = None
    takes_token: bool = field(init=False, default=False)

    # Positional arguments the stage receives before the optional token.
    _arity = 1
    _role = "Stage"

    def __post_init__(self) -> None:
        _require_callable(self.func, self._role)
        object.__setattr__(self, "takes_token", accepts_token(self.func, self._arity))

    @property
    def label(self) -> str:
        return self.name or describe(self.func)


@dataclass(frozen=True)
class Activity(_Stage):
    """``Payload -> Either[Error, Payload]`` transform."""

    _role = "Activity"

    async def execute(self, payload: Any, token: CancellationToken) -> Either:
        result = await _invoke(self.func, self.takes_token, token, payload)
        if not is_either(result):
            raise InvalidStageResultError(self.label, "Either", result)
        return result


@dataclass(frozen=True)
class Validation(_Stage):
    """Request check returning ``Option[Error]``; ``Some`` rejects the request."""

    _role = "Validation"

    async def validate(self, request: Any, token: CancellationToken) -> Option:
        result = await _invoke(self.func, self.takes_token, token, request)
        if not is_option(result):
            raise InvalidStageResultError(self.label, "Option", result)
        return result


@dataclass(frozen=True)
class Guard(_Stage):
    """Request check returning ``Either[Error, Unit]``."""

    _role = "Guard"

    async def check(self, request: Any, token: CancellationToken) -> Either:
        result = await _invoke(self.func, self.takes_token, token, request)
        if not is_either(result):
            raise InvalidStageResultError(self.label, "Either", result)
        return result


@dataclass(frozen=True)
class ConditionalActivity:
    """An activity gated by a predicate evaluated when the stage is reached."""

    condition: Predicate
    activity: Activity

    def __post_init__(self) -> None:
        _require_callable(self.condition, "Condition")

    @property
    def label(self) -> str:
        return self.activity.label

    async def should_execute(self, payload: Any) -> bool:
        return bool(await resolve(self.condition(payload)))


@dataclass(frozen=True)
class ContextActivity(_Stage):
    """``(Payload, LocalState) -> Either[Error, (Payload, LocalState)]`` transform."""

    _arity = 2
    _role = "Context activity"

    async def execute(
        self, payload: Any, local_state: Any, token: CancellationToken
    ) -> Either:
        result = await _invoke(self.func, self.takes_token, token, payload, local_state)
        if not is_either(result):
            raise InvalidStageResultError(self.label, "Either", result)
        if isinstance(result, Right) and not _is_pair(result.value):
            raise InvalidStageResultError(self.label, "Right((payload, local_state))", result.value)
        return result


def _is_pair(value: Any) -> bool:
    return isinstance(value, tuple) and len(value) == 2
