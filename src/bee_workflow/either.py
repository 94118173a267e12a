"""Two-case result primitives shared by every stage of a workflow."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

L = TypeVar("L")
R = TypeVar("R")
T = TypeVar("T")
U = TypeVar("U")


class Unit:
    """The value carried by a guard that passed and by parameterless requests."""

    _instance: Optional["Unit"] = None

    def __new__(cls) -> "Unit":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNIT"


UNIT = Unit()


class Either(Generic[L, R]):
    """Either an error (``Left``) or a value (``Right``).

    Instances are immutable. Use ``isinstance`` or structural pattern matching
    on ``Left(error)`` / ``Right(value)`` to branch on the variant.
    """

    __slots__ = ()

    @staticmethod
    def from_left(error: L) -> "Either[L, Any]":
        return Left(error)

    @staticmethod
    def from_right(value: R) -> "Either[Any, R]":
        return Right(value)

    @property
    def is_left(self) -> bool:
        return isinstance(self, Left)

    @property
    def is_right(self) -> bool:
        return isinstance(self, Right)

    @property
    def left(self) -> L:
        if isinstance(self, Left):
            return self.error
        raise ValueError("Right has no left value")

    @property
    def right(self) -> R:
        if isinstance(self, Right):
            return self.value
        raise ValueError("Left has no right value")

    def map(self, func: Callable[[R], U]) -> "Either[L, U]":
        if isinstance(self, Right):
            return Right(func(self.value))
        return self  # type: ignore[return-value]

    def map_left(self, func: Callable[[L], U]) -> "Either[U, R]":
        if isinstance(self, Left):
            return Left(func(self.error))
        return self  # type: ignore[return-value]

    def bind(self, func: Callable[[R], "Either[L, U]"]) -> "Either[L, U]":
        if isinstance(self, Right):
            return func(self.value)
        return self  # type: ignore[return-value]

    def fold(self, on_left: Callable[[L], T], on_right: Callable[[R], T]) -> T:
        if isinstance(self, Left):
            return on_left(self.error)
        return on_right(self.right)

    def get_or_else(self, default: R) -> R:
        if isinstance(self, Right):
            return self.value
        return default


@dataclass(frozen=True)
class Left(Either[L, R]):
    error: L


@dataclass(frozen=True)
class Right(Either[L, R]):
    value: R


def is_either(candidate: Any) -> bool:
    return isinstance(candidate, (Left, Right))


class Option(Generic[T]):
    """Presence or absence of a value. Validations return ``Option[Error]``."""

    __slots__ = ()

    @staticmethod
    def some(value: T) -> "Option[T]":
        return Some(value)

    @staticmethod
    def none() -> "Option[Any]":
        return NOTHING

    @staticmethod
    def from_value(value: Optional[T]) -> "Option[T]":
        """Wrap ``value``; ``None`` becomes ``Nothing``."""
        if value is None:
            return NOTHING
        return Some(value)

    @property
    def is_some(self) -> bool:
        return isinstance(self, Some)

    @property
    def is_none(self) -> bool:
        return isinstance(self, Nothing)

    def unwrap(self) -> T:
        if isinstance(self, Some):
            return self.value
        raise ValueError("Nothing has no value")

    def map(self, func: Callable[[T], U]) -> "Option[U]":
        if isinstance(self, Some):
            return Some(func(self.value))
        return NOTHING

    def get_or_else(self, default: T) -> T:
        if isinstance(self, Some):
            return self.value
        return default


@dataclass(frozen=True)
class Some(Option[T]):
    value: T


@dataclass(frozen=True)
class Nothing(Option[Any]):
    def __repr__(self) -> str:
        return "Nothing()"


NOTHING: Option[Any] = Nothing()


def is_option(candidate: Any) -> bool:
    return isinstance(candidate, (Some, Nothing))
