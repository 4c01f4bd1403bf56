# storefront/ftypes.py
# Maybe and Either used as return types of UI-facing actions and lookups.

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar, Union

T = TypeVar("T")
U = TypeVar("U")
L = TypeVar("L")
R = TypeVar("R")


@dataclass(frozen=True)
class Maybe(Generic[T]):
    """
    Необязательное значение: текущая сессия, найденный товар, позиция корзины.
    Maybe.some(value) / Maybe.nothing() / Maybe.from_optional(value_or_none)
    """

    value: Optional[T]

    @staticmethod
    def some(value: T) -> "Maybe[T]":
        return Maybe(value)

    @staticmethod
    def nothing() -> "Maybe[None]":
        return Maybe(None)

    @staticmethod
    def from_optional(value: Optional[T]) -> "Maybe[T]":
        return Maybe(value)

    def is_some(self) -> bool:
        return self.value is not None

    def is_none(self) -> bool:
        return self.value is None

    def map(self, fn: Callable[[T], U]) -> "Maybe[U]":
        return Maybe.some(fn(self.value)) if self.is_some() else Maybe.nothing()

    def get_or_else(self, default: U) -> T | U:
        return self.value if self.is_some() else default

    def __repr__(self) -> str:
        return f"Some({self.value})" if self.is_some() else "Nothing"


@dataclass(frozen=True)
class Either(Generic[L, R]):
    """
    Результат действия пользователя.
    Left - сообщение об ошибке (или описание сбоя), Right - успешное значение.
    """

    is_left: bool
    value: Union[L, R]

    @staticmethod
    def left(value: L) -> "Either[L, R]":
        return Either(True, value)

    @staticmethod
    def right(value: R) -> "Either[L, R]":
        return Either(False, value)

    @property
    def is_right(self) -> bool:
        return not self.is_left

    def map(self, fn: Callable[[R], U]) -> "Either[L, U]":
        return Either.right(fn(self.value)) if not self.is_left else self  # type: ignore[return-value]

    def map_left(self, fn: Callable[[L], U]) -> "Either[U, R]":
        return Either.left(fn(self.value)) if self.is_left else self  # type: ignore[return-value]

    def bind(self, fn: Callable[[R], "Either[L, U]"]) -> "Either[L, U]":
        return fn(self.value) if not self.is_left else self  # type: ignore[return-value]

    def get_or_else(self, default: U) -> R | U:
        return self.value if not self.is_left else default  # type: ignore[return-value]

    def __repr__(self) -> str:
        return f"Left({self.value})" if self.is_left else f"Right({self.value})"
