"""Result type returned by view-model operations instead of raising."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar


T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Result(Generic[T, E]):
    """Either a success value (possibly ``None``) or an error."""

    value: Optional[T] = None
    error: Optional[E] = None

    @classmethod
    def ok(cls, value: T = None) -> "Result[T, E]":  # type: ignore[assignment]
        return cls(value=value)

    @classmethod
    def err(cls, error: E) -> "Result[T, E]":
        if error is None:
            raise ValueError("Result.err requires an error value")
        return cls(error=error)

    def is_ok(self) -> bool:
        return self.error is None

    def is_err(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T:
        if self.error is not None:
            raise RuntimeError(f"Tried to unwrap error result: {self.error}")
        return self.value  # type: ignore[return-value]


__all__ = ["Result"]
