"""Tagged result values returned by every public engine operation.

Public entry points never raise: they return ``Result`` objects carrying
either a value or a ``PracticeError`` with one of the error codes below.

Usage:
    from drillcoach.core.result import ok, err

    result = err("NOT_FOUND", "Skill not found", skill_id=skill_id)
    if not result.ok:
        print(result.error.code)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")

ErrorCode = Literal[
    "NOT_FOUND",
    "VALIDATION_ERROR",
    "INVALID_STATE",
    "PROCESSING_ERROR",
    "COMPLETED",
    "STORE_ERROR",
]


@dataclass
class PracticeError:
    """Error payload of a failed result."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class Result(Generic[T]):
    """Either a value (ok) or a PracticeError (err)."""

    value: T | None = None
    error: PracticeError | None = None

    @property
    def ok(self) -> bool:
        """True when the result carries a value."""
        return self.error is None

    @property
    def code(self) -> ErrorCode | None:
        """Error code, or None on success."""
        return self.error.code if self.error else None

    def unwrap(self) -> T:
        """Return the value or raise ValueError when the result is an error.

        Intended for tests and call sites that already checked ``ok``.
        """
        if self.error is not None:
            raise ValueError(f"{self.error.code}: {self.error.message}")
        return self.value  # type: ignore[return-value]


class PracticeValidationError(Exception):
    """Raised by internal validators; converted to VALIDATION_ERROR results."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


def ok(value: T) -> Result[T]:
    """Build a successful result."""
    return Result(value=value)


def err(code: ErrorCode, message: str, **details: Any) -> Result[Any]:
    """Build a failed result."""
    return Result(error=PracticeError(code=code, message=message, details=details))
