"""
Tagged result types for operations that cross a trust boundary.

An ingestion call returns exactly one of ``Ok``, ``ValidationFailure`` or
``StoreFailure``; the transport layer pattern-matches on the type instead of
inspecting loosely shaped dicts.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class ValidationFailure:
    errors: list[FieldError] = field(default_factory=list)
    message: str = "Validation failed"

    def to_list(self) -> list[dict]:
        return [e.to_dict() for e in self.errors]


@dataclass(frozen=True)
class StoreFailure:
    message: str
    error_type: str = "StoreFailure"
    details: dict[str, Any] = field(default_factory=dict)


Result = Union[Ok[T], ValidationFailure, StoreFailure]
