"""
Outcome values returned to the routing layer.

Flows that may end in navigation return one of these instead of raising;
the HTTP layer decides what a redirect means.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from shared.errors import QueryLayerException

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Redirect:
    to: str
    status_code: int = 303


@dataclass(frozen=True)
class Err:
    error: QueryLayerException


Result = Union[Ok[Any], Redirect, Err]
