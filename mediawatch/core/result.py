"""Tagged result type for service calls.

Services return ``Ok(value)`` or ``Err(kind, message)`` instead of raising
for expected outcomes such as "no tags found" or "entry not found".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    TRANSIENT_EXTERNAL = "transient_external"
    VALIDATION_FAILURE = "validation_failure"
    AGGREGATION_SUBFAILURE = "aggregation_subfailure"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str = ""
    details: Any = None

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
