"""
Result Types

Tagged success/error union returned by every public operation of the
payment reconciliation engine. Callers branch on ``is_ok`` instead of
mixing return values with exceptions.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from assist.infrastructure.exceptions import AssistError


T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """Failed outcome carrying an AssistError."""
    error: AssistError

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err]
