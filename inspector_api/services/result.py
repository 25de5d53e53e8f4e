from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a service call the caller has to branch on.

    A failure may still carry a value, e.g. the pending items that blocked
    a checklist completion.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown", value: Optional[T] = None) -> "Result[T]":
        return Result(ok=False, value=value, error=error, error_code=code)

    def failed_with(self, code: str) -> bool:
        return not self.ok and self.error_code == code
