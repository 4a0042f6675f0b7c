"""
Result wrapper for callers that would rather branch than catch.

Engine services raise WagerError subclasses. Batch jobs such as the
unfilled-match sweep run each step through Result.capture() so one failed
match does not stop the rest.

    result = Result.capture(lambda: lifecycle.join(match_id, user_id))
    if not result:
        logger.warning(f"{result.error_code}: {result.error}")
"""

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from services.errors import WagerError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of one engine call.

    Attributes:
        success: Whether the call succeeded
        value: Return value on success
        error: Human-readable message on failure
        error_code: Stable code from services.error_codes on failure
    """

    success: bool
    value: T | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def ok(cls, value: T | None = None) -> "Result[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: str, code: str | None = None) -> "Result[T]":
        return cls(success=False, error=error, error_code=code)

    @classmethod
    def from_error(cls, exc: WagerError) -> "Result[T]":
        """Failed result carrying the error's message and code."""
        return cls.fail(str(exc), code=exc.error_code)

    @classmethod
    def capture(cls, fn: Callable[[], T]) -> "Result[T]":
        """Run fn; WagerError becomes a failed result, anything else propagates."""
        try:
            return cls.ok(fn())
        except WagerError as exc:
            return cls.from_error(exc)

    def __bool__(self) -> bool:
        return self.success

    def unwrap(self) -> T:
        """
        Raises:
            ValueError: the result is a failure
        """
        if not self.success:
            raise ValueError(f"Cannot unwrap failed result: {self.error}")
        return self.value  # type: ignore

    def unwrap_or(self, default: T) -> T:
        return self.value if self.success else default  # type: ignore
