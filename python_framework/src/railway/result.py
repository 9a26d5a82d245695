"""
Result monad — the core of Railway-Oriented Programming.

A Result[T] is either Success(value: T) or Failure(error: FailureDescription).
Operations return Result instead of raising; the first failure short-circuits
every following stage chained with .flat_map() / .flat_map_async().

    validate ──Success──▶ commit to ledger ──Success──▶ mirror ──▶ Result[T]
        │ Failure              │ Failure                  │ Failure
        └──────────────────────┴──────────────────────────┴──────▶ Result[T]

Async support matters here: ledger and database adapters are coroutines,
so a pipeline usually mixes pure validation stages (flat_map) with awaited
I/O stages (flat_map_async), and adapter boundaries convert exceptions with
from_computation / from_awaitable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Optional,
    TypeVar,
)

from railway.failure import ErrorCode, FailureDescription

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


class Result(Generic[T]):
    """
    Railway-Oriented Programming Result monad.

        >>> Result.success(21).map(lambda x: x * 2).value()
        42
        >>> Result.failure(ErrorCode.VALIDATION_ERROR, "bad input").map(lambda x: x * 2).is_failure()
        True
    """

    # ──────────────────────── Introspection ────────────────────────

    def is_success(self) -> bool:
        return isinstance(self, Success)

    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    def value(self) -> T:
        """Extract the success value. Raises ValueError if called on a Failure."""
        match self:
            case Success(v):
                return v
            case Failure(err):
                raise ValueError(f"Cannot get value from a Failure: {err.message}")
        raise TypeError("unreachable")  # pragma: no cover

    def error(self) -> FailureDescription:
        """Extract the failure description. Raises ValueError if called on a Success."""
        match self:
            case Failure(err):
                return err
            case Success(v):
                raise ValueError(f"Cannot get error from a Success: {v}")
        raise TypeError("unreachable")  # pragma: no cover

    # ──────────────────────── Core Transformations ────────────────────────

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        """Apply one of two functions depending on the track. The fundamental destructor."""
        match self:
            case Success(v):
                return on_success(v)
            case Failure(err):
                return on_failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map(self, mapper: Callable[[T], U]) -> Result[U]:
        """Transform the success value. Short-circuits on failure."""
        match self:
            case Success(v):
                return Success(mapper(v))
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map_failure(
        self, mapper: Callable[[FailureDescription], FailureDescription]
    ) -> Result[T]:
        """Transform the failure description. Passes through success unchanged."""
        match self:
            case Success(_):
                return self
            case Failure(err):
                return Failure(mapper(err))
        raise TypeError("unreachable")  # pragma: no cover

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        """
        Chain a Result-returning function. Short-circuits on failure.

            Result.success(rows).flat_map(check_header).flat_map(check_required_fields)
        """
        match self:
            case Success(v):
                return mapper(v)
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def ensure(
        self,
        predicate: Callable[[T], bool],
        error: FailureDescription | ErrorCode,
        message: str = "",
    ) -> Result[T]:
        """
        Validate the success value against a condition.

            Result.success(record).ensure(
                lambda r: r.status is not CertificateStatus.REVOKED,
                ErrorCode.BUSINESS_RULE_ERROR, "Certificate is revoked"
            )
        """
        if isinstance(error, ErrorCode):
            error = FailureDescription(code=error, message=message)

        return self.flat_map(
            lambda v: Result.success(v) if predicate(v) else Result.failure_from(error)
        )

    # ──────────────────────── Side Effects ────────────────────────

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        """Run a side effect (logging, counters) on the success value."""
        match self:
            case Success(v):
                action(v)
        return self

    def peek_failure(self, action: Callable[[FailureDescription], Any]) -> Result[T]:
        """Run a side effect on the failure description."""
        match self:
            case Failure(err):
                action(err)
        return self

    # ──────────────────────── Static Factories ────────────────────────

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure_from(error: FailureDescription) -> Result[T]:
        return Failure(error)

    @staticmethod
    def failure(
        code: ErrorCode,
        message: str,
        exception: Optional[BaseException] = None,
        details: Any = None,
    ) -> Result[T]:
        """
        Create a failed Result.

            Result.failure(ErrorCode.NOT_FOUND, "Certificate not found")
            Result.failure(ErrorCode.BUSINESS_RULE_ERROR, "Duplicate IDs", details=["CERT-A"])
        """
        return Failure(
            FailureDescription(code=code, message=message, exception=exception, details=details)
        )

    @staticmethod
    def from_computation(
        computation: Callable[[], T],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """
        Run a computation that may raise and capture the outcome.

            return Result.from_computation(
                lambda: load_workbook(path, read_only=True),
                ErrorCode.VALIDATION_ERROR,
                "Unable to open batch file",
            )
        """
        try:
            return Result.success(computation())
        except Exception as e:
            return Result.failure(error_code, error_message, e)

    @staticmethod
    async def from_awaitable(
        factory: Callable[[], Awaitable[T]],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """
        Await a coroutine that may raise and capture the outcome.

        The factory is called inside the guarded block so that errors raised
        while building the coroutine are captured too.

            return await Result.from_awaitable(
                lambda: self._contract.functions.paused().call(),
                ErrorCode.EXTERNAL_SERVICE_ERROR,
                "Unable to read pause state",
            )
        """
        try:
            return Result.success(await factory())
        except Exception as e:
            return Result.failure(error_code, error_message, e)

    # ──────────────────────── Async Support ────────────────────────

    async def map_async(self, mapper: Callable[[T], Awaitable[U]]) -> Result[U]:
        """Apply an async function to the success value."""
        match self:
            case Success(v):
                try:
                    return Success(await mapper(v))
                except Exception as e:
                    return Failure(
                        FailureDescription(ErrorCode.EXTERNAL_SERVICE_ERROR, "Async operation failed", e)
                    )
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    async def flat_map_async(self, mapper: Callable[[T], Awaitable[Result[U]]]) -> Result[U]:
        """
        Chain an async Result-returning function.

            result = await validated.flat_map_async(store.find_existing_numbers)
        """
        match self:
            case Success(v):
                try:
                    return await mapper(v)
                except Exception as e:
                    return Failure(
                        FailureDescription(ErrorCode.EXTERNAL_SERVICE_ERROR, "Async operation failed", e)
                    )
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    # ──────────────────────── Dunder methods ────────────────────────

    def __bool__(self) -> bool:
        return self.is_success()

    def __repr__(self) -> str:
        match self:
            case Success(v):
                return f"Success({v!r})"
            case Failure(err):
                return f"Failure({err.code.value}: {err.message!r})"
        raise TypeError("unreachable")  # pragma: no cover

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Result):
            return NotImplemented
        match (self, other):
            case (Success(a), Success(b)):
                return a == b
            case (Failure(a), Failure(b)):
                return a.code == b.code and a.message == b.message
            case _:
                return False


@dataclass(frozen=True, slots=True)
class Success(Result[T]):
    """The success track — wraps a non-None value of type T."""

    _value: T

    def __init__(self, value: T) -> None:
        if value is None:
            raise TypeError("Success value must not be None")
        object.__setattr__(self, "_value", value)

    def __repr__(self) -> str:
        return f"Success({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Success):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("Success", self._value))


Success.__match_args__ = ("_value",)


@dataclass(frozen=True, slots=True)
class Failure(Result[T]):
    """The failure track — wraps a FailureDescription."""

    _error: FailureDescription

    def __init__(self, error: FailureDescription) -> None:
        if error is None:
            raise TypeError("Failure error must not be None")
        object.__setattr__(self, "_error", error)

    def __repr__(self) -> str:
        return f"Failure({self._error.code.value}: {self._error.message!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Failure):
            return self._error.code == other._error.code and self._error.message == other._error.message
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("Failure", self._error.code, self._error.message))


Failure.__match_args__ = ("_error",)
