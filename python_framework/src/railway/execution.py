"""
Execution contexts — separate WHAT (pure logic) from HOW (timing, logging).

Pure stages describe what happens and return Result[T]; an execution
context decides how the whole run is observed. Workflows that await I/O
use the async variant:

    ctx = LoggingExecutionContext(operation="issue_batch")
    result = await ctx.execute_async(lambda: self._issue_batch(path, email))
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Protocol, TypeVar, runtime_checkable

from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result

T = TypeVar("T")
logger = logging.getLogger("railway.execution")


# ──────────────────────── Protocol (Interface) ────────────────────────


@runtime_checkable
class ExecutionContext(Protocol):
    """Anything that can run a Result-returning computation, sync or async."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]: ...

    async def execute_async(
        self, computation: Callable[[], Awaitable[Result[T]]]
    ) -> Result[T]: ...


# ──────────────────────── NoOp (Testing) ────────────────────────


class NoOpExecutionContext:
    """Passthrough context for unit tests and pure logic."""

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        return computation()

    async def execute_async(
        self, computation: Callable[[], Awaitable[Result[T]]]
    ) -> Result[T]:
        return await computation()


# ──────────────────────── Logging ────────────────────────


class LoggingExecutionContext:
    """
    Logs entry, exit, duration and track of a computation.

    An exception escaping the computation is converted into a
    TECHNICAL_ERROR failure so callers always receive a Result.
    """

    def __init__(
        self,
        operation: str = "unknown",
        log_level: int = logging.INFO,
    ) -> None:
        self._operation = operation
        self._log_level = log_level

    @property
    def operation(self) -> str:
        return self._operation

    def execute(self, computation: Callable[[], Result[T]]) -> Result[T]:
        start = self._started()
        try:
            result = computation()
        except Exception as e:
            return self._crashed(start, e)
        return self._finished(start, result)

    async def execute_async(
        self, computation: Callable[[], Awaitable[Result[T]]]
    ) -> Result[T]:
        start = self._started()
        try:
            result = await computation()
        except Exception as e:
            return self._crashed(start, e)
        return self._finished(start, result)

    def _started(self) -> float:
        logger.log(self._log_level, "[%s] Starting execution", self._operation)
        return time.monotonic()

    def _crashed(self, start: float, error: Exception) -> Result[T]:
        logger.error(
            "[%s] Execution failed after %.3fs: %s",
            self._operation,
            time.monotonic() - start,
            error,
        )
        return Failure(
            FailureDescription(ErrorCode.TECHNICAL_ERROR, f"Execution failed: {error}", error)
        )

    def _finished(self, start: float, result: Result[T]) -> Result[T]:
        state = "SUCCESS" if result.is_success() else "FAILURE"
        logger.log(
            self._log_level,
            "[%s] Completed in %.3fs: %s",
            self._operation,
            time.monotonic() - start,
            state,
        )
        return result
