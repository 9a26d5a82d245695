"""
Railway-Oriented Programming (ROP) framework.

Explicit, composable error handling: stages return Result instead of raising.

    from railway import Result, ErrorCode

    def check_length(number: str) -> Result[str]:
        if not 12 <= len(number) <= 20:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "Invalid certificate number")
        return Result.success(number)

    result = Result.success("CERT-2024-000001").flat_map(check_length)
"""

from railway.result import Result, Success, Failure
from railway.failure import ErrorCode, FailureDescription
from railway.execution import (
    ExecutionContext,
    NoOpExecutionContext,
    LoggingExecutionContext,
)
from railway.result_failures import ResultFailures
from railway.assertions import ResultAssertions
from railway.response import build_response

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ExecutionContext",
    "NoOpExecutionContext",
    "LoggingExecutionContext",
    "ResultFailures",
    "ResultAssertions",
    "build_response",
]

__version__ = "1.1.0"
