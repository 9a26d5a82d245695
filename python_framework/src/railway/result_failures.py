"""
Convenience factory methods for common Result failures.

    ResultFailures.validation_error("Invalid grant date", details=["Row No 4"])
    # instead of
    Result.failure(ErrorCode.VALIDATION_ERROR, "Invalid grant date", details=["Row No 4"])
"""

from __future__ import annotations

from typing import Any, TypeVar

from railway.failure import ErrorCode
from railway.result import Result

T = TypeVar("T")


class ResultFailures:
    """Factory methods for the failure kinds used across the codebase."""

    @staticmethod
    def validation_error(message: str, details: Any = None) -> Result:
        return Result.failure(ErrorCode.VALIDATION_ERROR, message, details=details)

    @staticmethod
    def business_rule_error(message: str, details: Any = None) -> Result:
        return Result.failure(ErrorCode.BUSINESS_RULE_ERROR, message, details=details)

    @staticmethod
    def not_found(resource_type: str, identifier: str) -> Result:
        return Result.failure(
            ErrorCode.NOT_FOUND,
            f"{resource_type} not found with identifier: {identifier}",
            details={"identifier": identifier},
        )

    @staticmethod
    def authorization_error(message: str, details: Any = None) -> Result:
        return Result.failure(ErrorCode.AUTHORIZATION_ERROR, message, details=details)

    @staticmethod
    def service_unavailable(message: str) -> Result:
        return Result.failure(ErrorCode.SERVICE_UNAVAILABLE_ERROR, message)

    @staticmethod
    def database_error(
        message: str, exception: BaseException | None = None, details: Any = None
    ) -> Result:
        return Result.failure(ErrorCode.DATABASE_ERROR, message, exception, details)

    @staticmethod
    def external_service_error(
        message: str, exception: BaseException | None = None, details: Any = None
    ) -> Result:
        return Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, message, exception, details)

    @staticmethod
    def timeout_error(message: str, exception: BaseException | None = None) -> Result:
        return Result.failure(ErrorCode.TIMEOUT_ERROR, message, exception)

    @staticmethod
    def configuration_error(message: str) -> Result:
        return Result.failure(ErrorCode.CONFIGURATION_ERROR, message)

    @staticmethod
    def from_exception(message: str, exception: BaseException) -> Result:
        """
        Map a Python exception to the closest ErrorCode.

          - ValueError, TypeError, KeyError → VALIDATION_ERROR
          - FileNotFoundError, LookupError → NOT_FOUND
          - PermissionError → AUTHORIZATION_ERROR
          - TimeoutError → TIMEOUT_ERROR
          - ConnectionError, OSError → EXTERNAL_SERVICE_ERROR
          - anything else → UNKNOWN_ERROR
        """
        return Result.failure(_map_exception_to_code(exception), message, exception)


def _map_exception_to_code(exception: BaseException) -> ErrorCode:
    match exception:
        case ValueError() | TypeError() | KeyError():
            return ErrorCode.VALIDATION_ERROR
        case FileNotFoundError() | LookupError():
            return ErrorCode.NOT_FOUND
        case PermissionError():
            return ErrorCode.AUTHORIZATION_ERROR
        case TimeoutError():
            return ErrorCode.TIMEOUT_ERROR
        case ConnectionError() | OSError():
            return ErrorCode.EXTERNAL_SERVICE_ERROR
        case _:
            return ErrorCode.UNKNOWN_ERROR
