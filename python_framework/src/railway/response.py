"""
Response envelope — renders a Result as a status/message/details payload.

Every user-facing operation answers with the same three-part shape:

    {"status": "SUCCESS", "message": "Certificate issued", "details": {...}}
    {"status": "FAILED", "message": "Duplicate IDs", "details": ["CERT-A"],
     "error_code": "BUSINESS_RULE_ERROR"}

Also maps ErrorCode values to process exit codes for command line surfaces.
"""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from enum import Enum
from typing import Any, TypeVar

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")

SUCCESS = "SUCCESS"
FAILED = "FAILED"


class ExitCodeMapper:
    """Maps ErrorCode values to process exit codes (0 is reserved for success)."""

    _CODE_TO_EXIT: dict[ErrorCode, int] = {
        ErrorCode.VALIDATION_ERROR: 2,
        ErrorCode.AUTHENTICATION_ERROR: 3,
        ErrorCode.AUTHORIZATION_ERROR: 3,
        ErrorCode.NOT_FOUND: 4,
        ErrorCode.BUSINESS_RULE_ERROR: 5,
        ErrorCode.RATE_LIMIT_ERROR: 6,
        ErrorCode.SERVICE_UNAVAILABLE_ERROR: 6,
        ErrorCode.TIMEOUT_ERROR: 7,
        ErrorCode.EXTERNAL_SERVICE_ERROR: 8,
        ErrorCode.DATABASE_ERROR: 9,
    }

    @classmethod
    def map_error_code(cls, code: ErrorCode) -> int:
        return cls._CODE_TO_EXIT.get(code, 1)

    @classmethod
    def map_result(cls, result: Result[Any]) -> int:
        return result.either(lambda _: 0, lambda err: cls.map_error_code(err.code))


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, enums, dates and containers into JSON-compatible values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return value


def failure_body(error: FailureDescription) -> dict[str, Any]:
    return {
        "status": FAILED,
        "message": error.message,
        "details": to_jsonable(error.details),
        "error_code": error.code.value,
    }


def build_response(result: Result[T], success_message: str) -> dict[str, Any]:
    """
    Build the response envelope from a Result.

        body = build_response(result, "Batch issued successfully")
    """
    return result.either(
        on_success=lambda value: {
            "status": SUCCESS,
            "message": success_message,
            "details": to_jsonable(value),
        },
        on_failure=failure_body,
    )
