"""
Failure description — structured error information for the failure track.

A failure carries an ErrorCode, a human-readable message, the optional
exception that caused it and an optional ``details`` payload naming the
specific offending input (rows, identifiers, a transaction hash left
behind by a partially completed workflow).
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any, Optional


@unique
class ErrorCode(Enum):
    """
    Structured error codes for the failure track.

    Caller errors: VALIDATION, AUTHENTICATION, AUTHORIZATION, NOT_FOUND, BUSINESS_RULE, RATE_LIMIT.
    System errors: TECHNICAL, DATABASE, CONFIGURATION, EXTERNAL_SERVICE, UNAVAILABLE, TIMEOUT, UNKNOWN.
    """

    # --- Caller errors ---
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Invalid input format, missing fields, malformed dates or identifiers."""

    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    """Invalid credentials."""

    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    """Caller lacks the permission or role required for the operation."""

    NOT_FOUND = "NOT_FOUND"
    """Resource doesn't exist."""

    BUSINESS_RULE_ERROR = "BUSINESS_RULE_ERROR"
    """Domain invariant violated, illegal state transition."""

    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    """Request limits exceeded."""

    # --- System errors ---
    TECHNICAL_ERROR = "TECHNICAL_ERROR"
    """Infrastructure issues."""

    DATABASE_ERROR = "DATABASE_ERROR"
    """Database connectivity or query failures."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """System misconfiguration."""

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """External service call failures that must not be retried."""

    SERVICE_UNAVAILABLE_ERROR = "SERVICE_UNAVAILABLE_ERROR"
    """Service paused, in maintenance or overloaded."""

    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    """Operation exceeded time limit, retries exhausted."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unexpected/unclassified failures."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor.

    >>> desc = FailureDescription(ErrorCode.VALIDATION_ERROR, "Name is required")
    >>> desc.code
    <ErrorCode.VALIDATION_ERROR: 'VALIDATION_ERROR'>
    >>> desc.details is None
    True
    """

    code: ErrorCode
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False)
    details: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def create(
        code: ErrorCode,
        message: str,
        exception: Optional[BaseException] = None,
        details: Any = None,
    ) -> FailureDescription:
        return FailureDescription(code=code, message=message, exception=exception, details=details)

    def with_details(self, details: Any) -> FailureDescription:
        """Return a copy carrying the given details payload."""
        return FailureDescription(
            code=self.code,
            message=self.message,
            exception=self.exception,
            details=details,
            timestamp=self.timestamp,
        )

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(traceback.format_exception(type(self.exception), self.exception, self.exception.__traceback__))
        return f"{self.message}\n{tb}"
