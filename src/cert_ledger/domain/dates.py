"""
Date handling — strict MM/DD/YYYY parsing, normalisation and epoch conversion.

Certificate dates travel as ``MM/DD/YYYY`` strings. The expiration field may
instead hold the NEVER_EXPIRES sentinel, which maps to epoch ``1`` on the
ledger. Epochs are seconds at UTC midnight of the given day.
"""

from __future__ import annotations

import calendar
import re
from datetime import UTC, date, datetime, time

from cert_ledger.domain.models import DATE_FORMAT, NEVER_EXPIRES

MIN_YEAR = 1900
MAX_YEAR = 9999

_SLASHED = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{4})\s*$")
_GMT_SUFFIX = re.compile(r"\s+GMT.*$")
_FALLBACK_FORMATS = (
    "%a %b %d %Y %H:%M:%S",
    "%m/%d/%y",
    "%d %B, %Y",
    "%d %b, %Y",
    "%B %d, %Y",
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
)


def is_never(value: object) -> bool:
    """True for the never-expires sentinel in any of its cell representations."""
    if value is None:
        return False
    return str(value).strip() == NEVER_EXPIRES


def parse_strict(value: str) -> date | None:
    """
    Parse ``M/D/YYYY`` or ``MM/DD/YYYY`` with calendar validity.

    Returns None for impossible days (Feb 30, Apr 31, Feb 29 outside leap
    years) and for years outside 1900-9999.
    """
    match = _SLASHED.match(value)
    if match is None:
        return None
    month, day, year = (int(part) for part in match.groups())
    if not (1 <= month <= 12 and MIN_YEAR <= year <= MAX_YEAR):
        return None
    if not 1 <= day <= calendar.monthrange(year, month)[1]:
        return None
    return date(year, month, day)


def normalize(value: object) -> str | None:
    """
    Normalise a cell or request value to ``MM/DD/YYYY``.

    Accepts date/datetime objects, the strict slashed form and a handful of
    display formats. Returns NEVER_EXPIRES for the sentinel and None when
    the value is not a date.
    """
    if is_never(value):
        return NEVER_EXPIRES
    if isinstance(value, datetime):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    parsed = parse_strict(text)
    if parsed is not None:
        return parsed.strftime(DATE_FORMAT)
    if _SLASHED.match(text):
        return None
    text = _GMT_SUFFIX.sub("", text)
    for fmt in _FALLBACK_FORMATS:
        try:
            parsed_dt = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if MIN_YEAR <= parsed_dt.year <= MAX_YEAR:
            return parsed_dt.strftime(DATE_FORMAT)
        return None
    return None


def exceeds_threshold(value: str, threshold_year: int) -> bool:
    """True when a normalised date lies at or beyond the plausibility threshold year."""
    if value == NEVER_EXPIRES:
        return False
    return to_date(value).year >= threshold_year


def to_date(value: str) -> date:
    return datetime.strptime(value, DATE_FORMAT).date()


def to_epoch(value: str) -> int:
    """Ledger epoch for a normalised date; the sentinel maps to 1."""
    if value == NEVER_EXPIRES:
        return 1
    return int(datetime.combine(to_date(value), time(), tzinfo=UTC).timestamp())


def from_epoch(epoch: int) -> str | None:
    """Inverse of to_epoch; 0 (no expiration recorded) maps to None."""
    if epoch == 0:
        return None
    if epoch == 1:
        return NEVER_EXPIRES
    return datetime.fromtimestamp(epoch, tz=UTC).strftime(DATE_FORMAT)


def status_log_expiration(value: str | None) -> str:
    """Expiration as stored in the status log: ISO-8601 UTC, or the sentinel."""
    if value is None or value == NEVER_EXPIRES:
        return NEVER_EXPIRES
    return datetime.combine(to_date(value), time(), tzinfo=UTC).isoformat()


def is_past(value: str, today: date) -> bool:
    return value != NEVER_EXPIRES and to_date(value) < today
