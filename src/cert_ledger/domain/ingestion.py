"""
Batch ingestion pipeline — validates an uploaded batch sheet end to end.

Domain layer. The workbook is read through the BatchFileReader port and the
final uniqueness check goes through the CertificateStore port; every other
stage is a pure function over the rows. Stages are chained with flat_map so
the first failing stage answers with a specific message, and each stage
collects every offending row or identifier before failing:

  sheet name → header → row count → required fields → identifier format
    → duplicates in batch → name length → date validity → date order
      → identifiers already issued (mirror store)

Nothing is written anywhere: a batch either passes all stages or is
rejected as a whole.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from pathlib import Path

import structlog
from railway import Result, ResultFailures

from cert_ledger.domain import dates, messages
from cert_ledger.domain.models import (
    NEVER_EXPIRES,
    BatchRow,
    BatchSheet,
    CertificateDraft,
    ValidatedBatch,
)
from cert_ledger.domain.ports import BatchFileReader, CertificateStore

log = structlog.get_logger()

EXPECTED_HEADER = (
    "certificationID",
    "name",
    "certificationName",
    "grantDate",
    "expirationDate",
)

SPECIAL_CHARACTERS = re.compile(r'[!@#$%^&*(),.?":{}|<>]')


@dataclass(frozen=True, slots=True)
class IngestionRules:
    sheet_name: str = "Batch"
    batch_limit: int = 250
    min_id_length: int = 12
    max_id_length: int = 20
    max_name_length: int = 30
    threshold_year: int = 2100


def _row_label(row_number: int) -> str:
    return f"Row No {row_number}"


def _text(value: object) -> str:
    return str(value).strip()


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class BatchIngestionPipeline:
    """Turns a batch workbook into a ValidatedBatch or a detailed failure."""

    def __init__(
        self,
        reader: BatchFileReader,
        store: CertificateStore,
        rules: IngestionRules | None = None,
    ) -> None:
        self._reader = reader
        self._store = store
        self._rules = rules or IngestionRules()

    async def ingest(self, path: Path) -> Result[ValidatedBatch]:
        sheet = await self._reader.read(path)
        validated = sheet.flat_map(self.validate_sheet)
        result = await validated.flat_map_async(self._check_not_issued)
        result.peek(
            lambda batch: log.info("ingestion.accepted", path=str(path), rows=batch.row_count)
        ).peek_failure(
            lambda err: log.warning(
                "ingestion.rejected", path=str(path), code=err.code.value, reason=err.message
            )
        )
        return result

    def validate_sheet(self, sheet: BatchSheet) -> Result[ValidatedBatch]:
        """Run every stage that needs no I/O."""
        return (
            Result.success(sheet)
            .flat_map(self._check_sheet_name)
            .flat_map(self._check_header)
            .flat_map(self._check_row_count)
            .flat_map(self._check_required_fields)
            .flat_map(self._check_identifiers)
            .flat_map(self._check_duplicates)
            .flat_map(self._check_names)
            .flat_map(self._normalize_dates)
            .flat_map(self._check_date_order)
            .map(lambda drafts: ValidatedBatch(drafts=tuple(drafts)))
        )

    # ─────────────────────── Structure ───────────────────────

    def _check_sheet_name(self, sheet: BatchSheet) -> Result[BatchSheet]:
        if self._rules.sheet_name not in sheet.sheet_names:
            return ResultFailures.validation_error(
                messages.INVALID_SHEET_NAME,
                details={"sheets": list(sheet.sheet_names)},
            )
        return Result.success(sheet)

    def _check_header(self, sheet: BatchSheet) -> Result[list[BatchRow]]:
        header = [None if _is_blank(cell) else _text(cell) for cell in sheet.header]
        while header and header[-1] is None:
            header.pop()
        if tuple(header) != EXPECTED_HEADER:
            return ResultFailures.validation_error(
                messages.INVALID_HEADERS,
                details={"expected": list(EXPECTED_HEADER), "found": list(header)},
            )
        rows = [
            BatchRow(index + 2, *self._pad(values))
            for index, values in enumerate(sheet.rows)
            if not all(_is_blank(v) for v in values)
        ]
        return Result.success(rows)

    @staticmethod
    def _pad(values: tuple[object, ...]) -> tuple[object, ...]:
        width = len(EXPECTED_HEADER)
        return tuple(values[:width]) + (None,) * (width - len(values))

    def _check_row_count(self, rows: list[BatchRow]) -> Result[list[BatchRow]]:
        if not rows:
            return ResultFailures.validation_error(messages.EMPTY_BATCH)
        limit = self._rules.batch_limit
        if limit and len(rows) > limit:
            return ResultFailures.validation_error(
                messages.BATCH_LIMIT_EXCEEDED,
                details={"total_records": len(rows), "limit": limit},
            )
        return Result.success(rows)

    def _check_required_fields(self, rows: list[BatchRow]) -> Result[list[BatchRow]]:
        missing = [
            _row_label(row.row_number)
            for row in rows
            if _is_blank(row.certification_id)
            or _is_blank(row.name)
            or _is_blank(row.certification_name)
            or _is_blank(row.grant_date)
            or dates.is_never(row.grant_date)
        ]
        if missing:
            return ResultFailures.validation_error(messages.MISSING_DETAILS, details=missing)
        return Result.success(rows)

    # ─────────────────────── Identifiers & names ───────────────────────

    def _check_identifiers(self, rows: list[BatchRow]) -> Result[list[BatchRow]]:
        low, high = self._rules.min_id_length, self._rules.max_id_length
        invalid = [
            ident
            for ident in (_text(row.certification_id) for row in rows)
            if not low <= len(ident) <= high or SPECIAL_CHARACTERS.search(ident)
        ]
        if invalid:
            return ResultFailures.validation_error(messages.INVALID_CERTIFICATE_IDS, details=invalid)
        return Result.success(rows)

    def _check_duplicates(self, rows: list[BatchRow]) -> Result[list[BatchRow]]:
        counts = Counter(_text(row.certification_id) for row in rows)
        repeated = [ident for ident, count in counts.items() if count > 1]
        if repeated:
            return ResultFailures.validation_error(messages.DUPLICATE_IDS_IN_BATCH, details=repeated)
        return Result.success(rows)

    def _check_names(self, rows: list[BatchRow]) -> Result[list[BatchRow]]:
        too_long = [
            _text(row.name) for row in rows if len(_text(row.name)) > self._rules.max_name_length
        ]
        if too_long:
            return ResultFailures.validation_error(messages.NAME_TOO_LONG, details=too_long)
        return Result.success(rows)

    # ─────────────────────── Dates ───────────────────────

    def _normalize_date(self, value: object) -> str | None:
        normalized = dates.normalize(value)
        if normalized is None or dates.exceeds_threshold(normalized, self._rules.threshold_year):
            return None
        return normalized

    def _normalize_dates(self, rows: list[BatchRow]) -> Result[list[tuple[int, CertificateDraft]]]:
        bad_grants: list[str] = []
        bad_expirations: list[str] = []
        drafts: list[tuple[int, CertificateDraft]] = []
        for row in rows:
            grant = self._normalize_date(row.grant_date)
            expiration = (
                NEVER_EXPIRES
                if _is_blank(row.expiration_date)
                else self._normalize_date(row.expiration_date)
            )
            if grant is None:
                bad_grants.append(f"{_text(row.grant_date)} at {_row_label(row.row_number)}")
            if expiration is None:
                bad_expirations.append(f"{_text(row.expiration_date)} at {_row_label(row.row_number)}")
            if grant is None or expiration is None:
                continue
            drafts.append((
                row.row_number,
                CertificateDraft(
                    certificate_number=_text(row.certification_id),
                    name=_text(row.name),
                    course=_text(row.certification_name),
                    grant_date=grant,
                    expiration_date=expiration,
                ),
            ))
        if bad_grants or bad_expirations:
            return ResultFailures.validation_error(
                messages.INVALID_DATE_FORMAT,
                details={"grant_dates": bad_grants, "expiration_dates": bad_expirations},
            )
        return Result.success(drafts)

    def _check_date_order(
        self, numbered: list[tuple[int, CertificateDraft]]
    ) -> Result[list[CertificateDraft]]:
        violations = [
            f"{draft.grant_date}-{draft.expiration_date} at {_row_label(row_number)}"
            for row_number, draft in numbered
            if not draft.never_expires
            and dates.to_date(draft.grant_date) > dates.to_date(draft.expiration_date)
        ]
        if violations:
            return ResultFailures.validation_error(messages.GRANT_AFTER_EXPIRATION, details=violations)
        return Result.success([draft for _, draft in numbered])

    # ─────────────────────── Mirror store ───────────────────────

    async def _check_not_issued(self, batch: ValidatedBatch) -> Result[ValidatedBatch]:
        existing = await self._store.find_existing_numbers(batch.certificate_numbers)
        return existing.flat_map(
            lambda used: ResultFailures.business_rule_error(messages.IDS_ALREADY_ISSUED, details=used)
            if used
            else Result.success(batch)
        )
