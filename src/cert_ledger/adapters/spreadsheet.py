"""
Batch workbook reader via openpyxl.

Adapter layer — implements the BatchFileReader port. The workbook is opened
read-only with cached cell values (``data_only``) in a worker thread so the
event loop is never blocked. Only the sheet named like the configured batch
sheet is read; row 1 is the header, every later row is data.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
from openpyxl import load_workbook
from railway import ErrorCode
from railway.result import Result

from cert_ledger.domain import messages
from cert_ledger.domain.models import BatchSheet

log = structlog.get_logger()


class OpenpyxlBatchReader:
    """Implements the BatchFileReader port for .xlsx workbooks."""

    def __init__(self, sheet_name: str = "Batch") -> None:
        self._sheet_name = sheet_name

    async def read(self, path: Path) -> Result[BatchSheet]:
        return await Result.from_awaitable(
            lambda: asyncio.to_thread(self._load, path),
            ErrorCode.VALIDATION_ERROR,
            messages.INVALID_BATCH_FILE,
        )

    def _load(self, path: Path) -> BatchSheet:
        workbook = load_workbook(path, read_only=True, data_only=True)
        try:
            names = tuple(workbook.sheetnames)
            if self._sheet_name not in names:
                return BatchSheet(sheet_names=names)
            rows = list(workbook[self._sheet_name].iter_rows(values_only=True))
        finally:
            workbook.close()
        header = tuple(rows[0]) if rows else ()
        body = tuple(tuple(row) for row in rows[1:])
        log.debug("spreadsheet.loaded", path=str(path), sheet=self._sheet_name, rows=len(body))
        return BatchSheet(sheet_names=names, header=header, rows=body)
