"""
Build a sample batch workbook for manual issuance runs.

Infrastructure script — writes an .xlsx file with a "Batch" sheet in the
layout the ingestion pipeline expects:

  certificationID | name | certificationName | grantDate | expirationDate

Grant dates are written as real date cells and expiration dates as
MM/DD/YYYY text, so both cell shapes go through normalisation. Leave
--expiration empty for certificates that never expire.

Usage:
  python scripts/make_sample_batch.py --rows 25 --course "Compilers" --out batch.xlsx
  cert-ledger issue-batch --email issuer@example.com batch.xlsx
"""

from __future__ import annotations

import argparse
from datetime import date
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Font

HEADER = ("certificationID", "name", "certificationName", "grantDate", "expirationDate")
SHEET_NAME = "Batch"

_NAMES = (
    "Grace Hopper",
    "Alan Turing",
    "Edsger Dijkstra",
    "Barbara Liskov",
    "Donald Knuth",
    "Frances Allen",
    "John Backus",
    "Margaret Hamilton",
)


def build_workbook(
    path: Path,
    rows: int,
    course: str,
    prefix: str,
    granted: date,
    expiration: str | None,
) -> Path:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = SHEET_NAME
    sheet.append(HEADER)
    for cell in sheet[1]:
        cell.font = Font(bold=True)

    for index in range(1, rows + 1):
        sheet.append(
            (
                f"{prefix}{granted.year}{index:06d}",
                _NAMES[(index - 1) % len(_NAMES)],
                course,
                granted,
                expiration,
            )
        )
        sheet.cell(row=index + 1, column=4).number_format = "mm/dd/yyyy"

    for column, width in zip("ABCDE", (22, 24, 28, 14, 16), strict=True):
        sheet.column_dimensions[column].width = width

    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(path)
    return path


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--rows", type=int, default=10)
    parser.add_argument("--course", default="Compilers")
    parser.add_argument("--prefix", default="BATCH", help="certificationID prefix")
    parser.add_argument("--granted", type=date.fromisoformat, default=date.today())
    parser.add_argument("--expiration", default=None, help="MM/DD/YYYY; omit for no expiry")
    parser.add_argument("--out", type=Path, default=Path("batch.xlsx"))
    args = parser.parse_args()

    output = build_workbook(args.out, args.rows, args.course, args.prefix, args.granted, args.expiration)
    print(f"✓ {output} ({args.rows} rows, sheet {SHEET_NAME!r})")


if __name__ == "__main__":
    main()
