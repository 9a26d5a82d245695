"""
PostgreSQL mirror store — certificates, status log, issuers, short URLs.

Adapter layer — implements the CertificateStore port using psycopg (v3)
async connections with parameterized queries. One connection per
operation; every write commits on its own, except insert_batch, which
mirrors a whole batch in a single transaction.

Table mapping:
  SingleCertificate / BatchCertificate → certificates (batch_id NULL = single)
  StatusLogEntry                       → certificate_status_log (append-only)
  IssuerAccount                        → issuers
  short URL                            → short_urls (one row per number)
  verification counter                 → verification_log (upsert-increment)

Single and batch certificates share one table so the primary key on
certificate_number is the uniqueness guarantee across both universes.

No ORM — raw parameterized SQL for maximum control and transparency.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any, TypeVar

import psycopg
import structlog
from psycopg.rows import dict_row
from railway import ErrorCode
from railway.result import Result

from cert_ledger.domain import messages
from cert_ledger.domain.models import (
    BatchCertificate,
    Certificate,
    CertificateStatus,
    IssuerAccount,
    ShortUrlRecord,
    SingleCertificate,
    StatusLogEntry,
)

log = structlog.get_logger()

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS issuers (
    email                 TEXT PRIMARY KEY,
    issuer_id             TEXT NOT NULL UNIQUE,
    name                  TEXT NOT NULL DEFAULT '',
    status                INTEGER NOT NULL DEFAULT 1,
    certificates_issued   INTEGER NOT NULL DEFAULT 0,
    certificates_renewed  INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS certificates (
    certificate_number  TEXT PRIMARY KEY,
    issuer_id           TEXT NOT NULL,
    name                TEXT NOT NULL,
    course              TEXT NOT NULL,
    grant_date          TEXT NOT NULL,
    expiration_date     TEXT NOT NULL,
    certificate_hash    TEXT NOT NULL,
    transaction_hash    TEXT NOT NULL,
    certificate_status  SMALLINT NOT NULL,
    issue_date          TIMESTAMP WITH TIME ZONE,
    url                 TEXT,
    batch_id            INTEGER,
    leaf_index          INTEGER,
    proof_hash          TEXT[],
    encoded_proof       TEXT
);

CREATE INDEX IF NOT EXISTS certificates_batch_idx ON certificates (batch_id);
CREATE INDEX IF NOT EXISTS certificates_issuer_idx ON certificates (issuer_id, certificate_status);

CREATE TABLE IF NOT EXISTS certificate_status_log (
    id                  BIGSERIAL PRIMARY KEY,
    email               TEXT NOT NULL,
    issuer_id           TEXT NOT NULL,
    batch_id            INTEGER,
    transaction_hash    TEXT NOT NULL,
    certificate_number  TEXT NOT NULL,
    cert_status         SMALLINT NOT NULL,
    expiration_date     TEXT NOT NULL,
    last_update         TIMESTAMP WITH TIME ZONE NOT NULL
);

CREATE TABLE IF NOT EXISTS short_urls (
    certificate_number  TEXT PRIMARY KEY,
    email               TEXT NOT NULL,
    url                 TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS verification_log (
    issuer_id      TEXT NOT NULL,
    course         TEXT NOT NULL,
    count          INTEGER NOT NULL DEFAULT 0,
    last_verified  TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT now(),
    PRIMARY KEY (issuer_id, course)
);
"""

_CERTIFICATE_COLUMNS = """
    certificate_number, issuer_id, name, course, grant_date, expiration_date,
    certificate_hash, transaction_hash, certificate_status, issue_date, url,
    batch_id, leaf_index, proof_hash, encoded_proof
"""

_INSERT_CERTIFICATE = f"""
INSERT INTO certificates ({_CERTIFICATE_COLUMNS})
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
"""

_SELECT_CERTIFICATES = f"SELECT {_CERTIFICATE_COLUMNS} FROM certificates"

_INSERT_STATUS_LOG = """
INSERT INTO certificate_status_log (
    email, issuer_id, batch_id, transaction_hash, certificate_number,
    cert_status, expiration_date, last_update
) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
"""

_UPSERT_SHORT_URL = """
INSERT INTO short_urls (certificate_number, email, url) VALUES (%s, %s, %s)
ON CONFLICT (certificate_number) DO UPDATE SET url = EXCLUDED.url, email = EXCLUDED.email
RETURNING url
"""

_UPSERT_VERIFICATION = """
INSERT INTO verification_log (issuer_id, course, count, last_verified) VALUES (%s, %s, 1, now())
ON CONFLICT (issuer_id, course)
DO UPDATE SET count = verification_log.count + 1, last_verified = now()
RETURNING count
"""

_INCREMENT_COUNTERS = """
UPDATE issuers
SET certificates_issued = certificates_issued + %s,
    certificates_renewed = certificates_renewed + %s
WHERE email = %s
RETURNING email, issuer_id, name, status, certificates_issued, certificates_renewed
"""

_SELECT_ISSUER = """
SELECT email, issuer_id, name, status, certificates_issued, certificates_renewed FROM issuers
"""


def _to_certificate(row: dict[str, Any]) -> Certificate:
    common = {
        "certificate_number": row["certificate_number"],
        "issuer_id": row["issuer_id"],
        "name": row["name"],
        "course": row["course"],
        "grant_date": row["grant_date"],
        "expiration_date": row["expiration_date"],
        "certificate_hash": row["certificate_hash"],
        "transaction_hash": row["transaction_hash"],
        "certificate_status": CertificateStatus(row["certificate_status"]),
        "issue_date": row["issue_date"],
        "url": row["url"],
    }
    if row["batch_id"] is None:
        return SingleCertificate(**common)
    return BatchCertificate(
        **common,
        batch_id=row["batch_id"],
        leaf_index=row["leaf_index"],
        proof_hash=tuple(row["proof_hash"] or ()),
        encoded_proof=row["encoded_proof"] or "",
    )


def _to_issuer(row: dict[str, Any]) -> IssuerAccount:
    return IssuerAccount(**row)


def _to_log_entry(row: dict[str, Any]) -> StatusLogEntry:
    return StatusLogEntry(
        email=row["email"],
        issuer_id=row["issuer_id"],
        batch_id=row["batch_id"],
        transaction_hash=row["transaction_hash"],
        certificate_number=row["certificate_number"],
        cert_status=CertificateStatus(row["cert_status"]),
        expiration_date=row["expiration_date"],
        last_update=row["last_update"],
    )


def _certificate_params(certificate: Certificate) -> tuple[Any, ...]:
    match certificate:
        case BatchCertificate():
            batch = (
                certificate.batch_id,
                certificate.leaf_index,
                list(certificate.proof_hash),
                certificate.encoded_proof,
            )
        case _:
            batch = (None, None, None, None)
    return (
        certificate.certificate_number,
        certificate.issuer_id,
        certificate.name,
        certificate.course,
        certificate.grant_date,
        certificate.expiration_date,
        certificate.certificate_hash,
        certificate.transaction_hash,
        int(certificate.certificate_status),
        certificate.issue_date,
        certificate.url,
        *batch,
    )


def _status_log_params(entry: StatusLogEntry) -> tuple[Any, ...]:
    return (
        entry.email,
        entry.issuer_id,
        entry.batch_id,
        entry.transaction_hash,
        entry.certificate_number,
        int(entry.cert_status),
        entry.expiration_date,
        entry.last_update,
    )


def _first(rows: list[T], entity: str, identifier: object) -> Result[T]:
    if not rows:
        return Result.failure(
            ErrorCode.NOT_FOUND, f"{entity} not found", details={"identifier": identifier}
        )
    return Result.success(rows[0])


class PsycopgCertificateStore:
    """
    Persist the certificate mirror to PostgreSQL.

    Implements the CertificateStore port.
    All exceptions are caught at this adapter boundary via Result.from_awaitable().
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    async def create_schema(self) -> Result[int]:
        """Create missing tables and indexes."""
        return await self._guard(lambda: self._execute(SCHEMA), "Failed to create schema")

    # ─────────────────────── Lookups ───────────────────────

    async def find_by_certificate_number(self, certificate_number: str) -> Result[Certificate]:
        rows = await self._guard(
            lambda: self._fetch(
                f"{_SELECT_CERTIFICATES} WHERE certificate_number = %s", (certificate_number,)
            ),
            "Failed to load certificate",
        )
        return rows.flat_map(
            lambda found: _first(found, "Certificate", certificate_number).map(_to_certificate)
        ).map_failure(
            lambda err: err.with_details({"certificate_number": certificate_number})
            if err.code is ErrorCode.NOT_FOUND
            else err
        )

    async def find_existing_numbers(self, certificate_numbers: Sequence[str]) -> Result[list[str]]:
        rows = await self._guard(
            lambda: self._fetch(
                "SELECT certificate_number FROM certificates WHERE certificate_number = ANY(%s)",
                (list(certificate_numbers),),
            ),
            "Failed to check certificate numbers",
        )
        return rows.map(
            lambda found: sorted(
                {row["certificate_number"] for row in found},
                key=list(certificate_numbers).index,
            )
        )

    async def find_by_issuer_and_status(
        self, issuer_id: str, status: CertificateStatus | None = None
    ) -> Result[list[Certificate]]:
        sql = f"{_SELECT_CERTIFICATES} WHERE issuer_id = %s"
        params: tuple[Any, ...] = (issuer_id,)
        if status is not None:
            sql += " AND certificate_status = %s"
            params += (int(status),)
        rows = await self._guard(
            lambda: self._fetch(sql + " ORDER BY issue_date, certificate_number", params),
            "Failed to load issuer certificates",
        )
        return rows.map(lambda found: [_to_certificate(row) for row in found])

    async def find_batch_members(self, batch_id: int) -> Result[list[BatchCertificate]]:
        rows = await self._guard(
            lambda: self._fetch(
                f"{_SELECT_CERTIFICATES} WHERE batch_id = %s ORDER BY leaf_index", (batch_id,)
            ),
            "Failed to load batch members",
        )
        return rows.map(lambda found: [_to_certificate(row) for row in found])  # type: ignore[misc]

    async def find_issuer_by_email(self, email: str) -> Result[IssuerAccount]:
        rows = await self._guard(
            lambda: self._fetch(f"{_SELECT_ISSUER} WHERE email = %s", (email,)),
            "Failed to load issuer",
        )
        return rows.flat_map(lambda found: _first(found, "Issuer", email)).map(_to_issuer)

    async def find_issuer_by_id(self, issuer_id: str) -> Result[IssuerAccount]:
        rows = await self._guard(
            lambda: self._fetch(f"{_SELECT_ISSUER} WHERE issuer_id = %s", (issuer_id,)),
            "Failed to load issuer",
        )
        return rows.flat_map(lambda found: _first(found, "Issuer", issuer_id)).map(_to_issuer)

    async def find_status_log(
        self,
        issuer_id: str,
        status: CertificateStatus | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Result[list[StatusLogEntry]]:
        """Status-log entries of an issuer, filtered by status and by ``start <= last_update < end``."""
        clauses = ["issuer_id = %s"]
        params: list[Any] = [issuer_id]
        if status is not None:
            clauses.append("cert_status = %s")
            params.append(int(status))
        if start is not None:
            clauses.append("last_update >= %s")
            params.append(start)
        if end is not None:
            clauses.append("last_update < %s")
            params.append(end)
        sql = (
            "SELECT email, issuer_id, batch_id, transaction_hash, certificate_number, cert_status,"
            " expiration_date, last_update FROM certificate_status_log WHERE "
            + " AND ".join(clauses)
            + " ORDER BY last_update, id"
        )
        rows = await self._guard(lambda: self._fetch(sql, tuple(params)), "Failed to load status log")
        return rows.map(lambda found: [_to_log_entry(row) for row in found])

    async def find_short_url(self, certificate_number: str) -> Result[str]:
        rows = await self._guard(
            lambda: self._fetch(
                "SELECT url FROM short_urls WHERE certificate_number = %s", (certificate_number,)
            ),
            "Failed to load short URL",
        )
        return rows.flat_map(lambda found: _first(found, "Short URL", certificate_number)).map(
            lambda row: row["url"]
        )

    # ─────────────────────── Writes ───────────────────────

    async def insert_single(self, certificate: SingleCertificate) -> Result[SingleCertificate]:
        return await self._insert(certificate)

    async def insert_batch_row(self, certificate: BatchCertificate) -> Result[BatchCertificate]:
        return await self._insert(certificate)

    async def insert_batch(
        self,
        email: str,
        certificates: Sequence[BatchCertificate],
        log_entries: Sequence[StatusLogEntry],
        short_urls: Sequence[ShortUrlRecord],
    ) -> Result[int]:
        """
        Mirror a freshly anchored batch in one transaction.

        Rows, status-log entries, short URLs and the issuer's issued counter
        commit together. On any error psycopg rolls back and none of the
        batch is kept.
        """
        return await self._guard(
            lambda: self._transactional_batch_insert(email, certificates, log_entries, short_urls),
            "Failed to mirror batch",
        )

    async def append_status_log(self, entry: StatusLogEntry) -> Result[StatusLogEntry]:
        written = await self._guard(
            lambda: self._execute(_INSERT_STATUS_LOG, _status_log_params(entry)),
            "Failed to append status log",
        )
        return written.map(lambda _: entry)

    async def update_status(
        self, certificate_number: str, status: CertificateStatus, transaction_hash: str
    ) -> Result[Certificate]:
        return await self._update_one(
            "UPDATE certificates SET certificate_status = %s, transaction_hash = %s"
            " WHERE certificate_number = %s",
            (int(status), transaction_hash, certificate_number),
            certificate_number,
        )

    async def update_expiration(
        self,
        certificate_number: str,
        expiration_date: str,
        transaction_hash: str,
        certificate_hash: str | None = None,
    ) -> Result[Certificate]:
        return await self._update_one(
            "UPDATE certificates SET expiration_date = %s, transaction_hash = %s,"
            " certificate_hash = COALESCE(%s, certificate_hash), certificate_status = %s"
            " WHERE certificate_number = %s",
            (
                expiration_date,
                transaction_hash,
                certificate_hash,
                int(CertificateStatus.RENEWED),
                certificate_number,
            ),
            certificate_number,
        )

    async def update_batch_expiration(
        self, batch_id: int, expiration_date: str, transaction_hash: str
    ) -> Result[int]:
        return await self._guard(
            lambda: self._execute(
                "UPDATE certificates SET expiration_date = %s, transaction_hash = %s,"
                " certificate_status = %s WHERE batch_id = %s",
                (expiration_date, transaction_hash, int(CertificateStatus.RENEWED), batch_id),
            ),
            "Failed to update batch expiration",
        )

    async def update_batch_status(
        self, batch_id: int, status: CertificateStatus, transaction_hash: str
    ) -> Result[int]:
        return await self._guard(
            lambda: self._execute(
                "UPDATE certificates SET certificate_status = %s, transaction_hash = %s"
                " WHERE batch_id = %s",
                (int(status), transaction_hash, batch_id),
            ),
            "Failed to update batch status",
        )

    async def increment_issuer_counters(
        self, email: str, issued: int = 0, renewed: int = 0
    ) -> Result[IssuerAccount]:
        rows = await self._guard(
            lambda: self._fetch(_INCREMENT_COUNTERS, (issued, renewed, email), commit=True),
            "Failed to update issuer counters",
        )
        return rows.flat_map(lambda found: _first(found, "Issuer", email)).map(_to_issuer)

    async def upsert_short_url(self, email: str, certificate_number: str, url: str) -> Result[str]:
        rows = await self._guard(
            lambda: self._fetch(_UPSERT_SHORT_URL, (certificate_number, email, url), commit=True),
            "Failed to store short URL",
        )
        return rows.map(lambda found: found[0]["url"])

    async def record_verification(self, issuer_id: str, course: str) -> Result[int]:
        rows = await self._guard(
            lambda: self._fetch(_UPSERT_VERIFICATION, (issuer_id, course), commit=True),
            "Failed to record verification",
        )
        return rows.map(lambda found: found[0]["count"])

    async def add_issuer(self, account: IssuerAccount) -> Result[IssuerAccount]:
        """Register an issuer account."""
        written = await self._guard(
            lambda: self._execute(
                "INSERT INTO issuers (email, issuer_id, name, status, certificates_issued,"
                " certificates_renewed) VALUES (%s, %s, %s, %s, %s, %s)",
                (
                    account.email,
                    account.issuer_id,
                    account.name,
                    account.status,
                    account.certificates_issued,
                    account.certificates_renewed,
                ),
            ),
            "Failed to add issuer",
        )
        return written.map(lambda _: account)

    # ─────────────────────── Plumbing ───────────────────────

    async def _insert(self, certificate: Certificate) -> Result[Any]:
        written = await self._guard(
            lambda: self._execute(_INSERT_CERTIFICATE, _certificate_params(certificate)),
            "Failed to insert certificate",
        )
        return written.map(lambda _: certificate).peek(
            lambda c: log.debug("repository.certificate_inserted", certificate_number=c.certificate_number)
        )

    async def _update_one(
        self, sql: str, params: tuple[Any, ...], certificate_number: str
    ) -> Result[Certificate]:
        updated = await self._guard(
            lambda: self._execute(sql, params), "Failed to update certificate"
        )
        return await updated.flat_map_async(
            lambda count: self.find_by_certificate_number(certificate_number)
            if count
            else self._missing(certificate_number)
        )

    @staticmethod
    async def _missing(certificate_number: str) -> Result[Certificate]:
        return Result.failure(
            ErrorCode.NOT_FOUND,
            messages.CERTIFICATE_NOT_FOUND,
            details={"certificate_number": certificate_number},
        )

    async def _transactional_batch_insert(
        self,
        email: str,
        certificates: Sequence[BatchCertificate],
        log_entries: Sequence[StatusLogEntry],
        short_urls: Sequence[ShortUrlRecord],
    ) -> int:
        async with await psycopg.AsyncConnection.connect(self._dsn) as conn:
            async with conn.transaction(), conn.cursor() as cur:
                await cur.executemany(_INSERT_CERTIFICATE, [_certificate_params(c) for c in certificates])
                await cur.executemany(_INSERT_STATUS_LOG, [_status_log_params(e) for e in log_entries])
                await cur.executemany(
                    _UPSERT_SHORT_URL, [(s.certificate_number, email, s.url) for s in short_urls]
                )
                await cur.execute(_INCREMENT_COUNTERS, (len(certificates), 0, email))
                if cur.rowcount != 1:
                    raise LookupError(f"Issuer {email} not found")
        log.info(
            "repository.batch_mirrored",
            rows=len(certificates),
            transaction_hash=certificates[0].transaction_hash if certificates else None,
        )
        return len(certificates)

    async def _guard(self, call: Callable[[], Awaitable[T]], message: str) -> Result[T]:
        return await Result.from_awaitable(call, ErrorCode.DATABASE_ERROR, message)

    async def _fetch(
        self, sql: str, params: tuple[Any, ...] = (), commit: bool = False
    ) -> list[dict[str, Any]]:
        async with await psycopg.AsyncConnection.connect(self._dsn, row_factory=dict_row) as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
            if commit:
                await conn.commit()
            return rows

    async def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Run one statement in its own transaction; returns the affected row count."""
        async with await psycopg.AsyncConnection.connect(self._dsn) as conn:
            async with conn.transaction():
                cursor = await conn.execute(sql, params or None)
                return max(cursor.rowcount, 0)
