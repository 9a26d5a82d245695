"""
Domain models — immutable value objects for certificates, batches and ledger views.

A certificate is either a SingleCertificate (its own ledger entry) or a
BatchCertificate (a leaf of a Merkle batch anchored by one ledger
transaction). Both share the CertificateRecord fields so uniqueness and
lookup logic is written once against the ``Certificate`` union.

All models are frozen dataclasses; state changes produce new instances via
``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum, IntEnum, unique

NEVER_EXPIRES = "1"
"""Expiration sentinel: the certificate never expires."""

DATE_FORMAT = "%m/%d/%Y"


@unique
class CertificateStatus(IntEnum):
    """Lifecycle status shared by the ledger and the mirror store."""

    NOT_ISSUED = 0
    ISSUED = 1
    RENEWED = 2
    REVOKED = 3
    REACTIVATED = 4
    EXPIRED = 5
    VERIFIED = 6

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    CertificateStatus.NOT_ISSUED: "Not Issued",
    CertificateStatus.ISSUED: "Issued",
    CertificateStatus.RENEWED: "Renewed",
    CertificateStatus.REVOKED: "Revoked",
    CertificateStatus.REACTIVATED: "Reactivated",
    CertificateStatus.EXPIRED: "Expired",
    CertificateStatus.VERIFIED: "Verified",
}


# ─────────────────────── Certificates ───────────────────────


@dataclass(frozen=True, slots=True, kw_only=True)
class CertificateDraft:
    """The canonical field set of a certificate before it is anchored."""

    certificate_number: str
    name: str
    course: str
    grant_date: str
    expiration_date: str = NEVER_EXPIRES

    @property
    def never_expires(self) -> bool:
        return self.expiration_date == NEVER_EXPIRES


@dataclass(frozen=True, slots=True, kw_only=True)
class CertificateRecord:
    """
    Fields common to single and batch certificates.

    Dates are stored as ``MM/DD/YYYY`` strings; ``expiration_date`` holds
    NEVER_EXPIRES for certificates without an expiry.
    """

    certificate_number: str
    issuer_id: str
    name: str
    course: str
    grant_date: str
    expiration_date: str
    certificate_hash: str
    transaction_hash: str
    certificate_status: CertificateStatus = CertificateStatus.ISSUED
    issue_date: datetime | None = None
    url: str | None = None

    @property
    def never_expires(self) -> bool:
        return self.expiration_date == NEVER_EXPIRES

    @property
    def is_batch(self) -> bool:
        return False


@dataclass(frozen=True, slots=True, kw_only=True)
class SingleCertificate(CertificateRecord):
    """A certificate anchored by its own ledger entry."""


@dataclass(frozen=True, slots=True, kw_only=True)
class BatchCertificate(CertificateRecord):
    """
    A certificate anchored as one leaf of a batch Merkle root.

    ``batch_id`` is the 1-based root index on the ledger, ``proof_hash`` the
    sibling path from the leaf to the root and ``encoded_proof`` the compact
    lookup key derived from that path.
    """

    batch_id: int
    leaf_index: int
    proof_hash: tuple[str, ...] = field(default_factory=tuple)
    encoded_proof: str = ""

    @property
    def is_batch(self) -> bool:
        return True


type Certificate = SingleCertificate | BatchCertificate


def effective_status(record: CertificateRecord, today: date) -> CertificateStatus:
    """
    Status as observed today: a finite expiration in the past reads as EXPIRED
    unless the certificate was revoked.
    """
    if record.never_expires or record.certificate_status is CertificateStatus.REVOKED:
        return record.certificate_status
    expires = datetime.strptime(record.expiration_date, DATE_FORMAT).date()
    if expires < today:
        return CertificateStatus.EXPIRED
    return record.certificate_status


# ─────────────────────── Bookkeeping ───────────────────────


@dataclass(frozen=True, slots=True, kw_only=True)
class StatusLogEntry:
    """Append-only audit record written for every issuance and mutation."""

    email: str
    issuer_id: str
    transaction_hash: str
    certificate_number: str
    cert_status: CertificateStatus
    expiration_date: str
    last_update: datetime
    batch_id: int | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class IssuerAccount:
    """An issuing organisation; ``status == 1`` means approved and active."""

    email: str
    issuer_id: str
    name: str = ""
    status: int = 1
    certificates_issued: int = 0
    certificates_renewed: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == 1


@dataclass(frozen=True, slots=True)
class ShortUrlRecord:
    certificate_number: str
    url: str


# ─────────────────────── Ledger views ───────────────────────


@dataclass(frozen=True, slots=True)
class LedgerReceipt:
    """Reference to a mined ledger transaction."""

    transaction_hash: str
    explorer_link: str


@dataclass(frozen=True, slots=True)
class LedgerCertificateView:
    """What the ledger reports for one certificate number."""

    exists: bool
    expiration_epoch: int
    status: CertificateStatus


@dataclass(frozen=True, slots=True)
class BatchRootView:
    """What the ledger reports for one batch root index."""

    exists: bool
    expiration_epoch: int
    status: CertificateStatus


# ─────────────────────── Batch ingestion ───────────────────────


@dataclass(frozen=True, slots=True)
class BatchSheet:
    """
    Raw content read from an uploaded batch workbook.

    ``header`` and ``rows`` come from the sheet named like the configured
    batch sheet; both are empty when that sheet is absent.
    """

    sheet_names: tuple[str, ...]
    header: tuple[object, ...] = ()
    rows: tuple[tuple[object, ...], ...] = ()


@dataclass(frozen=True, slots=True)
class BatchRow:
    """One data row of a batch sheet; ``row_number`` is the 1-based sheet row."""

    row_number: int
    certification_id: object
    name: object
    certification_name: object
    grant_date: object
    expiration_date: object


@dataclass(frozen=True, slots=True)
class ValidatedBatch:
    """Rows that passed every ingestion stage, in sheet order."""

    drafts: tuple[CertificateDraft, ...]

    @property
    def row_count(self) -> int:
        return len(self.drafts)

    @property
    def certificate_numbers(self) -> tuple[str, ...]:
        return tuple(d.certificate_number for d in self.drafts)

    def raw_rows(self) -> list[list[str]]:
        return [
            [d.certificate_number, d.name, d.course, d.grant_date, d.expiration_date]
            for d in self.drafts
        ]


# ─────────────────────── Verification ───────────────────────


@dataclass(frozen=True, slots=True, kw_only=True)
class CertificateClaim:
    """A certificate as presented by a verifier (decoded QR, URL or raw id)."""

    certificate_number: str
    name: str | None = None
    course: str | None = None
    grant_date: str | None = None
    expiration_date: str | None = None
    ledger_link: str | None = None


class VerdictReason(Enum):
    VERIFIED = "verified"
    REVOKED = "revoked"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    INVALID = "invalid"


class VerdictSource(Enum):
    MIRROR = "mirror"
    LEDGER = "ledger"


@dataclass(frozen=True, slots=True, kw_only=True)
class VerificationVerdict:
    certificate_number: str
    verified: bool
    reason: VerdictReason
    source: VerdictSource
    status: CertificateStatus | None = None
    expiration_date: str | None = None
    name: str | None = None
    course: str | None = None
    grant_date: str | None = None
    batch_id: int | None = None
    issuer_id: str | None = None
    ledger_link: str | None = None


# ─────────────────────── Workflow outcomes ───────────────────────


@dataclass(frozen=True, slots=True)
class IssuanceOutcome:
    certificate: SingleCertificate
    receipt: LedgerReceipt
    short_url: str


@dataclass(frozen=True, slots=True)
class BatchIssuanceOutcome:
    batch_id: int
    merkle_root: str
    receipt: LedgerReceipt
    certificates: tuple[BatchCertificate, ...]

    @property
    def row_count(self) -> int:
        return len(self.certificates)


@dataclass(frozen=True, slots=True)
class LifecycleOutcome:
    """Result of a renewal or status change on one certificate."""

    certificate_number: str
    status: CertificateStatus
    expiration_date: str
    receipt: LedgerReceipt
    short_url: str | None = None


@dataclass(frozen=True, slots=True)
class BatchLifecycleOutcome:
    """Result of a batch-wide renewal or status change."""

    batch_id: int
    status: CertificateStatus
    expiration_date: str
    receipt: LedgerReceipt
    affected: int
