"""
Ports — Protocol-based interfaces for infrastructure adapters.

  Domain ← Ports (protocols) ← Adapters (implementations)

Every I/O port is asynchronous and returns Result; adapters convert their
exceptions at the boundary so nothing raises into the domain.

  CertificateLedger  → the external smart contract (system of record)
  CertificateStore   → the local mirror of certificates, logs and issuers
  BatchFileReader    → reads an uploaded batch workbook
  ClaimCipher        → encrypts/decrypts verification URLs
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from railway.result import Result

from cert_ledger.domain.models import (
    BatchCertificate,
    BatchRootView,
    BatchSheet,
    Certificate,
    CertificateClaim,
    CertificateStatus,
    IssuerAccount,
    LedgerCertificateView,
    LedgerReceipt,
    ShortUrlRecord,
    SingleCertificate,
    StatusLogEntry,
)


@runtime_checkable
class CertificateLedger(Protocol):
    """
    Port: the certificate smart contract.

    Mutating calls retry transient timeouts a bounded number of times and
    fail immediately on anything else. A successful mutation always yields
    a LedgerReceipt with an explorer link. The ledger does not check pause
    state or roles for the caller; the orchestrator reads those first.
    """

    # Mutations
    async def issue_single(
        self, certificate_number: str, certificate_hash: str, expiration_epoch: int
    ) -> Result[LedgerReceipt]: ...

    async def issue_batch(self, merkle_root: bytes, expiration_epoch: int) -> Result[LedgerReceipt]: ...

    async def update_single_status(
        self, certificate_number: str, status: CertificateStatus
    ) -> Result[LedgerReceipt]: ...

    async def update_in_batch_status(
        self, encoded_proof: str, status: CertificateStatus
    ) -> Result[LedgerReceipt]: ...

    async def update_batch_status(self, batch_index: int, status: CertificateStatus) -> Result[LedgerReceipt]: ...

    async def renew_single(
        self, certificate_number: str, certificate_hash: str, expiration_epoch: int
    ) -> Result[LedgerReceipt]: ...

    async def renew_in_batch(
        self, batch_index: int, encoded_proof: str, expiration_epoch: int
    ) -> Result[LedgerReceipt]: ...

    async def renew_batch_expiration(self, batch_index: int, expiration_epoch: int) -> Result[LedgerReceipt]: ...

    async def grant_role(self, role: str, account: str) -> Result[LedgerReceipt]: ...

    async def revoke_role(self, role: str, account: str) -> Result[LedgerReceipt]: ...

    # Reads
    async def verify_by_id(self, certificate_number: str) -> Result[LedgerCertificateView]: ...

    async def get_status(self, certificate_number: str) -> Result[CertificateStatus]: ...

    async def verify_batch_root(self, batch_index: int) -> Result[BatchRootView]: ...

    async def verify_batch_membership(
        self, batch_index: int, leaf_hash: str, proof: Sequence[str]
    ) -> Result[bool]: ...

    async def get_batch_member_status(self, encoded_proof: str) -> Result[CertificateStatus]: ...

    async def has_role(self, role: str, account: str) -> Result[bool]: ...

    async def is_paused(self) -> Result[bool]: ...

    async def get_batch_count(self) -> Result[int]: ...

    def is_valid_account(self, account: str) -> bool: ...


@runtime_checkable
class CertificateStore(Protocol):
    """
    Port: the certificate mirror store.

    Inserts are append-create; a second insert of the same certificate
    number fails. Status and expiration updates mutate the record in place
    and never cascade: pairing them with a status-log append is the
    orchestrator's job.
    """

    # Lookups
    async def find_by_certificate_number(self, certificate_number: str) -> Result[Certificate]:
        """NOT_FOUND failure when neither universe knows the number."""
        ...

    async def find_existing_numbers(self, certificate_numbers: Sequence[str]) -> Result[list[str]]:
        """Subset of the given numbers already used by a single or batch certificate."""
        ...

    async def find_by_issuer_and_status(
        self, issuer_id: str, status: CertificateStatus | None = None
    ) -> Result[list[Certificate]]: ...

    async def find_batch_members(self, batch_id: int) -> Result[list[BatchCertificate]]: ...

    async def find_issuer_by_email(self, email: str) -> Result[IssuerAccount]: ...

    async def find_issuer_by_id(self, issuer_id: str) -> Result[IssuerAccount]: ...

    async def find_status_log(
        self,
        issuer_id: str,
        status: CertificateStatus | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Result[list[StatusLogEntry]]: ...

    async def find_short_url(self, certificate_number: str) -> Result[str]: ...

    # Writes
    async def insert_single(self, certificate: SingleCertificate) -> Result[SingleCertificate]: ...

    async def insert_batch_row(self, certificate: BatchCertificate) -> Result[BatchCertificate]: ...

    async def insert_batch(
        self,
        email: str,
        certificates: Sequence[BatchCertificate],
        log_entries: Sequence[StatusLogEntry],
        short_urls: Sequence[ShortUrlRecord],
    ) -> Result[int]:
        """Mirror a new batch and count it as issued, all or nothing; returns the row count."""
        ...

    async def append_status_log(self, entry: StatusLogEntry) -> Result[StatusLogEntry]: ...

    async def update_status(
        self, certificate_number: str, status: CertificateStatus, transaction_hash: str
    ) -> Result[Certificate]: ...

    async def update_expiration(
        self,
        certificate_number: str,
        expiration_date: str,
        transaction_hash: str,
        certificate_hash: str | None = None,
    ) -> Result[Certificate]:
        """Set a new expiration, marks the record RENEWED."""
        ...

    async def update_batch_expiration(
        self, batch_id: int, expiration_date: str, transaction_hash: str
    ) -> Result[int]: ...

    async def update_batch_status(
        self, batch_id: int, status: CertificateStatus, transaction_hash: str
    ) -> Result[int]: ...

    async def increment_issuer_counters(
        self, email: str, issued: int = 0, renewed: int = 0
    ) -> Result[IssuerAccount]: ...

    async def upsert_short_url(self, email: str, certificate_number: str, url: str) -> Result[str]: ...

    async def record_verification(self, issuer_id: str, course: str) -> Result[int]:
        """Increment the per-issuer, per-course verification counter; returns the new count."""
        ...


@runtime_checkable
class BatchFileReader(Protocol):
    """Port: read the sheet names and configured batch sheet of a workbook."""

    async def read(self, path: Path) -> Result[BatchSheet]: ...


@runtime_checkable
class ClaimCipher(Protocol):
    """Port: build and decode encrypted verification URLs."""

    def encrypted_url(self, claim: CertificateClaim) -> str: ...

    def short_url(self, certificate_number: str) -> str: ...

    def short_url_number(self, url: str) -> str | None:
        """Certificate number when ``url`` is one of our short URLs, else None."""
        ...

    def decrypt_url(self, url: str) -> Result[CertificateClaim]: ...

    def decrypt(self, data: str, iv: str) -> Result[CertificateClaim]: ...
