"""
Verification engine — turns an identifier or a QR payload into a verdict.

Domain layer. Reads the mirror store first and cross-checks the ledger:

  1. decode the input into a CertificateClaim
  2. mirror lookup by certificate number
  3. revoked in the mirror                 → rejected, no ledger call
  4. never expires or status 6 Verified    → accepted, no ledger call
  5. single certificate  → verify_by_id
     batch certificate   → local expiry, root membership, per-row status
  6. unknown to the mirror                 → ledger-only verification

Rejections are verdicts (Success with ``verified=False``); only undecodable
input or infrastructure errors are failures. Every accepted verdict bumps
the per-issuer, per-course verification counter. The engine never writes
issuance data.
"""

from __future__ import annotations

import re
from dataclasses import replace

import structlog
from railway import ErrorCode, Result

from cert_ledger.domain import dates, messages
from cert_ledger.domain.issuance import Clock, utc_now
from cert_ledger.domain.models import (
    BatchCertificate,
    Certificate,
    CertificateClaim,
    CertificateStatus,
    LedgerCertificateView,
    VerdictReason,
    VerdictSource,
    VerificationVerdict,
)
from cert_ledger.domain.ports import CertificateLedger, CertificateStore, ClaimCipher

log = structlog.get_logger()

DEFAULT_ISSUER = "default"

_LEGACY_KEYS = {
    "Certification Number": "certificate_number",
    "Name": "name",
    "Certification Name": "course",
    "Grant Date": "grant_date",
    "Expiration Date": "expiration_date",
    "Verify On Blockchain": "ledger_link",
}
_LEGACY_SEPARATOR = re.compile(r":\s+")
_LEDGER_REJECTIONS = {
    CertificateStatus.REVOKED: VerdictReason.REVOKED,
    CertificateStatus.EXPIRED: VerdictReason.EXPIRED,
}


def parse_legacy_payload(text: str) -> Result[CertificateClaim]:
    """
    Parse a plain-text QR payload of ``Key: value`` lines.

        Certification Number: CERT000000001
        Name: Ada Lovelace
        Verify On Blockchain: https://polygonscan.com/tx/0xabc
    """
    fields: dict[str, str] = {}
    for line in text.splitlines():
        parts = _LEGACY_SEPARATOR.split(line.strip(), maxsplit=1)
        if len(parts) == 2 and parts[0].strip() in _LEGACY_KEYS:
            fields[_LEGACY_KEYS[parts[0].strip()]] = parts[1].strip().replace(",", "")
    if not fields.get("certificate_number"):
        return Result.failure(ErrorCode.VALIDATION_ERROR, messages.INVALID_VERIFICATION_INPUT)
    return Result.success(CertificateClaim(**fields))


class VerificationEngine:
    """Mirror-first certificate verification with ledger reconciliation."""

    def __init__(
        self,
        ledger: CertificateLedger,
        store: CertificateStore,
        cipher: ClaimCipher,
        clock: Clock = utc_now,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._cipher = cipher
        self._clock = clock

    # ─────────────────────── Entry points ───────────────────────

    async def verify_by_id(self, certificate_number: str) -> Result[VerificationVerdict]:
        number = certificate_number.strip()
        if not number:
            return Result.failure(ErrorCode.VALIDATION_ERROR, messages.INVALID_VERIFICATION_INPUT)
        return await self.verify_claim(CertificateClaim(certificate_number=number))

    async def verify_payload(self, payload: str) -> Result[VerificationVerdict]:
        """Verify a scanned QR text: short URL, encrypted URL or legacy plain text."""
        text = payload.strip()
        if text.startswith(("http://", "https://")):
            claim = await self._claim_from_url(text)
        else:
            claim = parse_legacy_payload(text)
        return await claim.flat_map_async(self.verify_claim)

    async def verify_encrypted(self, data: str, iv: str) -> Result[VerificationVerdict]:
        return await self._cipher.decrypt(data, iv).flat_map_async(self.verify_claim)

    async def verify_claim(self, claim: CertificateClaim) -> Result[VerificationVerdict]:
        found = await self._store.find_by_certificate_number(claim.certificate_number)
        match found.error().code if found.is_failure() else None:
            case None:
                verdict = await self._verify_mirrored(claim, found.value())
            case ErrorCode.NOT_FOUND:
                verdict = await self._verify_on_ledger_only(claim)
            case _:
                return found
        return await verdict.flat_map_async(self._count_verification)

    async def _claim_from_url(self, url: str) -> Result[CertificateClaim]:
        number = self._cipher.short_url_number(url)
        if number is None:
            return self._cipher.decrypt_url(url)
        long_url = await self._store.find_short_url(number)
        if long_url.is_failure() and long_url.error().code is ErrorCode.NOT_FOUND:
            return Result.failure(
                ErrorCode.NOT_FOUND, messages.SHORT_URL_NOT_FOUND, details={"url": url}
            )
        return long_url.flat_map(self._cipher.decrypt_url)

    # ─────────────────────── Mirror-backed path ───────────────────────

    async def _verify_mirrored(
        self, claim: CertificateClaim, record: Certificate
    ) -> Result[VerificationVerdict]:
        if record.certificate_status is CertificateStatus.REVOKED:
            return Result.success(self._verdict(record, VerdictReason.REVOKED, VerdictSource.MIRROR))
        if not self._claim_matches(claim, record):
            log.warning("verification.claim_mismatch", certificate_number=record.certificate_number)
            return Result.success(self._verdict(record, VerdictReason.INVALID, VerdictSource.MIRROR))
        if record.never_expires or record.certificate_status is CertificateStatus.VERIFIED:
            return Result.success(self._verdict(record, VerdictReason.VERIFIED, VerdictSource.MIRROR))
        match record:
            case BatchCertificate():
                return await self._verify_batch_member(record)
            case _:
                return await self._verify_single(record)

    @staticmethod
    def _claim_matches(claim: CertificateClaim, record: Certificate) -> bool:
        """Fields present in the claim must agree with the mirror; expiration may have been renewed."""
        if claim.name is not None and claim.name.strip() != record.name:
            return False
        if claim.course is not None and claim.course.strip() != record.course:
            return False
        if claim.grant_date is not None and dates.normalize(claim.grant_date) != record.grant_date:
            return False
        return True

    async def _verify_single(self, record: Certificate) -> Result[VerificationVerdict]:
        view = await self._ledger.verify_by_id(record.certificate_number)
        return view.map(lambda v: self._reconcile_single(record, v))

    def _reconcile_single(
        self, record: Certificate, view: LedgerCertificateView
    ) -> VerificationVerdict:
        ledger_expiration = dates.from_epoch(view.expiration_epoch)
        if not view.exists or view.status is not record.certificate_status or (
            ledger_expiration is not None and ledger_expiration != record.expiration_date
        ):
            log.warning(
                "verification.mirror_drift",
                certificate_number=record.certificate_number,
                mirror_status=record.certificate_status.label,
                ledger_status=view.status.label,
                ledger_exists=view.exists,
            )
        if not view.exists:
            return self._verdict(record, VerdictReason.NOT_FOUND, VerdictSource.LEDGER)
        reconciled = replace(
            record,
            certificate_status=view.status,
            expiration_date=ledger_expiration or record.expiration_date,
        )
        if view.status is CertificateStatus.REVOKED:
            return self._verdict(reconciled, VerdictReason.REVOKED, VerdictSource.LEDGER)
        if view.status is CertificateStatus.EXPIRED or self._epoch_expired(view.expiration_epoch):
            return self._verdict(reconciled, VerdictReason.EXPIRED, VerdictSource.LEDGER)
        return self._verdict(reconciled, VerdictReason.VERIFIED, VerdictSource.LEDGER)

    async def _verify_batch_member(self, record: BatchCertificate) -> Result[VerificationVerdict]:
        if dates.is_past(record.expiration_date, self._clock().date()):
            return Result.success(self._verdict(record, VerdictReason.EXPIRED, VerdictSource.MIRROR))
        member = await self._ledger.verify_batch_membership(
            record.batch_id - 1, record.certificate_hash, record.proof_hash
        )
        if member.is_failure():
            return member
        if not member.value():
            log.warning(
                "verification.mirror_drift",
                certificate_number=record.certificate_number,
                batch_id=record.batch_id,
                reason="membership proof rejected",
            )
            return Result.success(self._verdict(record, VerdictReason.INVALID, VerdictSource.LEDGER))
        status = await self._ledger.get_batch_member_status(record.encoded_proof)
        return status.map(lambda s: self._reconcile_batch_status(record, s))

    def _reconcile_batch_status(
        self, record: BatchCertificate, status: CertificateStatus
    ) -> VerificationVerdict:
        """Ledger-reported Revoked or Expired overrides the mirror."""
        reason = _LEDGER_REJECTIONS.get(status)
        if reason is None:
            return self._verdict(record, VerdictReason.VERIFIED, VerdictSource.LEDGER)
        if record.certificate_status is not status:
            log.warning(
                "verification.mirror_drift",
                certificate_number=record.certificate_number,
                mirror_status=record.certificate_status.label,
                ledger_status=status.label,
            )
        return self._verdict(replace(record, certificate_status=status), reason, VerdictSource.LEDGER)

    # ─────────────────────── Ledger-only path ───────────────────────

    async def _verify_on_ledger_only(self, claim: CertificateClaim) -> Result[VerificationVerdict]:
        view = await self._ledger.verify_by_id(claim.certificate_number)
        return view.map(lambda v: self._ledger_only_verdict(claim, v))

    def _ledger_only_verdict(
        self, claim: CertificateClaim, view: LedgerCertificateView
    ) -> VerificationVerdict:
        if not view.exists:
            reason = VerdictReason.NOT_FOUND
        elif view.status is CertificateStatus.REVOKED:
            reason = VerdictReason.REVOKED
        elif view.status is CertificateStatus.EXPIRED or self._epoch_expired(view.expiration_epoch):
            reason = VerdictReason.EXPIRED
        else:
            reason = VerdictReason.VERIFIED
        return VerificationVerdict(
            certificate_number=claim.certificate_number,
            verified=reason is VerdictReason.VERIFIED,
            reason=reason,
            source=VerdictSource.LEDGER,
            status=view.status if view.exists else None,
            expiration_date=dates.from_epoch(view.expiration_epoch) if view.exists else None,
            name=claim.name,
            course=claim.course,
            grant_date=claim.grant_date,
            ledger_link=claim.ledger_link,
        )

    # ─────────────────────── Helpers ───────────────────────

    async def _count_verification(self, verdict: VerificationVerdict) -> Result[VerificationVerdict]:
        if not verdict.verified:
            log.info(
                "verification.rejected",
                certificate_number=verdict.certificate_number,
                reason=verdict.reason.value,
            )
            return Result.success(verdict)
        issuer_id = verdict.issuer_id or DEFAULT_ISSUER
        counted = await self._store.record_verification(issuer_id, verdict.course or "")
        return counted.map(lambda _: verdict).peek(
            lambda v: log.info(
                "verification.accepted",
                certificate_number=v.certificate_number,
                source=v.source.value,
                issuer_id=issuer_id,
            )
        )

    def _epoch_expired(self, epoch: int) -> bool:
        return epoch > 1 and epoch < int(self._clock().timestamp())

    @staticmethod
    def _verdict(
        record: Certificate, reason: VerdictReason, source: VerdictSource
    ) -> VerificationVerdict:
        return VerificationVerdict(
            certificate_number=record.certificate_number,
            verified=reason is VerdictReason.VERIFIED,
            reason=reason,
            source=source,
            status=record.certificate_status,
            expiration_date=record.expiration_date,
            name=record.name,
            course=record.course,
            grant_date=record.grant_date,
            batch_id=record.batch_id if isinstance(record, BatchCertificate) else None,
            issuer_id=record.issuer_id,
        )
