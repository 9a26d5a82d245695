"""
Issuance, renewal and status orchestrator.

Domain layer. Coordinates the ledger, the commitment utility and the mirror
store for every mutating workflow. Each workflow follows the same order:

  1. local validation and state-machine guards (mirror store reads only)
  2. ledger readiness: not paused, issuer holds the issuer role
  3. ledger cross-checks (existing entry, on-chain status, batch root)
  4. exactly one mutating ledger transaction
  5. mirror writes: record, status log, counters, short URL

Nothing is written to the mirror unless step 4 succeeded. Steps 4 and 5
share no transaction: when a mirror write fails after the ledger accepted
the change, the failure is logged with certificate numbers and the
transaction hash and returned as DATABASE_ERROR so it can be reconciled.

Batch identifiers are 1-based (``batch_id``); the ledger indexes roots from
zero (``batch_index = batch_id - 1``).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, timedelta
from functools import partial
from pathlib import Path
from typing import Any

import structlog
from railway import ErrorCode, LoggingExecutionContext, Result

from cert_ledger.domain import commitment, dates, messages
from cert_ledger.domain.ingestion import BatchIngestionPipeline
from cert_ledger.domain.models import (
    NEVER_EXPIRES,
    BatchCertificate,
    BatchIssuanceOutcome,
    BatchLifecycleOutcome,
    BatchRootView,
    Certificate,
    CertificateClaim,
    CertificateDraft,
    CertificateStatus,
    IssuanceOutcome,
    IssuerAccount,
    LedgerReceipt,
    LifecycleOutcome,
    ShortUrlRecord,
    SingleCertificate,
    StatusLogEntry,
    ValidatedBatch,
)
from cert_ledger.domain.ports import CertificateLedger, CertificateStore, ClaimCipher

log = structlog.get_logger()

type Clock = Callable[[], datetime]
type MirrorStep = Callable[[], Awaitable[Result[Any]]]

STATUS_TARGETS = (CertificateStatus.REVOKED, CertificateStatus.REACTIVATED)


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class IssuancePolicy:
    issuer_role: str
    min_validity_days: int = 32
    min_id_length: int = 12
    max_id_length: int = 20


def _fail(code: ErrorCode, message: str, details: Any = None) -> Result[Any]:
    return Result.failure(code, message, details=details)


def _used_number_details(record: Certificate) -> dict[str, Any]:
    return {
        "certificate_number": record.certificate_number,
        "expiration_date": record.expiration_date,
        "status": record.certificate_status.label,
    }


class IssuanceService:
    """
    Single and batch issuance, renewal, revoke/reactivate and role administration.

    All collaborators are injected; ``clock`` returns the current UTC time.
    """

    def __init__(
        self,
        ledger: CertificateLedger,
        store: CertificateStore,
        cipher: ClaimCipher,
        ingestion: BatchIngestionPipeline,
        policy: IssuancePolicy,
        clock: Clock = utc_now,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._cipher = cipher
        self._ingestion = ingestion
        self._policy = policy
        self._clock = clock

    # ═══════════════════════ Public workflows ═══════════════════════

    async def issue_single(self, email: str, draft: CertificateDraft) -> Result[IssuanceOutcome]:
        return await LoggingExecutionContext(operation="issue_single").execute_async(
            lambda: self._issue_single(email, draft)
        )

    async def issue_batch(self, email: str, path: Path) -> Result[BatchIssuanceOutcome]:
        return await LoggingExecutionContext(operation="issue_batch").execute_async(
            lambda: self._issue_batch(email, path)
        )

    async def renew(
        self, email: str, certificate_number: str, new_expiration: object
    ) -> Result[LifecycleOutcome]:
        return await LoggingExecutionContext(operation="renew").execute_async(
            lambda: self._renew(email, certificate_number, new_expiration)
        )

    async def update_status(
        self, email: str, certificate_number: str, target: CertificateStatus
    ) -> Result[LifecycleOutcome]:
        return await LoggingExecutionContext(operation="update_status").execute_async(
            lambda: self._update_status(email, certificate_number, target)
        )

    async def revoke(self, email: str, certificate_number: str) -> Result[LifecycleOutcome]:
        return await self.update_status(email, certificate_number, CertificateStatus.REVOKED)

    async def reactivate(self, email: str, certificate_number: str) -> Result[LifecycleOutcome]:
        return await self.update_status(email, certificate_number, CertificateStatus.REACTIVATED)

    async def renew_batch(
        self, email: str, batch_id: int, new_expiration: object
    ) -> Result[BatchLifecycleOutcome]:
        return await LoggingExecutionContext(operation="renew_batch").execute_async(
            lambda: self._renew_batch(email, batch_id, new_expiration)
        )

    async def update_batch_status(
        self, email: str, batch_id: int, target: CertificateStatus
    ) -> Result[BatchLifecycleOutcome]:
        return await LoggingExecutionContext(operation="update_batch_status").execute_async(
            lambda: self._update_batch_status(email, batch_id, target)
        )

    async def grant_issuer_role(self, account: str) -> Result[LedgerReceipt]:
        return await self._change_role(account, grant=True)

    async def revoke_issuer_role(self, account: str) -> Result[LedgerReceipt]:
        return await self._change_role(account, grant=False)

    async def status_history(
        self,
        email: str,
        status: CertificateStatus | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Result[list[StatusLogEntry]]:
        """Status-log entries of the issuer, optionally filtered by status and period."""
        issuer = await self._resolve_issuer(email)
        return await issuer.flat_map_async(
            lambda account: self._store.find_status_log(account.issuer_id, status, start, end)
        )

    # ═══════════════════════ Single issuance ═══════════════════════

    async def _issue_single(self, email: str, draft: CertificateDraft) -> Result[IssuanceOutcome]:
        checked = self._validate_draft(draft)
        if checked.is_failure():
            return checked
        draft = checked.value()

        issuer = await self._resolve_issuer(email)
        if issuer.is_failure():
            return issuer
        account = issuer.value()

        unused = await self._ensure_number_unused(draft.certificate_number)
        if unused.is_failure():
            return unused

        ready = await self._ensure_ledger_ready(account)
        if ready.is_failure():
            return ready

        on_ledger = await self._ledger.verify_by_id(draft.certificate_number)
        if on_ledger.is_failure():
            return on_ledger
        if on_ledger.value().exists:
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.ALREADY_ON_LEDGER,
                {"certificate_number": draft.certificate_number},
            )

        certificate_hash = commitment.hash_certificate(draft)
        receipt = await self._ledger.issue_single(
            draft.certificate_number, certificate_hash, dates.to_epoch(draft.expiration_date)
        )
        if receipt.is_failure():
            return receipt
        return await self._record_single_issue(account, draft, certificate_hash, receipt.value())

    async def _record_single_issue(
        self,
        account: IssuerAccount,
        draft: CertificateDraft,
        certificate_hash: str,
        receipt: LedgerReceipt,
    ) -> Result[IssuanceOutcome]:
        now = self._clock()
        certificate = SingleCertificate(
            certificate_number=draft.certificate_number,
            issuer_id=account.issuer_id,
            name=draft.name,
            course=draft.course,
            grant_date=draft.grant_date,
            expiration_date=draft.expiration_date,
            certificate_hash=certificate_hash,
            transaction_hash=receipt.transaction_hash,
            certificate_status=CertificateStatus.ISSUED,
            issue_date=now,
        )
        mirrored = await self._mirror(
            receipt,
            [certificate.certificate_number],
            lambda: self._store.insert_single(certificate),
            lambda: self._store.append_status_log(
                self._log_entry(account, certificate, CertificateStatus.ISSUED, receipt)
            ),
            lambda: self._store.increment_issuer_counters(account.email, issued=1),
            lambda: self._store_short_url(account.email, certificate, receipt),
        )
        return mirrored.peek(
            lambda _: log.info(
                "issuance.single_issued",
                certificate_number=certificate.certificate_number,
                transaction_hash=receipt.transaction_hash,
            )
        ).map(
            lambda _: IssuanceOutcome(
                certificate=certificate,
                receipt=receipt,
                short_url=self._cipher.short_url(certificate.certificate_number),
            )
        )

    def _validate_draft(self, draft: CertificateDraft) -> Result[CertificateDraft]:
        required = (draft.certificate_number, draft.name, draft.course, draft.grant_date)
        if any(not str(value).strip() for value in required):
            return _fail(ErrorCode.VALIDATION_ERROR, messages.MISSING_FIELDS)
        number = draft.certificate_number.strip()
        if not self._policy.min_id_length <= len(number) <= self._policy.max_id_length:
            return _fail(
                ErrorCode.VALIDATION_ERROR,
                messages.INVALID_CERTIFICATE_NUMBER,
                {"certificate_number": number},
            )
        grant = dates.normalize(draft.grant_date)
        expiration = dates.normalize(draft.expiration_date or NEVER_EXPIRES)
        if grant is None or grant == NEVER_EXPIRES or expiration is None:
            return _fail(
                ErrorCode.VALIDATION_ERROR,
                messages.INVALID_DATE_FORMAT,
                {"grant_date": draft.grant_date, "expiration_date": draft.expiration_date},
            )
        if grant == expiration:
            return _fail(ErrorCode.VALIDATION_ERROR, messages.DATES_SAME)
        if expiration != NEVER_EXPIRES:
            if dates.to_date(grant) > dates.to_date(expiration):
                return _fail(
                    ErrorCode.VALIDATION_ERROR,
                    messages.GRANT_AFTER_EXPIRATION,
                    {"grant_date": grant, "expiration_date": expiration},
                )
            validity = self._check_validity_window(expiration)
            if validity.is_failure():
                return validity
        return Result.success(
            replace(
                draft,
                certificate_number=number,
                name=draft.name.strip(),
                course=draft.course.strip(),
                grant_date=grant,
                expiration_date=expiration,
            )
        )

    def _check_validity_window(self, expiration: str) -> Result[str]:
        earliest = self._today() + timedelta(days=self._policy.min_validity_days)
        if expiration != NEVER_EXPIRES and dates.to_date(expiration) < earliest:
            return _fail(
                ErrorCode.VALIDATION_ERROR,
                messages.EXPIRATION_TOO_SOON,
                {"expiration_date": expiration, "earliest": earliest.strftime("%m/%d/%Y")},
            )
        return Result.success(expiration)

    async def _ensure_number_unused(self, certificate_number: str) -> Result[str]:
        used = await self._store.find_existing_numbers([certificate_number])
        if used.is_failure():
            return used
        if not used.value():
            return Result.success(certificate_number)
        existing = await self._store.find_by_certificate_number(certificate_number)
        details = existing.either(
            _used_number_details, lambda _: {"certificate_number": certificate_number}
        )
        return _fail(ErrorCode.BUSINESS_RULE_ERROR, messages.CERTIFICATE_NUMBER_USED, details)

    # ═══════════════════════ Batch issuance ═══════════════════════

    async def _issue_batch(self, email: str, path: Path) -> Result[BatchIssuanceOutcome]:
        issuer = await self._resolve_issuer(email)
        if issuer.is_failure():
            return issuer
        account = issuer.value()

        ingested = await self._ingestion.ingest(path)
        if ingested.is_failure():
            return ingested
        batch = ingested.value()

        ready = await self._ensure_ledger_ready(account)
        if ready.is_failure():
            return ready

        leaf_hashes = [commitment.hash_batch_row(row) for row in batch.raw_rows()]
        tree = commitment.build_merkle_tree(leaf_hashes)
        if tree.is_failure():
            return tree

        batch_count = await self._ledger.get_batch_count()
        if batch_count.is_failure():
            return batch_count
        batch_id = batch_count.value() + 1

        receipt = await self._ledger.issue_batch(tree.value().root, self._batch_expiration_epoch(batch))
        if receipt.is_failure():
            return receipt
        log.info(
            "issuance.batch_anchored",
            batch_id=batch_id,
            rows=batch.row_count,
            merkle_root=tree.value().hex_root,
            transaction_hash=receipt.value().transaction_hash,
        )
        return await self._record_batch_issue(
            account, batch, batch_id, tree.value(), leaf_hashes, receipt.value()
        )

    @staticmethod
    def _batch_expiration_epoch(batch: ValidatedBatch) -> int:
        """Common expiration of every row, or 0 when rows expire on different days."""
        expirations = {draft.expiration_date for draft in batch.drafts}
        if len(expirations) == 1:
            return dates.to_epoch(expirations.pop())
        return 0

    async def _record_batch_issue(
        self,
        account: IssuerAccount,
        batch: ValidatedBatch,
        batch_id: int,
        tree: commitment.MerkleTree,
        leaf_hashes: Sequence[str],
        receipt: LedgerReceipt,
    ) -> Result[BatchIssuanceOutcome]:
        now = self._clock()
        certificates: list[BatchCertificate] = []
        for index, draft in enumerate(batch.drafts):
            proof = commitment.proof_for(tree, index)
            certificates.append(
                BatchCertificate(
                    certificate_number=draft.certificate_number,
                    issuer_id=account.issuer_id,
                    name=draft.name,
                    course=draft.course,
                    grant_date=draft.grant_date,
                    expiration_date=draft.expiration_date,
                    certificate_hash=leaf_hashes[index],
                    transaction_hash=receipt.transaction_hash,
                    certificate_status=CertificateStatus.ISSUED,
                    issue_date=now,
                    batch_id=batch_id,
                    leaf_index=index,
                    proof_hash=proof.hex_siblings(),
                    encoded_proof=commitment.encode_proof(proof),
                )
            )

        log_entries = [
            self._log_entry(account, c, CertificateStatus.ISSUED, receipt) for c in certificates
        ]
        short_urls = [self._short_url_record(c, receipt) for c in certificates]
        mirrored = await self._mirror(
            receipt,
            batch.certificate_numbers,
            lambda: self._store.insert_batch(account.email, certificates, log_entries, short_urls),
        )
        return mirrored.peek(
            lambda _: log.info(
                "issuance.batch_issued",
                batch_id=batch_id,
                rows=len(certificates),
                transaction_hash=receipt.transaction_hash,
            )
        ).map(
            lambda _: BatchIssuanceOutcome(
                batch_id=batch_id,
                merkle_root=tree.hex_root,
                receipt=receipt,
                certificates=tuple(certificates),
            )
        )

    # ═══════════════════════ Renewal ═══════════════════════

    async def _renew(
        self, email: str, certificate_number: str, new_expiration: object
    ) -> Result[LifecycleOutcome]:
        expiration = self._normalize_new_expiration(new_expiration)
        if expiration.is_failure():
            return expiration
        new_date = expiration.value()

        issuer = await self._resolve_issuer(email)
        if issuer.is_failure():
            return issuer
        account = issuer.value()

        found = await self._store.find_by_certificate_number(certificate_number)
        if found.is_failure():
            return found
        record = found.value()

        allowed = self._check_renewal_allowed(record, new_date)
        if allowed.is_failure():
            return allowed

        ready = await self._ensure_ledger_ready(account)
        if ready.is_failure():
            return ready

        on_ledger = await self._ledger_status(record)
        if on_ledger.is_failure():
            return on_ledger
        if on_ledger.value() is CertificateStatus.REVOKED:
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.RENEWAL_NOT_POSSIBLE_REVOKED,
                {"certificate_number": certificate_number, "source": "ledger"},
            )

        epoch = dates.to_epoch(new_date)
        match record:
            case BatchCertificate():
                certificate_hash = None
                receipt = await self._ledger.renew_in_batch(
                    record.batch_id - 1, record.encoded_proof, epoch
                )
            case _:
                certificate_hash = commitment.hash_certificate(
                    CertificateDraft(
                        certificate_number=record.certificate_number,
                        name=record.name,
                        course=record.course,
                        grant_date=record.grant_date,
                        expiration_date=new_date,
                    )
                )
                receipt = await self._ledger.renew_single(record.certificate_number, certificate_hash, epoch)
        if receipt.is_failure():
            return receipt
        return await self._record_renewal(account, record, new_date, certificate_hash, receipt.value())

    def _normalize_new_expiration(self, value: object) -> Result[str]:
        normalized = dates.normalize(value)
        if normalized is None:
            return _fail(
                ErrorCode.VALIDATION_ERROR, messages.INVALID_DATE_FORMAT, {"expiration_date": str(value)}
            )
        return self._check_validity_window(normalized)

    def _check_renewal_allowed(self, record: Certificate, new_date: str) -> Result[Certificate]:
        if record.never_expires:
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.RENEWAL_NOT_POSSIBLE_INFINITE,
                {"certificate_number": record.certificate_number},
            )
        if record.certificate_status is CertificateStatus.REVOKED:
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.RENEWAL_NOT_POSSIBLE_REVOKED,
                {"certificate_number": record.certificate_number},
            )
        if new_date != NEVER_EXPIRES and dates.to_date(new_date) <= dates.to_date(record.expiration_date):
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.RENEWAL_NOT_LATER,
                {"current": record.expiration_date, "requested": new_date},
            )
        return Result.success(record)

    async def _record_renewal(
        self,
        account: IssuerAccount,
        record: Certificate,
        new_date: str,
        certificate_hash: str | None,
        receipt: LedgerReceipt,
    ) -> Result[LifecycleOutcome]:
        renewed = replace(
            record,
            expiration_date=new_date,
            certificate_hash=certificate_hash or record.certificate_hash,
            certificate_status=CertificateStatus.RENEWED,
            transaction_hash=receipt.transaction_hash,
        )
        mirrored = await self._mirror(
            receipt,
            [record.certificate_number],
            lambda: self._store.update_expiration(
                record.certificate_number, new_date, receipt.transaction_hash, certificate_hash
            ),
            lambda: self._store.append_status_log(
                self._log_entry(account, renewed, CertificateStatus.RENEWED, receipt)
            ),
            lambda: self._store.increment_issuer_counters(account.email, renewed=1),
            lambda: self._store_short_url(account.email, renewed, receipt),
        )
        return mirrored.peek(
            lambda _: log.info(
                "issuance.renewed",
                certificate_number=record.certificate_number,
                expiration_date=new_date,
                transaction_hash=receipt.transaction_hash,
            )
        ).map(
            lambda _: LifecycleOutcome(
                certificate_number=record.certificate_number,
                status=CertificateStatus.RENEWED,
                expiration_date=new_date,
                receipt=receipt,
                short_url=self._cipher.short_url(record.certificate_number),
            )
        )

    # ═══════════════════════ Revoke / reactivate ═══════════════════════

    async def _update_status(
        self, email: str, certificate_number: str, target: CertificateStatus
    ) -> Result[LifecycleOutcome]:
        if target not in STATUS_TARGETS:
            return _fail(ErrorCode.VALIDATION_ERROR, messages.INVALID_TARGET_STATUS, {"status": int(target)})

        issuer = await self._resolve_issuer(email)
        if issuer.is_failure():
            return issuer
        account = issuer.value()

        found = await self._store.find_by_certificate_number(certificate_number)
        if found.is_failure():
            return found
        record = found.value()

        allowed = self._check_transition(record, target)
        if allowed.is_failure():
            return allowed

        ready = await self._ensure_ledger_ready(account)
        if ready.is_failure():
            return ready

        on_ledger = await self._ledger_status(record)
        if on_ledger.is_failure():
            return on_ledger
        if on_ledger.value() is target:
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.STATUS_UNCHANGED,
                {"certificate_number": certificate_number, "source": "ledger"},
            )

        match record:
            case BatchCertificate():
                receipt = await self._ledger.update_in_batch_status(record.encoded_proof, target)
            case _:
                receipt = await self._ledger.update_single_status(record.certificate_number, target)
        if receipt.is_failure():
            return receipt
        return await self._record_status_change(account, record, target, receipt.value())

    def _check_transition(self, record: Certificate, target: CertificateStatus) -> Result[Certificate]:
        current = record.certificate_status
        if current is target:
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.STATUS_UNCHANGED,
                {"certificate_number": record.certificate_number, "status": current.label},
            )
        if target is CertificateStatus.REACTIVATED and current is not CertificateStatus.REVOKED:
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.REACTIVATION_NOT_POSSIBLE,
                {"certificate_number": record.certificate_number, "status": current.label},
            )
        if target is CertificateStatus.REACTIVATED and dates.is_past(record.expiration_date, self._today()):
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.CERTIFICATE_EXPIRED,
                {"certificate_number": record.certificate_number, "expiration_date": record.expiration_date},
            )
        return Result.success(record)

    async def _record_status_change(
        self,
        account: IssuerAccount,
        record: Certificate,
        target: CertificateStatus,
        receipt: LedgerReceipt,
    ) -> Result[LifecycleOutcome]:
        changed = replace(record, certificate_status=target, transaction_hash=receipt.transaction_hash)
        mirrored = await self._mirror(
            receipt,
            [record.certificate_number],
            lambda: self._store.update_status(record.certificate_number, target, receipt.transaction_hash),
            lambda: self._store.append_status_log(self._log_entry(account, changed, target, receipt)),
        )
        return mirrored.peek(
            lambda _: log.info(
                "issuance.status_changed",
                certificate_number=record.certificate_number,
                status=target.label,
                transaction_hash=receipt.transaction_hash,
            )
        ).map(
            lambda _: LifecycleOutcome(
                certificate_number=record.certificate_number,
                status=target,
                expiration_date=record.expiration_date,
                receipt=receipt,
            )
        )

    # ═══════════════════════ Batch-wide operations ═══════════════════════

    async def _renew_batch(
        self, email: str, batch_id: int, new_expiration: object
    ) -> Result[BatchLifecycleOutcome]:
        expiration = self._normalize_new_expiration(new_expiration)
        if expiration.is_failure():
            return expiration
        new_date = expiration.value()

        context = await self._load_batch(email, batch_id)
        if context.is_failure():
            return context
        account, members, root = context.value()

        if root.expiration_epoch == 1:
            return _fail(ErrorCode.BUSINESS_RULE_ERROR, messages.BATCH_RENEWAL_NOT_POSSIBLE, {"batch_id": batch_id})
        if root.expiration_epoch == 0:
            return _fail(ErrorCode.BUSINESS_RULE_ERROR, messages.BATCH_PER_ROW_EXPIRATION, {"batch_id": batch_id})
        if root.status is CertificateStatus.REVOKED:
            return _fail(ErrorCode.BUSINESS_RULE_ERROR, messages.BATCH_REVOKED, {"batch_id": batch_id})
        epoch = dates.to_epoch(new_date)
        if new_date != NEVER_EXPIRES and epoch <= root.expiration_epoch:
            return _fail(
                ErrorCode.BUSINESS_RULE_ERROR,
                messages.RENEWAL_NOT_LATER,
                {"current": dates.from_epoch(root.expiration_epoch), "requested": new_date},
            )

        receipt = await self._ledger.renew_batch_expiration(batch_id - 1, epoch)
        if receipt.is_failure():
            return receipt
        return await self._record_batch_change(
            account,
            members,
            batch_id,
            CertificateStatus.RENEWED,
            new_date,
            receipt.value(),
            lambda tx: self._store.update_batch_expiration(batch_id, new_date, tx),
        )

    async def _update_batch_status(
        self, email: str, batch_id: int, target: CertificateStatus
    ) -> Result[BatchLifecycleOutcome]:
        if target not in STATUS_TARGETS:
            return _fail(ErrorCode.VALIDATION_ERROR, messages.INVALID_TARGET_STATUS, {"status": int(target)})

        context = await self._load_batch(email, batch_id)
        if context.is_failure():
            return context
        account, members, root = context.value()

        if root.expiration_epoch == 0:
            return _fail(ErrorCode.BUSINESS_RULE_ERROR, messages.BATCH_PER_ROW_EXPIRATION, {"batch_id": batch_id})
        if root.status is target:
            return _fail(ErrorCode.BUSINESS_RULE_ERROR, messages.STATUS_UNCHANGED, {"batch_id": batch_id})
        if target is CertificateStatus.REACTIVATED:
            if root.status is not CertificateStatus.REVOKED:
                return _fail(
                    ErrorCode.BUSINESS_RULE_ERROR,
                    messages.REACTIVATION_NOT_POSSIBLE,
                    {"batch_id": batch_id, "status": root.status.label},
                )
            if root.expiration_epoch > 1 and root.expiration_epoch < self._now_epoch():
                return _fail(ErrorCode.BUSINESS_RULE_ERROR, messages.BATCH_EXPIRED, {"batch_id": batch_id})

        receipt = await self._ledger.update_batch_status(batch_id - 1, target)
        if receipt.is_failure():
            return receipt
        expiration = dates.from_epoch(root.expiration_epoch) or NEVER_EXPIRES
        return await self._record_batch_change(
            account,
            members,
            batch_id,
            target,
            expiration,
            receipt.value(),
            lambda tx: self._store.update_batch_status(batch_id, target, tx),
        )

    async def _load_batch(
        self, email: str, batch_id: int
    ) -> Result[tuple[IssuerAccount, list[BatchCertificate], BatchRootView]]:
        """Issuer, mirrored members and on-chain root of a batch, after readiness checks."""
        issuer = await self._resolve_issuer(email)
        if issuer.is_failure():
            return issuer
        account = issuer.value()

        members = await self._store.find_batch_members(batch_id)
        if members.is_failure():
            return members
        if not members.value():
            return _fail(ErrorCode.NOT_FOUND, messages.BATCH_NOT_FOUND, {"batch_id": batch_id})

        ready = await self._ensure_ledger_ready(account)
        if ready.is_failure():
            return ready

        root = await self._verified_root(batch_id)
        return root.map(lambda view: (account, members.value(), view))

    async def _verified_root(self, batch_id: int) -> Result[BatchRootView]:
        count = await self._ledger.get_batch_count()
        if count.is_failure():
            return count
        if not 1 <= batch_id <= count.value():
            return _fail(
                ErrorCode.NOT_FOUND,
                messages.BATCH_NOT_FOUND,
                {"batch_id": batch_id, "batch_count": count.value()},
            )
        root = await self._ledger.verify_batch_root(batch_id - 1)
        return root.ensure(
            lambda view: view.exists,
            ErrorCode.NOT_FOUND,
            messages.BATCH_NOT_FOUND,
        )

    async def _record_batch_change(
        self,
        account: IssuerAccount,
        members: list[BatchCertificate],
        batch_id: int,
        status: CertificateStatus,
        expiration_date: str,
        receipt: LedgerReceipt,
        update: Callable[[str], Awaitable[Result[int]]],
    ) -> Result[BatchLifecycleOutcome]:
        numbers = [member.certificate_number for member in members]
        entries = [
            self._log_entry(
                account, replace(member, expiration_date=expiration_date), status, receipt
            )
            for member in members
        ]
        steps: list[MirrorStep] = [lambda: update(receipt.transaction_hash)]
        steps.extend(partial(self._store.append_status_log, entry) for entry in entries)
        if status is CertificateStatus.RENEWED:
            steps.append(
                lambda: self._store.increment_issuer_counters(account.email, renewed=len(members))
            )
        mirrored = await self._mirror(receipt, numbers, *steps)
        return mirrored.peek(
            lambda _: log.info(
                "issuance.batch_changed",
                batch_id=batch_id,
                status=status.label,
                members=len(members),
                transaction_hash=receipt.transaction_hash,
            )
        ).map(
            lambda _: BatchLifecycleOutcome(
                batch_id=batch_id,
                status=status,
                expiration_date=expiration_date,
                receipt=receipt,
                affected=len(members),
            )
        )

    # ═══════════════════════ Roles ═══════════════════════

    async def _change_role(self, account: str, grant: bool) -> Result[LedgerReceipt]:
        if not self._ledger.is_valid_account(account):
            return _fail(ErrorCode.VALIDATION_ERROR, messages.INVALID_ISSUER_ADDRESS, {"account": account})
        role = self._policy.issuer_role
        holds = await self._ledger.has_role(role, account)
        if holds.is_failure():
            return holds
        if grant and holds.value():
            return _fail(ErrorCode.BUSINESS_RULE_ERROR, messages.ROLE_ALREADY_GRANTED, {"account": account})
        if not grant and not holds.value():
            return _fail(ErrorCode.BUSINESS_RULE_ERROR, messages.ROLE_NOT_GRANTED, {"account": account})
        change = self._ledger.grant_role if grant else self._ledger.revoke_role
        receipt = await change(role, account)
        return receipt.peek(
            lambda r: log.info(
                "issuance.role_changed", account=account, granted=grant, transaction_hash=r.transaction_hash
            )
        )

    # ═══════════════════════ Shared guards & helpers ═══════════════════════

    async def _resolve_issuer(self, email: str) -> Result[IssuerAccount]:
        found = await self._store.find_issuer_by_email(email)
        if found.is_failure():
            if found.error().code is ErrorCode.NOT_FOUND:
                return _fail(ErrorCode.AUTHORIZATION_ERROR, messages.ISSUER_NOT_FOUND, {"email": email})
            return found
        return (
            found.ensure(
                lambda account: account.is_active,
                ErrorCode.AUTHORIZATION_ERROR,
                messages.ISSUER_INACTIVE,
            ).ensure(
                lambda account: self._ledger.is_valid_account(account.issuer_id),
                ErrorCode.AUTHORIZATION_ERROR,
                messages.INVALID_ISSUER_ADDRESS,
            )
        )

    async def _ensure_ledger_ready(self, account: IssuerAccount) -> Result[IssuerAccount]:
        paused = await self._ledger.is_paused()
        if paused.is_failure():
            return paused
        if paused.value():
            return _fail(ErrorCode.SERVICE_UNAVAILABLE_ERROR, messages.LEDGER_PAUSED)
        authorized = await self._ledger.has_role(self._policy.issuer_role, account.issuer_id)
        if authorized.is_failure():
            return authorized
        if not authorized.value():
            return _fail(
                ErrorCode.AUTHORIZATION_ERROR,
                messages.MISSING_ISSUER_ROLE,
                {"issuer_id": account.issuer_id},
            )
        return Result.success(account)

    async def _ledger_status(self, record: Certificate) -> Result[CertificateStatus]:
        """On-chain status of a certificate; batch members also need a valid root."""
        match record:
            case BatchCertificate():
                root = await self._verified_root(record.batch_id)
                if root.is_failure():
                    return root
                return await self._ledger.get_batch_member_status(record.encoded_proof)
            case _:
                return await self._ledger.get_status(record.certificate_number)

    async def _store_short_url(
        self, email: str, certificate: Certificate, receipt: LedgerReceipt
    ) -> Result[str]:
        record = self._short_url_record(certificate, receipt)
        return await self._store.upsert_short_url(email, record.certificate_number, record.url)

    def _short_url_record(self, certificate: Certificate, receipt: LedgerReceipt) -> ShortUrlRecord:
        claim = CertificateClaim(
            certificate_number=certificate.certificate_number,
            name=certificate.name,
            course=certificate.course,
            grant_date=certificate.grant_date,
            expiration_date=certificate.expiration_date,
            ledger_link=receipt.explorer_link,
        )
        return ShortUrlRecord(certificate.certificate_number, self._cipher.encrypted_url(claim))

    async def _mirror(
        self, receipt: LedgerReceipt, certificate_numbers: Sequence[str], *steps: MirrorStep
    ) -> Result[LedgerReceipt]:
        """Run mirror writes in order; the first failure stops the sequence."""
        for step in steps:
            outcome = await step()
            if outcome.is_failure():
                error = outcome.error()
                log.error(
                    "issuance.mirror_write_failed",
                    certificate_numbers=list(certificate_numbers),
                    transaction_hash=receipt.transaction_hash,
                    reason=error.message,
                )
                return Result.failure(
                    ErrorCode.DATABASE_ERROR,
                    messages.MIRROR_WRITE_FAILED,
                    error.exception,
                    details={
                        "certificate_numbers": list(certificate_numbers),
                        "transaction_hash": receipt.transaction_hash,
                        "explorer_link": receipt.explorer_link,
                        "cause": error.message,
                    },
                )
        return Result.success(receipt)

    def _log_entry(
        self,
        account: IssuerAccount,
        certificate: Certificate,
        status: CertificateStatus,
        receipt: LedgerReceipt,
    ) -> StatusLogEntry:
        return StatusLogEntry(
            email=account.email,
            issuer_id=account.issuer_id,
            batch_id=certificate.batch_id if isinstance(certificate, BatchCertificate) else None,
            transaction_hash=receipt.transaction_hash,
            certificate_number=certificate.certificate_number,
            cert_status=status,
            expiration_date=dates.status_log_expiration(certificate.expiration_date),
            last_update=self._clock(),
        )

    def _today(self) -> date:
        return self._clock().date()

    def _now_epoch(self) -> int:
        return int(self._clock().timestamp())
