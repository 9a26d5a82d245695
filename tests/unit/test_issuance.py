"""
Unit tests for the issuance service — issue, renew, revoke/reactivate, roles.

Uses the in-memory mirror store and a mock ledger. The clock is frozen at
2025-06-01, so with the default 32-day window the earliest acceptable
expiration is 07/03/2025.

Test categories:
  - Success track: ledger called once, mirror record + status log + counters + short URL
  - Guards: each rejection happens before any mutating ledger call
  - Partial failure: ledger succeeded, mirror write failed → DATABASE_ERROR with tx hash
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fakes import (
    ISSUER,
    RECEIPT,
    InMemoryCertificateStore,
    StaticBatchReader,
    batch_certificate,
    mutation_calls,
    single_certificate,
)
from railway import ErrorCode, Result, ResultAssertions

from cert_ledger.adapters.url_cipher import AesClaimCipher
from cert_ledger.config import DEFAULT_ISSUER_ROLE
from cert_ledger.domain import commitment, dates, messages
from cert_ledger.domain.issuance import IssuanceService
from cert_ledger.domain.models import (
    NEVER_EXPIRES,
    BatchCertificate,
    BatchRootView,
    BatchSheet,
    CertificateDraft,
    CertificateStatus,
    LedgerCertificateView,
)

EMAIL = ISSUER.email
BATCH_FILE = Path("batch.xlsx")
OTHER_ACCOUNT = "0x" + "cd" * 20


def _draft(**overrides: str) -> CertificateDraft:
    fields = {
        "certificate_number": "CERT2025000001",
        "name": "Ada Lovelace",
        "course": "Analytical Engines",
        "grant_date": "1/15/2025",
        "expiration_date": "01/15/2027",
    }
    fields.update(overrides)
    return CertificateDraft(**fields)


def _batch_members(batch_id: int = 1, count: int = 3) -> list[BatchCertificate]:
    return [
        batch_certificate(
            certificate_number=f"BATCH202500000{i + 1}",
            batch_id=batch_id,
            leaf_index=i,
            encoded_proof="0x" + f"{i + 1:02d}" * 32,
        )
        for i in range(count)
    ]


def _root(epoch: int, status: CertificateStatus = CertificateStatus.ISSUED) -> Result:
    return Result.success(BatchRootView(exists=True, expiration_epoch=epoch, status=status))


# ─────────────────────── Single issuance ───────────────────────


class TestIssueSingleSuccess:
    """
    GIVEN an active issuer, an unused number and a ready ledger
    WHEN issue_single is awaited
    THEN the certificate is anchored once and mirrored with log, counters and short URL.
    """

    async def test_anchors_normalized_certificate(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        outcome = ResultAssertions.assert_success(await issuance.issue_single(EMAIL, _draft()))

        expected = _draft(grant_date="01/15/2025")
        assert outcome.certificate.grant_date == "01/15/2025"
        assert outcome.certificate.certificate_hash == commitment.hash_certificate(expected)
        ledger.issue_single.assert_awaited_once_with(
            "CERT2025000001", commitment.hash_certificate(expected), dates.to_epoch("01/15/2027")
        )

    async def test_mirrors_record_log_counters_and_short_url(
        self,
        issuance: IssuanceService,
        store: InMemoryCertificateStore,
        cipher: AesClaimCipher,
    ) -> None:
        outcome = ResultAssertions.assert_success(await issuance.issue_single(EMAIL, _draft()))

        assert store.certificates["CERT2025000001"].transaction_hash == RECEIPT.transaction_hash
        [entry] = store.status_log
        assert entry.cert_status is CertificateStatus.ISSUED
        assert entry.expiration_date == "2027-01-15T00:00:00+00:00"
        assert entry.batch_id is None
        assert store.issuers[EMAIL].certificates_issued == 1
        claim = ResultAssertions.assert_success(cipher.decrypt_url(store.short_urls["CERT2025000001"]))
        assert claim.ledger_link == RECEIPT.explorer_link
        assert outcome.short_url == cipher.short_url("CERT2025000001")

    async def test_never_expiring_certificate_uses_epoch_one(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        ResultAssertions.assert_success(
            await issuance.issue_single(EMAIL, _draft(expiration_date=NEVER_EXPIRES))
        )

        assert ledger.issue_single.await_args.args[2] == 1


class TestIssueSingleGuards:
    """
    GIVEN a request that violates an issuance rule
    WHEN issue_single is awaited
    THEN it fails with the specific error and the ledger is never mutated.
    """

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"name": "  "}, messages.MISSING_FIELDS),
            ({"certificate_number": "CERT1"}, messages.INVALID_CERTIFICATE_NUMBER),
            ({"grant_date": "02/30/2025"}, messages.INVALID_DATE_FORMAT),
            ({"grant_date": NEVER_EXPIRES}, messages.INVALID_DATE_FORMAT),
            ({"grant_date": "01/15/2027"}, messages.DATES_SAME),
            ({"grant_date": "01/15/2028"}, messages.GRANT_AFTER_EXPIRATION),
            ({"expiration_date": "06/15/2025"}, messages.EXPIRATION_TOO_SOON),
        ],
    )
    async def test_invalid_drafts_never_reach_the_ledger(
        self,
        issuance: IssuanceService,
        ledger: MagicMock,
        overrides: dict[str, str],
        message: str,
    ) -> None:
        result = await issuance.issue_single(EMAIL, _draft(**overrides))

        error = ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)
        assert error.message == message
        ledger.is_paused.assert_not_awaited()

    async def test_unknown_issuer(self, issuance: IssuanceService) -> None:
        result = await issuance.issue_single("nobody@example.com", _draft())

        ResultAssertions.assert_failure(result, ErrorCode.AUTHORIZATION_ERROR)
        ResultAssertions.assert_failure_message_contains(result, messages.ISSUER_NOT_FOUND)

    async def test_inactive_issuer(
        self, issuance: IssuanceService, store: InMemoryCertificateStore
    ) -> None:
        store.issuers[EMAIL] = replace(ISSUER, status=0)

        result = await issuance.issue_single(EMAIL, _draft())

        ResultAssertions.assert_failure(result, ErrorCode.AUTHORIZATION_ERROR)
        ResultAssertions.assert_failure_message_contains(result, messages.ISSUER_INACTIVE)

    async def test_issuer_with_invalid_ledger_address(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        ledger.is_valid_account.return_value = False

        result = await issuance.issue_single(EMAIL, _draft())

        ResultAssertions.assert_failure_message_contains(result, messages.INVALID_ISSUER_ADDRESS)

    async def test_number_already_in_mirror(
        self, issuance: IssuanceService, store: InMemoryCertificateStore, ledger: MagicMock
    ) -> None:
        store.add(batch_certificate(certificate_number="CERT2025000001"))

        result = await issuance.issue_single(EMAIL, _draft())

        error = ResultAssertions.assert_failure(result, ErrorCode.BUSINESS_RULE_ERROR)
        assert error.message == messages.CERTIFICATE_NUMBER_USED
        assert error.details == {
            "certificate_number": "CERT2025000001",
            "expiration_date": "01/01/2027",
            "status": "Issued",
        }
        assert mutation_calls(ledger) == 0

    async def test_paused_ledger(self, issuance: IssuanceService, ledger: MagicMock) -> None:
        ledger.is_paused.return_value = Result.success(True)

        result = await issuance.issue_single(EMAIL, _draft())

        ResultAssertions.assert_failure(result, ErrorCode.SERVICE_UNAVAILABLE_ERROR)
        assert mutation_calls(ledger) == 0

    async def test_issuer_without_role(self, issuance: IssuanceService, ledger: MagicMock) -> None:
        ledger.has_role.return_value = Result.success(False)

        result = await issuance.issue_single(EMAIL, _draft())

        ResultAssertions.assert_failure(result, ErrorCode.AUTHORIZATION_ERROR)
        ResultAssertions.assert_failure_message_contains(result, messages.MISSING_ISSUER_ROLE)
        ledger.has_role.assert_awaited_once_with(DEFAULT_ISSUER_ROLE, ISSUER.issuer_id)

    async def test_number_already_on_ledger(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        ledger.verify_by_id.return_value = Result.success(
            LedgerCertificateView(exists=True, expiration_epoch=1, status=CertificateStatus.ISSUED)
        )

        result = await issuance.issue_single(EMAIL, _draft())

        ResultAssertions.assert_failure_message_contains(result, messages.ALREADY_ON_LEDGER)
        assert mutation_calls(ledger) == 0


class TestIssueSingleFailures:
    """
    GIVEN the ledger or the mirror store fails
    WHEN issue_single is awaited
    THEN ledger failures leave the mirror untouched and mirror failures carry the tx hash.
    """

    async def test_ledger_rejection_writes_nothing(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        ledger.issue_single.return_value = Result.failure(
            ErrorCode.EXTERNAL_SERVICE_ERROR, messages.LEDGER_REJECTED
        )

        result = await issuance.issue_single(EMAIL, _draft())

        ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        assert store.certificates == {}
        assert store.status_log == []

    async def test_mirror_failure_reports_transaction(
        self, issuance: IssuanceService, store: InMemoryCertificateStore
    ) -> None:
        store.fail_on.add("append_status_log")

        result = await issuance.issue_single(EMAIL, _draft())

        error = ResultAssertions.assert_failure(result, ErrorCode.DATABASE_ERROR)
        assert error.message == messages.MIRROR_WRITE_FAILED
        assert error.details["transaction_hash"] == RECEIPT.transaction_hash
        assert error.details["certificate_numbers"] == ["CERT2025000001"]
        assert "CERT2025000001" in store.certificates
        assert store.issuers[EMAIL].certificates_issued == 0

    async def test_mirror_failure_logs_no_success_event(
        self,
        issuance: IssuanceService,
        store: InMemoryCertificateStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        events = MagicMock()
        monkeypatch.setattr("cert_ledger.domain.issuance.log", events)
        store.fail_on.add("increment_issuer_counters")

        await issuance.issue_single(EMAIL, _draft())

        info_events = [c.args[0] for c in events.info.call_args_list]
        error_events = [c.args[0] for c in events.error.call_args_list]
        assert "issuance.single_issued" not in info_events
        assert "issuance.mirror_write_failed" in error_events


# ─────────────────────── Batch issuance ───────────────────────


class TestIssueBatch:
    """
    GIVEN a valid three-row batch workbook
    WHEN issue_batch is awaited
    THEN one root is anchored and every row is mirrored with a verifying proof.
    """

    async def test_anchors_one_root_with_common_expiration(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        outcome = ResultAssertions.assert_success(await issuance.issue_batch(EMAIL, BATCH_FILE))

        assert outcome.batch_id == 1
        assert outcome.row_count == 3
        ledger.issue_batch.assert_awaited_once_with(
            bytes.fromhex(outcome.merkle_root[2:]), dates.to_epoch("01/01/2027")
        )

    async def test_every_row_proof_verifies_against_the_root(
        self, issuance: IssuanceService
    ) -> None:
        outcome = ResultAssertions.assert_success(await issuance.issue_batch(EMAIL, BATCH_FILE))
        root = bytes.fromhex(outcome.merkle_root[2:])

        for certificate in outcome.certificates:
            assert commitment.verify_membership(
                root, certificate.certificate_hash, certificate.proof_hash
            )
        assert [c.leaf_index for c in outcome.certificates] == [0, 1, 2]

    async def test_mirrors_every_row(
        self, issuance: IssuanceService, store: InMemoryCertificateStore
    ) -> None:
        ResultAssertions.assert_success(await issuance.issue_batch(EMAIL, BATCH_FILE))

        assert len(store.certificates) == 3
        assert len(store.status_log) == 3
        assert {entry.batch_id for entry in store.status_log} == {1}
        assert len(store.short_urls) == 3
        assert store.issuers[EMAIL].certificates_issued == 3

    async def test_batch_id_follows_ledger_root_count(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        ledger.get_batch_count.return_value = Result.success(4)

        outcome = ResultAssertions.assert_success(await issuance.issue_batch(EMAIL, BATCH_FILE))

        assert outcome.batch_id == 5
        assert {c.batch_id for c in outcome.certificates} == {5}

    async def test_mixed_expirations_anchor_epoch_zero(
        self, issuance: IssuanceService, ledger: MagicMock, batch_reader: StaticBatchReader
    ) -> None:
        header = batch_reader.sheet.header
        batch_reader.sheet = BatchSheet(
            sheet_names=("Batch",),
            header=header,
            rows=(
                ("BATCH2025000001", "Grace Hopper", "Compilers", "01/01/2025", "01/01/2027"),
                ("BATCH2025000002", "Alan Turing", "Compilers", "01/01/2025", None),
            ),
        )

        ResultAssertions.assert_success(await issuance.issue_batch(EMAIL, BATCH_FILE))

        assert ledger.issue_batch.await_args.args[1] == 0

    async def test_rejected_batch_never_reaches_the_ledger(
        self,
        issuance: IssuanceService,
        ledger: MagicMock,
        store: InMemoryCertificateStore,
    ) -> None:
        store.add(single_certificate(certificate_number="BATCH2025000002"))

        result = await issuance.issue_batch(EMAIL, BATCH_FILE)

        ResultAssertions.assert_failure_message_contains(result, messages.IDS_ALREADY_ISSUED)
        ledger.is_paused.assert_not_awaited()
        assert mutation_calls(ledger) == 0

    async def test_mirror_failure_lists_every_row(
        self, issuance: IssuanceService, store: InMemoryCertificateStore
    ) -> None:
        store.fail_on.add("insert_batch")

        result = await issuance.issue_batch(EMAIL, BATCH_FILE)

        error = ResultAssertions.assert_failure(result, ErrorCode.DATABASE_ERROR)
        assert error.details["certificate_numbers"] == [
            "BATCH2025000001",
            "BATCH2025000002",
            "BATCH2025000003",
        ]

    async def test_mirror_conflict_leaves_no_partial_rows(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        original_insert = store.insert_batch

        async def conflicting_insert(*args: object) -> Result:
            # A concurrent writer mirrors the third row between the guard and the write.
            store.add(single_certificate(certificate_number="BATCH2025000003"))
            return await original_insert(*args)

        store.insert_batch = conflicting_insert  # type: ignore[method-assign]

        result = await issuance.issue_batch(EMAIL, BATCH_FILE)

        ResultAssertions.assert_failure(result, ErrorCode.DATABASE_ERROR)
        ledger.issue_batch.assert_awaited_once()
        assert set(store.certificates) == {"BATCH2025000003"}
        assert store.status_log == []
        assert store.short_urls == {}
        assert store.issuers[EMAIL].certificates_issued == 0


# ─────────────────────── Renewal ───────────────────────


class TestRenew:
    """
    GIVEN a mirrored certificate with a finite expiration
    WHEN renew is awaited with a later date
    THEN the ledger entry is renewed and the mirror records the new expiration.
    """

    async def test_renews_single_certificate_with_new_hash(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        record = single_certificate()
        store.add(record)

        outcome = ResultAssertions.assert_success(
            await issuance.renew(EMAIL, record.certificate_number, "01/15/2028")
        )

        new_hash = commitment.hash_certificate(
            CertificateDraft(
                certificate_number=record.certificate_number,
                name=record.name,
                course=record.course,
                grant_date=record.grant_date,
                expiration_date="01/15/2028",
            )
        )
        ledger.renew_single.assert_awaited_once_with(
            record.certificate_number, new_hash, dates.to_epoch("01/15/2028")
        )
        mirrored = store.certificates[record.certificate_number]
        assert mirrored.expiration_date == "01/15/2028"
        assert mirrored.certificate_status is CertificateStatus.RENEWED
        assert mirrored.certificate_hash == new_hash
        assert outcome.status is CertificateStatus.RENEWED
        assert store.status_log[-1].cert_status is CertificateStatus.RENEWED
        assert store.issuers[EMAIL].certificates_renewed == 1

    async def test_renews_batch_member_by_encoded_proof(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        record = batch_certificate()
        store.add(record)
        ledger.get_batch_count.return_value = Result.success(1)

        ResultAssertions.assert_success(
            await issuance.renew(EMAIL, record.certificate_number, "01/01/2028")
        )

        ledger.renew_in_batch.assert_awaited_once_with(
            0, record.encoded_proof, dates.to_epoch("01/01/2028")
        )
        mirrored = store.certificates[record.certificate_number]
        assert mirrored.certificate_hash == record.certificate_hash
        assert store.status_log[-1].batch_id == 1

    @pytest.mark.parametrize(
        ("record", "new_date", "message"),
        [
            (
                single_certificate(expiration_date=NEVER_EXPIRES),
                "01/15/2028",
                messages.RENEWAL_NOT_POSSIBLE_INFINITE,
            ),
            (
                single_certificate(certificate_status=CertificateStatus.REVOKED),
                "01/15/2028",
                messages.RENEWAL_NOT_POSSIBLE_REVOKED,
            ),
            (single_certificate(), "01/15/2027", messages.RENEWAL_NOT_LATER),
        ],
    )
    async def test_mirror_state_rejections(
        self,
        issuance: IssuanceService,
        ledger: MagicMock,
        store: InMemoryCertificateStore,
        record: object,
        new_date: str,
        message: str,
    ) -> None:
        store.add(record)

        result = await issuance.renew(EMAIL, "CERT2025000001", new_date)

        error = ResultAssertions.assert_failure(result, ErrorCode.BUSINESS_RULE_ERROR)
        assert error.message == message
        ledger.is_paused.assert_not_awaited()

    async def test_revoked_on_ledger(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        store.add(single_certificate())
        ledger.get_status.return_value = Result.success(CertificateStatus.REVOKED)

        result = await issuance.renew(EMAIL, "CERT2025000001", "01/15/2028")

        ResultAssertions.assert_failure_message_contains(result, messages.RENEWAL_NOT_POSSIBLE_REVOKED)
        assert mutation_calls(ledger) == 0

    @pytest.mark.parametrize(
        ("new_date", "message"),
        [("13/45/2027", messages.INVALID_DATE_FORMAT), ("06/20/2025", messages.EXPIRATION_TOO_SOON)],
    )
    async def test_invalid_new_expiration(
        self,
        issuance: IssuanceService,
        store: InMemoryCertificateStore,
        new_date: str,
        message: str,
    ) -> None:
        store.add(single_certificate())

        result = await issuance.renew(EMAIL, "CERT2025000001", new_date)

        ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)
        ResultAssertions.assert_failure_message_contains(result, message)

    async def test_unknown_certificate(self, issuance: IssuanceService) -> None:
        result = await issuance.renew(EMAIL, "CERT2025999999", "01/15/2028")

        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)


# ─────────────────────── Revoke / reactivate ───────────────────────


class TestUpdateStatus:
    """
    GIVEN mirrored certificates in various states
    WHEN revoke or reactivate is awaited
    THEN only legal transitions reach the ledger.
    """

    async def test_revokes_single_certificate(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        store.add(single_certificate())

        outcome = ResultAssertions.assert_success(await issuance.revoke(EMAIL, "CERT2025000001"))

        ledger.update_single_status.assert_awaited_once_with(
            "CERT2025000001", CertificateStatus.REVOKED
        )
        assert outcome.status is CertificateStatus.REVOKED
        assert store.certificates["CERT2025000001"].certificate_status is CertificateStatus.REVOKED
        assert store.status_log[-1].cert_status is CertificateStatus.REVOKED

    async def test_revokes_batch_member_by_encoded_proof(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        record = batch_certificate()
        store.add(record)
        ledger.get_batch_count.return_value = Result.success(1)

        ResultAssertions.assert_success(await issuance.revoke(EMAIL, record.certificate_number))

        ledger.update_in_batch_status.assert_awaited_once_with(
            record.encoded_proof, CertificateStatus.REVOKED
        )

    async def test_revoking_an_expired_certificate_is_allowed(
        self, issuance: IssuanceService, store: InMemoryCertificateStore
    ) -> None:
        store.add(single_certificate(expiration_date="05/01/2025"))

        ResultAssertions.assert_success(await issuance.revoke(EMAIL, "CERT2025000001"))

    async def test_reactivates_revoked_certificate(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        store.add(single_certificate(certificate_status=CertificateStatus.REVOKED))
        ledger.get_status.return_value = Result.success(CertificateStatus.REVOKED)

        outcome = ResultAssertions.assert_success(
            await issuance.reactivate(EMAIL, "CERT2025000001")
        )

        assert outcome.status is CertificateStatus.REACTIVATED

    async def test_reactivating_a_non_revoked_certificate_makes_no_ledger_call(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        store.add(single_certificate())

        result = await issuance.reactivate(EMAIL, "CERT2025000001")

        ResultAssertions.assert_failure(result, ErrorCode.BUSINESS_RULE_ERROR)
        ResultAssertions.assert_failure_message_contains(result, messages.REACTIVATION_NOT_POSSIBLE)
        ledger.is_paused.assert_not_awaited()
        assert mutation_calls(ledger) == 0

    async def test_reactivating_an_expired_certificate(
        self, issuance: IssuanceService, store: InMemoryCertificateStore
    ) -> None:
        store.add(
            single_certificate(
                certificate_status=CertificateStatus.REVOKED, expiration_date="05/01/2025"
            )
        )

        result = await issuance.reactivate(EMAIL, "CERT2025000001")

        ResultAssertions.assert_failure_message_contains(result, messages.CERTIFICATE_EXPIRED)

    async def test_revoking_twice(
        self, issuance: IssuanceService, store: InMemoryCertificateStore
    ) -> None:
        store.add(single_certificate(certificate_status=CertificateStatus.REVOKED))

        result = await issuance.revoke(EMAIL, "CERT2025000001")

        ResultAssertions.assert_failure_message_contains(result, messages.STATUS_UNCHANGED)

    async def test_ledger_already_in_target_status(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        store.add(single_certificate())
        ledger.get_status.return_value = Result.success(CertificateStatus.REVOKED)

        result = await issuance.revoke(EMAIL, "CERT2025000001")

        ResultAssertions.assert_failure_details_contain(result, "source")
        assert mutation_calls(ledger) == 0

    async def test_unsupported_target_status(self, issuance: IssuanceService) -> None:
        result = await issuance.update_status(EMAIL, "CERT2025000001", CertificateStatus.RENEWED)

        ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)

    async def test_mirror_failure_after_ledger_update(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        store.add(single_certificate())
        store.fail_on.add("update_status")

        result = await issuance.revoke(EMAIL, "CERT2025000001")

        ResultAssertions.assert_failure(result, ErrorCode.DATABASE_ERROR)
        ledger.update_single_status.assert_awaited_once()


# ─────────────────────── Batch-wide operations ───────────────────────


class TestBatchOperations:
    """
    GIVEN a mirrored three-member batch anchored as the first ledger root
    WHEN renew_batch or update_batch_status is awaited
    THEN the root is changed once and every member is mirrored and logged.
    """

    @pytest.fixture(autouse=True)
    def _anchored_batch(self, ledger: MagicMock, store: InMemoryCertificateStore) -> None:
        store.add(*_batch_members())
        ledger.get_batch_count.return_value = Result.success(1)

    async def test_renews_whole_batch(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        outcome = ResultAssertions.assert_success(
            await issuance.renew_batch(EMAIL, 1, "01/01/2028")
        )

        ledger.renew_batch_expiration.assert_awaited_once_with(0, dates.to_epoch("01/01/2028"))
        assert outcome.affected == 3
        assert {c.expiration_date for c in store.certificates.values()} == {"01/01/2028"}
        assert [e.cert_status for e in store.status_log] == [CertificateStatus.RENEWED] * 3
        assert store.issuers[EMAIL].certificates_renewed == 3

    @pytest.mark.parametrize(
        ("root", "message"),
        [
            (_root(1), messages.BATCH_RENEWAL_NOT_POSSIBLE),
            (_root(0), messages.BATCH_PER_ROW_EXPIRATION),
            (_root(1798761600, CertificateStatus.REVOKED), messages.BATCH_REVOKED),
        ],
    )
    async def test_renewal_rejected_by_root_state(
        self, issuance: IssuanceService, ledger: MagicMock, root: Result, message: str
    ) -> None:
        ledger.verify_batch_root.return_value = root

        result = await issuance.renew_batch(EMAIL, 1, "01/01/2028")

        ResultAssertions.assert_failure_message_contains(result, message)
        assert mutation_calls(ledger) == 0

    async def test_renewal_must_extend_root_expiration(
        self, issuance: IssuanceService
    ) -> None:
        result = await issuance.renew_batch(EMAIL, 1, "12/31/2026")

        ResultAssertions.assert_failure_message_contains(result, messages.RENEWAL_NOT_LATER)

    async def test_unknown_batch(self, issuance: IssuanceService) -> None:
        result = await issuance.renew_batch(EMAIL, 7, "01/01/2028")

        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)
        ResultAssertions.assert_failure_message_contains(result, messages.BATCH_NOT_FOUND)

    async def test_mirrored_batch_missing_on_ledger(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        ledger.verify_batch_root.return_value = Result.success(
            BatchRootView(exists=False, expiration_epoch=0, status=CertificateStatus.NOT_ISSUED)
        )

        result = await issuance.update_batch_status(EMAIL, 1, CertificateStatus.REVOKED)

        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)

    async def test_revokes_whole_batch(
        self, issuance: IssuanceService, ledger: MagicMock, store: InMemoryCertificateStore
    ) -> None:
        outcome = ResultAssertions.assert_success(
            await issuance.update_batch_status(EMAIL, 1, CertificateStatus.REVOKED)
        )

        ledger.update_batch_status.assert_awaited_once_with(0, CertificateStatus.REVOKED)
        assert outcome.expiration_date == "01/01/2027"
        assert {c.certificate_status for c in store.certificates.values()} == {
            CertificateStatus.REVOKED
        }
        assert len(store.status_log) == 3
        assert store.issuers[EMAIL].certificates_renewed == 0

    async def test_reactivating_an_active_batch(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        result = await issuance.update_batch_status(EMAIL, 1, CertificateStatus.REACTIVATED)

        ResultAssertions.assert_failure_message_contains(result, messages.REACTIVATION_NOT_POSSIBLE)
        assert mutation_calls(ledger) == 0

    async def test_reactivating_an_expired_batch(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        ledger.verify_batch_root.return_value = _root(
            dates.to_epoch("01/01/2025"), CertificateStatus.REVOKED
        )

        result = await issuance.update_batch_status(EMAIL, 1, CertificateStatus.REACTIVATED)

        ResultAssertions.assert_failure_message_contains(result, messages.BATCH_EXPIRED)

    async def test_reactivating_a_never_expiring_batch(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        ledger.verify_batch_root.return_value = _root(1, CertificateStatus.REVOKED)

        outcome = ResultAssertions.assert_success(
            await issuance.update_batch_status(EMAIL, 1, CertificateStatus.REACTIVATED)
        )

        assert outcome.expiration_date == NEVER_EXPIRES

    async def test_status_change_on_per_row_batch(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        ledger.verify_batch_root.return_value = _root(0)

        result = await issuance.update_batch_status(EMAIL, 1, CertificateStatus.REVOKED)

        ResultAssertions.assert_failure_message_contains(result, messages.BATCH_PER_ROW_EXPIRATION)


# ─────────────────────── Roles & history ───────────────────────


class TestRoles:
    """
    GIVEN an account address
    WHEN the issuer role is granted or revoked
    THEN the ledger is only called when the role actually changes.
    """

    async def test_grants_role(self, issuance: IssuanceService, ledger: MagicMock) -> None:
        ledger.has_role.return_value = Result.success(False)

        ResultAssertions.assert_success_value(
            await issuance.grant_issuer_role(OTHER_ACCOUNT), RECEIPT
        )

        ledger.grant_role.assert_awaited_once_with(DEFAULT_ISSUER_ROLE, OTHER_ACCOUNT)

    async def test_granting_a_held_role(self, issuance: IssuanceService) -> None:
        result = await issuance.grant_issuer_role(OTHER_ACCOUNT)

        ResultAssertions.assert_failure_message_contains(result, messages.ROLE_ALREADY_GRANTED)

    async def test_revoking_a_missing_role(
        self, issuance: IssuanceService, ledger: MagicMock
    ) -> None:
        ledger.has_role.return_value = Result.success(False)

        result = await issuance.revoke_issuer_role(OTHER_ACCOUNT)

        ResultAssertions.assert_failure_message_contains(result, messages.ROLE_NOT_GRANTED)
        ledger.revoke_role.assert_not_awaited()

    async def test_invalid_account(self, issuance: IssuanceService, ledger: MagicMock) -> None:
        ledger.is_valid_account.return_value = False

        result = await issuance.revoke_issuer_role("not-an-address")

        ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)


class TestStatusHistory:
    async def test_lists_issuer_entries_filtered_by_status(
        self, issuance: IssuanceService, store: InMemoryCertificateStore
    ) -> None:
        store.add(single_certificate())
        ResultAssertions.assert_success(await issuance.revoke(EMAIL, "CERT2025000001"))

        revoked = ResultAssertions.assert_success(
            await issuance.status_history(EMAIL, CertificateStatus.REVOKED)
        )
        issued = ResultAssertions.assert_success(
            await issuance.status_history(EMAIL, CertificateStatus.ISSUED)
        )

        assert [e.certificate_number for e in revoked] == ["CERT2025000001"]
        assert issued == []

    async def test_unknown_issuer(self, issuance: IssuanceService) -> None:
        result = await issuance.status_history("nobody@example.com")

        ResultAssertions.assert_failure(result, ErrorCode.AUTHORIZATION_ERROR)
