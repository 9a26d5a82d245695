"""
Unit tests for domain models — value objects.

Verifies frozen dataclass behavior, status labels and the expiry-aware
effective status.
"""

from __future__ import annotations

import dataclasses
from datetime import date

import pytest
from fakes import ISSUER, batch_certificate, single_certificate

from cert_ledger.domain.models import (
    NEVER_EXPIRES,
    CertificateDraft,
    CertificateStatus,
    IssuerAccount,
    effective_status,
)

TODAY = date(2025, 6, 1)


class TestCertificateStatus:
    def test_numeric_codes_are_stable(self) -> None:
        assert [int(s) for s in CertificateStatus] == [0, 1, 2, 3, 4, 5, 6]

    @pytest.mark.parametrize(
        ("status", "label"),
        [
            (CertificateStatus.NOT_ISSUED, "Not Issued"),
            (CertificateStatus.REACTIVATED, "Reactivated"),
            (CertificateStatus.VERIFIED, "Verified"),
        ],
    )
    def test_labels(self, status: CertificateStatus, label: str) -> None:
        assert status.label == label


class TestCertificateRecords:
    """Verify certificate value object behavior."""

    def test_records_are_frozen(self) -> None:
        """
        GIVEN a SingleCertificate
        WHEN an attribute is assigned
        THEN FrozenInstanceError is raised.
        """
        record = single_certificate()
        with pytest.raises(dataclasses.FrozenInstanceError):
            record.name = "Someone Else"  # type: ignore[misc]

    def test_batch_flag(self) -> None:
        assert batch_certificate().is_batch
        assert not single_certificate().is_batch

    def test_draft_defaults_to_never_expires(self) -> None:
        draft = CertificateDraft(
            certificate_number="CERT2025000001",
            name="Ada Lovelace",
            course="Analytical Engines",
            grant_date="01/15/2025",
        )

        assert draft.expiration_date == NEVER_EXPIRES
        assert draft.never_expires


class TestEffectiveStatus:
    """
    GIVEN a stored certificate
    WHEN effective_status is evaluated for a day
    THEN past finite expirations read as EXPIRED unless revoked.
    """

    def test_past_expiration_reads_as_expired(self) -> None:
        record = single_certificate(expiration_date="05/31/2025")

        assert effective_status(record, TODAY) is CertificateStatus.EXPIRED

    def test_expiring_today_is_still_valid(self) -> None:
        record = single_certificate(expiration_date="06/01/2025")

        assert effective_status(record, TODAY) is CertificateStatus.ISSUED

    def test_revoked_stays_revoked(self) -> None:
        record = single_certificate(
            expiration_date="05/31/2025", certificate_status=CertificateStatus.REVOKED
        )

        assert effective_status(record, TODAY) is CertificateStatus.REVOKED

    def test_never_expires(self) -> None:
        record = batch_certificate(
            expiration_date=NEVER_EXPIRES, certificate_status=CertificateStatus.RENEWED
        )

        assert effective_status(record, TODAY) is CertificateStatus.RENEWED


class TestIssuerAccount:
    def test_active_only_when_approved(self) -> None:
        assert ISSUER.is_active
        assert not IssuerAccount(email="x@example.com", issuer_id="0x1", status=0).is_active
