"""
Shared test fixtures for the cert-ledger test suite.

Unit tests wire the domain services against the in-memory store, a mock
ledger, the real AES cipher and a clock frozen at FIXED_NOW.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fakes import (
    BATCH_HEADER,
    SHORT_URL_BASE,
    VERIFY_BASE_URL,
    InMemoryCertificateStore,
    StaticBatchReader,
    fixed_clock,
    make_ledger,
)

from cert_ledger.adapters.url_cipher import AesClaimCipher
from cert_ledger.config import DEFAULT_ISSUER_ROLE
from cert_ledger.domain.ingestion import BatchIngestionPipeline, IngestionRules
from cert_ledger.domain.issuance import IssuancePolicy, IssuanceService
from cert_ledger.domain.models import BatchSheet
from cert_ledger.domain.verification import VerificationEngine


@pytest.fixture()
def store() -> InMemoryCertificateStore:
    return InMemoryCertificateStore()


@pytest.fixture()
def ledger() -> MagicMock:
    return make_ledger()


@pytest.fixture()
def cipher() -> AesClaimCipher:
    return AesClaimCipher(
        secret="test-secret",
        verify_base_url=VERIFY_BASE_URL,
        short_url_base=SHORT_URL_BASE,
    )


@pytest.fixture()
def batch_reader() -> StaticBatchReader:
    """Reader serving a valid three-row batch; tests may swap ``sheet``."""
    return StaticBatchReader(
        BatchSheet(
            sheet_names=("Batch",),
            header=BATCH_HEADER,
            rows=(
                ("BATCH2025000001", "Grace Hopper", "Compilers", "01/01/2025", "01/01/2027"),
                ("BATCH2025000002", "Alan Turing", "Compilers", "01/01/2025", "01/01/2027"),
                ("BATCH2025000003", "Edsger Dijkstra", "Compilers", "01/01/2025", "01/01/2027"),
            ),
        )
    )


@pytest.fixture()
def issuance(
    ledger: MagicMock,
    store: InMemoryCertificateStore,
    cipher: AesClaimCipher,
    batch_reader: StaticBatchReader,
) -> IssuanceService:
    return IssuanceService(
        ledger,
        store,
        cipher,
        BatchIngestionPipeline(batch_reader, store, IngestionRules()),
        IssuancePolicy(issuer_role=DEFAULT_ISSUER_ROLE),
        clock=fixed_clock,
    )


@pytest.fixture()
def verification(
    ledger: MagicMock, store: InMemoryCertificateStore, cipher: AesClaimCipher
) -> VerificationEngine:
    return VerificationEngine(ledger, store, cipher, clock=fixed_clock)
