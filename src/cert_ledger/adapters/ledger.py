"""
Ledger gateway — the certificate smart contract via web3.py.

Adapter layer — implements the CertificateLedger port with AsyncWeb3.

Transactions are built, signed locally with the operator key and sent raw:

  1. nonce = pending transaction count of the operator account
  2. build_transaction → sign_transaction → send_raw_transaction
  3. wait_for_transaction_receipt, then link = {explorer_url}/tx/{hash}

Retry: only transient timeouts (TimeoutError, web3 TimeExhausted) are
retried, a fixed number of times with a fixed delay, via tenacity. When
the retries run out the call fails with TIMEOUT_ERROR. Anything else
(revert, nonce conflict, bad signature, RPC error) fails immediately with
EXTERNAL_SERVICE_ERROR. No exception leaves this module.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import structlog
from eth_utils import to_bytes
from railway import ErrorCode
from railway.result import Result
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted

from cert_ledger.domain import messages
from cert_ledger.domain.models import (
    BatchRootView,
    CertificateStatus,
    LedgerCertificateView,
    LedgerReceipt,
)

log = structlog.get_logger()

T = TypeVar("T")

TRANSIENT_ERRORS = (TimeoutError, TimeExhausted)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """``attempts`` retries after the first try, ``delay_seconds`` apart."""

    attempts: int = 3
    delay_seconds: float = 2.0


def load_abi(path: Path) -> list[dict[str, Any]]:
    """Read a contract ABI; accepts a bare ABI list or a compiler artifact with an ``abi`` key."""
    document = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(document, dict):
        return document["abi"]
    return document


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    log.warning("ledger.retrying", attempt=state.attempt_number, error=str(error))


def _status(value: int) -> CertificateStatus:
    return CertificateStatus(int(value))


class Web3LedgerGateway:
    """
    Certificate contract client.

    Implements the CertificateLedger port. ``contract`` and ``w3`` are
    injectable for tests; ``from_settings`` builds them from configuration.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract: Any,
        private_key: str,
        explorer_url: str,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._w3 = w3
        self._contract = contract
        self._private_key = private_key
        self._account = w3.eth.account.from_key(private_key)
        self._explorer_url = explorer_url.rstrip("/")
        self._retry = retry or RetryPolicy()

    @classmethod
    def from_settings(
        cls,
        rpc_url: str,
        contract_address: str,
        abi_path: Path,
        private_key: str,
        explorer_url: str,
        retry: RetryPolicy | None = None,
        timeout: int = 30,
    ) -> Web3LedgerGateway:
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=load_abi(abi_path)
        )
        return cls(w3, contract, private_key, explorer_url, retry)

    # ─────────────────────── Mutations ───────────────────────

    async def issue_single(
        self, certificate_number: str, certificate_hash: str, expiration_epoch: int
    ) -> Result[LedgerReceipt]:
        return await self._transact(
            "issueCertificate", certificate_number, certificate_hash, expiration_epoch
        )

    async def issue_batch(self, merkle_root: bytes, expiration_epoch: int) -> Result[LedgerReceipt]:
        return await self._transact("issueBatchOfCertificates", merkle_root, expiration_epoch)

    async def update_single_status(
        self, certificate_number: str, status: CertificateStatus
    ) -> Result[LedgerReceipt]:
        return await self._transact("updateSingleCertificateStatus", certificate_number, int(status))

    async def update_in_batch_status(
        self, encoded_proof: str, status: CertificateStatus
    ) -> Result[LedgerReceipt]:
        return await self._transact(
            "updateCertificateInBatchStatus", to_bytes(hexstr=encoded_proof), int(status)
        )

    async def update_batch_status(
        self, batch_index: int, status: CertificateStatus
    ) -> Result[LedgerReceipt]:
        return await self._transact("updateBatchCertificateStatus", batch_index, int(status))

    async def renew_single(
        self, certificate_number: str, certificate_hash: str, expiration_epoch: int
    ) -> Result[LedgerReceipt]:
        return await self._transact(
            "renewCertificate", certificate_number, certificate_hash, expiration_epoch
        )

    async def renew_in_batch(
        self, batch_index: int, encoded_proof: str, expiration_epoch: int
    ) -> Result[LedgerReceipt]:
        return await self._transact(
            "renewCertificateInBatch", batch_index, to_bytes(hexstr=encoded_proof), expiration_epoch
        )

    async def renew_batch_expiration(
        self, batch_index: int, expiration_epoch: int
    ) -> Result[LedgerReceipt]:
        return await self._transact("renewBatchOfCertificates", batch_index, expiration_epoch)

    async def grant_role(self, role: str, account: str) -> Result[LedgerReceipt]:
        return await self._transact("grantRole", to_bytes(hexstr=role), Web3.to_checksum_address(account))

    async def revoke_role(self, role: str, account: str) -> Result[LedgerReceipt]:
        return await self._transact("revokeRole", to_bytes(hexstr=role), Web3.to_checksum_address(account))

    # ─────────────────────── Reads ───────────────────────

    async def verify_by_id(self, certificate_number: str) -> Result[LedgerCertificateView]:
        raw = await self._read("verifyCertificateById", certificate_number)
        return raw.map(
            lambda r: LedgerCertificateView(
                exists=bool(r[0]), expiration_epoch=int(r[1]), status=_status(r[3])
            )
        )

    async def get_status(self, certificate_number: str) -> Result[CertificateStatus]:
        return (await self._read("getCertificateStatus", certificate_number)).map(_status)

    async def verify_batch_root(self, batch_index: int) -> Result[BatchRootView]:
        raw = await self._read("verifyBatchRoot", batch_index)
        return raw.map(
            lambda r: BatchRootView(exists=bool(r[0]), expiration_epoch=int(r[1]), status=_status(r[2]))
        )

    async def verify_batch_membership(
        self, batch_index: int, leaf_hash: str, proof: Sequence[str]
    ) -> Result[bool]:
        raw = await self._read(
            "verifyBatchCertification",
            batch_index,
            leaf_hash,
            [to_bytes(hexstr=sibling) for sibling in proof],
        )
        return raw.map(bool)

    async def get_batch_member_status(self, encoded_proof: str) -> Result[CertificateStatus]:
        raw = await self._read("getBatchCertificateStatus", to_bytes(hexstr=encoded_proof))
        return raw.map(_status)

    async def has_role(self, role: str, account: str) -> Result[bool]:
        raw = await self._read("hasRole", to_bytes(hexstr=role), Web3.to_checksum_address(account))
        return raw.map(bool)

    async def is_paused(self) -> Result[bool]:
        return (await self._read("paused")).map(bool)

    async def get_batch_count(self) -> Result[int]:
        return (await self._read("getRootLength")).map(int)

    def is_valid_account(self, account: str) -> bool:
        return bool(account) and Web3.is_address(account)

    # ─────────────────────── Plumbing ───────────────────────

    async def _read(self, function: str, *args: Any) -> Result[Any]:
        return await self._guarded(
            lambda: self._contract.functions[function](*args).call(),
            function,
            messages.LEDGER_READ_FAILED,
        )

    async def _transact(self, function: str, *args: Any) -> Result[LedgerReceipt]:
        sent = await self._guarded(
            lambda: self._send(function, *args), function, messages.LEDGER_REJECTED
        )
        return sent.flat_map(self._receipt)

    async def _send(self, function: str, *args: Any) -> str:
        nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
        transaction = await self._contract.functions[function](*args).build_transaction(
            {"from": self._account.address, "nonce": nonce}
        )
        signed = self._w3.eth.account.sign_transaction(transaction, private_key=self._private_key)
        tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            raise RuntimeError(f"{function} reverted in transaction {Web3.to_hex(tx_hash)}")
        transaction_hash = Web3.to_hex(tx_hash)
        log.info("ledger.transaction_sent", function=function, transaction_hash=transaction_hash)
        return transaction_hash

    def _receipt(self, transaction_hash: str) -> Result[LedgerReceipt]:
        if not transaction_hash:
            return Result.failure(ErrorCode.EXTERNAL_SERVICE_ERROR, messages.LEDGER_NO_LINK)
        return Result.success(
            LedgerReceipt(
                transaction_hash=transaction_hash,
                explorer_link=f"{self._explorer_url}/tx/{transaction_hash}",
            )
        )

    async def _guarded(
        self, call: Callable[[], Awaitable[T]], function: str, failure_message: str
    ) -> Result[T]:
        """Run ``call`` with bounded retry on timeouts; map exceptions to Result failures."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._retry.attempts + 1),
                wait=wait_fixed(self._retry.delay_seconds),
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    value = await call()
            return Result.success(value)
        except TRANSIENT_ERRORS as e:
            log.error("ledger.timeout", function=function, attempts=self._retry.attempts + 1)
            return Result.failure(
                ErrorCode.TIMEOUT_ERROR, messages.LEDGER_TIMEOUT, e, details={"function": function}
            )
        except Exception as e:
            log.error("ledger.call_failed", function=function, error=str(e))
            return Result.failure(
                ErrorCode.EXTERNAL_SERVICE_ERROR, failure_message, e, details={"function": function}
            )
