"""
Encrypted verification URLs — AES-256-CBC via cryptography.

Adapter layer — implements the ClaimCipher port.

  key       = SHA-256(secret)                      (32 bytes)
  plaintext = compact JSON of the claim fields
  URL       = {verify_base_url}?q=<hex ciphertext>&iv=<hex iv>

The IV is random per URL, so encrypting the same claim twice yields
different URLs. Short URLs are ``{short_url_base}{certificate_number}``.
"""

from __future__ import annotations

import hashlib
import json
import os
from urllib.parse import parse_qs, urlencode, urlsplit

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from railway import ErrorCode
from railway.result import Result

from cert_ledger.domain import messages
from cert_ledger.domain.models import CertificateClaim

_BLOCK_BITS = algorithms.AES.block_size


def _claim_to_json(claim: CertificateClaim) -> str:
    return json.dumps(
        {
            "Certificate_Number": claim.certificate_number,
            "name": claim.name,
            "courseName": claim.course,
            "Grant_Date": claim.grant_date,
            "Expiration_Date": claim.expiration_date,
            "polygonLink": claim.ledger_link,
        },
        separators=(",", ":"),
    )


def _claim_from_json(text: str) -> CertificateClaim:
    data = json.loads(text)
    number = str(data["Certificate_Number"]).strip()
    if not number:
        raise ValueError("Certificate_Number is empty")
    return CertificateClaim(
        certificate_number=number,
        name=data.get("name"),
        course=data.get("courseName"),
        grant_date=data.get("Grant_Date"),
        expiration_date=data.get("Expiration_Date"),
        ledger_link=data.get("polygonLink"),
    )


class AesClaimCipher:
    """Implements the ClaimCipher port."""

    def __init__(
        self,
        secret: str,
        verify_base_url: str,
        short_url_base: str,
        max_short_url_length: int = 50,
    ) -> None:
        self._key = hashlib.sha256(secret.encode("utf-8")).digest()
        self._verify_base_url = verify_base_url
        self._short_url_base = short_url_base
        self._max_short_url_length = max_short_url_length

    def encrypted_url(self, claim: CertificateClaim) -> str:
        iv = os.urandom(16)
        padder = padding.PKCS7(_BLOCK_BITS).padder()
        plaintext = padder.update(_claim_to_json(claim).encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(plaintext) + encryptor.finalize()
        return f"{self._verify_base_url}?{urlencode({'q': ciphertext.hex(), 'iv': iv.hex()})}"

    def short_url(self, certificate_number: str) -> str:
        return f"{self._short_url_base}{certificate_number}"

    def short_url_number(self, url: str) -> str | None:
        if len(url) > self._max_short_url_length or not url.startswith(self._short_url_base):
            return None
        number = url[len(self._short_url_base):].strip("/")
        return number or None

    def decrypt_url(self, url: str) -> Result[CertificateClaim]:
        query = parse_qs(urlsplit(url).query)
        data, iv = query.get("q", [""])[0], query.get("iv", [""])[0]
        if not data or not iv:
            return Result.failure(
                ErrorCode.VALIDATION_ERROR, messages.INVALID_VERIFICATION_INPUT, details={"url": url}
            )
        return self.decrypt(data, iv)

    def decrypt(self, data: str, iv: str) -> Result[CertificateClaim]:
        return Result.from_computation(
            lambda: _claim_from_json(self._decrypt_text(data, iv)),
            ErrorCode.VALIDATION_ERROR,
            messages.INVALID_VERIFICATION_INPUT,
        )

    def _decrypt_text(self, data: str, iv: str) -> str:
        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(bytes.fromhex(iv))).decryptor()
        padded = decryptor.update(bytes.fromhex(data)) + decryptor.finalize()
        unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
        return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
