"""
cert_ledger — blockchain-anchored certificate issuance and verification.

Issues single certificates and spreadsheet batches (one Merkle root per
batch) on a certificate smart contract, mirrors every certificate in
PostgreSQL for fast lookups and bookkeeping, and verifies certificates
against the mirror and the ledger.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
