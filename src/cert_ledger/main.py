"""
Application entry point — wires dependencies and runs one command.

Composition root: creates concrete adapters, injects them into the
issuance and verification services, and dispatches the requested
command line operation.

This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Parse the command line
  2. Load and validate configuration from environment
  3. Configure structlog (logs go to stderr, responses to stdout)
  4. Create concrete adapters (ledger, store, reader, cipher) and services
  5. Run the command and print its response envelope as JSON;
     the process exit code follows the error code
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from railway import Result, build_response
from railway.response import ExitCodeMapper

from cert_ledger import __version__
from cert_ledger.adapters.ledger import RetryPolicy, Web3LedgerGateway
from cert_ledger.adapters.repository import PsycopgCertificateStore
from cert_ledger.adapters.spreadsheet import OpenpyxlBatchReader
from cert_ledger.adapters.url_cipher import AesClaimCipher
from cert_ledger.config import AppSettings
from cert_ledger.domain import messages
from cert_ledger.domain.ingestion import BatchIngestionPipeline, IngestionRules
from cert_ledger.domain.issuance import IssuancePolicy, IssuanceService
from cert_ledger.domain.models import CertificateDraft, CertificateStatus
from cert_ledger.domain.verification import VerificationEngine


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured console logging on stderr.

    stdout is reserved for the JSON response envelope.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


@dataclass(frozen=True, slots=True)
class Services:
    issuance: IssuanceService
    verification: VerificationEngine
    store: PsycopgCertificateStore


def build_services(settings: AppSettings) -> Services:
    """Instantiate all concrete adapters and the two domain services."""
    ledger = Web3LedgerGateway.from_settings(
        rpc_url=settings.ledger.rpc_url,
        contract_address=settings.ledger.contract_address,
        abi_path=settings.ledger.abi_path,
        private_key=settings.ledger.private_key.get_secret_value(),
        explorer_url=settings.ledger.explorer_url,
        retry=RetryPolicy(
            attempts=settings.ledger.retry_attempts,
            delay_seconds=settings.ledger.retry_delay_seconds,
        ),
        timeout=settings.ledger.request_timeout_seconds,
    )
    store = PsycopgCertificateStore(dsn=settings.database.get_dsn())
    cipher = AesClaimCipher(
        secret=settings.links.encryption_key.get_secret_value(),
        verify_base_url=settings.links.verify_base_url,
        short_url_base=settings.links.short_url_base,
        max_short_url_length=settings.links.max_short_url_length,
    )
    ingestion = BatchIngestionPipeline(
        reader=OpenpyxlBatchReader(sheet_name=settings.ingestion.sheet_name),
        store=store,
        rules=IngestionRules(**settings.ingestion.model_dump()),
    )
    policy = IssuancePolicy(
        issuer_role=settings.ledger.issuer_role,
        min_validity_days=settings.issuance.min_validity_days,
        min_id_length=settings.ingestion.min_id_length,
        max_id_length=settings.ingestion.max_id_length,
    )
    return Services(
        issuance=IssuanceService(ledger, store, cipher, ingestion, policy),
        verification=VerificationEngine(ledger, store, cipher),
        store=store,
    )


# ─────────────────────── Command line ───────────────────────

_STATUS_CHOICES = {"revoke": CertificateStatus.REVOKED, "reactivate": CertificateStatus.REACTIVATED}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cert-ledger", description="Blockchain-anchored certificate issuance and verification"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    issue = commands.add_parser("issue", help="Issue a single certificate")
    issue.add_argument("--email", required=True)
    issue.add_argument("--number", required=True)
    issue.add_argument("--name", required=True)
    issue.add_argument("--course", required=True)
    issue.add_argument("--grant-date", required=True)
    issue.add_argument("--expiration-date", default="1", help="MM/DD/YYYY or 1 for no expiry")

    batch = commands.add_parser("issue-batch", help="Issue every row of a batch workbook")
    batch.add_argument("--email", required=True)
    batch.add_argument("path", type=Path)

    renew = commands.add_parser("renew", help="Extend a certificate's expiration")
    renew.add_argument("--email", required=True)
    renew.add_argument("number")
    renew.add_argument("expiration_date")

    for name in ("revoke", "reactivate"):
        sub = commands.add_parser(name, help=f"{name.capitalize()} a certificate")
        sub.add_argument("--email", required=True)
        sub.add_argument("number")

    renew_batch = commands.add_parser("renew-batch", help="Extend the expiration of a whole batch")
    renew_batch.add_argument("--email", required=True)
    renew_batch.add_argument("batch_id", type=int)
    renew_batch.add_argument("expiration_date")

    batch_status = commands.add_parser("batch-status", help="Revoke or reactivate a whole batch")
    batch_status.add_argument("--email", required=True)
    batch_status.add_argument("batch_id", type=int)
    batch_status.add_argument("action", choices=sorted(_STATUS_CHOICES))

    verify = commands.add_parser("verify", help="Verify a certificate by number")
    verify.add_argument("number")

    verify_url = commands.add_parser("verify-url", help="Verify a scanned URL or QR text")
    verify_url.add_argument("payload")

    verify_encrypted = commands.add_parser("verify-encrypted", help="Verify an encrypted payload")
    verify_encrypted.add_argument("data")
    verify_encrypted.add_argument("iv")

    for name in ("grant-role", "revoke-role"):
        sub = commands.add_parser(name, help="Grant or revoke the issuer role of an account")
        sub.add_argument("account")

    status_log = commands.add_parser("status-log", help="List status changes of an issuer")
    status_log.add_argument("--email", required=True)
    status_log.add_argument("--status", type=int, choices=[int(s) for s in CertificateStatus])
    status_log.add_argument("--since", type=datetime.fromisoformat)
    status_log.add_argument("--until", type=datetime.fromisoformat)

    commands.add_parser("init-db", help="Create the mirror store schema")
    return parser


type Command = Callable[[Services, argparse.Namespace], Awaitable[Result[Any]]]

_COMMANDS: dict[str, tuple[Command, str]] = {
    "issue": (
        lambda s, a: s.issuance.issue_single(
            a.email,
            CertificateDraft(
                certificate_number=a.number,
                name=a.name,
                course=a.course,
                grant_date=a.grant_date,
                expiration_date=a.expiration_date,
            ),
        ),
        messages.ISSUED,
    ),
    "issue-batch": (lambda s, a: s.issuance.issue_batch(a.email, a.path), messages.BATCH_ISSUED),
    "renew": (
        lambda s, a: s.issuance.renew(a.email, a.number, a.expiration_date),
        messages.RENEWED,
    ),
    "revoke": (lambda s, a: s.issuance.revoke(a.email, a.number), messages.REVOKED),
    "reactivate": (lambda s, a: s.issuance.reactivate(a.email, a.number), messages.REACTIVATED),
    "renew-batch": (
        lambda s, a: s.issuance.renew_batch(a.email, a.batch_id, a.expiration_date),
        messages.BATCH_RENEWED,
    ),
    "batch-status": (
        lambda s, a: s.issuance.update_batch_status(a.email, a.batch_id, _STATUS_CHOICES[a.action]),
        messages.BATCH_STATUS_UPDATED,
    ),
    "verify": (lambda s, a: s.verification.verify_by_id(a.number), messages.VERIFIED),
    "verify-url": (lambda s, a: s.verification.verify_payload(a.payload), messages.VERIFIED),
    "verify-encrypted": (
        lambda s, a: s.verification.verify_encrypted(a.data, a.iv),
        messages.VERIFIED,
    ),
    "grant-role": (lambda s, a: s.issuance.grant_issuer_role(a.account), messages.ROLE_GRANTED),
    "revoke-role": (lambda s, a: s.issuance.revoke_issuer_role(a.account), messages.ROLE_REVOKED),
    "status-log": (
        lambda s, a: s.issuance.status_history(
            a.email,
            CertificateStatus(a.status) if a.status is not None else None,
            a.since,
            a.until,
        ),
        messages.STATUS_LOG,
    ),
    "init-db": (lambda s, a: s.store.create_schema(), messages.SCHEMA_READY),
}


async def run_command(services: Services, args: argparse.Namespace) -> tuple[dict[str, Any], int]:
    """Run one parsed command; returns the response envelope and the exit code."""
    command, success_message = _COMMANDS[args.command]
    result = await command(services, args)
    return build_response(result, success_message), ExitCodeMapper.map_result(result)


def main(argv: Sequence[str] | None = None) -> None:
    """Parse arguments, wire dependencies, run the command and exit with its code."""
    args = build_parser().parse_args(argv)
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.info("app.command", command=args.command, version=__version__)

    body, exit_code = asyncio.run(run_command(build_services(settings), args))
    print(json.dumps(body, indent=2))  # noqa: T201
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
