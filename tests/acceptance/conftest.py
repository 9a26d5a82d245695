"""
Acceptance test fixtures — PostgreSQL testcontainer for end-to-end tests.

Same pattern as the integration tests but scoped for acceptance.
"""

from __future__ import annotations

from collections.abc import Iterator

import psycopg
import pytest
from fakes import ISSUER
from testcontainers.postgres import PostgresContainer

from cert_ledger.adapters.repository import SCHEMA, PsycopgCertificateStore

TRUNCATE_ALL = """
TRUNCATE certificates, certificate_status_log, short_urls, verification_log, issuers;
"""


@pytest.fixture(scope="session")
def acceptance_pg() -> Iterator[PostgresContainer]:
    """Start a PostgreSQL container for the acceptance test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        dsn = pg.get_connection_url().replace("postgresql+psycopg2", "postgresql")
        with psycopg.connect(dsn) as conn:
            conn.execute(SCHEMA)
            conn.commit()
        yield pg


@pytest.fixture()
def acceptance_dsn(acceptance_pg: PostgresContainer) -> str:
    """Return a psycopg-compatible DSN and truncate all tables before each test."""
    connection_url = acceptance_pg.get_connection_url().replace("postgresql+psycopg2", "postgresql")
    with psycopg.connect(connection_url) as conn:
        conn.execute(TRUNCATE_ALL)
        conn.commit()
    return connection_url


@pytest.fixture()
async def acceptance_store(acceptance_dsn: str) -> PsycopgCertificateStore:
    store = PsycopgCertificateStore(acceptance_dsn)
    await store.add_issuer(ISSUER)
    return store
