"""
Integration test fixtures — PostgreSQL testcontainer and schema setup.

Provides a real PostgreSQL instance for each test session via testcontainers.
Creates the mirror store schema from the adapter's own DDL.
Each test gets a fresh, clean database via truncation.
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


def _psycopg_url(container: PostgresContainer) -> str:
    return container.get_connection_url().replace("postgresql+psycopg2", "postgresql")


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Start a PostgreSQL container for the entire test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        with psycopg.connect(_psycopg_url(pg)) as conn:
            conn.execute(SCHEMA)
            conn.commit()
        yield pg


@pytest.fixture()
def dsn(postgres_container: PostgresContainer) -> str:
    """Return a psycopg-compatible DSN and truncate all tables before each test."""
    connection_url = _psycopg_url(postgres_container)
    with psycopg.connect(connection_url) as conn:
        conn.execute(TRUNCATE_ALL)
        conn.commit()
    return connection_url


@pytest.fixture()
async def pg_store(dsn: str) -> PsycopgCertificateStore:
    """Store backed by the container, with the default issuer registered."""
    store = PsycopgCertificateStore(dsn)
    await store.add_issuer(ISSUER)
    return store
