"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__", so LEDGER__RPC_URL maps to
ledger.rpc_url, DATABASE__HOST to database.host, INGESTION__BATCH_LIMIT to
ingestion.batch_limit, etc.
"""

from __future__ import annotations

import re
from pathlib import Path

from eth_utils import keccak
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

DEFAULT_ISSUER_ROLE = "0x" + keccak(text="ISSUER_ROLE").hex()

_BYTES32 = re.compile(r"^0x[0-9a-fA-F]{64}$")


class LedgerSettings(BaseModel):
    """Smart contract connection and transaction retry policy."""

    rpc_url: str = Field(description="JSON-RPC endpoint of the ledger network")
    contract_address: str = Field(description="Certificate contract address")
    abi_path: Path = Field(description="Path to the contract ABI JSON file")
    private_key: SecretStr = Field(description="Signing key of the operator account")
    explorer_url: str = Field(
        default="https://polygonscan.com",
        description="Block explorer base URL used to build transaction links",
    )
    issuer_role: str = Field(default=DEFAULT_ISSUER_ROLE, description="bytes32 issuer role id")
    retry_attempts: int = Field(default=3, ge=0, le=10)
    retry_delay_seconds: float = Field(default=2.0, ge=0)
    request_timeout_seconds: int = Field(default=30, ge=1)

    @field_validator("issuer_role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        if not _BYTES32.match(value):
            raise ValueError(f"issuer_role must be a 0x-prefixed bytes32 hex string, got {value!r}")
        return value.lower()

    @field_validator("explorer_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class DatabaseSettings(BaseModel):
    """
    PostgreSQL connection configuration.

    Accepts either a full connection string via DATABASE__DSN or individual
    components. The DSN takes priority when both are provided.
    """

    dsn: SecretStr | None = Field(default=None, description="Full PostgreSQL connection string")
    host: str | None = Field(default=None)
    port: int = Field(default=5432, ge=1, le=65535)
    name: str | None = Field(default=None)
    username: str | None = Field(default=None)
    password: SecretStr | None = Field(default=None)

    @model_validator(mode="after")
    def resolve_dsn(self) -> DatabaseSettings:
        """Build the DSN from components when no full DSN is given."""
        if self.dsn is not None:
            return self
        missing = [f for f, v in [
            ("DATABASE__HOST", self.host),
            ("DATABASE__NAME", self.name),
            ("DATABASE__USERNAME", self.username),
            ("DATABASE__PASSWORD", self.password),
        ] if not v]
        if missing:
            raise ValueError("Set DATABASE__DSN or provide all of: " + ", ".join(missing))
        dsn_value = (
            f"postgresql://{self.username}:{self.password.get_secret_value()}"  # type: ignore[union-attr]
            f"@{self.host}:{self.port}/{self.name}"
        )
        object.__setattr__(self, "dsn", SecretStr(dsn_value))
        return self

    def get_dsn(self) -> str:
        assert self.dsn is not None  # guaranteed by resolve_dsn validator
        return self.dsn.get_secret_value()


class IngestionSettings(BaseModel):
    """Batch file limits. ``batch_limit`` 0 disables the row limit."""

    sheet_name: str = Field(default="Batch")
    batch_limit: int = Field(default=250, ge=0)
    min_id_length: int = Field(default=12, ge=1)
    max_id_length: int = Field(default=20, ge=1)
    max_name_length: int = Field(default=30, ge=1)
    threshold_year: int = Field(default=2100, ge=1900)

    @model_validator(mode="after")
    def check_id_bounds(self) -> IngestionSettings:
        if self.min_id_length > self.max_id_length:
            raise ValueError("min_id_length must not exceed max_id_length")
        return self


class IssuanceSettings(BaseModel):
    min_validity_days: int = Field(
        default=32, ge=0, description="Minimum days between now and a concrete expiration"
    )


class LinkSettings(BaseModel):
    """Verification URL generation."""

    verify_base_url: str = Field(description="Verification page receiving q= and iv= parameters")
    short_url_base: str = Field(description="Prefix of short URLs; the certificate number is appended")
    encryption_key: SecretStr = Field(description="Secret from which the AES key is derived")
    max_short_url_length: int = Field(default=50, ge=1)


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first): environment variables, .env file, defaults.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    ledger: LedgerSettings
    database: DatabaseSettings
    links: LinkSettings
    ingestion: IngestionSettings = Field(default_factory=lambda: IngestionSettings())
    issuance: IssuanceSettings = Field(default_factory=lambda: IssuanceSettings())

    log_level: str = Field(default="INFO")
