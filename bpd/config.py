"""
bpd.config — Environment-driven configuration.

load_settings() is called once at startup. Missing required variables
abort startup with a ConfigError listing every missing name, so a
misconfigured deploy never serves a single request.

Environment variables:
    POSTGRES_URL                              — SQLAlchemy URL of the BPD database
    JWT_SUPPORT_TOKEN_PUBLIC_RSA_CERTIFICATE  — PEM public key for support tokens
    JWT_SUPPORT_TOKEN_ISSUER                  — optional expected `iss`
    JWT_SUPPORT_TOKEN_AUDIENCE                — optional expected `aud`
    DASHBOARD_STORAGE_CONNECTION_STRING       — Azure Table Storage connection string
    DASHBOARD_LOGS_TABLE_NAME                 — audit log table
    REDIS_URL                                 — support-token blacklist store
    ADB2C_JWKS_URL                            — JWKS endpoint for bearer tokens
    ADB2C_CLIENT_ID                           — expected bearer token audience
    ADB2C_ISSUER                              — optional expected bearer token issuer
    ADB2C_ADMIN_GROUP_NAME                    — group allowed to revoke tokens (default: ApiAdmin)
    SUPPORT_TOKEN_BLACKLIST_TTL               — seconds, for tokens without `exp` (default: 3600)
    ENV                                       — "dev" or "prod" (default: "prod")
    ALLOWED_ORIGINS                           — comma-separated CORS origins (default: none)
    RATE_LIMIT                                — slowapi limit per client (default: 60/minute)
    REDIS_RATE_LIMIT                          — "1" to keep rate-limit counters in REDIS_URL
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from bpd.constants import DEFAULT_BLACKLIST_TTL

_REQUIRED: tuple[str, ...] = (
    "POSTGRES_URL",
    "JWT_SUPPORT_TOKEN_PUBLIC_RSA_CERTIFICATE",
    "DASHBOARD_STORAGE_CONNECTION_STRING",
    "DASHBOARD_LOGS_TABLE_NAME",
    "REDIS_URL",
    "ADB2C_JWKS_URL",
    "ADB2C_CLIENT_ID",
)


class ConfigError(Exception):
    """Raised when required configuration is missing or malformed."""

    def __init__(self, missing: list[str], detail: str | None = None) -> None:
        self.missing = missing
        super().__init__(detail or f"Missing required environment variables: {', '.join(missing)}")


@dataclass(frozen=True, slots=True)
class Settings:
    """Immutable runtime configuration."""

    postgres_url: str
    support_token_public_key: str
    support_token_issuer: str | None
    support_token_audience: str | None
    storage_connection_string: str
    audit_table_name: str
    redis_url: str
    adb2c_jwks_url: str
    adb2c_client_id: str
    adb2c_issuer: str | None
    admin_group_name: str
    blacklist_ttl: int
    env: str
    allowed_origins: tuple[str, ...]
    rate_limit: str
    redis_rate_limit: bool


def _optional(environ: Mapping[str, str], name: str) -> str | None:
    return environ.get(name, "").strip() or None


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from the environment. Raises ConfigError on any gap."""
    if environ is None:
        environ = os.environ

    missing = [name for name in _REQUIRED if not environ.get(name, "").strip()]
    if missing:
        raise ConfigError(missing)

    raw_ttl = environ.get("SUPPORT_TOKEN_BLACKLIST_TTL", "").strip()
    try:
        blacklist_ttl = int(raw_ttl) if raw_ttl else DEFAULT_BLACKLIST_TTL
    except ValueError:
        raise ConfigError(
            ["SUPPORT_TOKEN_BLACKLIST_TTL"],
            f"SUPPORT_TOKEN_BLACKLIST_TTL must be an integer, got '{raw_ttl}'",
        ) from None
    if blacklist_ttl <= 0:
        raise ConfigError(
            ["SUPPORT_TOKEN_BLACKLIST_TTL"],
            "SUPPORT_TOKEN_BLACKLIST_TTL must be positive",
        )

    origins = tuple(
        o.strip() for o in environ.get("ALLOWED_ORIGINS", "").split(",") if o.strip()
    )

    # PEM values set through app settings often arrive with escaped newlines
    public_key = environ["JWT_SUPPORT_TOKEN_PUBLIC_RSA_CERTIFICATE"].strip().replace("\\n", "\n")

    return Settings(
        postgres_url=environ["POSTGRES_URL"].strip(),
        support_token_public_key=public_key,
        support_token_issuer=_optional(environ, "JWT_SUPPORT_TOKEN_ISSUER"),
        support_token_audience=_optional(environ, "JWT_SUPPORT_TOKEN_AUDIENCE"),
        storage_connection_string=environ["DASHBOARD_STORAGE_CONNECTION_STRING"].strip(),
        audit_table_name=environ["DASHBOARD_LOGS_TABLE_NAME"].strip(),
        redis_url=environ["REDIS_URL"].strip(),
        adb2c_jwks_url=environ["ADB2C_JWKS_URL"].strip(),
        adb2c_client_id=environ["ADB2C_CLIENT_ID"].strip(),
        adb2c_issuer=_optional(environ, "ADB2C_ISSUER"),
        admin_group_name=_optional(environ, "ADB2C_ADMIN_GROUP_NAME") or "ApiAdmin",
        blacklist_ttl=blacklist_ttl,
        env=environ.get("ENV", "prod").lower().strip() or "prod",
        allowed_origins=origins,
        rate_limit=_optional(environ, "RATE_LIMIT") or "60/minute",
        redis_rate_limit=environ.get("REDIS_RATE_LIMIT", "").strip() == "1",
    )
