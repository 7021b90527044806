"""
bpd.dependencies — Long-lived collaborators shared across requests.

Built once at startup (see api lifespan) and passed explicitly into
every pipeline call. Nothing here is mutated after construction.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import redis.asyncio as aioredis

from bpd.audit import AuditRecorder, TableAuditRecorder
from bpd.auth import BearerVerifier
from bpd.blacklist import SupportTokenBlacklist
from bpd.citizen_id import SupportTokenVerifier
from bpd.config import Settings
from bpd.models import Award, Citizen, Transaction
from bpd.repository import Repository, SqlRepository, build_engine

logger = logging.getLogger("bpd.dependencies")


@dataclass(frozen=True)
class Dependencies:
    citizens: Repository
    awards: Repository
    transactions: Repository
    audit: AuditRecorder
    blacklist: SupportTokenBlacklist
    token_verifier: SupportTokenVerifier
    bearer_verifier: BearerVerifier
    admin_group_name: str
    closers: tuple[Callable[[], Awaitable[Any]], ...] = field(default=(), repr=False)

    async def aclose(self) -> None:
        for close in self.closers:
            try:
                await close()
            except Exception as exc:
                logger.warning(json.dumps({
                    "event": "dependency_close_failed",
                    "error_type": type(exc).__name__,
                }))


def build_dependencies(settings: Settings) -> Dependencies:
    """Construct every shared client from settings. Raises ValueError on a bad public key."""
    engine = build_engine(settings.postgres_url)
    redis_client = aioredis.from_url(settings.redis_url)
    audit = TableAuditRecorder.from_connection_string(
        settings.storage_connection_string, settings.audit_table_name,
    )

    async def _dispose_engine() -> None:
        engine.dispose()

    return Dependencies(
        citizens=SqlRepository(engine, Citizen),
        awards=SqlRepository(engine, Award),
        transactions=SqlRepository(engine, Transaction),
        audit=audit,
        blacklist=SupportTokenBlacklist(redis_client, settings.blacklist_ttl),
        token_verifier=SupportTokenVerifier(
            settings.support_token_public_key,
            issuer=settings.support_token_issuer,
            audience=settings.support_token_audience,
        ),
        bearer_verifier=BearerVerifier.from_jwks_url(
            settings.adb2c_jwks_url,
            audience=settings.adb2c_client_id,
            issuer=settings.adb2c_issuer,
        ),
        admin_group_name=settings.admin_group_name,
        closers=(audit.close, redis_client.aclose, _dispose_engine),
    )
