"""
bpd.blacklist — Redis-backed support-token blacklist.

Revoked tokens are stored under BLACKLIST_KEY_PREFIX + sha256(token) so
the raw token never lands in Redis. Entries expire when the token
itself would have expired; tokens without `exp` use a configured TTL.
"""

from __future__ import annotations

import hashlib
import time
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from bpd.constants import BLACKLIST_KEY_PREFIX, DEFAULT_BLACKLIST_TTL
from bpd.errors import QueryError


def blacklist_key(token: str) -> str:
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return f"{BLACKLIST_KEY_PREFIX}{digest}"


def remaining_lifetime(claims: dict[str, Any], default_ttl: int, now: float | None = None) -> int:
    """Seconds until the token expires, at least 1. Falls back to default_ttl without `exp`."""
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return default_ttl
    current = time.time() if now is None else now
    return max(1, int(exp - current))


class SupportTokenBlacklist:
    """Blacklist of revoked support tokens."""

    def __init__(self, client: Redis, default_ttl: int = DEFAULT_BLACKLIST_TTL) -> None:
        self._client = client
        self.default_ttl = default_ttl

    async def is_revoked(self, token: str) -> bool:
        try:
            return bool(await self._client.exists(blacklist_key(token)))
        except RedisError as exc:
            raise QueryError("Support token blacklist lookup error") from exc

    async def revoke(self, token: str, claims: dict[str, Any]) -> int:
        """Blacklist a verified token. Returns the TTL applied, in seconds."""
        ttl = remaining_lifetime(claims, self.default_ttl)
        try:
            await self._client.set(blacklist_key(token), "1", ex=ttl)
        except RedisError as exc:
            raise QueryError("Support token blacklist write error") from exc
        return ttl
