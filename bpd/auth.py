"""
bpd.auth — Bearer authentication of the calling operator.

The Authorization header carries an ADB2C-issued RS256 access token.
It is verified against the tenant JWKS and mapped to an
AuthenticatedActor. The actor is used for audit attribution and for
the admin-group gate on token revocation; citizen data access is
authorized by bpd.citizen_id alone.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger("bpd.auth")


@dataclass(frozen=True, slots=True)
class AuthenticatedActor:
    oid: str
    email: str | None
    name: str | None
    groups: tuple[str, ...] = ()

    def is_member_of(self, group: str) -> bool:
        return group in self.groups


class AuthenticationError(Exception):
    """Bearer token missing, malformed, or failed verification."""


def actor_from_claims(claims: dict[str, Any]) -> AuthenticatedActor:
    """Map ADB2C token claims to an actor. Raises AuthenticationError without a subject."""
    oid = claims.get("oid") or claims.get("sub")
    if not isinstance(oid, str) or not oid:
        raise AuthenticationError("Token has no subject")

    emails = claims.get("emails")
    if isinstance(emails, list) and emails:
        email = str(emails[0])
    else:
        email = claims.get("email")

    given_name = claims.get("given_name")
    family_name = claims.get("family_name")
    name = " ".join(p for p in (given_name, family_name) if p) or claims.get("name")

    raw_groups = claims.get("groups")
    groups = tuple(g for g in raw_groups if isinstance(g, str)) if isinstance(raw_groups, list) else ()

    return AuthenticatedActor(oid=oid, email=email, name=name, groups=groups)


class SigningKeySource(Protocol):
    def get_signing_key_from_jwt(self, token: str) -> Any: ...


class BearerVerifier:
    """Verifies operator access tokens. verify() may block on a JWKS fetch."""

    def __init__(
        self,
        keys: SigningKeySource,
        *,
        audience: str,
        issuer: str | None = None,
    ) -> None:
        self._keys = keys
        self._audience = audience
        self._issuer = issuer

    @classmethod
    def from_jwks_url(cls, jwks_url: str, *, audience: str, issuer: str | None = None) -> BearerVerifier:
        return cls(jwt.PyJWKClient(jwks_url, cache_keys=True), audience=audience, issuer=issuer)

    def verify(self, token: str) -> AuthenticatedActor:
        try:
            signing_key = self._keys.get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self._audience,
                issuer=self._issuer,
            )
        except jwt.PyJWTError as exc:
            raise AuthenticationError(type(exc).__name__) from None
        return actor_from_claims(claims)


_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedActor:
    """FastAPI dependency: the verified caller, or 401."""
    if credentials is None:
        raise _unauthorized()

    verifier: BearerVerifier = request.app.state.deps.bearer_verifier
    try:
        return await run_in_threadpool(verifier.verify, credentials.credentials)
    except AuthenticationError as exc:
        logger.warning(json.dumps({
            "event": "bearer_rejected",
            "reason": str(exc),
            "request_id": getattr(request.state, "request_id", "unknown"),
        }))
        raise _unauthorized() from None
