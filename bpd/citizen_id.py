"""
bpd.citizen_id — Citizen identifier parsing and resolution.

The x-citizen-id header carries either:
    - a FiscalCode   (direct: the caller names the citizen in cleartext)
    - a SupportToken (delegated: an RS256-signed JWT whose payload holds
                      the fiscal code it authorizes)

resolve_citizen_id() turns either form into a trusted fiscal code.
A support token's fiscal code is trusted only after its signature,
expiry, issuer and audience all verify. Every rejection reason maps to
the same ForbiddenError; the raw token is never logged.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from bpd.constants import (
    CITIZEN_ID_HEADER,
    FISCAL_CODE_RE,
    SUPPORT_TOKEN_ALGORITHMS,
    SUPPORT_TOKEN_FISCAL_CODE_CLAIM,
    SUPPORT_TOKEN_RE,
)
from bpd.errors import ForbiddenError, InvalidCitizenIdError

if TYPE_CHECKING:
    from bpd.blacklist import SupportTokenBlacklist

logger = logging.getLogger("bpd.citizen_id")


# ---------------------------------------------------------------------------
# CitizenId — tagged union
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FiscalCode:
    value: str


@dataclass(frozen=True, slots=True)
class SupportToken:
    value: str

    def __repr__(self) -> str:
        return "SupportToken(<redacted>)"


CitizenId = Union[FiscalCode, SupportToken]


def is_fiscal_code(value: Any) -> bool:
    return isinstance(value, str) and FISCAL_CODE_RE.match(value) is not None


def parse_citizen_id(raw: str | None) -> CitizenId:
    """Classify a raw header value. Raises InvalidCitizenIdError if it is neither form."""
    if raw is None or not raw.strip():
        raise InvalidCitizenIdError(f"{CITIZEN_ID_HEADER}: header is required")
    raw = raw.strip()
    if is_fiscal_code(raw):
        return FiscalCode(raw)
    if SUPPORT_TOKEN_RE.match(raw):
        return SupportToken(raw)
    raise InvalidCitizenIdError(
        f"{CITIZEN_ID_HEADER}: expected a fiscal code or a support token"
    )


# ---------------------------------------------------------------------------
# Support token verification
# ---------------------------------------------------------------------------


def load_public_key(pem: str) -> Any:
    """Load an RSA public key from a PEM public key or X.509 certificate.

    Raises ValueError if the PEM cannot be parsed. Called once at startup.
    """
    data = pem.encode("utf-8")
    if b"BEGIN CERTIFICATE" in data:
        return x509.load_pem_x509_certificate(data).public_key()
    return serialization.load_pem_public_key(data)


class SupportTokenVerifier:
    """Verify support tokens against one configured RSA public key."""

    def __init__(
        self,
        public_key: str,
        *,
        issuer: str | None = None,
        audience: str | None = None,
    ) -> None:
        self._key = load_public_key(public_key)
        self._issuer = issuer
        self._audience = audience

    def verify(self, token: str) -> dict[str, Any]:
        """Return the verified claims. Raises ForbiddenError on any failure."""
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=list(SUPPORT_TOKEN_ALGORITHMS),
                issuer=self._issuer,
                audience=self._audience,
                options={"verify_aud": self._audience is not None},
            )
        except jwt.PyJWTError as exc:
            logger.warning(json.dumps({
                "event": "support_token_rejected",
                "reason": type(exc).__name__,
            }))
            raise ForbiddenError() from None

        if not is_fiscal_code(claims.get(SUPPORT_TOKEN_FISCAL_CODE_CLAIM)):
            logger.warning(json.dumps({
                "event": "support_token_rejected",
                "reason": "InvalidFiscalCodeClaim",
            }))
            raise ForbiddenError()

        return claims


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


async def resolve_citizen_id(
    citizen_id: CitizenId,
    verifier: SupportTokenVerifier,
    blacklist: SupportTokenBlacklist | None = None,
) -> str:
    """Resolve a citizen identifier to a trusted fiscal code.

    Raises:
        ForbiddenError: the support token failed verification or was revoked.
        QueryError: the blacklist store could not be reached.
    """
    if isinstance(citizen_id, FiscalCode):
        # TODO: enforce admin group membership when a non-admin caller presents a plain fiscal code
        return citizen_id.value

    claims = verifier.verify(citizen_id.value)
    if blacklist is not None and await blacklist.is_revoked(citizen_id.value):
        logger.warning(json.dumps({"event": "support_token_rejected", "reason": "Revoked"}))
        raise ForbiddenError()
    return claims[SUPPORT_TOKEN_FISCAL_CODE_CLAIM]
