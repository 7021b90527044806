"""
bpd.constants — Single source of truth for BPD support API constants.

Every module that needs these values MUST import from here.
No hardcoded duplicates anywhere in the codebase.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Citizen identifiers
# ---------------------------------------------------------------------------

CITIZEN_ID_HEADER: str = "x-citizen-id"
"""Request header carrying the target citizen: a fiscal code or a support token."""

FISCAL_CODE_RE: re.Pattern[str] = re.compile(
    r"^[A-Z]{6}[0-9LMNPQRSTUV]{2}[ABCDEHLMPRST][0-9LMNPQRSTUV]{2}[A-Z][0-9LMNPQRSTUV]{3}[A-Z]$"
)
"""Italian fiscal code, including omocodia substitutions."""

SUPPORT_TOKEN_RE: re.Pattern[str] = re.compile(
    r"^[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+\.?[A-Za-z0-9\-_.+/=]*$"
)
"""Compact JWS shape: header.payload.signature (base64url segments)."""

SUPPORT_TOKEN_ALGORITHMS: tuple[str, ...] = ("RS256",)

SUPPORT_TOKEN_FISCAL_CODE_CLAIM: str = "fiscalCode"

# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------

AUTH_LEVEL_ADMIN: str = "Admin"

OPERATION_GET_CITIZEN: str = "GetBPDCitizen"
OPERATION_GET_AWARDS: str = "GetBPDAwards"
OPERATION_GET_TRANSACTIONS: str = "GetBPDTransactions"
OPERATION_BLACKLIST_SUPPORT_TOKEN: str = "BlacklistSupportToken"

# ---------------------------------------------------------------------------
# Token blacklist
# ---------------------------------------------------------------------------

BLACKLIST_KEY_PREFIX: str = "bpd:support-token:blacklist:"

DEFAULT_BLACKLIST_TTL: int = 3600
"""Seconds a revoked token stays blacklisted when it carries no `exp` claim."""

# ---------------------------------------------------------------------------
# Outward messages — fixed, never derived from internal errors
# ---------------------------------------------------------------------------

INTERNAL_ERROR_DETAIL: str = "An internal error occurred while processing the request."

# ---------------------------------------------------------------------------
# Store views
# ---------------------------------------------------------------------------

CITIZEN_VIEW: str = "v_bpd_citizen"
AWARD_VIEW: str = "v_bpd_award_citizen"
TRANSACTION_TABLE: str = "bpd_transaction"
