"""
tests/test_citizen_id.py — Citizen identifier parsing, support-token
verification and resolution to a trusted fiscal code.

Covers:
    - parse_citizen_id: fiscal code, support token, missing, malformed
    - SupportTokenVerifier: good token, wrong key, expired, bad claim
    - resolve_citizen_id: direct path, delegated path, revoked token,
      blacklist store down
    - the raw token never reaches the logs
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from bpd.blacklist import SupportTokenBlacklist, blacklist_key
from bpd.citizen_id import (
    FiscalCode,
    SupportToken,
    SupportTokenVerifier,
    is_fiscal_code,
    load_public_key,
    parse_citizen_id,
    resolve_citizen_id,
)
from bpd.errors import ForbiddenError, InvalidCitizenIdError, QueryError
from fakes import (
    FISCAL_CODE,
    OTHER_FISCAL_CODE,
    FakeRedis,
    mint_support_token,
    public_pem,
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseCitizenId:

    def test_fiscal_code(self):
        assert parse_citizen_id(FISCAL_CODE) == FiscalCode(FISCAL_CODE)

    def test_fiscal_code_surrounding_whitespace_ignored(self):
        assert parse_citizen_id(f"  {FISCAL_CODE} ") == FiscalCode(FISCAL_CODE)

    def test_omocodia_fiscal_code_accepted(self):
        """Digits replaced by letters (LMNPQRSTUV) are still fiscal codes."""
        assert is_fiscal_code("RSSMRAURAMLHRQSU")

    def test_lowercase_fiscal_code_rejected(self):
        assert not is_fiscal_code(FISCAL_CODE.lower())

    def test_support_token(self, support_key):
        token = mint_support_token(support_key)
        parsed = parse_citizen_id(token)
        assert isinstance(parsed, SupportToken)
        assert parsed.value == token

    def test_support_token_repr_is_redacted(self, support_key):
        token = mint_support_token(support_key)
        assert token not in repr(parse_citizen_id(token))

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_missing_header(self, raw):
        with pytest.raises(InvalidCitizenIdError) as excinfo:
            parse_citizen_id(raw)
        assert excinfo.value.report == "x-citizen-id: header is required"

    @pytest.mark.parametrize("raw", ["not a fiscal code", "RSSMRA80A01H501", "a.b c"])
    def test_malformed(self, raw):
        with pytest.raises(InvalidCitizenIdError) as excinfo:
            parse_citizen_id(raw)
        assert "x-citizen-id" in excinfo.value.report


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class TestSupportTokenVerifier:

    def test_valid_token_returns_claims(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        claims = verifier.verify(mint_support_token(support_key))
        assert claims["fiscalCode"] == FISCAL_CODE

    def test_wrong_key_forbidden(self, support_key, foreign_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        with pytest.raises(ForbiddenError):
            verifier.verify(mint_support_token(foreign_key))

    def test_expired_token_forbidden(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        with pytest.raises(ForbiddenError):
            verifier.verify(mint_support_token(support_key, expires_in=-60))

    def test_missing_fiscal_code_claim_forbidden(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        with pytest.raises(ForbiddenError):
            verifier.verify(mint_support_token(support_key, fiscal_code=None))

    def test_invalid_fiscal_code_claim_forbidden(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        with pytest.raises(ForbiddenError):
            verifier.verify(mint_support_token(support_key, fiscal_code="nope"))

    def test_issuer_enforced_when_configured(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key), issuer="https://io.example.org")
        with pytest.raises(ForbiddenError):
            verifier.verify(mint_support_token(support_key, iss="https://evil.example.org"))
        claims = verifier.verify(mint_support_token(support_key, iss="https://io.example.org"))
        assert claims["fiscalCode"] == FISCAL_CODE

    def test_audience_ignored_when_not_configured(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        claims = verifier.verify(mint_support_token(support_key, aud="bpd-support"))
        assert claims["fiscalCode"] == FISCAL_CODE

    def test_audience_enforced_when_configured(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key), audience="bpd-support")
        assert verifier.verify(mint_support_token(support_key, aud="bpd-support"))["fiscalCode"] == FISCAL_CODE
        with pytest.raises(ForbiddenError):
            verifier.verify(mint_support_token(support_key, aud="someone-else"))
        with pytest.raises(ForbiddenError):
            verifier.verify(mint_support_token(support_key))

    def test_tampered_payload_forbidden(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        header, _, signature = mint_support_token(support_key).split(".")
        _, payload, _ = mint_support_token(support_key, OTHER_FISCAL_CODE).split(".")
        with pytest.raises(ForbiddenError):
            verifier.verify(f"{header}.{payload}.{signature}")

    def test_rejection_log_never_contains_token(self, support_key, foreign_key, caplog):
        verifier = SupportTokenVerifier(public_pem(support_key))
        token = mint_support_token(foreign_key)
        with caplog.at_level(logging.WARNING, logger="bpd.citizen_id"):
            with pytest.raises(ForbiddenError):
                verifier.verify(token)
        assert caplog.records, "rejection should be logged"
        assert token not in caplog.text
        assert "InvalidSignatureError" in caplog.text

    def test_unparseable_pem_rejected_at_startup(self):
        with pytest.raises(ValueError):
            load_public_key("-----BEGIN PUBLIC KEY-----\ngarbage\n-----END PUBLIC KEY-----\n")


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class TestResolveCitizenId:

    def test_fiscal_code_passes_through(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        resolved = asyncio.run(resolve_citizen_id(FiscalCode(FISCAL_CODE), verifier))
        assert resolved == FISCAL_CODE

    def test_support_token_resolves_to_claim(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        token = SupportToken(mint_support_token(support_key, OTHER_FISCAL_CODE))
        resolved = asyncio.run(resolve_citizen_id(token, verifier))
        assert resolved == OTHER_FISCAL_CODE

    def test_revoked_token_forbidden(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        raw = mint_support_token(support_key)
        redis = FakeRedis()
        redis.store[blacklist_key(raw)] = "1"
        blacklist = SupportTokenBlacklist(redis, 3600)
        with pytest.raises(ForbiddenError):
            asyncio.run(resolve_citizen_id(SupportToken(raw), verifier, blacklist))

    def test_blacklist_not_consulted_for_fiscal_code(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        blacklist = SupportTokenBlacklist(FakeRedis(fail=True), 3600)
        resolved = asyncio.run(resolve_citizen_id(FiscalCode(FISCAL_CODE), verifier, blacklist))
        assert resolved == FISCAL_CODE

    def test_blacklist_store_down_is_query_error(self, support_key):
        verifier = SupportTokenVerifier(public_pem(support_key))
        blacklist = SupportTokenBlacklist(FakeRedis(fail=True), 3600)
        token = SupportToken(mint_support_token(support_key))
        with pytest.raises(QueryError):
            asyncio.run(resolve_citizen_id(token, verifier, blacklist))

    def test_invalid_token_never_reaches_blacklist(self, support_key, foreign_key):
        """Signature is checked first: a forged token is Forbidden even with Redis down."""
        verifier = SupportTokenVerifier(public_pem(support_key))
        blacklist = SupportTokenBlacklist(FakeRedis(fail=True), 3600)
        token = SupportToken(mint_support_token(foreign_key))
        with pytest.raises(ForbiddenError):
            asyncio.run(resolve_citizen_id(token, verifier, blacklist))
