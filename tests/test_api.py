"""
tests/test_api.py — HTTP surface of the BPD support API.

Covers:
    - every endpoint through FastAPI's TestClient
    - bearer authentication (401 without or with a bad token)
    - problem+json error bodies and status codes
    - request id, security headers, size limits, rate limiting, CORS
    - probes and lifespan ownership of shared clients
"""

from __future__ import annotations

import dataclasses
import re

import pytest
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

from bpd import api
from bpd.auth import AuthenticatedActor, get_current_actor
from bpd.security import MAX_BODY_BYTES, mask_ip, oversize_rejection
from fakes import (
    ADMIN_GROUP,
    FISCAL_CODE,
    OTHER_FISCAL_CODE,
    FakeAudit,
    FakeRedis,
    FakeRepository,
    award_row,
    citizen_row,
    make_deps,
    make_settings,
    mint_bearer_token,
    mint_support_token,
    payment_row,
    transaction_row,
)

ADMIN = AuthenticatedActor(oid="admin-oid", email=None, name=None, groups=(ADMIN_GROUP,))

CITIZEN_URL = "/api/v1/bpd/citizen"
AWARDS_URL = "/api/v1/bpd/citizen/awards"
TRANSACTIONS_URL = "/api/v1/bpd/citizen/transactions"
SUPPORT_TOKEN_URL = "/api/v1/bpd/support-token"


@pytest.fixture()
def audit() -> FakeAudit:
    return FakeAudit()


@pytest.fixture()
def deps(support_key, bearer_key, audit):
    return make_deps(
        support_key,
        bearer_key,
        citizens=FakeRepository([payment_row("h1"), payment_row("h2"), citizen_row(fiscal_code=OTHER_FISCAL_CODE)]),
        awards=FakeRepository([award_row(1)]),
        transactions=FakeRepository([transaction_row("a")]),
        audit=audit,
        redis=FakeRedis(),
    )


@pytest.fixture()
def client(deps):
    """Client with the bearer check replaced by a fixed admin actor."""
    app = api.create_app(make_settings(), deps)
    app.dependency_overrides[get_current_actor] = lambda: ADMIN
    with TestClient(app) as client:
        yield client


def _cid(value: str) -> dict[str, str]:
    return {"x-citizen-id": value}


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class TestCitizenEndpoints:

    def test_citizen_by_fiscal_code(self, client):
        r = client.get(CITIZEN_URL, headers=_cid(FISCAL_CODE))
        assert r.status_code == 200
        body = r.json()
        assert body["fiscal_code"] == FISCAL_CODE
        assert len(body["payment_methods"]) == 2

    def test_citizen_by_support_token(self, client, support_key):
        r = client.get(CITIZEN_URL, headers=_cid(mint_support_token(support_key, OTHER_FISCAL_CODE)))
        assert r.status_code == 200
        assert r.json()["fiscal_code"] == OTHER_FISCAL_CODE

    def test_forged_token_403(self, client, foreign_key):
        r = client.get(CITIZEN_URL, headers=_cid(mint_support_token(foreign_key)))
        assert r.status_code == 403
        assert r.headers["content-type"].startswith("application/problem+json")
        assert r.json()["title"] == "You are not allowed here"

    def test_missing_header_400(self, client):
        r = client.get(CITIZEN_URL)
        assert r.status_code == 400
        assert r.json() == {
            "title": "Invalid x-citizen-id",
            "status": 400,
            "detail": "x-citizen-id: header is required",
        }

    def test_unknown_citizen_404(self, client):
        r = client.get(CITIZEN_URL, headers=_cid("BNCLRA90E45L219K"))
        assert r.status_code == 404

    def test_awards(self, client):
        r = client.get(AWARDS_URL, headers=_cid(FISCAL_CODE))
        assert r.status_code == 200
        assert r.json()["awards"][0]["award_period_id"] == 1

    def test_transactions_audited(self, client, audit):
        r = client.get(TRANSACTIONS_URL, headers=_cid(FISCAL_CODE))
        assert r.status_code == 200
        assert [t["id_trx_acquirer"] for t in r.json()["transactions"]] == ["a"]
        assert len(audit.entries) == 1
        assert audit.entries[0].PartitionKey == "admin-oid"
        assert audit.entries[0].RowKey == r.headers["X-Request-ID"]

    def test_store_failure_500_redacted(self, support_key, bearer_key):
        deps = make_deps(
            support_key, bearer_key,
            citizens=FakeRepository(error=RuntimeError("password=hunter2")),
        )
        app = api.create_app(make_settings(), deps)
        app.dependency_overrides[get_current_actor] = lambda: ADMIN
        with TestClient(app) as client:
            r = client.get(CITIZEN_URL, headers=_cid(FISCAL_CODE))
        assert r.status_code == 500
        assert r.json()["detail"] == "Citizen find query error"
        assert "hunter2" not in r.text


class TestSupportTokenEndpoint:

    def test_revoke_then_rejected(self, client, support_key):
        token = mint_support_token(support_key)
        assert client.get(CITIZEN_URL, headers=_cid(token)).status_code == 200

        r = client.delete(SUPPORT_TOKEN_URL, headers=_cid(token))
        assert r.status_code == 200
        assert r.json() == {"message": "Support token revoked"}

        assert client.get(CITIZEN_URL, headers=_cid(token)).status_code == 403

    def test_revoke_requires_support_token(self, client):
        r = client.delete(SUPPORT_TOKEN_URL, headers=_cid(FISCAL_CODE))
        assert r.status_code == 400

    def test_revoke_requires_admin(self, deps, support_key):
        app = api.create_app(make_settings(), deps)
        app.dependency_overrides[get_current_actor] = lambda: AuthenticatedActor(
            oid="op", email=None, name=None,
        )
        with TestClient(app) as client:
            r = client.delete(SUPPORT_TOKEN_URL, headers=_cid(mint_support_token(support_key)))
        assert r.status_code == 403


# ---------------------------------------------------------------------------
# Bearer authentication
# ---------------------------------------------------------------------------


class TestBearerAuthentication:

    @pytest.fixture()
    def raw_client(self, deps):
        with TestClient(api.create_app(make_settings(), deps)) as client:
            yield client

    def test_missing_bearer_401(self, raw_client):
        r = raw_client.get(CITIZEN_URL, headers=_cid(FISCAL_CODE))
        assert r.status_code == 401
        assert r.headers["www-authenticate"] == "Bearer"

    def test_bad_bearer_401(self, raw_client, foreign_key):
        headers = {**_cid(FISCAL_CODE), "Authorization": f"Bearer {mint_bearer_token(foreign_key)}"}
        assert raw_client.get(CITIZEN_URL, headers=headers).status_code == 401

    def test_valid_bearer(self, raw_client, bearer_key, audit):
        headers = {
            **_cid(FISCAL_CODE),
            "Authorization": f"Bearer {mint_bearer_token(bearer_key, oid='op-9')}",
        }
        r = raw_client.get(TRANSACTIONS_URL, headers=headers)
        assert r.status_code == 200
        assert audit.entries[0].PartitionKey == "op-9"

    def test_revoke_with_admin_bearer(self, raw_client, bearer_key, support_key):
        headers = {
            **_cid(mint_support_token(support_key)),
            "Authorization": f"Bearer {mint_bearer_token(bearer_key, groups=[ADMIN_GROUP])}",
        }
        assert raw_client.delete(SUPPORT_TOKEN_URL, headers=headers).status_code == 200

    def test_probes_need_no_bearer(self, raw_client):
        assert raw_client.get("/health").status_code == 200


# ---------------------------------------------------------------------------
# HTTP hardening
# ---------------------------------------------------------------------------


class TestHardening:

    def test_request_id_generated(self, client):
        r = client.get("/health", headers={"X-Request-ID": "client-chosen"})
        assert re.fullmatch(r"[0-9a-f]{32}", r.headers["X-Request-ID"])

    def test_request_ids_unique(self, client):
        ids = {client.get("/health").headers["X-Request-ID"] for _ in range(5)}
        assert len(ids) == 5

    def test_security_headers(self, client):
        r = client.get(CITIZEN_URL, headers=_cid(FISCAL_CODE))
        assert r.headers["X-Content-Type-Options"] == "nosniff"
        assert r.headers["X-Frame-Options"] == "DENY"
        assert r.headers["Cache-Control"] == "no-store"
        assert "Strict-Transport-Security" not in r.headers

    def test_hsts_in_prod(self, deps):
        with TestClient(api.create_app(make_settings(env="prod"), deps)) as client:
            assert "Strict-Transport-Security" in client.get("/health").headers

    def test_body_too_large_413(self, client):
        r = client.post("/health", content=b"x" * 2048)
        assert r.status_code == 413

    def test_headers_too_large_431(self, client):
        r = client.get("/health", headers={"x-padding": "p" * 17_000})
        assert r.status_code == 431

    @pytest.mark.parametrize("content_length,status", [
        ("abc", 400),
        ("-1", 400),
        (str(MAX_BODY_BYTES + 1), 413),
    ])
    def test_bad_content_length_rejected(self, content_length, status):
        rejection = oversize_rejection(Headers(raw=[(b"content-length", content_length.encode())]))
        assert rejection is not None
        assert rejection.status_code == status

    def test_small_request_allowed(self):
        assert oversize_rejection(Headers(raw=[(b"content-length", b"0")])) is None
        assert oversize_rejection(Headers(raw=[])) is None

    def test_rate_limit_429(self, deps):
        app = api.create_app(make_settings(rate_limit="2/minute"), deps)
        app.dependency_overrides[get_current_actor] = lambda: ADMIN
        with TestClient(app) as client:
            statuses = [client.get(AWARDS_URL, headers=_cid(FISCAL_CODE)).status_code for _ in range(3)]
        assert statuses == [200, 200, 429]

    def test_cors_preflight(self, deps):
        settings = make_settings(allowed_origins=("https://support.example.org",))
        with TestClient(api.create_app(settings, deps)) as client:
            r = client.options(CITIZEN_URL, headers={
                "Origin": "https://support.example.org",
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": "x-citizen-id",
            })
        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == "https://support.example.org"

    def test_unhandled_exception_500(self, deps):
        def _explode():
            raise RuntimeError("secret internals")

        app = api.create_app(make_settings(), deps)
        app.dependency_overrides[get_current_actor] = _explode
        with TestClient(app, raise_server_exceptions=False) as client:
            r = client.get(CITIZEN_URL, headers=_cid(FISCAL_CODE))
        assert r.status_code == 500
        assert "secret internals" not in r.text

    @pytest.mark.parametrize("ip,masked", [
        ("192.168.10.20", "192.168.*.*"),
        ("2001:db8:85a3:0:0:8a2e:370:7334", "2001:db8:85a3:0::*"),
        (None, "unknown"),
        ("testclient", "unknown"),
    ])
    def test_mask_ip(self, ip, masked):
        assert mask_ip(ip) == masked


# ---------------------------------------------------------------------------
# Probes and lifespan
# ---------------------------------------------------------------------------


class TestLifecycle:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"

    def test_ready_when_wired(self, client):
        r = client.get("/ready")
        assert r.status_code == 200
        assert r.json()["ready"] is True

    def test_not_ready_before_startup(self):
        """Without a lifespan run nothing is wired yet."""
        client = TestClient(api.create_app(make_settings()))
        assert client.get("/ready").status_code == 503

    def test_lifespan_builds_and_closes_owned_deps(self, deps, monkeypatch):
        closed = []

        async def _close():
            closed.append(True)

        owned = dataclasses.replace(deps, closers=(_close,))
        monkeypatch.setattr(api, "build_dependencies", lambda settings: owned)

        app = api.create_app(make_settings())
        with TestClient(app) as client:
            assert client.get("/ready").status_code == 200
            assert closed == []
        assert closed == [True]
        assert app.state.deps is None

    def test_injected_deps_not_closed(self, deps):
        closed = []

        async def _close():
            closed.append(True)

        injected = dataclasses.replace(deps, closers=(_close,))
        app = api.create_app(make_settings(), injected)
        with TestClient(app):
            pass
        assert closed == []
        assert app.state.deps is injected

    def test_docs_only_in_dev(self, deps):
        with TestClient(api.create_app(make_settings(), deps)) as client:
            assert client.get("/docs").status_code == 404
        with TestClient(api.create_app(make_settings(env="dev"), deps)) as client:
            assert client.get("/docs").status_code == 200
            assert client.get("/openapi.json").status_code == 200
