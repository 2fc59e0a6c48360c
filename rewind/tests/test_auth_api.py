"""Tests for login, signup, OAuth callback, logout and client metadata routes."""

from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

pytestmark = pytest.mark.integration

from rewind import create_app
from rewind.config import TestingConfig
from rewind.core.auth.errors import ProtocolError, ResolutionError
from rewind.core.auth.keys import generate_key, key_to_pem
from rewind.core.auth.session_manager import SessionResult
from rewind.core.auth.session_store import SessionRecord

DID = "did:plc:alice"
AUTHORIZE_URL = "https://auth.example.com/oauth/authorize?client_id=x&request_uri=urn%3Ax"


@pytest.fixture
def ctx(app):
    return app.extensions["rewind"]


@pytest.fixture
def oauth_client(ctx, monkeypatch):
    mock = MagicMock()
    monkeypatch.setattr(ctx, "oauth_client", mock)
    return mock


@pytest.fixture
def session_manager(ctx, monkeypatch):
    mock = MagicMock()
    monkeypatch.setattr(ctx, "session_manager", mock)
    return mock


def _set_cookies(resp):
    return resp.headers.getlist("Set-Cookie")


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True}


def test_client_metadata(client):
    resp = client.get("/oauth-client-metadata.json")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["client_id"] == "https://rewind.test/oauth-client-metadata.json"
    assert body["redirect_uris"] == ["https://rewind.test/oauth/callback"]
    assert body["scope"] == "atproto transition:generic"
    assert "public" in resp.headers["Cache-Control"]


def test_jwks(client):
    resp = client.get("/.well-known/jwks.json")
    assert resp.status_code == 200
    assert resp.get_json() == {"keys": []}


def test_configured_client_key_is_published(monkeypatch):
    pem = key_to_pem(generate_key())
    monkeypatch.setattr(TestingConfig, "OAUTH_PRIVATE_KEY", pem.strip().replace("\n", "\\n"))
    monkeypatch.setattr(TestingConfig, "OAUTH_KEY_ID", "rewind-2026")
    confidential = create_app("testing").test_client()

    metadata = confidential.get("/oauth-client-metadata.json").get_json()
    assert metadata["token_endpoint_auth_method"] == "private_key_jwt"
    assert metadata["dpop_bound_access_tokens"] is True
    assert metadata["jwks_uri"] == "https://rewind.test/.well-known/jwks.json"

    keys = confidential.get("/.well-known/jwks.json").get_json()["keys"]
    assert [k["kid"] for k in keys] == ["rewind-2026"]
    assert keys[0]["crv"] == "P-256"
    assert "d" not in keys[0]


class TestLogin:
    def test_login_page(self, client):
        resp = client.get("/login")
        assert resp.status_code == 200
        assert b'name="input"' in resp.data

    def test_login_page_shows_error(self, client):
        resp = client.get("/login?error=Issuer+mismatch")
        assert b"Issuer mismatch" in resp.data
        assert resp.headers["Cache-Control"] == "no-store"

    def test_redirects_to_authorization_server(self, client, oauth_client):
        oauth_client.authorize.return_value = AUTHORIZE_URL

        resp = client.post("/login", data={"input": "  alice.example.com "})

        assert resp.status_code == 302
        assert resp.headers["Location"] == AUTHORIZE_URL
        assert resp.headers["Cache-Control"] == "no-store"
        oauth_client.authorize.assert_called_once_with("alice.example.com", "atproto transition:generic")

    @pytest.mark.parametrize("form", [{}, {"input": ""}, {"input": "   "}])
    def test_invalid_input(self, client, oauth_client, form):
        resp = client.post("/login", data=form)

        assert resp.status_code == 400
        assert b"Invalid input" in resp.data
        oauth_client.authorize.assert_not_called()

    def test_resolution_failure(self, client, oauth_client):
        oauth_client.authorize.side_effect = ResolutionError("Unable to resolve handle nobody.example.com")

        resp = client.post("/login", data={"input": "nobody.example.com"})

        assert resp.status_code == 400
        assert b"Unable to resolve handle nobody.example.com" in resp.data


class TestSignup:
    def test_authorizes_against_configured_pds(self, app, client, oauth_client):
        oauth_client.authorize.return_value = AUTHORIZE_URL

        resp = client.get("/signup")

        assert resp.status_code == 302
        assert resp.headers["Location"] == AUTHORIZE_URL
        oauth_client.authorize.assert_called_once_with(app.config["PDS_URL"], "atproto transition:generic")

    def test_authorization_server_failure(self, client, oauth_client):
        oauth_client.authorize.side_effect = ProtocolError("Authorization server unavailable")

        resp = client.get("/signup")

        assert resp.status_code == 502
        assert b"couldn&#39;t initiate login" in resp.data


class TestCallback:
    def test_success_sets_cookie_and_goes_home(self, client, session_manager):
        session_manager.complete_login.return_value = SessionResult(identity=DID, cookie="signed-cookie")

        resp = client.get("/oauth/callback?state=st1&code=code1&iss=https%3A%2F%2Fauth.example.com")

        assert resp.status_code == 302
        assert urlparse(resp.headers["Location"]).path == "/"
        assert resp.headers["Cache-Control"] == "no-store"
        cookies = _set_cookies(resp)
        assert any(c.startswith("sid=signed-cookie") and "HttpOnly" in c for c in cookies)
        token, params = session_manager.complete_login.call_args.args
        assert token is None
        assert params == {"state": "st1", "code": "code1", "iss": "https://auth.example.com"}

    def test_failure_returns_to_login(self, client, session_manager):
        session_manager.complete_login.return_value = SessionResult(error="Authorization request expired")

        resp = client.get("/oauth/callback?state=st1&code=code1")

        location = urlparse(resp.headers["Location"])
        assert resp.status_code == 302
        assert location.path == "/login"
        assert parse_qs(location.query)["error"] == ["Authorization request expired"]
        assert _set_cookies(resp) == []

    def test_unknown_state_with_real_client(self, client):
        resp = client.get("/oauth/callback?state=never-issued&code=code1")

        location = urlparse(resp.headers["Location"])
        assert location.path == "/login"
        assert "error" in parse_qs(location.query)


class TestLogout:
    def test_clears_cookie(self, app, ctx):
        client = app.test_client(use_cookies=False)
        token = ctx.session_store.save(SessionRecord.empty().with_identity(DID))

        resp = client.post("/logout", headers={"Cookie": f"sid={token}"})

        assert resp.status_code == 302
        assert urlparse(resp.headers["Location"]).path == "/"
        cookies = _set_cookies(resp)
        assert any(c.startswith("sid=;") for c in cookies)
        assert ctx.session_store.load(token).is_empty
