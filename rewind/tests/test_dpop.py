"""Tests for DPoP proofs and the nonce handshake."""

import base64
import hashlib
from unittest.mock import MagicMock

import jwt
import pytest

pytestmark = pytest.mark.unit

from rewind.core.auth.dpop import dpop_request, make_proof, nonce_challenge
from rewind.core.auth.keys import generate_key

URL = "https://pds.example.com/xrpc/com.atproto.repo.listRecords"


def _claims(proof):
    header = jwt.get_unverified_header(proof)
    return header, jwt.decode(proof, jwt.PyJWK(header["jwk"]).key, algorithms=["ES256"])


def test_proof_claims():
    header, claims = _claims(make_proof(generate_key(), "get", URL + "?repo=did:plc:alice", nonce="n1", access_token="at"))

    assert header["typ"] == "dpop+jwt"
    assert header["alg"] == "ES256"
    assert "d" not in header["jwk"]
    assert claims["htm"] == "GET"
    assert claims["htu"] == URL
    assert claims["nonce"] == "n1"
    assert claims["ath"] == base64.urlsafe_b64encode(hashlib.sha256(b"at").digest()).rstrip(b"=").decode()


def test_each_proof_is_unique():
    key = generate_key()
    assert _claims(make_proof(key, "POST", URL))[1]["jti"] != _claims(make_proof(key, "POST", URL))[1]["jti"]


def test_nonce_challenge_from_resource_server(fake_response):
    resp = fake_response(401, {"error": "use_dpop_nonce"}, headers={
        "DPoP-Nonce": "n2",
        "WWW-Authenticate": 'DPoP error="use_dpop_nonce"',
    })
    assert nonce_challenge(resp) == "n2"


def test_other_errors_are_not_challenges(fake_response):
    assert nonce_challenge(fake_response(400, {"error": "invalid_grant"}, headers={"DPoP-Nonce": "n2"})) is None
    assert nonce_challenge(fake_response(200, {}, headers={"DPoP-Nonce": "n2"})) is None


def test_request_replayed_once_with_new_nonce(fake_response):
    http = MagicMock()
    http.get.side_effect = [
        fake_response(401, {"error": "use_dpop_nonce"}, headers={"DPoP-Nonce": "n2"}),
        fake_response(200, {"records": []}, headers={"DPoP-Nonce": "n3"}),
    ]

    resp, nonce = dpop_request(http, "GET", URL, generate_key(), nonce="n1", access_token="at", params={"limit": 10})

    assert resp.status_code == 200
    assert nonce == "n3"
    first, second = http.get.call_args_list
    assert _claims(first.kwargs["headers"]["DPoP"])[1]["nonce"] == "n1"
    assert _claims(second.kwargs["headers"]["DPoP"])[1]["nonce"] == "n2"
    assert second.kwargs["params"] == {"limit": 10}


def test_same_nonce_is_not_retried(fake_response):
    http = MagicMock()
    http.post.return_value = fake_response(400, {"error": "use_dpop_nonce"}, headers={"DPoP-Nonce": "n1"})

    resp, nonce = dpop_request(http, "POST", URL, generate_key(), nonce="n1", data={})

    assert http.post.call_count == 1
    assert resp.status_code == 400
    assert nonce == "n1"
