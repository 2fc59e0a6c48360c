"""DPoP (RFC 9449) proofs and the nonce handshake.

Every request to the authorization server and to the PDS carries a proof
signed with the key the tokens are bound to. Servers may demand a fresh
nonce; the request is then replayed once with it.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import time
from typing import Any, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import jwt
from cryptography.hazmat.primitives.asymmetric import ec

from rewind.core.auth.keys import ALGORITHM, public_jwk

NONCE_HEADER = "DPoP-Nonce"


def _b64url_sha256(value: str) -> str:
    digest = hashlib.sha256(value.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def make_proof(
    key: ec.EllipticCurvePrivateKey,
    method: str,
    url: str,
    *,
    nonce: Optional[str] = None,
    access_token: Optional[str] = None,
) -> str:
    """Proof JWT for one request; ``htu`` drops the query and fragment."""
    parts = urlsplit(url)
    claims = {
        "jti": secrets.token_urlsafe(16),
        "htm": method.upper(),
        "htu": urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")),
        "iat": int(time.time()),
    }
    if nonce:
        claims["nonce"] = nonce
    if access_token:
        claims["ath"] = _b64url_sha256(access_token)
    return jwt.encode(
        claims,
        key,
        algorithm=ALGORITHM,
        headers={"typ": "dpop+jwt", "jwk": public_jwk(key)},
    )


def nonce_challenge(resp) -> Optional[str]:
    """The nonce a ``use_dpop_nonce`` rejection asks for, else None."""
    nonce = resp.headers.get(NONCE_HEADER)
    if not nonce or resp.status_code not in (400, 401):
        return None
    if "use_dpop_nonce" in resp.headers.get("WWW-Authenticate", ""):
        return nonce
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("error") == "use_dpop_nonce":
        return nonce
    return None


def dpop_request(
    http,
    method: str,
    url: str,
    key: ec.EllipticCurvePrivateKey,
    *,
    nonce: Optional[str] = None,
    access_token: Optional[str] = None,
    headers: Optional[dict] = None,
    **kwargs: Any,
) -> Tuple[Any, Optional[str]]:
    """
    Send ``method url`` with a DPoP proof, retrying once on a nonce challenge.

    Returns:
        ``(response, nonce)`` where ``nonce`` is the latest one the server handed out
    """
    send = getattr(http, method.lower())

    def _send(current_nonce):
        request_headers = dict(headers or {})
        request_headers["DPoP"] = make_proof(key, method, url, nonce=current_nonce, access_token=access_token)
        return send(url, headers=request_headers, **kwargs)

    resp = _send(nonce)
    challenge = nonce_challenge(resp)
    if challenge and challenge != nonce:
        nonce = challenge
        resp = _send(nonce)
    return resp, resp.headers.get(NONCE_HEADER) or nonce
