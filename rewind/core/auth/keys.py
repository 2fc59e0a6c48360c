"""ES256 keys for DPoP proofs and ``private_key_jwt`` client authentication."""

from __future__ import annotations

import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.algorithms import ECAlgorithm

ALGORITHM = "ES256"
CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


def generate_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def key_to_pem(key: ec.EllipticCurvePrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def key_from_pem(pem: str) -> ec.EllipticCurvePrivateKey:
    """
    Load a P-256 private key.

    Raises:
        ValueError: If ``pem`` is not a P-256 private key
    """
    key = serialization.load_pem_private_key(pem.encode("ascii"), password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
        raise ValueError("Expected a P-256 private key")
    return key


def public_jwk(key: ec.EllipticCurvePrivateKey) -> Dict[str, Any]:
    return json.loads(ECAlgorithm.to_jwk(key.public_key()))


@dataclass(frozen=True)
class ClientKey:
    """The confidential client's signing key, published in the JWKS."""

    kid: str
    private_key: ec.EllipticCurvePrivateKey

    @classmethod
    def from_pem(cls, pem: str, kid: str) -> "ClientKey":
        # Env vars often carry the PEM with literal "\n"
        return cls(kid=kid, private_key=key_from_pem(pem.replace("\\n", "\n").strip() + "\n"))

    @property
    def jwk(self) -> Dict[str, Any]:
        return {**public_jwk(self.private_key), "kid": self.kid, "use": "sig", "alg": ALGORITHM}

    def client_assertion(self, client_id: str, audience: str) -> str:
        """Signed JWT proving possession of the client key to ``audience`` (the issuer)."""
        now = int(time.time())
        claims = {
            "iss": client_id,
            "sub": client_id,
            "aud": audience,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + 60,
        }
        return jwt.encode(claims, self.private_key, algorithm=ALGORITHM, headers={"kid": self.kid})


def load_client_key(pem: Optional[str], kid: str) -> Optional[ClientKey]:
    if not pem:
        return None
    return ClientKey.from_pem(pem, kid)
